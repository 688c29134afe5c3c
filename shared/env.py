"""Typed environment-variable readers shared by the settings modules."""

from __future__ import annotations

import os
from typing import Callable, Optional, Type, TypeVar

T = TypeVar("T")

TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


def read_env(
    env_key: str,
    default: T,
    convert: Callable[[str], T],
    error_cls: Type[Exception],
    expected: str,
) -> T:
    """
    Read `env_key` and convert it, falling back to `default` when unset or blank.

    Conversion failures raise `error_cls` naming the variable and the raw value.
    """

    raw_value: Optional[str] = os.getenv(env_key)
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return convert(raw_value.strip())
    except ValueError as exc:
        raise error_cls(f"{env_key} must be {expected} (received '{raw_value}')") from exc


def read_float(env_key: str, default: float, error_cls: Type[Exception]) -> float:
    return read_env(env_key, default, float, error_cls, "numeric")


def read_int(env_key: str, default: int, error_cls: Type[Exception]) -> int:
    return read_env(env_key, default, int, error_cls, "an integer")


def read_bool(env_key: str, default: bool = False) -> bool:
    raw_value = os.getenv(env_key)
    if raw_value is None or raw_value.strip() == "":
        return default
    return raw_value.strip().lower() in TRUE_STRINGS
