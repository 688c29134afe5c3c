from __future__ import annotations

"""
Configuration for the pluggable document-extraction provider.

Receipt and statement extraction share one provider stack, so its environment
variables are read and validated here once. Vision calls on multi-page
statements are slow, hence the generous default timeout; temperature defaults
to 0 because the same receipt should extract the same way twice.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .env import read_float, read_int

SUPPORTED_PROVIDERS = frozenset({"deterministic", "mock", "openai"})
REQUIRED_OPENAI_ENV_VARS = ("OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_API_BASE")

DEFAULT_PROVIDER = "deterministic"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_TEMPERATURE = 0.0
DEFAULT_MAX_OUTPUT_TOKENS = 4096


class ProviderSettingsError(RuntimeError):
    """Raised when provider configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class OpenAIConfig:
    api_key: str
    model: str
    api_base: str


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    provider_name: str
    timeout_seconds: float
    temperature: float
    max_output_tokens: int
    openai: Optional[OpenAIConfig] = None


def load_provider_settings(
    *,
    provider_env: str = "EXTRACTION_PROVIDER",
    timeout_env: str = "EXTRACTION_PROVIDER_TIMEOUT_SECONDS",
    temperature_env: str = "EXTRACTION_PROVIDER_TEMPERATURE",
    max_tokens_env: str = "EXTRACTION_PROVIDER_MAX_TOKENS",
) -> ProviderSettings:
    """
    Build ProviderSettings from the environment.

    Args:
        provider_env: Selects the implementation (deterministic, mock, openai).
        timeout_env: Outbound request timeout in seconds; must be positive.
        temperature_env: Sampling temperature passed to model-backed providers.
        max_tokens_env: Cap on model response length.
    """

    provider_name = (os.getenv(provider_env) or "").strip().lower() or DEFAULT_PROVIDER
    if provider_name not in SUPPORTED_PROVIDERS:
        raise ProviderSettingsError(f"Unsupported provider '{provider_name}'")

    timeout_seconds = read_float(timeout_env, DEFAULT_TIMEOUT_SECONDS, ProviderSettingsError)
    if timeout_seconds <= 0:
        raise ProviderSettingsError(f"{timeout_env} must be positive (received '{timeout_seconds}')")

    return ProviderSettings(
        provider_name=provider_name,
        timeout_seconds=timeout_seconds,
        temperature=read_float(temperature_env, DEFAULT_TEMPERATURE, ProviderSettingsError),
        max_output_tokens=read_int(max_tokens_env, DEFAULT_MAX_OUTPUT_TOKENS, ProviderSettingsError),
        openai=_openai_config(provider_env) if provider_name == "openai" else None,
    )


def _openai_config(provider_env: str) -> OpenAIConfig:
    values = {env_key: (os.getenv(env_key) or "").strip() for env_key in REQUIRED_OPENAI_ENV_VARS}
    missing = [env_key for env_key, value in values.items() if not value]
    if missing:
        raise ProviderSettingsError(f"{provider_env}=openai requires the following env vars: {', '.join(missing)}")

    return OpenAIConfig(
        api_key=values["OPENAI_API_KEY"],
        model=values["OPENAI_MODEL"],
        api_base=values["OPENAI_API_BASE"],
    )
