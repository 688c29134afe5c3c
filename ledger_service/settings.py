from __future__ import annotations

"""
Session limits and reconciliation knobs, read from the environment.

Defaults mirror the upload constraints the browser client enforces: at most
100 files per session, 5 MiB per file, and auto-acceptance of receipts whose
extraction confidence is at least 0.5.
"""

from dataclasses import dataclass

from shared.env import read_float, read_int

DEFAULT_MAX_FILES = 100
DEFAULT_MAX_FILE_BYTES = 5 * 1024 * 1024
DEFAULT_CONFIDENCE_THRESHOLD = 0.5
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0


class LedgerSettingsError(RuntimeError):
    """Raised when ledger configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class LedgerSettings:
    max_files: int = DEFAULT_MAX_FILES
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS


def load_ledger_settings() -> LedgerSettings:
    """Build LedgerSettings from `LEDGER_*` env vars, falling back to defaults."""

    settings = LedgerSettings(
        max_files=read_int("LEDGER_MAX_FILES", DEFAULT_MAX_FILES, LedgerSettingsError),
        max_file_bytes=read_int("LEDGER_MAX_FILE_BYTES", DEFAULT_MAX_FILE_BYTES, LedgerSettingsError),
        confidence_threshold=read_float(
            "LEDGER_CONFIDENCE_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD, LedgerSettingsError
        ),
        retry_attempts=read_int("LEDGER_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, LedgerSettingsError),
        retry_base_delay_seconds=read_float(
            "LEDGER_RETRY_BASE_DELAY_SECONDS", DEFAULT_RETRY_BASE_DELAY_SECONDS, LedgerSettingsError
        ),
    )
    _validate(settings)
    return settings


def _validate(settings: LedgerSettings) -> None:
    if settings.max_files <= 0:
        raise LedgerSettingsError("LEDGER_MAX_FILES must be positive")
    if settings.max_file_bytes <= 0:
        raise LedgerSettingsError("LEDGER_MAX_FILE_BYTES must be positive")
    if not 0.0 <= settings.confidence_threshold <= 1.0:
        raise LedgerSettingsError("LEDGER_CONFIDENCE_THRESHOLD must be between 0 and 1")
    if settings.retry_attempts <= 0:
        raise LedgerSettingsError("LEDGER_RETRY_ATTEMPTS must be positive")
    if settings.retry_base_delay_seconds < 0:
        raise LedgerSettingsError("LEDGER_RETRY_BASE_DELAY_SECONDS must not be negative")
