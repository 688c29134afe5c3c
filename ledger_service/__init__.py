"""Receipt-to-statement reconciliation service."""

from .errors import (
    ExtractionError,
    ItemStateError,
    LedgerError,
    MatchConflictError,
    SessionBusyError,
    UnknownItemError,
    UnknownSessionError,
    UnknownTransactionError,
    UnsupportedInputError,
)
from .session import LedgerSession, ProcessingReport, SessionRegistry

__all__ = [
    "ExtractionError",
    "ItemStateError",
    "LedgerError",
    "LedgerSession",
    "MatchConflictError",
    "ProcessingReport",
    "SessionBusyError",
    "SessionRegistry",
    "UnknownItemError",
    "UnknownSessionError",
    "UnknownTransactionError",
    "UnsupportedInputError",
]
