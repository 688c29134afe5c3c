"""Exception hierarchy for the ledger service."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the ledger service."""


class ExtractionError(LedgerError):
    """The extraction provider failed or returned an unusable payload."""


class UnsupportedInputError(LedgerError):
    """An uploaded file was rejected before it could enter a store."""


class UnknownItemError(LedgerError, KeyError):
    """No receipt item with the given id exists in the session."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Unknown receipt item '{item_id}'")
        self.item_id = item_id

    def __str__(self) -> str:
        return self.args[0]


class UnknownTransactionError(LedgerError, KeyError):
    """No transaction with the given id exists in the session."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Unknown transaction '{transaction_id}'")
        self.transaction_id = transaction_id

    def __str__(self) -> str:
        return self.args[0]


class ItemStateError(LedgerError):
    """A receipt lifecycle transition is not allowed from the item's current status."""


class MatchConflictError(LedgerError):
    """A manual match would link a receipt that already belongs to another transaction."""


class SessionBusyError(LedgerError):
    """A receipt batch is already being processed for this session."""


class UnknownSessionError(LedgerError, KeyError):
    """No ledger session with the given id is registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Unknown session '{session_id}'")
        self.session_id = session_id

    def __str__(self) -> str:
        return self.args[0]
