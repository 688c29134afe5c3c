from __future__ import annotations

"""
Extraction gateway: the only asynchronous, fallible boundary of the ledger.

Providers turn a receipt image/PDF or a bank statement into raw JSON-like
payloads. The gateway validates those payloads with pydantic, coerces
categories onto the fixed list, clamps confidence, and wraps every call in a
bounded exponential-backoff retry. Anything that still fails surfaces as
ExtractionError.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, TypeVar, Union, runtime_checkable

from pydantic import BaseModel, Field, ValidationError, field_validator

from shared.observability.privacy import describe_media, hash_payload

from .categories import categorize_description, is_cash_withdrawal, normalize_category
from .errors import ExtractionError
from .models import DEFAULT_CATEGORY, BankTransaction, ReceiptFields

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class StatementMedia:
    """Statement rendered as a base64 data URI (images, PDFs)."""

    data_uri: str


@dataclass(frozen=True, slots=True)
class StatementText:
    """Statement passed as text (CSV, HTML, spreadsheets converted to CSV)."""

    text: str


StatementInput = Union[StatementMedia, StatementText]


@dataclass(slots=True)
class ReceiptExtractionRequest:
    data_uri: str
    file_name: str = ""


@dataclass(slots=True)
class StatementExtractionRequest:
    input: StatementInput
    file_name: str = ""


@runtime_checkable
class ExtractionProvider(Protocol):
    """
    Interface for swappable document extractors.

    Implementations return raw payloads; validation and normalisation happen
    in ExtractionGateway so every provider is held to the same contract.
    """

    name: str

    async def extract_receipt(self, request: ReceiptExtractionRequest) -> Dict[str, Any]:
        """Return a receipt payload (merchantName, amount, date, items, ...)."""
        ...

    async def extract_statement(self, request: StatementExtractionRequest) -> Dict[str, Any]:
        """Return {"transactions": [...]} for the supplied statement."""
        ...


class ReceiptPayload(BaseModel):
    merchant_name: str = Field(alias="merchantName")
    amount: float
    date: str
    items: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    category: Optional[str] = None
    confidence_score: float = Field(default=0.0, alias="confidenceScore")
    detected_language: str = Field(default="Unknown", alias="detectedLanguage")

    model_config = {"populate_by_name": True}

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class TransactionPayload(BaseModel):
    date: str
    description: str
    debit: Optional[float] = None
    credit: Optional[float] = None
    balance: Optional[float] = None
    category: Optional[str] = None


class StatementPayload(BaseModel):
    transactions: List[TransactionPayload]


class ExtractionGateway:
    """Validating, retrying front door for an ExtractionProvider."""

    def __init__(
        self,
        provider: ExtractionProvider,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._attempts = max(1, attempts)
        self._base_delay = max(0.0, base_delay_seconds)
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return self._provider.name

    async def extract_receipt(self, request: ReceiptExtractionRequest) -> ReceiptFields:
        payload = await self._with_retry("receipt", lambda: self._provider.extract_receipt(request))
        fields = _receipt_fields_from_payload(payload)
        logger.info(
            {
                "event": "receipt_extraction_completed",
                "provider": self.provider_name,
                "media": describe_media(request.data_uri),
                "merchant_hash": hash_payload(fields.merchant_name),
                "confidence_score": fields.confidence_score,
                "category": fields.category,
            }
        )
        return fields

    async def extract_statement(self, request: StatementExtractionRequest) -> List[BankTransaction]:
        payload = await self._with_retry("statement", lambda: self._provider.extract_statement(request))
        transactions = _transactions_from_payload(payload)
        logger.info(
            {
                "event": "statement_extraction_completed",
                "provider": self.provider_name,
                "input_kind": "media" if isinstance(request.input, StatementMedia) else "text",
                "transaction_count": len(transactions),
                "payload_hash": hash_payload(payload),
            }
        )
        return transactions

    async def _with_retry(self, kind: str, call: Callable[[], Awaitable[T]]) -> T:
        attempts = 0
        start_time = time.perf_counter()
        last_exc: Exception | None = None

        while attempts < self._attempts:
            attempts += 1
            try:
                return await call()
            except Exception as exc:  # noqa: BLE001 - providers raise SDK-specific errors
                last_exc = exc
                if attempts < self._attempts:
                    delay = self._backoff_seconds(attempts)
                    self._log_retry(kind, attempts, delay, exc)
                    await self._sleep(delay)
                    continue

        assert last_exc is not None
        self._log_failure(kind, attempts, start_time, last_exc)
        if isinstance(last_exc, ExtractionError):
            raise last_exc
        raise ExtractionError(f"{kind.capitalize()} extraction failed after {attempts} attempts: {last_exc}") from last_exc

    def _backoff_seconds(self, attempts: int) -> float:
        return self._base_delay * (2 ** (attempts - 1))

    def _log_retry(self, kind: str, attempts: int, delay: float, exc: Exception) -> None:
        logger.warning(
            {
                "event": "extraction_retry",
                "kind": kind,
                "provider": self.provider_name,
                "attempts": attempts,
                "delay_seconds": delay,
                "error_type": type(exc).__name__,
                "error": str(exc),
            }
        )

    def _log_failure(self, kind: str, attempts: int, start_time: float, exc: Exception) -> None:
        logger.error(
            {
                "event": "extraction_failed",
                "kind": kind,
                "provider": self.provider_name,
                "attempts": attempts,
                "latency_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "error_type": type(exc).__name__,
                "error": str(exc),
            }
        )


def _receipt_fields_from_payload(payload: Any) -> ReceiptFields:
    try:
        parsed = ReceiptPayload.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"Receipt payload failed validation: {exc.error_count()} error(s)") from exc

    category = normalize_category(parsed.category) or categorize_description(parsed.merchant_name)
    return ReceiptFields(
        merchant_name=parsed.merchant_name.strip(),
        amount=parsed.amount,
        date=parsed.date.strip(),
        items=[item for item in parsed.items if item],
        location=parsed.location or None,
        category=category,
        confidence_score=min(1.0, max(0.0, parsed.confidence_score)),
        detected_language=parsed.detected_language or "Unknown",
    )


def _transactions_from_payload(payload: Any) -> List[BankTransaction]:
    try:
        parsed = StatementPayload.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"Statement payload failed validation: {exc.error_count()} error(s)") from exc

    return [
        BankTransaction(
            date=row.date.strip(),
            description=row.description.strip(),
            debit=row.debit,
            credit=row.credit,
            balance=row.balance,
            category=_statement_category(row),
        )
        for row in parsed.transactions
    ]


def _statement_category(row: TransactionPayload) -> Optional[str]:
    """Credits and cash withdrawals are Other; debits always end up with a category."""

    if row.credit is not None and not row.debit:
        return DEFAULT_CATEGORY
    if is_cash_withdrawal(row.description):
        return DEFAULT_CATEGORY
    category = normalize_category(row.category)
    if category:
        return category
    if row.debit is not None:
        return categorize_description(row.description)
    return None
