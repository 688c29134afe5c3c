"""Shared pytest fixtures for the ledger service test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Dict, List

import anyio
import pytest

from ledger_service.extraction import ExtractionGateway, ReceiptExtractionRequest, StatementExtractionRequest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class ScriptedProvider:
    """
    Provider double that replays queued outcomes in order.

    Each outcome is either a payload dict (returned) or an exception (raised).
    """

    name = "scripted"

    def __init__(self) -> None:
        self.receipt_outcomes: List[Any] = []
        self.statement_outcomes: List[Any] = []
        self.receipt_requests: List[ReceiptExtractionRequest] = []
        self.statement_requests: List[StatementExtractionRequest] = []
        self.on_receipt: Callable[[ReceiptExtractionRequest], None] | None = None

    async def extract_receipt(self, request: ReceiptExtractionRequest) -> Dict[str, Any]:
        self.receipt_requests.append(request)
        if self.on_receipt is not None:
            self.on_receipt(request)
        # Yield to the event loop like a real network call would.
        await anyio.sleep(0)
        return self._next(self.receipt_outcomes)

    async def extract_statement(self, request: StatementExtractionRequest) -> Dict[str, Any]:
        self.statement_requests.append(request)
        return self._next(self.statement_outcomes)

    @staticmethod
    def _next(outcomes: List[Any]) -> Dict[str, Any]:
        if not outcomes:
            raise AssertionError("ScriptedProvider ran out of outcomes")
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def gateway(scripted_provider: ScriptedProvider, recording_sleep: RecordingSleep) -> ExtractionGateway:
    return ExtractionGateway(scripted_provider, sleep=recording_sleep)


def receipt_payload(amount: float, date: str, confidence: float = 0.9, merchant: str = "Imtiaz Super Market") -> Dict[str, Any]:
    return {
        "merchant_name": merchant,
        "amount": amount,
        "date": date,
        "items": ["Daal"],
        "location": "Karachi",
        "category": "Food & Groceries",
        "confidence_score": confidence,
        "detected_language": "English",
    }
