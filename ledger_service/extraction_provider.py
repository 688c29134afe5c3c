from __future__ import annotations

"""
Built-in extraction providers and the provider factory.

The deterministic provider needs no network access and only understands text
statements; the mock provider replays a JSON fixture; the OpenAI provider
lives in `ledger_service.providers` and is imported lazily.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from shared.observability.privacy import hash_payload, redact_fields

from .errors import ExtractionError
from .extraction import (
    ExtractionProvider,
    ReceiptExtractionRequest,
    StatementExtractionRequest,
    StatementText,
)
from .parsers import parse_statement_text

logger = logging.getLogger(__name__)

SAFE_RECEIPT_KEYS = frozenset({"category", "confidence_score", "confidenceScore", "detected_language", "detectedLanguage"})


class DeterministicExtractionProvider:
    """
    Rule-based provider: reads CSV/HTML statements, cannot read images.

    Receipts and media statements raise ExtractionError so a misconfigured
    deployment fails loudly instead of inventing data.
    """

    name = "deterministic"

    async def extract_receipt(self, request: ReceiptExtractionRequest) -> Dict[str, Any]:
        raise ExtractionError("The deterministic provider cannot read receipt images; configure EXTRACTION_PROVIDER")

    async def extract_statement(self, request: StatementExtractionRequest) -> Dict[str, Any]:
        if not isinstance(request.input, StatementText):
            raise ExtractionError("The deterministic provider only reads CSV, HTML, or spreadsheet statements")
        payload = parse_statement_text(request.input.text)
        _log_provider_output(self.name, "statement", payload)
        return payload


class MockExtractionProvider:
    """
    Fixture-driven provider suitable for tests or offline demos.

    Fixture shape: {"receipts": {"<file name>" | "default": {...}}, "statement": {"transactions": [...]}}.
    """

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        env_override = os.getenv("EXTRACTION_PROVIDER_FIXTURE")
        candidate = fixture_path or env_override
        if candidate is None:
            candidate = _default_fixture_path()

        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock extraction provider fixture not found at {self._fixture_path}")

    async def extract_receipt(self, request: ReceiptExtractionRequest) -> Dict[str, Any]:
        receipts = self._load_fixture().get("receipts", {})
        payload = receipts.get(request.file_name) or receipts.get("default")
        if payload is None:
            raise ExtractionError(f"No mock receipt payload for '{request.file_name}'")
        _log_provider_output(self.name, "receipt", payload)
        return dict(payload)

    async def extract_statement(self, request: StatementExtractionRequest) -> Dict[str, Any]:
        payload = self._load_fixture().get("statement")
        if payload is None:
            raise ExtractionError("Mock fixture has no statement payload")
        _log_provider_output(self.name, "statement", payload)
        return dict(payload)

    def _load_fixture(self) -> Dict[str, Any]:
        try:
            return json.loads(self._fixture_path.read_text())
        except json.JSONDecodeError as exc:
            raise ValueError(f"Mock extraction provider fixture is not valid JSON: {self._fixture_path}") from exc


def _default_fixture_path() -> Path:
    project_root = Path(__file__).resolve().parents[1]
    return project_root / "tests" / "fixtures" / "mock_extraction_provider.json"


def build_extraction_provider(
    name: str | None,
    *,
    settings: Optional[Any] = None,
) -> ExtractionProvider:
    """
    Factory that instantiates the requested extraction provider implementation.
    """

    normalized = (name or "").strip().lower()
    if normalized in ("", "deterministic"):
        return DeterministicExtractionProvider()
    if normalized == "mock":
        return MockExtractionProvider()
    if normalized == "openai":
        from .providers.openai_extraction import OpenAIExtractionProvider

        return OpenAIExtractionProvider(settings=settings)

    raise ValueError(f"Unsupported extraction provider '{name}'")


def _log_provider_output(provider_name: str, kind: str, payload: Dict[str, Any]) -> None:
    logger.info(
        {
            "event": "extraction_provider_output",
            "provider": provider_name,
            "kind": kind,
            "transaction_count": len(payload.get("transactions", [])) if kind == "statement" else None,
            "payload_hash": hash_payload(payload),
            "receipt_snapshot": redact_fields(payload, SAFE_RECEIPT_KEYS) if kind == "receipt" else None,
        }
    )
