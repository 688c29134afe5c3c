"""
OpenAI-powered extraction provider for receipts and bank statements.

Receipts and media statements are sent to a vision-capable chat model as
`image_url` (images) or `file` (PDF) content parts; text statements are sent
inline. Function calling pins the output to the receipt/statement schema.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from openai import APIError, APITimeoutError, AsyncOpenAI

from shared.observability.privacy import describe_media, hash_payload

from ..errors import ExtractionError
from ..extraction import ReceiptExtractionRequest, StatementExtractionRequest, StatementMedia
from ..models import EXPENSE_CATEGORIES

logger = logging.getLogger(__name__)

CATEGORY_LIST = ", ".join(EXPENSE_CATEGORIES)

RECEIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "merchant_name": {"type": "string", "description": "Name of the business or store."},
        "amount": {"type": "number", "description": "Total amount of the transaction in PKR."},
        "date": {"type": "string", "description": "Transaction date in YYYY-MM-DD format."},
        "items": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Individual items purchased. Urdu items transliterated to Roman Urdu, not translated.",
        },
        "location": {"type": "string", "description": "Merchant address if printed, otherwise an empty string."},
        "category": {"type": "string", "enum": list(EXPENSE_CATEGORIES)},
        "confidence_score": {
            "type": "number",
            "description": "Confidence in the extracted data, between 0 and 1.",
        },
        "detected_language": {"type": "string", "description": "Primary language: English, Urdu, or Mixed."},
    },
    "required": ["merchant_name", "amount", "date", "items", "category", "confidence_score", "detected_language"],
}

STATEMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "transactions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Transaction date in YYYY-MM-DD format."},
                    "description": {"type": "string"},
                    "debit": {"type": "number", "description": "Withdrawal amount; omit for deposits."},
                    "credit": {"type": "number", "description": "Deposit amount; omit for withdrawals."},
                    "balance": {"type": "number"},
                    "category": {"type": "string", "enum": list(EXPENSE_CATEGORIES)},
                },
                "required": ["date", "description"],
            },
        },
    },
    "required": ["transactions"],
}

RECEIPT_SYSTEM_PROMPT = f"""You are an OCR and data extraction agent for financial documents.
Receipts may contain English or Urdu text. The currency is Pakistani Rupee (PKR).
Choose the category from: {CATEGORY_LIST}.
Return structured JSON matching the provided function schema exactly."""

STATEMENT_SYSTEM_PROMPT = f"""You extract transactions from Pakistani bank statements.
The statement may be an image, a PDF, or raw CSV/HTML text. Extract every transaction row.
Every debit must receive a category from: {CATEGORY_LIST}.
Recognise common merchants: PTCL, K-Electric and SNGPL are Utilities; PSO and Total PARCO are
Fuel & Transportation; Foodpanda and Cheetay are Food & Groceries; Daraz and Alkaram are Personal Care.
Credits, deposits and ATM cash withdrawals are labelled Other.
Return structured JSON matching the provided function schema exactly."""


def _media_part(data_uri: str) -> Dict[str, Any]:
    if data_uri.startswith("data:application/pdf"):
        return {"type": "file", "file": {"filename": "document.pdf", "file_data": data_uri}}
    return {"type": "image_url", "image_url": {"url": data_uri}}


def _tool(name: str, description: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "function", "function": {"name": name, "description": description, "parameters": schema}}


class OpenAIExtractionProvider:
    """
    ChatGPT-backed provider for receipt and statement extraction.

    Errors from the API or unparseable tool arguments raise ExtractionError;
    the gateway decides whether to retry.
    """

    name = "openai"

    def __init__(self, settings: Any | None = None):
        self._settings = settings
        if settings and settings.openai:
            self._client = AsyncOpenAI(
                api_key=settings.openai.api_key,
                base_url=settings.openai.api_base,
                timeout=settings.timeout_seconds,
            )
            self._model = settings.openai.model
            self._temperature = settings.temperature
            self._max_tokens = settings.max_output_tokens
        else:
            self._client = None
            self._model = None
            self._temperature = 0.0
            self._max_tokens = 4096

    async def extract_receipt(self, request: ReceiptExtractionRequest) -> Dict[str, Any]:
        user_content: List[Dict[str, Any]] = [
            {"type": "text", "text": "Extract the receipt fields from this document."},
            _media_part(request.data_uri),
        ]
        logger.info(
            {
                "event": "openai_extraction_request",
                "provider": self.name,
                "kind": "receipt",
                "model": self._model,
                "media": describe_media(request.data_uri),
            }
        )
        return await self._call(
            "receipt",
            RECEIPT_SYSTEM_PROMPT,
            user_content,
            _tool("record_receipt", "Record the fields extracted from a receipt.", RECEIPT_SCHEMA),
        )

    async def extract_statement(self, request: StatementExtractionRequest) -> Dict[str, Any]:
        statement = request.input
        if isinstance(statement, StatementMedia):
            user_content: List[Dict[str, Any]] = [
                {"type": "text", "text": "Extract every transaction from this bank statement."},
                _media_part(statement.data_uri),
            ]
            input_hash = describe_media(statement.data_uri)["sha256"]
        else:
            user_content = [
                {"type": "text", "text": f"Extract every transaction from this bank statement:\n\n{statement.text}"}
            ]
            input_hash = hash_payload(statement.text)

        logger.info(
            {
                "event": "openai_extraction_request",
                "provider": self.name,
                "kind": "statement",
                "model": self._model,
                "input_hash": input_hash,
            }
        )
        return await self._call(
            "statement",
            STATEMENT_SYSTEM_PROMPT,
            user_content,
            _tool("record_transactions", "Record the transactions found on a bank statement.", STATEMENT_SCHEMA),
        )

    async def _call(
        self,
        kind: str,
        system_prompt: str,
        user_content: List[Dict[str, Any]],
        tool: Dict[str, Any],
    ) -> Dict[str, Any]:
        if not self._client:
            raise ExtractionError("OpenAI client not configured. Check OPENAI_API_KEY, OPENAI_MODEL, OPENAI_API_BASE.")

        tool_name = tool["function"]["name"]
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                tools=[tool],
                tool_choice={"type": "function", "function": {"name": tool_name}},
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except (APIError, APITimeoutError) as exc:
            logger.error(
                {
                    "event": "openai_extraction_error",
                    "provider": self.name,
                    "kind": kind,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise ExtractionError(f"OpenAI {kind} extraction failed: {exc}") from exc

        tool_calls = response.choices[0].message.tool_calls
        if not tool_calls:
            logger.warning({"event": "openai_no_tool_calls", "provider": self.name, "kind": kind})
            raise ExtractionError(f"OpenAI returned no {kind} data")

        try:
            parsed = json.loads(tool_calls[0].function.arguments)
        except json.JSONDecodeError as exc:
            logger.error({"event": "openai_json_parse_error", "provider": self.name, "error_message": str(exc)})
            raise ExtractionError(f"OpenAI returned malformed {kind} JSON") from exc

        logger.info(
            {
                "event": "openai_extraction_response",
                "provider": self.name,
                "kind": kind,
                "response_hash": hash_payload(parsed),
            }
        )
        return parsed
