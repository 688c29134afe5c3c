"""
Guardrails for logging financial documents.

Receipts and statements carry merchant names, account numbers, and balances.
Logs only ever see digests of those payloads, plus whatever context keys a
caller explicitly allow-lists.
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "[REDACTED]"
DATA_URI_PREFIX = "data:"


def hash_payload(value: Any) -> str:
    """
    Return a stable SHA-256 hex digest for the provided payload without leaking contents.

    Strings are encoded as UTF-8, bytes are used as-is, and other objects are
    serialized via JSON (falling back to repr()) before hashing.
    """

    if value is None:
        normalized = b"null"
    elif isinstance(value, bytes):
        normalized = value
    elif isinstance(value, str):
        normalized = value.encode("utf-8")
    else:
        try:
            normalized = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
        except TypeError:
            normalized = repr(value).encode("utf-8")

    return hashlib.sha256(normalized).hexdigest()


def describe_media(data_uri: str) -> dict[str, Any]:
    """
    Summarize a base64 data URI for logs: MIME type, encoded length, and digest.
    """

    mime_type = "unknown"
    if data_uri.startswith(DATA_URI_PREFIX):
        header, _, _ = data_uri.partition(",")
        mime_type = header[len(DATA_URI_PREFIX):].split(";", 1)[0] or "unknown"

    return {
        "mime_type": mime_type,
        "encoded_length": len(data_uri),
        "sha256": hash_payload(data_uri),
    }


def redact_fields(payload: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    """
    Produce a shallow copy that preserves only the whitelisted keys and redacts the rest.
    """

    whitelist = set(allowed_keys)
    return {key: (value if key in whitelist else REDACTED) for key, value in payload.items()}
