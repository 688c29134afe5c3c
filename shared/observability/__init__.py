"""
Observability helpers (telemetry, privacy utilities) for the ledger service.
"""

from .privacy import describe_media, hash_payload, redact_fields
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    bind_request_context,
    bind_session_context,
    configure_logging,
    ensure_request_id,
    reset_request_context,
    reset_session_context,
    setup_telemetry,
)

__all__ = [
    "describe_media",
    "hash_payload",
    "redact_fields",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "bind_request_context",
    "bind_session_context",
    "configure_logging",
    "ensure_request_id",
    "reset_request_context",
    "reset_session_context",
    "setup_telemetry",
]
