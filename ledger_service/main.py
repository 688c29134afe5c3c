"""
Ledger Service: per-session receipt intake, statement import, reconciliation,
and expense reporting over a JSON API.
"""

import logging
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from shared.observability.telemetry import (
    bind_request_context,
    bind_session_context,
    ensure_request_id,
    reset_request_context,
    reset_session_context,
    setup_telemetry,
)
from shared.provider_settings import ProviderSettings, ProviderSettingsError, load_provider_settings

from .categories import normalize_category
from .dates import parse_date
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
from .extraction import ExtractionGateway
from .extraction_provider import build_extraction_provider
from .ingestion import ReceiptUpload
from .models import ProcessedTransaction, ReceiptItem, UnifiedExpense
from .session import LedgerSession, SessionRegistry
from .settings import LedgerSettings, LedgerSettingsError, load_ledger_settings

app = FastAPI(title="Ledger Service")
setup_telemetry(app, service_name="ledger-service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def _load_extraction_provider_settings() -> ProviderSettings:
    return load_provider_settings(
        provider_env="EXTRACTION_PROVIDER",
        timeout_env="EXTRACTION_PROVIDER_TIMEOUT_SECONDS",
        temperature_env="EXTRACTION_PROVIDER_TEMPERATURE",
        max_tokens_env="EXTRACTION_PROVIDER_MAX_TOKENS",
    )


try:
    EXTRACTION_PROVIDER_SETTINGS = _load_extraction_provider_settings()
    LEDGER_SETTINGS = load_ledger_settings()
except (ProviderSettingsError, LedgerSettingsError) as exc:
    logger.error("Failed to load ledger service settings: %s", exc)
    raise


def _initialize_extraction_provider():
    provider_name = EXTRACTION_PROVIDER_SETTINGS.provider_name
    try:
        return build_extraction_provider(provider_name, settings=EXTRACTION_PROVIDER_SETTINGS)
    except ValueError as exc:
        logger.error("Unsupported extraction provider '%s'", provider_name)
        raise RuntimeError(f"Unsupported extraction provider '{provider_name}'") from exc


EXTRACTION_PROVIDER = _initialize_extraction_provider()


def _build_gateway() -> ExtractionGateway:
    return ExtractionGateway(
        EXTRACTION_PROVIDER,
        attempts=LEDGER_SETTINGS.retry_attempts,
        base_delay_seconds=LEDGER_SETTINGS.retry_base_delay_seconds,
    )


def _build_registry(settings: LedgerSettings) -> SessionRegistry:
    return SessionRegistry(_build_gateway, settings=settings)


SESSIONS = _build_registry(LEDGER_SETTINGS)


def reload_extraction_provider_for_tests() -> None:
    """
    Refresh provider wiring and drop all sessions after tests mutate environment variables.
    """

    global EXTRACTION_PROVIDER_SETTINGS
    global LEDGER_SETTINGS
    global EXTRACTION_PROVIDER
    global SESSIONS

    EXTRACTION_PROVIDER_SETTINGS = _load_extraction_provider_settings()
    LEDGER_SETTINGS = load_ledger_settings()
    EXTRACTION_PROVIDER = _initialize_extraction_provider()
    SESSIONS = _build_registry(LEDGER_SETTINGS)


def _session_id_from_path(path: str) -> str | None:
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 2 and parts[0] == "sessions":
        return parts[1]
    return None


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = ensure_request_id(request)
    token = bind_request_context(request_id)
    session_token = bind_session_context(_session_id_from_path(request.url.path))
    try:
        response = await call_next(request)
        response.headers.setdefault("x-request-id", request_id)
        return response
    finally:
        reset_session_context(session_token)
        reset_request_context(token)


def error_response(status_code: int, error_code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details},
    )


ERROR_STATUS: tuple[tuple[type[LedgerError], int, str], ...] = (
    (UnknownSessionError, 404, "session_not_found"),
    (UnknownItemError, 404, "receipt_not_found"),
    (UnknownTransactionError, 404, "transaction_not_found"),
    (ItemStateError, 409, "invalid_receipt_state"),
    (MatchConflictError, 409, "match_conflict"),
    (SessionBusyError, 409, "session_busy"),
    (UnsupportedInputError, 400, "unsupported_input"),
    (ExtractionError, 502, "extraction_failed"),
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    for error_type, status_code, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code, error_code = 400, "ledger_error"

    log = logger.warning if status_code < 500 else logger.error
    log({"event": "ledger_request_failed", "error": error_code, "status_code": status_code, "path": request.url.path})
    return error_response(status_code, error_code, str(exc))


class ReceiptFieldsModel(BaseModel):
    merchant_name: str
    amount: float
    date: str
    items: list[str]
    location: str | None = None
    category: str
    confidence_score: float
    detected_language: str
    is_manual: bool


class ReceiptItemModel(BaseModel):
    id: str
    name: str
    status: Literal["queued", "processing", "success", "error", "accepted"]
    content_type: str
    fields: ReceiptFieldsModel | None = None
    matched_transaction_id: str | None = None
    error_message: str | None = None


class TransactionModel(BaseModel):
    id: str
    date: str
    description: str
    debit: float | None = None
    credit: float | None = None
    balance: float | None = None
    category: str | None = None
    match_status: Literal["unmatched", "matched", "manual"]
    matched_receipt_id: str | None = None


class UnifiedExpenseModel(BaseModel):
    id: str
    source: Literal["receipt", "manual", "bank"]
    merchant_name: str
    amount: float
    date: str
    category: str
    items: list[str]
    location: str | None = None
    confidence_score: float
    detected_language: str
    is_manual: bool


class SessionModel(BaseModel):
    session_id: str
    is_processing: bool
    last_match_count: int
    items: list[ReceiptItemModel]
    transactions: list[TransactionModel]


class RejectedUploadModel(BaseModel):
    name: str
    reason: str


class UploadResponseModel(BaseModel):
    added: list[ReceiptItemModel]
    duplicates: list[str]
    rejected: list[RejectedUploadModel]


class ProcessingReportModel(BaseModel):
    processed: int
    accepted: int
    needs_review: int
    failed: int
    last_match_count: int


class StatementResponseModel(BaseModel):
    transactions: list[TransactionModel]
    matched_count: int


def _validate_category(value: str | None) -> str | None:
    if value is None:
        return None
    category = normalize_category(value)
    if category is None:
        raise ValueError(f"Unknown expense category '{value}'")
    return category


def _validate_date(value: str | None) -> str | None:
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f"Unreadable date '{value}'")
    return parsed.isoformat()


class ManualExpenseModel(BaseModel):
    amount: float = Field(gt=0)
    date: str
    description: str = Field(min_length=1)
    category: str
    payment_method: Literal["Cash", "Card", "Bank Transfer"] | None = None

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str) -> str:
        return _validate_category(value)

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        return _validate_date(value)


class AcceptReceiptModel(BaseModel):
    merchant_name: str | None = None
    amount: float | None = None
    date: str | None = None
    items: list[str] | None = None
    location: str | None = None
    category: str | None = None

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str | None) -> str | None:
        return _validate_category(value)

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str | None) -> str | None:
        return _validate_date(value)


class ManualMatchModel(BaseModel):
    receipt_id: str


class RecategorizeModel(BaseModel):
    category: str
    apply_to_similar: bool = False

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str) -> str:
        return _validate_category(value)


class CategoryTotalModel(BaseModel):
    name: str
    total: float
    count: int
    with_receipt: int


class ExpenseSummaryModel(BaseModel):
    total_expenses: float
    categories: list[CategoryTotalModel]
    deductible_expenses: float


class VendorTotalModel(BaseModel):
    name: str
    total: float
    count: int


class ProfitAndLossModel(BaseModel):
    month: str | None = None
    income: float
    expenses_by_category: dict[str, float]
    total_expenses: float
    net_profit: float
    available_months: list[str]


class CashFlowMonthModel(BaseModel):
    month: str
    inflow: float
    outflow: float
    net: float


class DeductibleExpenseModel(BaseModel):
    expense: UnifiedExpenseModel
    deductible: bool


class FbrComplianceModel(BaseModel):
    annual_income: float
    medical_expenses: float
    education_expenses: float
    charitable_donations: float
    medical_deduction_limit: float
    education_deduction_eligible: bool
    expenses: list[DeductibleExpenseModel]


def _item_model(item: ReceiptItem) -> ReceiptItemModel:
    return ReceiptItemModel(
        id=item.id,
        name=item.name,
        status=item.status,
        content_type=item.content_type,
        fields=ReceiptFieldsModel(**asdict(item.fields)) if item.fields else None,
        matched_transaction_id=item.matched_transaction_id,
        error_message=item.error_message,
    )


def _transaction_model(transaction: ProcessedTransaction) -> TransactionModel:
    return TransactionModel(**asdict(transaction))


def _expense_model(expense: UnifiedExpense) -> UnifiedExpenseModel:
    return UnifiedExpenseModel(**asdict(expense))


def _session_model(session: LedgerSession) -> SessionModel:
    return SessionModel(
        session_id=session.id,
        is_processing=session.is_processing,
        last_match_count=session.last_match_count,
        items=[_item_model(item) for item in session.items],
        transactions=[_transaction_model(tx) for tx in session.transactions],
    )


@app.get("/health")
def health_check() -> dict:
    """Report Ledger Service readiness along with the active extraction provider."""
    return {
        "status": "ok",
        "service": "ledger-service",
        "extraction_provider": EXTRACTION_PROVIDER_SETTINGS.provider_name,
    }


# Session routes are async so every store mutation runs on the event loop thread.
@app.post("/sessions", response_model=SessionModel, status_code=201)
async def create_session() -> SessionModel:
    return _session_model(SESSIONS.create())


@app.get("/sessions/{session_id}", response_model=SessionModel)
async def get_session(session_id: str) -> SessionModel:
    return _session_model(SESSIONS.get(session_id))


@app.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str) -> None:
    SESSIONS.delete(session_id)


@app.post("/sessions/{session_id}/receipts", response_model=None)
async def upload_receipts(
    session_id: str,
    files: list[UploadFile] = File(...),
    last_modified: list[int] | None = Form(default=None),
) -> UploadResponseModel | JSONResponse:
    """
    Queue receipt documents (JPG, PNG, PDF, HEIC or ZIP archives of them).
    `last_modified` values, when sent, pair with `files` by position.
    """
    session = SESSIONS.get(session_id)
    if not files:
        return error_response(400, "file_required", "At least one receipt file is required.")

    timestamps = last_modified or []
    uploads = []
    for index, upload in enumerate(files):
        uploads.append(
            ReceiptUpload(
                name=upload.filename or f"receipt-{index}",
                content_type=upload.content_type or "",
                data=await upload.read(),
                last_modified=timestamps[index] if index < len(timestamps) else 0,
            )
        )

    outcome = session.add_uploads(uploads)
    return UploadResponseModel(
        added=[_item_model(item) for item in outcome.added],
        duplicates=outcome.duplicates,
        rejected=[RejectedUploadModel(name=item.name, reason=item.reason) for item in outcome.rejected],
    )


@app.post("/sessions/{session_id}/manual-expenses", response_model=ReceiptItemModel, status_code=201)
async def add_manual_expense(session_id: str, payload: ManualExpenseModel) -> ReceiptItemModel:
    session = SESSIONS.get(session_id)
    item = session.add_manual_expense(
        amount=payload.amount,
        date=payload.date,
        description=payload.description,
        category=payload.category,
        payment_method=payload.payment_method,
    )
    return _item_model(item)


@app.post("/sessions/{session_id}/receipts/process", response_model=ProcessingReportModel)
async def process_receipts(session_id: str) -> ProcessingReportModel:
    """Run extraction over every queued receipt, sequentially."""
    session = SESSIONS.get(session_id)
    report = await session.process_receipts()
    return ProcessingReportModel(**asdict(report), last_match_count=session.last_match_count)


@app.post("/sessions/{session_id}/receipts/{item_id}/accept", response_model=ReceiptItemModel)
async def accept_receipt(session_id: str, item_id: str, payload: AcceptReceiptModel | None = None) -> ReceiptItemModel:
    session = SESSIONS.get(session_id)
    overrides = payload.model_dump(exclude_none=True) if payload else None
    return _item_model(session.accept_item(item_id, overrides))


@app.delete("/sessions/{session_id}/receipts/{item_id}", status_code=204)
async def remove_receipt(session_id: str, item_id: str) -> None:
    SESSIONS.get(session_id).remove_item(item_id)


@app.post("/sessions/{session_id}/statement", response_model=None)
async def import_statement(session_id: str, file: UploadFile = File(...)) -> StatementResponseModel | JSONResponse:
    """Replace the session's transactions with those extracted from a statement file."""
    session = SESSIONS.get(session_id)
    file_bytes = await file.read()
    if not file_bytes:
        return error_response(400, "file_empty", "Uploaded statement is empty.")

    transactions = await session.import_statement(file.filename or "statement", file.content_type, file_bytes)
    return StatementResponseModel(
        transactions=[_transaction_model(tx) for tx in transactions],
        matched_count=session.last_match_count,
    )


@app.get("/sessions/{session_id}/transactions", response_model=list[TransactionModel])
async def list_transactions(session_id: str) -> list[TransactionModel]:
    return [_transaction_model(tx) for tx in SESSIONS.get(session_id).transactions]


@app.post("/sessions/{session_id}/transactions/{transaction_id}/match", response_model=TransactionModel)
async def match_transaction(session_id: str, transaction_id: str, payload: ManualMatchModel) -> TransactionModel:
    session = SESSIONS.get(session_id)
    return _transaction_model(session.manual_match(transaction_id, payload.receipt_id))


@app.get("/sessions/{session_id}/transactions/{transaction_id}/similar", response_model=list[TransactionModel])
async def similar_transactions(session_id: str, transaction_id: str) -> list[TransactionModel]:
    session = SESSIONS.get(session_id)
    return [_transaction_model(tx) for tx in session.similar_transactions(transaction_id)]


@app.patch("/sessions/{session_id}/transactions/{transaction_id}/category", response_model=list[TransactionModel])
async def recategorize_transaction(
    session_id: str,
    transaction_id: str,
    payload: RecategorizeModel,
) -> list[TransactionModel]:
    session = SESSIONS.get(session_id)
    updated = session.recategorize(transaction_id, payload.category, apply_to_similar=payload.apply_to_similar)
    return [_transaction_model(tx) for tx in updated]


@app.get("/sessions/{session_id}/expenses", response_model=list[UnifiedExpenseModel])
async def unified_expenses(session_id: str) -> list[UnifiedExpenseModel]:
    return [_expense_model(expense) for expense in SESSIONS.get(session_id).unified_expenses()]


@app.get("/sessions/{session_id}/reports/expense-summary", response_model=ExpenseSummaryModel)
async def expense_summary_report(session_id: str) -> ExpenseSummaryModel:
    return ExpenseSummaryModel.model_validate(asdict(SESSIONS.get(session_id).expense_summary()))


@app.get("/sessions/{session_id}/reports/vendors", response_model=list[VendorTotalModel])
async def vendor_report(session_id: str) -> list[VendorTotalModel]:
    return [VendorTotalModel(**asdict(vendor)) for vendor in SESSIONS.get(session_id).vendor_analysis()]


@app.get("/sessions/{session_id}/reports/profit-loss", response_model=ProfitAndLossModel)
async def profit_loss_report(
    session_id: str,
    month: str | None = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
) -> ProfitAndLossModel:
    return ProfitAndLossModel(**asdict(SESSIONS.get(session_id).profit_and_loss(month)))


@app.get("/sessions/{session_id}/reports/cash-flow", response_model=list[CashFlowMonthModel])
async def cash_flow_report(session_id: str) -> list[CashFlowMonthModel]:
    return [CashFlowMonthModel(**asdict(month)) for month in SESSIONS.get(session_id).cash_flow()]


@app.get("/sessions/{session_id}/reports/fbr", response_model=FbrComplianceModel)
async def fbr_report(session_id: str, annual_income: float = Query(ge=0)) -> FbrComplianceModel:
    return FbrComplianceModel.model_validate(asdict(SESSIONS.get(session_id).fbr_compliance(annual_income)))


def _extraction_call_context(settings: ProviderSettings) -> dict[str, Any]:
    context: dict[str, Any] = {
        "provider_name": settings.provider_name,
        "timeout_seconds": settings.timeout_seconds,
        "temperature": settings.temperature,
        "max_output_tokens": settings.max_output_tokens,
    }
    if settings.openai:
        context["openai"] = {"model": settings.openai.model, "api_base": settings.openai.api_base}
    return context


logger.info({"event": "ledger_service_configured", **_extraction_call_context(EXTRACTION_PROVIDER_SETTINGS)})
