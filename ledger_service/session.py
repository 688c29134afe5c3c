"""
Session coordinator: owns one ItemStore and one TransactionStore.

Every mutating operation ends by re-running automatic matching, so callers
never observe an accepted receipt and an eligible transaction left unlinked.
Receipt batches are processed sequentially to bound concurrent calls to the
extraction provider.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from . import reports
from .errors import ExtractionError, SessionBusyError, UnknownSessionError, UnsupportedInputError
from .extraction import (
    ExtractionGateway,
    ReceiptExtractionRequest,
    StatementExtractionRequest,
    StatementInput,
)
from .ingestion import (
    ReceiptUpload,
    RejectedUpload,
    compress_image,
    prepare_receipt_uploads,
    prepare_statement_input,
    to_data_uri,
)
from .models import BankTransaction, ProcessedTransaction, ReceiptItem, UnifiedExpense
from .reconciliation import (
    MatchReport,
    auto_match,
    find_similar_transactions,
    manual_match,
    recategorize,
    release_receipt,
)
from .settings import LedgerSettings
from .stores import ItemStore, TransactionStore
from .unification import build_unified_expenses

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Any]


@dataclass(slots=True)
class ProcessingReport:
    processed: int = 0
    accepted: int = 0
    needs_review: int = 0
    failed: int = 0


@dataclass(slots=True)
class UploadOutcome:
    added: list[ReceiptItem] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    rejected: list[RejectedUpload] = field(default_factory=list)


class LedgerSession:
    def __init__(
        self,
        gateway: ExtractionGateway,
        *,
        settings: LedgerSettings | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or secrets.token_urlsafe(12)
        self.settings = settings or LedgerSettings()
        self.items = ItemStore(confidence_threshold=self.settings.confidence_threshold)
        self.transactions = TransactionStore()
        self._gateway = gateway
        self._processing = False
        self.last_match_count = 0

    @property
    def is_processing(self) -> bool:
        return self._processing

    # Receipts

    def add_uploads(self, uploads: Iterable[ReceiptUpload]) -> UploadOutcome:
        intake = prepare_receipt_uploads(
            uploads,
            existing_count=len(self.items),
            max_files=self.settings.max_files,
            max_file_bytes=self.settings.max_file_bytes,
        )
        outcome = UploadOutcome(rejected=list(intake.rejected))
        for upload in intake.accepted:
            item = self.items.add_upload(upload.name, upload.content_type, upload.data, upload.last_modified)
            if item is None:
                outcome.duplicates.append(upload.name)
            else:
                outcome.added.append(item)

        logger.info(
            {
                "event": "receipts_uploaded",
                "added_count": len(outcome.added),
                "duplicate_count": len(outcome.duplicates),
                "rejected_count": len(outcome.rejected),
            }
        )
        return outcome

    def add_manual_expense(
        self,
        *,
        amount: float,
        date: str,
        description: str,
        category: str,
        payment_method: str | None = None,
    ) -> ReceiptItem:
        item = self.items.add_manual(
            amount=amount,
            date=date,
            description=description,
            category=category,
            payment_method=payment_method,
        )
        self._after_mutation()
        return item

    async def process_receipts(self, progress_callback: ProgressCallback | None = None) -> ProcessingReport:
        """
        Extract every queued receipt, one at a time.

        Items removed while the batch is running are skipped. A failed
        extraction marks only that item as "error"; the batch carries on.
        """

        if self._processing:
            raise SessionBusyError(f"Session '{self.id}' is already processing receipts")

        pending = [item.id for item in self.items.queued()]
        report = ProcessingReport()
        if not pending:
            return report

        self._processing = True
        try:
            total = len(pending)
            for item_id in pending:
                item = self.items.find(item_id)
                if item is None or item.status != "queued":
                    continue

                await self._process_one(item, report)
                report.processed += 1
                if progress_callback is not None:
                    progress_callback(report.processed, total)
        finally:
            self._processing = False

        logger.info(
            {
                "event": "receipt_batch_completed",
                "processed": report.processed,
                "accepted": report.accepted,
                "needs_review": report.needs_review,
                "failed": report.failed,
            }
        )
        return report

    async def _process_one(self, item: ReceiptItem, report: ProcessingReport) -> None:
        self.items.mark_processing(item.id)
        data, content_type = compress_image(item.content, item.content_type)
        request = ReceiptExtractionRequest(data_uri=to_data_uri(data, content_type), file_name=item.name)

        try:
            fields = await self._gateway.extract_receipt(request)
        except ExtractionError as exc:
            if self._still_processing(item):
                self.items.fail_extraction(item.id, f"AI processing failed. {exc}")
            report.failed += 1
            return

        if not self._still_processing(item):
            return

        updated = self.items.complete_extraction(item.id, fields)
        if updated.status == "accepted":
            report.accepted += 1
            self._after_mutation()
        else:
            report.needs_review += 1

    def _still_processing(self, item: ReceiptItem) -> bool:
        # A removed item may have been re-uploaded under the same id while extraction ran.
        if self.items.find(item.id) is item and item.status == "processing":
            return True
        logger.info({"event": "receipt_removed_during_extraction", "item_id": item.id})
        return False

    def accept_item(self, item_id: str, overrides: Mapping[str, Any] | None = None) -> ReceiptItem:
        item = self.items.accept(item_id, overrides)
        self._after_mutation()
        return item

    def remove_item(self, item_id: str) -> ReceiptItem:
        """Drop a receipt; a transaction it was linked to goes back to unmatched."""

        item = self.items.remove(item_id)
        released = release_receipt(self.transactions, item_id)
        if released:
            logger.info({"event": "receipt_match_released", "item_id": item_id, "transaction_ids": released})
        self._after_mutation()
        return item

    # Statements

    async def import_statement(self, name: str, content_type: str | None, data: bytes) -> list[ProcessedTransaction]:
        """
        Extract a statement file and replace the session's transactions with it.

        On any failure the previous transactions stay untouched.
        """

        if len(data) > self.settings.max_file_bytes:
            raise UnsupportedInputError(
                f"Statement exceeds the {self.settings.max_file_bytes // (1024 * 1024)}MB limit."
            )
        statement_input = prepare_statement_input(name, content_type, data)
        return await self.extract_statement(statement_input, file_name=name)

    async def extract_statement(self, statement_input: StatementInput, *, file_name: str = "") -> list[ProcessedTransaction]:
        request = StatementExtractionRequest(input=statement_input, file_name=file_name)
        extracted = await self._gateway.extract_statement(request)
        return self.load_transactions(extracted)

    def load_transactions(self, extracted: Iterable[BankTransaction]) -> list[ProcessedTransaction]:
        processed = self.transactions.replace_all(extracted)
        released = self.items.release_links_to(tx.id for tx in processed)
        logger.info(
            {
                "event": "transactions_loaded",
                "transaction_count": len(processed),
                "released_receipt_count": len(released),
            }
        )
        self._after_mutation()
        return processed

    # Reconciliation

    def manual_match(self, transaction_id: str, receipt_id: str) -> ProcessedTransaction:
        transaction = manual_match(self.items, self.transactions, transaction_id, receipt_id)
        self._after_mutation()
        return transaction

    def similar_transactions(self, transaction_id: str) -> list[ProcessedTransaction]:
        return find_similar_transactions(self.transactions, transaction_id)

    def recategorize(
        self,
        transaction_id: str,
        category: str,
        *,
        apply_to_similar: bool = False,
    ) -> list[ProcessedTransaction]:
        updated = recategorize(self.transactions, transaction_id, category, apply_to_similar=apply_to_similar)
        self._after_mutation()
        return updated

    def _after_mutation(self) -> MatchReport:
        report = auto_match(self.items, self.transactions)
        self.last_match_count = report.matched_count
        return report

    # Projections

    def unified_expenses(self) -> list[UnifiedExpense]:
        return build_unified_expenses(self.items, self.transactions)

    def expense_summary(self) -> reports.ExpenseSummary:
        return reports.expense_summary(self.unified_expenses())

    def vendor_analysis(self) -> list[reports.VendorTotal]:
        return reports.vendor_analysis(self.unified_expenses())

    def profit_and_loss(self, month: str | None = None) -> reports.ProfitAndLoss:
        return reports.profit_and_loss(self.unified_expenses(), list(self.transactions), month)

    def cash_flow(self) -> list[reports.CashFlowMonth]:
        return reports.cash_flow(self.transactions)

    def fbr_compliance(self, annual_income: float) -> reports.FbrComplianceReport:
        return reports.fbr_compliance(self.unified_expenses(), annual_income)


class SessionRegistry:
    """In-process registry of ledger sessions keyed by random id."""

    def __init__(
        self,
        gateway_factory: Callable[[], ExtractionGateway],
        settings: LedgerSettings | None = None,
    ) -> None:
        self._gateway_factory = gateway_factory
        self._settings = settings or LedgerSettings()
        self._sessions: dict[str, LedgerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> LedgerSession:
        session = LedgerSession(self._gateway_factory(), settings=self._settings)
        self._sessions[session.id] = session
        logger.info({"event": "session_created", "session_id": session.id})
        return session

    def get(self, session_id: str) -> LedgerSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise UnknownSessionError(session_id) from None

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise UnknownSessionError(session_id)
        logger.info({"event": "session_deleted", "session_id": session_id})
