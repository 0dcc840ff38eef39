"""Processing pipeline: one attempt at turning a pending invoice into a result.

load document → extract (retried) → validate → score → persist → notify

Only ``RateLimited`` and ``Transient`` extraction failures are retried, with
an incrementing backoff of ``attempt * retry_delay``. Any exception inside the
attempt ends the job as ``failed``; nothing escapes ``process`` except a
persistence failure or a missing record.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_incrementing

from invoiceflow.confidence.confidence import ConfidenceResult, compute_confidence
from invoiceflow.core.errors import ExtractionError, ExtractionErrorKind, JobNotFoundError, PersistenceError
from invoiceflow.documents.base import DocumentLoader, DocumentPayload
from invoiceflow.extraction.extractor import ExtractionClient
from invoiceflow.extraction.schema import CandidateRecord
from invoiceflow.notifications.webhook import (
    WebhookDispatcher,
    batch_completed_event,
    invoice_failed_event,
    invoice_processed_event,
)
from invoiceflow.records import InvoiceRecord, InvoiceStatus, status_counts
from invoiceflow.validation.rule_engine import ValidationReport, parse_date
from invoiceflow.validation.validator import Validator

logger = logging.getLogger(__name__)

# Most recent batch ids that already had batch.completed sent.
NOTIFIED_BATCH_LIMIT = 1024

# Candidate fields copied verbatim onto the record.
_MERGED_FIELDS = (
    "vendor_name",
    "vendor_address",
    "vendor_email",
    "vendor_phone",
    "invoice_number",
    "purchase_order_number",
    "customer_name",
    "customer_address",
    "subtotal",
    "tax_rate",
    "tax_amount",
    "discount_amount",
    "shipping_amount",
    "total_amount",
    "currency",
    "payment_terms",
    "payment_method",
    "bank_details",
)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ExtractionError) and exc.retryable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingPipeline:
    def __init__(
        self,
        *,
        repository,
        document_loader: DocumentLoader,
        extractor: ExtractionClient,
        validator: Validator | None = None,
        dispatcher: WebhookDispatcher | None = None,
        retry_attempts: int = 3,
        retry_delay_s: float = 1.0,
        attempt_timeout_s: float | None = 30.0,
        sleep=asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._document_loader = document_loader
        self._extractor = extractor
        self._validator = validator or Validator()
        self._dispatcher = dispatcher
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay_s = retry_delay_s
        self._attempt_timeout_s = attempt_timeout_s
        self._sleep = sleep
        self._notified_batches: OrderedDict[str, None] = OrderedDict()

    # ------------------------------------------------------------------ #
    #  Public entry point                                                  #
    # ------------------------------------------------------------------ #

    async def process(self, invoice_id: uuid.UUID) -> InvoiceRecord:
        record = await self._repository.load(invoice_id)
        if record is None:
            raise JobNotFoundError(f"Invoice {invoice_id} not found")

        if record.status is not InvoiceStatus.PENDING:
            logger.info(
                "processing_skipped",
                extra={"invoice_id": str(invoice_id), "status": record.status.value},
            )
            return record

        record.transition(InvoiceStatus.PROCESSING)
        record.processing_started_at = _utcnow()
        record.processing_completed_at = None
        record.processing_time_ms = None
        await self._repository.save(record)
        logger.info("processing_started", extra={"invoice_id": str(invoice_id)})

        t0 = time.monotonic()
        try:
            document = await self._document_loader.load(record.file_path)
            candidate = await self._extract_with_retry(record, document)
            report = self._validator.validate(candidate)
            confidence = compute_confidence(candidate, report)
            self._apply_extraction(record, candidate, report, confidence)
            target = InvoiceStatus.REVIEW_REQUIRED if report.requires_review else InvoiceStatus.COMPLETED
        except ExtractionError as exc:
            logger.error(
                "processing_failed",
                extra={"invoice_id": str(invoice_id), "error_kind": exc.kind.value, "error": exc.message},
            )
            target = self._fail(record, exc)
        except Exception as exc:
            logger.exception("processing_failed", extra={"invoice_id": str(invoice_id)})
            target = self._fail(record, exc)

        record.processing_time_ms = int((time.monotonic() - t0) * 1000)
        record.processing_completed_at = _utcnow()
        record.transition(target)
        await self._repository.save(record)

        logger.info(
            "processing_complete",
            extra={
                "invoice_id": str(invoice_id),
                "status": record.status.value,
                "confidence": record.confidence_score,
                "duration_ms": record.processing_time_ms,
            },
        )

        await self._notify(record)
        return record

    # ------------------------------------------------------------------ #
    #  Extraction with retry                                               #
    # ------------------------------------------------------------------ #

    async def _extract_with_retry(self, record: InvoiceRecord, document: DocumentPayload) -> CandidateRecord:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_incrementing(start=self._retry_delay_s, increment=self._retry_delay_s),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry(record.id),
            reraise=True,
            sleep=self._sleep,
        )
        async for attempt in retrying:
            with attempt:
                candidate = await self._extract_once(document)
        return candidate

    async def _extract_once(self, document: DocumentPayload) -> CandidateRecord:
        if self._attempt_timeout_s is None:
            return await self._extractor.extract(document)
        try:
            return await asyncio.wait_for(self._extractor.extract(document), self._attempt_timeout_s)
        except asyncio.TimeoutError as exc:
            raise ExtractionError(
                ExtractionErrorKind.TRANSIENT,
                f"Extraction timed out after {self._attempt_timeout_s:g}s",
            ) from exc

    @staticmethod
    def _log_retry(invoice_id: uuid.UUID):
        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "extraction_retry",
                extra={
                    "invoice_id": str(invoice_id),
                    "attempt": retry_state.attempt_number,
                    "wait_s": retry_state.next_action.sleep if retry_state.next_action else None,
                    "error": str(exc),
                },
            )

        return before_sleep

    # ------------------------------------------------------------------ #
    #  Record updates                                                      #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _apply_extraction(
        record: InvoiceRecord,
        candidate: CandidateRecord,
        report: ValidationReport,
        confidence: ConfidenceResult,
    ) -> None:
        for name in _MERGED_FIELDS:
            setattr(record, name, getattr(candidate, name))
        record.invoice_date = parse_date(candidate.invoice_date)
        record.due_date = parse_date(candidate.due_date)
        record.line_items = [item.model_copy() for item in candidate.line_items]
        record.anomalies = [a.model_copy() for a in candidate.anomalies]
        record.raw_extraction = candidate.model_dump(mode="json", by_alias=True)

        record.validation_errors = list(report.errors)
        record.validation_warnings = list(report.warnings)
        record.requires_review = report.requires_review
        record.is_validated = True
        record.confidence_score = confidence.overall
        record.last_error = None

    @staticmethod
    def _fail(record: InvoiceRecord, exc: Exception) -> InvoiceStatus:
        record.last_error = str(exc) or exc.__class__.__name__
        record.retry_count += 1
        return InvoiceStatus.FAILED

    # ------------------------------------------------------------------ #
    #  Notifications                                                       #
    # ------------------------------------------------------------------ #

    async def _notify(self, record: InvoiceRecord) -> None:
        if self._dispatcher is None or not record.webhook_url:
            return

        if record.status is InvoiceStatus.FAILED:
            event = invoice_failed_event(record)
        else:
            event = invoice_processed_event(record)

        result = await self._dispatcher.notify(record.webhook_url, event)
        if result.delivered:
            record.webhook_sent = True
            record.webhook_sent_at = _utcnow()
            try:
                await self._repository.mark_webhook_sent(record.id, record.webhook_sent_at)
            except PersistenceError as exc:
                logger.warning(
                    "webhook_flag_not_saved",
                    extra={"invoice_id": str(record.id), "error": str(exc)},
                )

        if record.batch_id:
            await self._notify_batch_completed(record)

    async def _notify_batch_completed(self, record: InvoiceRecord) -> None:
        batch_id = record.batch_id
        if batch_id in self._notified_batches:
            return

        members = await self._repository.find_by_batch(batch_id)
        if not members or not all(m.is_terminal for m in members):
            return
        # another job of the batch may have finished while we were loading
        if batch_id in self._notified_batches:
            return
        self._notified_batches[batch_id] = None
        while len(self._notified_batches) > NOTIFIED_BATCH_LIMIT:
            self._notified_batches.popitem(last=False)

        logger.info("batch_completed", extra={"batch_id": batch_id, "invoice_count": len(members)})
        await self._dispatcher.notify(record.webhook_url, batch_completed_event(batch_id, status_counts(members)))
