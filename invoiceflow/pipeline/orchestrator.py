"""In-process job queue with a concurrency cap.

Jobs are admitted FIFO. The in-flight counter is checked and incremented in
``_drain`` without an ``await`` in between, so with a single event loop the
cap holds without a lock; every finished task releases its slot and drains
again.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field

from invoiceflow.core.errors import InvalidTransitionError, JobNotFoundError
from invoiceflow.pipeline.pipeline import ProcessingPipeline
from invoiceflow.records import InvoiceRecord, InvoiceStatus, status_counts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredDocument:
    original_file_name: str
    file_path: str
    file_type: str
    file_size: int = 0


@dataclass(frozen=True)
class SubmissionOptions:
    webhook_url: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BatchSubmission:
    batch_id: str
    invoice_count: int
    invoice_ids: list[uuid.UUID]


@dataclass(frozen=True)
class InvoiceSummary:
    id: uuid.UUID
    original_file_name: str
    status: InvoiceStatus
    confidence_score: float | None
    requires_review: bool


@dataclass(frozen=True)
class BatchStatus:
    batch_id: str
    total: int
    completed: int
    review_required: int
    failed: int
    pending: int
    invoices: list[InvoiceSummary]

    @property
    def is_finished(self) -> bool:
        return self.pending == 0


@dataclass(frozen=True)
class QueueStatus:
    queue_length: int
    active_processing: int
    max_concurrent: int


class ProcessingOrchestrator:
    def __init__(self, *, repository, pipeline: ProcessingPipeline, max_concurrent: int = 10) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._repository = repository
        self._pipeline = pipeline
        self._max_concurrent = max_concurrent
        self._queue: deque[uuid.UUID] = deque()
        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------ #
    #  Queue                                                               #
    # ------------------------------------------------------------------ #

    def enqueue(self, invoice_id: uuid.UUID) -> None:
        self._queue.append(invoice_id)
        self._idle.clear()
        logger.info(
            "invoice_enqueued",
            extra={"invoice_id": str(invoice_id), "queue_length": len(self._queue)},
        )
        self._drain()

    def _drain(self) -> None:
        while self._queue and self._in_flight < self._max_concurrent:
            invoice_id = self._queue.popleft()
            self._in_flight += 1
            task = asyncio.create_task(self._run(invoice_id), name=f"invoice-{invoice_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if not self._queue and self._in_flight == 0:
            self._idle.set()

    async def _run(self, invoice_id: uuid.UUID) -> None:
        try:
            await self._pipeline.process(invoice_id)
        except asyncio.CancelledError:
            logger.warning("processing_cancelled", extra={"invoice_id": str(invoice_id)})
            raise
        except Exception:
            logger.exception("processing_task_failed", extra={"invoice_id": str(invoice_id)})
        finally:
            self._in_flight -= 1
            self._drain()

    def queue_status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._queue),
            active_processing=self._in_flight,
            max_concurrent=self._max_concurrent,
        )

    # ------------------------------------------------------------------ #
    #  Submission                                                          #
    # ------------------------------------------------------------------ #

    async def submit(
        self,
        document: StoredDocument,
        owner_id: str | None = None,
        options: SubmissionOptions | None = None,
    ) -> InvoiceRecord:
        record = self._new_record(document, owner_id, options or SubmissionOptions())
        await self._repository.save(record)
        self.enqueue(record.id)
        return record

    async def enqueue_batch(
        self,
        documents: list[StoredDocument],
        owner_id: str | None = None,
        options: SubmissionOptions | None = None,
    ) -> BatchSubmission:
        options = options or SubmissionOptions()
        batch_id = str(uuid.uuid4())
        records = []
        for document in documents:
            record = self._new_record(document, owner_id, options, batch_id=batch_id)
            await self._repository.save(record)
            records.append(record)
        # persist the whole batch before admitting any of it
        for record in records:
            self.enqueue(record.id)

        logger.info("batch_enqueued", extra={"batch_id": batch_id, "invoice_count": len(records)})
        return BatchSubmission(
            batch_id=batch_id,
            invoice_count=len(records),
            invoice_ids=[r.id for r in records],
        )

    @staticmethod
    def _new_record(
        document: StoredDocument,
        owner_id: str | None,
        options: SubmissionOptions,
        *,
        batch_id: str | None = None,
    ) -> InvoiceRecord:
        return InvoiceRecord(
            original_file_name=document.original_file_name,
            file_path=document.file_path,
            file_type=document.file_type,
            file_size=document.file_size,
            batch_id=batch_id,
            webhook_url=options.webhook_url,
            tags=list(options.tags),
            created_by=owner_id,
        )

    async def batch_status(self, batch_id: str) -> BatchStatus:
        records = await self._repository.find_by_batch(batch_id)
        if not records:
            raise JobNotFoundError(f"Batch {batch_id} not found")
        counts = status_counts(records)
        return BatchStatus(
            batch_id=batch_id,
            total=counts["total"],
            completed=counts[InvoiceStatus.COMPLETED.value],
            review_required=counts[InvoiceStatus.REVIEW_REQUIRED.value],
            failed=counts[InvoiceStatus.FAILED.value],
            pending=counts[InvoiceStatus.PENDING.value] + counts[InvoiceStatus.PROCESSING.value],
            invoices=[
                InvoiceSummary(
                    id=r.id,
                    original_file_name=r.original_file_name,
                    status=r.status,
                    confidence_score=r.confidence_score,
                    requires_review=r.requires_review,
                )
                for r in records
            ],
        )

    # ------------------------------------------------------------------ #
    #  Recovery                                                            #
    # ------------------------------------------------------------------ #

    async def retry(self, invoice_id: uuid.UUID) -> InvoiceRecord:
        record = await self._repository.load(invoice_id)
        if record is None:
            raise JobNotFoundError(f"Invoice {invoice_id} not found")
        if record.status is not InvoiceStatus.FAILED:
            raise InvalidTransitionError("Can only retry failed invoices")

        record.transition(InvoiceStatus.PENDING)
        record.last_error = None
        await self._repository.save(record)
        logger.info(
            "invoice_retry_requested",
            extra={"invoice_id": str(invoice_id), "retry_count": record.retry_count},
        )
        self.enqueue(record.id)
        return record

    async def recover_pending(self) -> int:
        """Re-enqueue invoices left pending by a previous process, oldest first."""
        records = await self._repository.find_by_status(InvoiceStatus.PENDING)
        for record in records:
            self.enqueue(record.id)
        if records:
            logger.info("pending_invoices_recovered", extra={"count": len(records)})
        return len(records)

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    async def join(self) -> None:
        await self._idle.wait()

    async def shutdown(self) -> None:
        self._queue.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._idle.set()
        logger.info("orchestrator_stopped", extra={"cancelled": len(tasks)})
