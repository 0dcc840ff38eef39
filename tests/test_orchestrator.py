"""Queue / concurrency controller tests."""
from __future__ import annotations

import asyncio
import random
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from invoiceflow.core.errors import InvalidTransitionError, JobNotFoundError
from invoiceflow.documents.mock_loader import MockDocumentLoader
from invoiceflow.extraction.extractor import ExtractionClient
from invoiceflow.pipeline.orchestrator import ProcessingOrchestrator, StoredDocument, SubmissionOptions
from invoiceflow.pipeline.pipeline import ProcessingPipeline
from invoiceflow.records import InvoiceStatus


class GatedPipeline:
    """Holds every job until the test releases the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Semaphore(0)
        self.started: list[uuid.UUID] = []
        self.active = 0
        self.max_active = 0

    async def process(self, invoice_id: uuid.UUID) -> None:
        self.started.append(invoice_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.acquire()
        finally:
            self.active -= 1


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _recording_pipeline() -> MagicMock:
    pipeline = MagicMock()
    pipeline.process = AsyncMock()
    return pipeline


def _document(name: str = "invoice.pdf") -> StoredDocument:
    return StoredDocument(original_file_name=name, file_path=f"/tmp/{name}", file_type="pdf", file_size=10)


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrency_cap_and_fifo_admission(repository) -> None:
    pipeline = GatedPipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline, max_concurrent=2)
    ids = [uuid.uuid4() for _ in range(5)]

    for invoice_id in ids:
        orchestrator.enqueue(invoice_id)
    await _settle()

    status = orchestrator.queue_status()
    assert status.active_processing == 2
    assert status.queue_length == 3
    assert status.max_concurrent == 2
    assert pipeline.started == ids[:2]

    # one slot frees up, exactly one more job is admitted
    pipeline.gate.release()
    await _settle()
    assert pipeline.started == ids[:3]
    assert orchestrator.queue_status().active_processing == 2
    assert orchestrator.queue_status().queue_length == 2

    for _ in range(4):
        pipeline.gate.release()
    await asyncio.wait_for(orchestrator.join(), timeout=1)

    assert pipeline.started == ids
    assert pipeline.max_active == 2
    assert orchestrator.queue_status().active_processing == 0


@pytest.mark.asyncio
async def test_failing_job_releases_its_slot(repository) -> None:
    pipeline = MagicMock()
    pipeline.process = AsyncMock(side_effect=[RuntimeError("boom"), None, None])
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline, max_concurrent=1)

    for _ in range(3):
        orchestrator.enqueue(uuid.uuid4())
    await asyncio.wait_for(orchestrator.join(), timeout=1)

    assert pipeline.process.await_count == 3
    assert orchestrator.queue_status().active_processing == 0


def test_max_concurrent_must_be_positive(repository) -> None:
    with pytest.raises(ValueError):
        ProcessingOrchestrator(repository=repository, pipeline=_recording_pipeline(), max_concurrent=0)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_persists_pending_record(repository) -> None:
    pipeline = _recording_pipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline, max_concurrent=2)

    record = await orchestrator.submit(
        _document(),
        "user-1",
        SubmissionOptions(webhook_url="https://hooks.example/x", tags=["q3"]),
    )
    await asyncio.wait_for(orchestrator.join(), timeout=1)

    stored = repository.rows[record.id]
    assert stored.status is InvoiceStatus.PENDING
    assert stored.created_by == "user-1"
    assert stored.webhook_url == "https://hooks.example/x"
    assert stored.tags == ["q3"]
    pipeline.process.assert_awaited_once_with(record.id)


@pytest.mark.asyncio
async def test_enqueue_batch_shares_batch_id(repository) -> None:
    pipeline = _recording_pipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline, max_concurrent=2)

    submission = await orchestrator.enqueue_batch([_document(f"inv-{i}.pdf") for i in range(3)], "user-1")
    await asyncio.wait_for(orchestrator.join(), timeout=1)

    assert submission.invoice_count == 3
    assert len(submission.invoice_ids) == 3
    assert {repository.rows[i].batch_id for i in submission.invoice_ids} == {submission.batch_id}
    assert [c.args[0] for c in pipeline.process.await_args_list] == submission.invoice_ids


@pytest.mark.asyncio
async def test_batch_status_aggregates(repository, make_record) -> None:
    statuses = [
        InvoiceStatus.COMPLETED,
        InvoiceStatus.REVIEW_REQUIRED,
        InvoiceStatus.FAILED,
        InvoiceStatus.PROCESSING,
        InvoiceStatus.PENDING,
    ]
    for status in statuses:
        await repository.save(make_record(batch_id="b-1", status=status))
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=_recording_pipeline())

    status = await orchestrator.batch_status("b-1")

    assert status.total == 5
    assert status.completed == 1
    assert status.review_required == 1
    assert status.failed == 1
    assert status.pending == 2
    assert status.is_finished is False
    assert len(status.invoices) == 5


@pytest.mark.asyncio
async def test_batch_status_unknown_batch(repository) -> None:
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=_recording_pipeline())
    with pytest.raises(JobNotFoundError):
        await orchestrator.batch_status("missing")


# ---------------------------------------------------------------------------
# Retry / recovery
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_retry_moves_failed_back_to_pending(repository, make_record) -> None:
    record = make_record(status=InvoiceStatus.FAILED, last_error="Transient: 503", retry_count=1)
    await repository.save(record)
    pipeline = _recording_pipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline)

    result = await orchestrator.retry(record.id)
    await asyncio.wait_for(orchestrator.join(), timeout=1)

    assert result.status is InvoiceStatus.PENDING
    stored = repository.rows[record.id]
    assert stored.status is InvoiceStatus.PENDING
    assert stored.last_error is None
    assert stored.retry_count == 1
    pipeline.process.assert_awaited_once_with(record.id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status",
    [InvoiceStatus.COMPLETED, InvoiceStatus.REVIEW_REQUIRED, InvoiceStatus.PENDING, InvoiceStatus.PROCESSING],
)
async def test_retry_rejects_non_failed(repository, make_record, status) -> None:
    record = make_record(status=status)
    await repository.save(record)
    pipeline = _recording_pipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline)

    with pytest.raises(InvalidTransitionError, match="Can only retry failed invoices"):
        await orchestrator.retry(record.id)
    assert repository.rows[record.id].status is status
    pipeline.process.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_missing_invoice(repository) -> None:
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=_recording_pipeline())
    with pytest.raises(JobNotFoundError):
        await orchestrator.retry(uuid.uuid4())


@pytest.mark.asyncio
async def test_recover_pending_requeues_only_pending(repository, make_record) -> None:
    pending = [make_record(), make_record()]
    for record in pending:
        await repository.save(record)
    await repository.save(make_record(status=InvoiceStatus.COMPLETED))
    pipeline = _recording_pipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline)

    count = await orchestrator.recover_pending()
    await asyncio.wait_for(orchestrator.join(), timeout=1)

    assert count == 2
    assert [c.args[0] for c in pipeline.process.await_args_list] == [r.id for r in pending]


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_jobs(repository) -> None:
    pipeline = GatedPipeline()
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline, max_concurrent=1)
    for _ in range(3):
        orchestrator.enqueue(uuid.uuid4())
    await _settle()

    await orchestrator.shutdown()

    assert len(pipeline.started) == 1
    assert orchestrator.queue_status().queue_length == 0
    assert orchestrator.queue_status().active_processing == 0


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_batch_runs_to_completion_with_synthetic_extraction(repository) -> None:
    pipeline = ProcessingPipeline(
        repository=repository,
        document_loader=MockDocumentLoader(),
        extractor=ExtractionClient(api_key=None, rng=random.Random(5)),
        sleep=AsyncMock(),
    )
    orchestrator = ProcessingOrchestrator(repository=repository, pipeline=pipeline, max_concurrent=2)

    submission = await orchestrator.enqueue_batch([_document(f"inv-{i}.pdf") for i in range(4)])
    await asyncio.wait_for(orchestrator.join(), timeout=5)

    status = await orchestrator.batch_status(submission.batch_id)
    assert status.total == 4
    assert status.completed == 4
    assert status.is_finished is True
