from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from invoiceflow.core.config import settings
from invoiceflow.core.errors import InvalidTransitionError, JobNotFoundError
from invoiceflow.db.repository import InvoiceQuery
from invoiceflow.export.exporter import InvoiceExporter
from invoiceflow.notifications.webhook import WebhookDispatcher, verification_event
from invoiceflow.pipeline.orchestrator import ProcessingOrchestrator, StoredDocument, SubmissionOptions
from invoiceflow.records import InvoiceRecord, InvoiceStatus
from invoiceflow.review import apply_corrections
from invoiceflow.schemas import (
    BatchStatusOut,
    BatchSubmissionOut,
    CrossCheckOut,
    CrossCheckResponse,
    DeleteResponse,
    DeliveryOut,
    ExportRequest,
    InvoiceCorrectionRequest,
    InvoiceListItem,
    InvoiceListResponse,
    InvoiceUploadResponse,
    QueueStatusOut,
    RetryResponse,
    StatsResponse,
    StatusSummaryOut,
    WebhookTestRequest,
)
from invoiceflow.validation.validator import Validator

logger = logging.getLogger(__name__)
router = APIRouter()

_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json", "xml": "application/xml"}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_orchestrator(request: Request) -> ProcessingOrchestrator:
    return request.app.state.orchestrator


def get_repository(request: Request):
    return request.app.state.repository


def get_validator(request: Request) -> Validator:
    return request.app.state.validator


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


def get_exporter(request: Request) -> InvoiceExporter:
    return request.app.state.exporter


async def _load_or_404(repository, invoice_id: uuid.UUID) -> InvoiceRecord:
    record = await repository.load(invoice_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return record


async def _store_upload(file: UploadFile) -> StoredDocument:
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing filename")

    suffix = Path(file.filename).suffix.lower().lstrip(".")
    if suffix not in settings.allowed_extensions:
        raise HTTPException(status_code=415, detail=f"Unsupported file type {suffix!r}")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > settings.max_file_size:
        raise HTTPException(status_code=413, detail="File too large")

    upload_dir = Path(settings.upload_dir)
    path = upload_dir / f"{uuid.uuid4()}.{suffix}"

    def _write() -> None:
        upload_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    await run_in_threadpool(_write)
    return StoredDocument(
        original_file_name=file.filename,
        file_path=str(path),
        file_type=suffix,
        file_size=len(content),
    )


def _parse_tags(tags: str | None) -> list[str]:
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/invoices/upload", response_model=InvoiceUploadResponse, status_code=201)
async def upload_invoice(
    file: UploadFile = File(...),
    webhook_url: str | None = Form(None),
    tags: str | None = Form(None),
    x_user_id: str | None = Header(None),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> InvoiceUploadResponse:
    document = await _store_upload(file)
    options = SubmissionOptions(webhook_url=webhook_url or None, tags=_parse_tags(tags))
    record = await orchestrator.submit(document, x_user_id, options)

    logger.info(
        "invoice_uploaded",
        extra={"invoice_id": str(record.id), "upload_filename": file.filename, "size": document.file_size},
    )
    return InvoiceUploadResponse(invoice_id=record.id, status=record.status)


@router.post("/invoices/batch", response_model=BatchSubmissionOut, status_code=201)
async def upload_batch(
    files: list[UploadFile] = File(...),
    webhook_url: str | None = Form(None),
    tags: str | None = Form(None),
    x_user_id: str | None = Header(None),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> BatchSubmissionOut:
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    documents = [await _store_upload(f) for f in files]
    options = SubmissionOptions(webhook_url=webhook_url or None, tags=_parse_tags(tags))
    submission = await orchestrator.enqueue_batch(documents, x_user_id, options)
    return BatchSubmissionOut.model_validate(submission)


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    status: InvoiceStatus | None = None,
    vendor: str | None = None,
    batch_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    sort_by: Literal["created_at", "invoice_date", "total_amount", "confidence_score"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    repository=Depends(get_repository),
) -> InvoiceListResponse:
    result = await repository.search(
        InvoiceQuery(
            status=status,
            vendor=vendor,
            batch_id=batch_id,
            created_from=created_from,
            created_to=created_to,
            sort_by=sort_by,
            descending=order == "desc",
            page=page,
            limit=limit,
        )
    )
    return InvoiceListResponse(
        items=[InvoiceListItem.model_validate(r) for r in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/invoices/queue/status", response_model=QueueStatusOut)
async def queue_status(orchestrator: ProcessingOrchestrator = Depends(get_orchestrator)) -> QueueStatusOut:
    return QueueStatusOut.model_validate(orchestrator.queue_status())


@router.get("/invoices/stats/summary", response_model=StatsResponse)
async def stats_summary(
    repository=Depends(get_repository),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> StatsResponse:
    stats = await repository.stats()
    return StatsResponse(
        total_invoices=stats.total_invoices,
        total_amount=stats.total_amount,
        by_status={k: StatusSummaryOut.model_validate(v) for k, v in stats.by_status.items()},
        queue=QueueStatusOut.model_validate(orchestrator.queue_status()),
    )


@router.get("/invoices/batch/{batch_id}", response_model=BatchStatusOut)
async def batch_status(
    batch_id: str,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> BatchStatusOut:
    try:
        status = await orchestrator.batch_status(batch_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Batch not found")
    return BatchStatusOut.model_validate(status)


@router.post("/invoices/export")
async def export_invoices(
    body: ExportRequest,
    repository=Depends(get_repository),
    exporter: InvoiceExporter = Depends(get_exporter),
) -> FileResponse:
    if body.invoice_ids:
        records = await repository.find_by_ids(body.invoice_ids)
    elif body.status is not None:
        records = await repository.find_by_status(body.status)
    else:
        records = await repository.find_all()

    if not records:
        raise HTTPException(status_code=400, detail="No invoices to export")

    result = await exporter.export(records, body.format)
    return FileResponse(result.file_path, filename=result.filename, media_type=_MEDIA_TYPES[result.format])


@router.get("/invoices/{invoice_id}", response_model=InvoiceRecord, response_model_by_alias=False)
async def get_invoice(invoice_id: uuid.UUID, repository=Depends(get_repository)) -> InvoiceRecord:
    return await _load_or_404(repository, invoice_id)


@router.patch("/invoices/{invoice_id}", response_model=InvoiceRecord, response_model_by_alias=False)
async def correct_invoice(
    invoice_id: uuid.UUID,
    body: InvoiceCorrectionRequest,
    x_user_id: str | None = Header(None),
    repository=Depends(get_repository),
    validator: Validator = Depends(get_validator),
) -> InvoiceRecord:
    record = await _load_or_404(repository, invoice_id)
    changes = {name: getattr(body, name) for name in body.model_fields_set}
    try:
        applied = apply_corrections(record, changes, corrected_by=x_user_id, validator=validator)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if applied:
        await repository.save(record)
    return record


@router.delete("/invoices/{invoice_id}", response_model=DeleteResponse)
async def delete_invoice(invoice_id: uuid.UUID, repository=Depends(get_repository)) -> DeleteResponse:
    record = await _load_or_404(repository, invoice_id)
    if record.status is InvoiceStatus.PROCESSING:
        raise HTTPException(status_code=409, detail="Invoice is being processed")

    await repository.delete(invoice_id)
    await run_in_threadpool(Path(record.file_path).unlink, missing_ok=True)
    logger.info("invoice_deleted", extra={"invoice_id": str(invoice_id)})
    return DeleteResponse(invoice_id=invoice_id)


@router.post("/invoices/{invoice_id}/retry", response_model=RetryResponse)
async def retry_invoice(
    invoice_id: uuid.UUID,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> RetryResponse:
    try:
        record = await orchestrator.retry(invoice_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Invoice not found")
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return RetryResponse(invoice_id=record.id, status=record.status, retry_count=record.retry_count)


@router.get("/invoices/{invoice_id}/cross-check", response_model=CrossCheckResponse)
async def cross_check_invoice(
    invoice_id: uuid.UUID,
    repository=Depends(get_repository),
    validator: Validator = Depends(get_validator),
) -> CrossCheckResponse:
    record = await _load_or_404(repository, invoice_id)
    checks = validator.cross_validate(
        record.to_candidate(),
        known_vendors=await repository.known_vendors(exclude=invoice_id),
        existing_invoice_numbers=await repository.existing_invoice_numbers(exclude=invoice_id),
    )
    return CrossCheckResponse(
        invoice_id=invoice_id,
        checks=[CrossCheckOut.model_validate(c) for c in checks],
    )


@router.post("/webhooks/test", response_model=DeliveryOut)
async def send_test_webhook(
    body: WebhookTestRequest,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> DeliveryOut:
    result = await dispatcher.notify(body.url, verification_event())
    return DeliveryOut.model_validate(result)
