from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from invoiceflow.extraction.schema import LineItem
from invoiceflow.records import InvoiceStatus


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class InvoiceUploadResponse(BaseModel):
    invoice_id: uuid.UUID
    status: InvoiceStatus


class BatchSubmissionOut(_FromAttributes):
    batch_id: str
    invoice_count: int
    invoice_ids: list[uuid.UUID]


class InvoiceListItem(_FromAttributes):
    id: uuid.UUID
    original_file_name: str
    status: InvoiceStatus
    vendor_name: str | None
    invoice_number: str | None
    invoice_date: date | None
    total_amount: float | None
    currency: str | None
    confidence_score: float | None
    requires_review: bool
    batch_id: str | None
    created_at: datetime | None


class InvoiceListResponse(BaseModel):
    items: list[InvoiceListItem]
    total: int
    page: int
    limit: int
    pages: int


class QueueStatusOut(_FromAttributes):
    queue_length: int
    active_processing: int
    max_concurrent: int


class InvoiceSummaryOut(_FromAttributes):
    id: uuid.UUID
    original_file_name: str
    status: InvoiceStatus
    confidence_score: float | None
    requires_review: bool


class BatchStatusOut(_FromAttributes):
    batch_id: str
    total: int
    completed: int
    review_required: int
    failed: int
    pending: int
    is_finished: bool
    invoices: list[InvoiceSummaryOut]


class StatusSummaryOut(_FromAttributes):
    count: int
    total_amount: float
    avg_confidence: float | None
    avg_processing_time_ms: float | None


class StatsResponse(BaseModel):
    total_invoices: int
    total_amount: float
    by_status: dict[str, StatusSummaryOut]
    queue: QueueStatusOut


class ExportRequest(BaseModel):
    format: Literal["csv", "json", "xml"] = "json"
    invoice_ids: list[uuid.UUID] | None = None
    status: InvoiceStatus | None = None


class InvoiceCorrectionRequest(BaseModel):
    """Reviewer corrections. Only the fields sent are applied."""

    model_config = ConfigDict(extra="forbid")

    vendor_name: str | None = None
    vendor_address: str | None = None
    vendor_email: str | None = None
    vendor_phone: str | None = None
    invoice_number: str | None = None
    purchase_order_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    customer_name: str | None = None
    customer_address: str | None = None
    line_items: list[LineItem] | None = None
    subtotal: float | None = None
    tax_rate: float | None = None
    tax_amount: float | None = None
    discount_amount: float | None = None
    shipping_amount: float | None = None
    total_amount: float | None = None
    currency: str | None = None
    payment_terms: str | None = None
    payment_method: str | None = None
    bank_details: str | None = None
    notes: str | None = None
    tags: list[str] | None = None


class CrossCheckOut(_FromAttributes):
    field: str
    valid: bool
    message: str


class CrossCheckResponse(BaseModel):
    invoice_id: uuid.UUID
    checks: list[CrossCheckOut]


class RetryResponse(BaseModel):
    invoice_id: uuid.UUID
    status: InvoiceStatus
    retry_count: int


class DeleteResponse(BaseModel):
    invoice_id: uuid.UUID
    deleted: bool = True


class WebhookTestRequest(BaseModel):
    url: str = Field(min_length=1)


class DeliveryOut(_FromAttributes):
    delivered: bool
    timestamp: int
    status_code: int | None
    error: str | None
