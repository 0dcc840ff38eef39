"""Invoice job record and its lifecycle.

    pending ──► processing ──► completed
       ▲                  ├──► review_required
       └─── (retry) ◄─────┴──► failed

A reviewer correction moves an invoice between completed and review_required
so that the status follows the re-validated ``requires_review`` flag.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from invoiceflow.core.errors import InvalidTransitionError
from invoiceflow.extraction.schema import Anomaly, CandidateRecord, LineItem


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REVIEW_REQUIRED = "review_required"


TERMINAL_STATUSES = frozenset(
    {InvoiceStatus.COMPLETED, InvoiceStatus.FAILED, InvoiceStatus.REVIEW_REQUIRED}
)

_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.PROCESSING}),
    InvoiceStatus.PROCESSING: TERMINAL_STATUSES,
    InvoiceStatus.FAILED: frozenset({InvoiceStatus.PENDING}),
    # reviewer corrections move an invoice in or out of review
    InvoiceStatus.COMPLETED: frozenset({InvoiceStatus.REVIEW_REQUIRED}),
    InvoiceStatus.REVIEW_REQUIRED: frozenset({InvoiceStatus.COMPLETED}),
}


class Correction(BaseModel):
    field: str
    original_value: Any = None
    corrected_value: Any = None
    corrected_by: str | None = None
    corrected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InvoiceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    status: InvoiceStatus = InvoiceStatus.PENDING

    # Input reference
    original_file_name: str
    file_path: str
    file_type: str
    file_size: int = 0

    # Extracted data
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

    line_items: list[LineItem] = Field(default_factory=list)
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

    # Quality
    confidence_score: float | None = None
    validation_errors: list[str] = Field(default_factory=list)
    validation_warnings: list[str] = Field(default_factory=list)
    anomalies: list[Anomaly] = Field(default_factory=list)
    is_validated: bool = False
    requires_review: bool = False
    raw_extraction: dict[str, Any] | None = None

    # Processing metadata
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    processing_time_ms: int | None = None
    retry_count: int = 0
    last_error: str | None = None
    batch_id: str | None = None
    webhook_url: str | None = None
    webhook_sent: bool = False
    webhook_sent_at: datetime | None = None

    corrections: list[Correction] = Field(default_factory=list)

    created_by: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def transition(self, target: InvoiceStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot move invoice {self.id} from {self.status.value} to {target.value}"
            )
        self.status = target

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_candidate(self) -> CandidateRecord:
        """Rebuild a candidate from stored fields, e.g. to re-validate after a correction."""
        return CandidateRecord(
            vendor_name=self.vendor_name,
            vendor_address=self.vendor_address,
            vendor_email=self.vendor_email,
            vendor_phone=self.vendor_phone,
            invoice_number=self.invoice_number,
            invoice_date=self.invoice_date.isoformat() if self.invoice_date else None,
            due_date=self.due_date.isoformat() if self.due_date else None,
            purchase_order_number=self.purchase_order_number,
            customer_name=self.customer_name,
            customer_address=self.customer_address,
            line_items=[item.model_copy() for item in self.line_items],
            subtotal=self.subtotal,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            shipping_amount=self.shipping_amount,
            total_amount=self.total_amount,
            currency=self.currency,
            payment_terms=self.payment_terms,
            payment_method=self.payment_method,
            bank_details=self.bank_details,
            confidence_score=(self.raw_extraction or {}).get("confidenceScore"),
            anomalies=[a.model_copy() for a in self.anomalies],
        )


def status_counts(records: list[InvoiceRecord]) -> dict[str, int]:
    counts = {status.value: 0 for status in InvoiceStatus}
    for record in records:
        counts[record.status.value] += 1
    counts["total"] = len(records)
    return counts
