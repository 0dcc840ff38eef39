from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Index, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_status_created_at", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # File information
    original_file_name: Mapped[str] = mapped_column(String(512))
    file_path: Mapped[str] = mapped_column(String(1024))
    file_type: Mapped[str] = mapped_column(String(16))
    file_size: Mapped[int] = mapped_column(Integer, default=0)

    # pending | processing | completed | failed | review_required
    status: Mapped[str] = mapped_column(String(32), default="pending")
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Extracted data
    vendor_name: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    vendor_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    vendor_email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    vendor_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    purchase_order_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    customer_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Financial data; line_items is a list of {description, quantity, unitPrice, amount, confidence}
    line_items: Mapped[list] = mapped_column(JSON, default=list)
    subtotal: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    tax_rate: Mapped[float | None] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)
    tax_amount: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    discount_amount: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    shipping_amount: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(16), nullable=True)

    payment_terms: Mapped[str | None] = mapped_column(String(256), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(128), nullable=True)
    bank_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Validation & quality
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    validation_errors: Mapped[list] = mapped_column(JSON, default=list)
    validation_warnings: Mapped[list] = mapped_column(JSON, default=list)
    anomalies: Mapped[list] = mapped_column(JSON, default=list)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_review: Mapped[bool] = mapped_column(Boolean, default=False)
    raw_extraction: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    corrections: Mapped[list] = mapped_column(JSON, default=list)

    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    webhook_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    webhook_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    webhook_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
