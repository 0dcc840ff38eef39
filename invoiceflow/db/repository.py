"""Persistence boundary for invoice records.

Rows are decoded through ``InvoiceRecord`` on the way out, so a corrupt JSON
column (a string where a list of line items belongs, a non-numeric amount)
raises ``PersistenceError`` instead of reaching the pipeline half-parsed.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoiceflow.core.errors import PersistenceError
from invoiceflow.db.models import Invoice
from invoiceflow.records import InvoiceRecord, InvoiceStatus

logger = logging.getLogger(__name__)

_JSON_FIELDS = frozenset(
    {"line_items", "validation_errors", "validation_warnings", "anomalies", "corrections", "tags", "raw_extraction"}
)
_SERVER_MANAGED = frozenset({"id", "created_at", "updated_at"})

SORTABLE_COLUMNS = {
    "created_at": Invoice.created_at,
    "invoice_date": Invoice.invoice_date,
    "total_amount": Invoice.total_amount,
    "confidence_score": Invoice.confidence_score,
}


@dataclass
class InvoiceQuery:
    status: InvoiceStatus | None = None
    vendor: str | None = None
    batch_id: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    sort_by: str = "created_at"
    descending: bool = True
    page: int = 1
    limit: int = 20


@dataclass
class InvoicePage:
    items: list[InvoiceRecord]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class StatusSummary:
    count: int = 0
    total_amount: float = 0.0
    avg_confidence: float | None = None
    avg_processing_time_ms: float | None = None


@dataclass
class InvoiceStats:
    total_invoices: int = 0
    total_amount: float = 0.0
    by_status: dict[str, StatusSummary] = field(default_factory=dict)


def to_record(row: Invoice) -> InvoiceRecord:
    try:
        return InvoiceRecord.model_validate(row, from_attributes=True)
    except ValidationError as exc:
        logger.error("invoice_row_corrupt", extra={"invoice_id": str(row.id), "error": str(exc)})
        raise PersistenceError(f"Stored invoice {row.id} is corrupt: {exc}") from exc


def to_row_values(record: InvoiceRecord) -> dict:
    values = record.model_dump(exclude=_JSON_FIELDS | _SERVER_MANAGED)
    values["status"] = record.status.value
    values.update(record.model_dump(mode="json", by_alias=True, include=_JSON_FIELDS))
    return values


class SqlInvoiceRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, invoice_id: uuid.UUID) -> InvoiceRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(Invoice, invoice_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load invoice {invoice_id}: {exc}") from exc
        return to_record(row) if row is not None else None

    async def save(self, record: InvoiceRecord) -> None:
        values = to_row_values(record)
        try:
            async with self._session_factory() as session:
                row = await session.get(Invoice, record.id)
                if row is None:
                    row = Invoice(id=record.id)
                    session.add(row)
                for name, value in values.items():
                    setattr(row, name, value)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save invoice {record.id}: {exc}") from exc

    async def mark_webhook_sent(self, invoice_id: uuid.UUID, sent_at: datetime) -> None:
        """Flag delivery without rewriting the rest of the row."""
        stmt = (
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(webhook_sent=True, webhook_sent_at=sent_at)
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not update invoice {invoice_id}: {exc}") from exc

    async def find_by_batch(self, batch_id: str) -> list[InvoiceRecord]:
        stmt = select(Invoice).where(Invoice.batch_id == batch_id).order_by(Invoice.created_at)
        return await self._fetch(stmt)

    async def find_by_status(self, status: InvoiceStatus) -> list[InvoiceRecord]:
        stmt = select(Invoice).where(Invoice.status == status.value).order_by(Invoice.created_at)
        return await self._fetch(stmt)

    async def find_all(self) -> list[InvoiceRecord]:
        return await self._fetch(select(Invoice).order_by(Invoice.created_at))

    async def find_by_ids(self, invoice_ids: list[uuid.UUID]) -> list[InvoiceRecord]:
        if not invoice_ids:
            return []
        stmt = select(Invoice).where(Invoice.id.in_(invoice_ids)).order_by(Invoice.created_at)
        return await self._fetch(stmt)

    async def search(self, query: InvoiceQuery) -> InvoicePage:
        conditions = []
        if query.status is not None:
            conditions.append(Invoice.status == query.status.value)
        if query.vendor:
            conditions.append(Invoice.vendor_name.ilike(f"%{query.vendor}%"))
        if query.batch_id:
            conditions.append(Invoice.batch_id == query.batch_id)
        if query.created_from is not None:
            conditions.append(Invoice.created_at >= query.created_from)
        if query.created_to is not None:
            conditions.append(Invoice.created_at <= query.created_to)

        column = SORTABLE_COLUMNS.get(query.sort_by, Invoice.created_at)
        order = column.desc() if query.descending else column.asc()
        stmt = (
            select(Invoice)
            .where(*conditions)
            .order_by(order, Invoice.id)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        count_stmt = select(func.count()).select_from(Invoice).where(*conditions)
        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Query failed: {exc}") from exc
        items = await self._fetch(stmt)
        return InvoicePage(items=items, total=total, page=query.page, limit=query.limit)

    async def stats(self) -> InvoiceStats:
        stmt = select(
            Invoice.status,
            func.count(),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.avg(Invoice.confidence_score),
            func.avg(Invoice.processing_time_ms),
        ).group_by(Invoice.status)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Query failed: {exc}") from exc

        stats = InvoiceStats()
        for status, count, amount, avg_confidence, avg_time in rows:
            stats.by_status[status] = StatusSummary(
                count=count,
                total_amount=float(amount or 0),
                avg_confidence=float(avg_confidence) if avg_confidence is not None else None,
                avg_processing_time_ms=float(avg_time) if avg_time is not None else None,
            )
            stats.total_invoices += count
            stats.total_amount += float(amount or 0)
        return stats

    async def known_vendors(self, *, exclude: uuid.UUID | None = None) -> set[str]:
        stmt = select(Invoice.vendor_name).where(Invoice.vendor_name.is_not(None))
        if exclude is not None:
            stmt = stmt.where(Invoice.id != exclude)
        return await self._distinct(stmt)

    async def existing_invoice_numbers(self, *, exclude: uuid.UUID | None = None) -> set[str]:
        stmt = select(Invoice.invoice_number).where(Invoice.invoice_number.is_not(None))
        if exclude is not None:
            stmt = stmt.where(Invoice.id != exclude)
        return await self._distinct(stmt)

    async def delete(self, invoice_id: uuid.UUID) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(Invoice).where(Invoice.id == invoice_id))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not delete invoice {invoice_id}: {exc}") from exc
        return result.rowcount > 0

    async def _fetch(self, stmt) -> list[InvoiceRecord]:
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Query failed: {exc}") from exc
        return [to_record(row) for row in rows]

    async def _distinct(self, stmt) -> set[str]:
        try:
            async with self._session_factory() as session:
                values = (await session.execute(stmt.distinct())).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Query failed: {exc}") from exc
        return {v for v in values if v}
