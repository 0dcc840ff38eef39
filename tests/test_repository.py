"""SQL repository tests against a throwaway SQLite database."""
from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy import update

from invoiceflow.core.errors import PersistenceError
from invoiceflow.db.models import Invoice
from invoiceflow.db.repository import InvoiceQuery
from invoiceflow.extraction.schema import Anomaly, LineItem
from invoiceflow.records import Correction, InvoiceStatus


@pytest.mark.asyncio
async def test_save_and_load_round_trip(sql_repository, make_record) -> None:
    record = make_record(
        vendor_name="Acme Corp",
        invoice_date=date(2024, 1, 15),
        line_items=[LineItem(description="Widget", quantity=2.0, unit_price=50.0, amount=100.0)],
        total_amount=118.0,
        anomalies=[Anomaly(field="dueDate", message="Handwritten")],
        corrections=[Correction(field="vendor_name", original_value="Acme", corrected_value="Acme Corp")],
        tags=["q1"],
        raw_extraction={"vendorName": "Acme"},
    )
    await sql_repository.save(record)

    loaded = await sql_repository.load(record.id)

    assert loaded is not None
    assert loaded.id == record.id
    assert loaded.status is InvoiceStatus.PENDING
    assert loaded.invoice_date == date(2024, 1, 15)
    assert loaded.line_items[0].unit_price == 50.0
    assert loaded.anomalies[0].message == "Handwritten"
    assert loaded.corrections[0].corrected_value == "Acme Corp"
    assert loaded.tags == ["q1"]
    assert loaded.raw_extraction == {"vendorName": "Acme"}
    assert loaded.created_at is not None


@pytest.mark.asyncio
async def test_save_updates_existing_row(sql_repository, make_record) -> None:
    record = make_record()
    await sql_repository.save(record)

    record.transition(InvoiceStatus.PROCESSING)
    record.vendor_name = "Beta Industries"
    await sql_repository.save(record)

    loaded = await sql_repository.load(record.id)
    assert loaded.status is InvoiceStatus.PROCESSING
    assert loaded.vendor_name == "Beta Industries"


@pytest.mark.asyncio
async def test_load_missing_returns_none(sql_repository) -> None:
    assert await sql_repository.load(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_corrupt_json_column_raises(sql_repository, make_record) -> None:
    record = make_record()
    await sql_repository.save(record)
    async with sql_repository.engine.begin() as conn:
        await conn.execute(update(Invoice).where(Invoice.id == record.id).values(line_items="not a list"))

    with pytest.raises(PersistenceError, match="corrupt"):
        await sql_repository.load(record.id)


@pytest.mark.asyncio
async def test_find_by_batch_and_status(sql_repository, make_record) -> None:
    a = make_record(batch_id="b-1")
    b = make_record(batch_id="b-1", status=InvoiceStatus.FAILED)
    c = make_record(batch_id="b-2")
    for record in (a, b, c):
        await sql_repository.save(record)

    assert {r.id for r in await sql_repository.find_by_batch("b-1")} == {a.id, b.id}
    assert [r.id for r in await sql_repository.find_by_status(InvoiceStatus.FAILED)] == [b.id]
    assert {r.id for r in await sql_repository.find_by_ids([a.id, c.id])} == {a.id, c.id}
    assert len(await sql_repository.find_all()) == 3


@pytest.mark.asyncio
async def test_mark_webhook_sent(sql_repository, make_record) -> None:
    from datetime import datetime, timezone

    record = make_record()
    await sql_repository.save(record)
    await sql_repository.mark_webhook_sent(record.id, datetime(2024, 1, 1, tzinfo=timezone.utc))

    loaded = await sql_repository.load(record.id)
    assert loaded.webhook_sent is True
    assert loaded.webhook_sent_at is not None


@pytest.mark.asyncio
async def test_search_filters_and_paginates(sql_repository, make_record) -> None:
    for i in range(5):
        await sql_repository.save(
            make_record(vendor_name=f"Acme {i}", total_amount=float(100 * (i + 1)), status=InvoiceStatus.COMPLETED)
        )
    await sql_repository.save(make_record(vendor_name="Beta Industries", total_amount=50.0))

    page = await sql_repository.search(
        InvoiceQuery(vendor="acme", sort_by="total_amount", descending=True, page=1, limit=2)
    )
    assert page.total == 5
    assert page.pages == 3
    assert [r.total_amount for r in page.items] == [500.0, 400.0]

    pending = await sql_repository.search(InvoiceQuery(status=InvoiceStatus.PENDING))
    assert [r.vendor_name for r in pending.items] == ["Beta Industries"]


@pytest.mark.asyncio
async def test_stats_groups_by_status(sql_repository, make_record) -> None:
    await sql_repository.save(make_record(status=InvoiceStatus.COMPLETED, total_amount=100.0, confidence_score=0.9))
    await sql_repository.save(make_record(status=InvoiceStatus.COMPLETED, total_amount=200.0, confidence_score=0.7))
    await sql_repository.save(make_record(status=InvoiceStatus.FAILED))

    stats = await sql_repository.stats()

    assert stats.total_invoices == 3
    assert stats.total_amount == pytest.approx(300.0)
    assert stats.by_status["completed"].count == 2
    assert stats.by_status["completed"].avg_confidence == pytest.approx(0.8)
    assert stats.by_status["failed"].total_amount == 0.0


@pytest.mark.asyncio
async def test_cross_check_lookups_exclude_current(sql_repository, make_record) -> None:
    current = make_record(vendor_name="Acme Corp", invoice_number="INV-1")
    other = make_record(vendor_name="Beta Industries", invoice_number="INV-2")
    await sql_repository.save(current)
    await sql_repository.save(other)

    assert await sql_repository.known_vendors(exclude=current.id) == {"Beta Industries"}
    assert await sql_repository.existing_invoice_numbers(exclude=current.id) == {"INV-2"}


@pytest.mark.asyncio
async def test_delete(sql_repository, make_record) -> None:
    record = make_record()
    await sql_repository.save(record)

    assert await sql_repository.delete(record.id) is True
    assert await sql_repository.load(record.id) is None
    assert await sql_repository.delete(record.id) is False
