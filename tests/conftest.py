"""Shared pytest configuration and fixtures."""
from __future__ import annotations

import os
import tempfile
from datetime import date, datetime, timedelta, timezone

# Provide required env vars before any invoiceflow module is imported
_TMP_DIR = tempfile.mkdtemp(prefix="invoiceflow-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR}/app.db")
os.environ.setdefault("DOCUMENT_LOADER", "mock")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP_DIR, "uploads"))
os.environ.setdefault("EXPORT_DIR", os.path.join(_TMP_DIR, "exports"))
os.environ["OPENAI_API_KEY"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from invoiceflow.db.init_db import init_db  # noqa: E402
from invoiceflow.db.repository import SqlInvoiceRepository  # noqa: E402
from invoiceflow.db.session import create_engine, create_session_factory  # noqa: E402
from invoiceflow.extraction.schema import CandidateRecord, LineItem  # noqa: E402
from invoiceflow.records import InvoiceRecord, InvoiceStatus  # noqa: E402


class InMemoryInvoiceRepository:
    """Dict-backed stand-in for ``SqlInvoiceRepository``.

    Records are copied on the way in and out, like rows would be.
    """

    def __init__(self) -> None:
        self.rows: dict = {}
        self.status_history: list[tuple] = []

    async def load(self, invoice_id):
        record = self.rows.get(invoice_id)
        return record.model_copy(deep=True) if record else None

    async def save(self, record: InvoiceRecord) -> None:
        stored = record.model_copy(deep=True)
        previous = self.rows.get(record.id)
        stored.created_at = previous.created_at if previous else datetime.now(timezone.utc)
        self.rows[record.id] = stored
        self.status_history.append((record.id, record.status))

    async def mark_webhook_sent(self, invoice_id, sent_at) -> None:
        record = self.rows[invoice_id]
        record.webhook_sent = True
        record.webhook_sent_at = sent_at

    async def find_by_batch(self, batch_id: str) -> list[InvoiceRecord]:
        return [r.model_copy(deep=True) for r in self.rows.values() if r.batch_id == batch_id]

    async def find_by_status(self, status: InvoiceStatus) -> list[InvoiceRecord]:
        return [r.model_copy(deep=True) for r in self.rows.values() if r.status is status]


@pytest.fixture
def repository() -> InMemoryInvoiceRepository:
    return InMemoryInvoiceRepository()


@pytest_asyncio.fixture
async def sql_repository(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'invoices.db'}")
    await init_db(engine)
    repo = SqlInvoiceRepository(create_session_factory(engine))
    repo.engine = engine
    yield repo
    await engine.dispose()


@pytest.fixture
def make_candidate():
    """Factory for a clean candidate: validates with no errors and no warnings."""

    def _make(**overrides) -> CandidateRecord:
        today = date.today()
        values = dict(
            vendor_name="Acme Corp",
            vendor_email="billing@acme.example",
            invoice_number="INV-2024-001",
            invoice_date=(today - timedelta(days=10)).isoformat(),
            due_date=(today + timedelta(days=20)).isoformat(),
            customer_name="Beta Industries",
            line_items=[
                LineItem(description="Widget", quantity=2.0, unit_price=50.0, amount=100.0, confidence=0.95),
                LineItem(description="Gadget", quantity=1.0, unit_price=200.0, amount=200.0, confidence=0.95),
            ],
            subtotal=300.0,
            tax_rate=18.0,
            tax_amount=54.0,
            total_amount=354.0,
            currency="USD",
            confidence_score=0.9,
        )
        values.update(overrides)
        return CandidateRecord(**values)

    return _make


@pytest.fixture
def make_record():
    def _make(**overrides) -> InvoiceRecord:
        values = dict(
            original_file_name="invoice.pdf",
            file_path="/tmp/invoice.pdf",
            file_type="pdf",
            file_size=1024,
        )
        values.update(overrides)
        return InvoiceRecord(**values)

    return _make
