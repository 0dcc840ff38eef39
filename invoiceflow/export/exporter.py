"""Invoice export to CSV, JSON and XML files."""
from __future__ import annotations

import asyncio
import csv
import json
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from invoiceflow.records import InvoiceRecord

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "json", "xml")

CSV_COLUMNS = [
    "invoice_number",
    "vendor_name",
    "invoice_date",
    "due_date",
    "subtotal",
    "tax_amount",
    "total_amount",
    "currency",
    "status",
    "confidence_score",
]


@dataclass(frozen=True)
class ExportResult:
    format: str
    file_path: str
    filename: str
    record_count: int


def export_document(record: InvoiceRecord) -> dict[str, Any]:
    """Nested, JSON-ready view of one invoice."""
    return {
        "id": str(record.id),
        "invoice_number": record.invoice_number,
        "vendor": {
            "name": record.vendor_name,
            "address": record.vendor_address,
            "email": record.vendor_email,
            "phone": record.vendor_phone,
        },
        "customer": {
            "name": record.customer_name,
            "address": record.customer_address,
        },
        "dates": {
            "invoice_date": record.invoice_date.isoformat() if record.invoice_date else None,
            "due_date": record.due_date.isoformat() if record.due_date else None,
        },
        "line_items": [item.model_dump(mode="json") for item in record.line_items],
        "amounts": {
            "subtotal": record.subtotal,
            "tax_rate": record.tax_rate,
            "tax_amount": record.tax_amount,
            "discount": record.discount_amount,
            "shipping": record.shipping_amount,
            "total": record.total_amount,
            "currency": record.currency,
        },
        "payment": {
            "terms": record.payment_terms,
            "method": record.payment_method,
        },
        "metadata": {
            "status": record.status.value,
            "confidence_score": record.confidence_score,
            "processing_time_ms": record.processing_time_ms,
            "created_at": record.created_at.isoformat() if record.created_at else None,
        },
    }


def _csv_row(record: InvoiceRecord) -> dict[str, Any]:
    return {
        "invoice_number": record.invoice_number or "",
        "vendor_name": record.vendor_name or "",
        "invoice_date": record.invoice_date.isoformat() if record.invoice_date else "",
        "due_date": record.due_date.isoformat() if record.due_date else "",
        "subtotal": record.subtotal or 0,
        "tax_amount": record.tax_amount or 0,
        "total_amount": record.total_amount or 0,
        "currency": record.currency or "",
        "status": record.status.value,
        "confidence_score": record.confidence_score or 0,
    }


def _append_xml(parent: ET.Element, tag: str, value: Any) -> None:
    element = ET.SubElement(parent, tag)
    if isinstance(value, dict):
        for key, child in value.items():
            _append_xml(element, key, child)
    elif isinstance(value, list):
        for child in value:
            _append_xml(element, "item", child)
    elif value is not None:
        element.text = str(value)


class InvoiceExporter:
    def __init__(self, export_dir: str) -> None:
        self._export_dir = Path(export_dir)

    async def export(
        self,
        records: list[InvoiceRecord],
        fmt: str,
        *,
        filename: str | None = None,
    ) -> ExportResult:
        fmt = fmt.lower()
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")

        stem = filename or f"invoices_{int(time.time() * 1000)}"
        path = self._export_dir / f"{stem}.{fmt}"
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, records, fmt, path)

        logger.info("invoices_exported", extra={"format": fmt, "path": str(path), "record_count": len(records)})
        return ExportResult(format=fmt, file_path=str(path), filename=path.name, record_count=len(records))

    def _write(self, records: list[InvoiceRecord], fmt: str, path: Path) -> None:
        self._export_dir.mkdir(parents=True, exist_ok=True)
        if fmt == "csv":
            with path.open("w", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=CSV_COLUMNS)
                writer.writeheader()
                writer.writerows(_csv_row(r) for r in records)
        elif fmt == "json":
            payload = {
                "export_date": datetime.now(timezone.utc).isoformat(),
                "total_invoices": len(records),
                "invoices": [export_document(r) for r in records],
            }
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        else:
            root = ET.Element("invoices")
            ET.SubElement(root, "export_date").text = datetime.now(timezone.utc).isoformat()
            for record in records:
                _append_xml(root, "invoice", export_document(record))
            ET.ElementTree(root).write(path, encoding="utf-8", xml_declaration=True)
