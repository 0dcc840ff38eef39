"""Reviewer corrections on processed invoices."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from invoiceflow.confidence.confidence import compute_confidence
from invoiceflow.core.errors import InvalidTransitionError
from invoiceflow.records import Correction, InvoiceRecord, InvoiceStatus
from invoiceflow.validation.validator import Validator

logger = logging.getLogger(__name__)

# Changing these does not touch the extracted invoice, so no re-validation.
_ANNOTATION_FIELDS = frozenset({"notes", "tags"})


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _sync_review_status(record: InvoiceRecord) -> None:
    if record.status is InvoiceStatus.COMPLETED and record.requires_review:
        record.transition(InvoiceStatus.REVIEW_REQUIRED)
    elif record.status is InvoiceStatus.REVIEW_REQUIRED and not record.requires_review:
        record.transition(InvoiceStatus.COMPLETED)


def apply_corrections(
    record: InvoiceRecord,
    changes: dict[str, Any],
    *,
    corrected_by: str | None,
    validator: Validator,
) -> list[Correction]:
    """Apply reviewer changes, log each one, and re-score the invoice.

    A ``completed`` or ``review_required`` invoice follows the re-validated
    ``requires_review`` flag; a ``failed`` invoice keeps its status.
    """
    if record.status in (InvoiceStatus.PENDING, InvoiceStatus.PROCESSING):
        raise InvalidTransitionError("Cannot correct an invoice that is still being processed")

    applied: list[Correction] = []
    for name, value in changes.items():
        original = getattr(record, name)
        if _jsonable(original) == _jsonable(value):
            continue
        applied.append(
            Correction(
                field=name,
                original_value=_jsonable(original),
                corrected_value=_jsonable(value),
                corrected_by=corrected_by,
            )
        )
        setattr(record, name, value)

    if not applied:
        return applied
    record.corrections.extend(applied)

    if any(c.field not in _ANNOTATION_FIELDS for c in applied):
        candidate = record.to_candidate()
        report = validator.validate(candidate)
        record.validation_errors = list(report.errors)
        record.validation_warnings = list(report.warnings)
        record.requires_review = report.requires_review
        record.confidence_score = compute_confidence(candidate, report).overall
        _sync_review_status(record)

    logger.info(
        "invoice_corrected",
        extra={
            "invoice_id": str(record.id),
            "fields": ",".join(c.field for c in applied),
            "corrected_by": corrected_by,
            "status": record.status.value,
        },
    )
    return applied
