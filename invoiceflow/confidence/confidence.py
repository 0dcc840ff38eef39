"""Confidence scoring module.

Combines extraction signals and validation findings into one score:

    base    = mean(field presence, mean line-item confidence, extractor confidence)
    overall = clamp(base - 0.1 * errors - 0.02 * warnings, 0, 1)

Line-item and extractor components only take part when available.
"""
from __future__ import annotations

from dataclasses import dataclass

from invoiceflow.extraction.schema import CandidateRecord
from invoiceflow.validation.rule_engine import ValidationReport

ERROR_PENALTY = 0.1
WARNING_PENALTY = 0.02

IMPORTANT_FIELDS = ("vendor_name", "invoice_number", "invoice_date", "total_amount", "line_items")


@dataclass(frozen=True)
class ConfidenceResult:
    overall: float                      # 0.0 – 1.0, persisted
    base: float
    field_presence: float
    line_item_score: float | None
    extractor_score: float | None
    penalty: float


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list)):
        return len(value) > 0
    return True


def compute_confidence(candidate: CandidateRecord, report: ValidationReport) -> ConfidenceResult:
    field_presence = sum(_present(getattr(candidate, f)) for f in IMPORTANT_FIELDS) / len(IMPORTANT_FIELDS)
    components = [field_presence]

    line_item_score = None
    if candidate.line_items:
        line_item_score = sum(item.confidence or 0.0 for item in candidate.line_items) / len(candidate.line_items)
        components.append(line_item_score)

    extractor_score = candidate.confidence_score
    if extractor_score is not None:
        components.append(extractor_score)

    base = sum(components) / len(components)
    penalty = ERROR_PENALTY * len(report.errors) + WARNING_PENALTY * len(report.warnings)
    overall = max(0.0, min(1.0, base - penalty))

    return ConfidenceResult(
        overall=round(overall, 4),
        base=round(base, 4),
        field_presence=round(field_presence, 4),
        line_item_score=round(line_item_score, 4) if line_item_score is not None else None,
        extractor_score=extractor_score,
        penalty=round(penalty, 4),
    )
