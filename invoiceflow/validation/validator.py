from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from invoiceflow.extraction.schema import CandidateRecord
from invoiceflow.validation.rule_engine import RuleEngine, ValidationReport


@dataclass(frozen=True)
class CrossCheckResult:
    field: str
    valid: bool
    message: str


class Validator:
    def __init__(self) -> None:
        self._rule_engine = RuleEngine()

    def validate(self, candidate: CandidateRecord, *, today: date | None = None) -> ValidationReport:
        return self._rule_engine.validate(candidate, today=today)

    def cross_validate(
        self,
        candidate: CandidateRecord,
        *,
        known_vendors: set[str] | None = None,
        existing_invoice_numbers: set[str] | None = None,
    ) -> list[CrossCheckResult]:
        """Compare against data already in the store.

        Informational only: the results never feed the review decision.
        Pass None to skip a check.
        """
        results: list[CrossCheckResult] = []

        if known_vendors is not None and candidate.vendor_name:
            known = {v.lower() for v in known_vendors}
            is_known = candidate.vendor_name.lower() in known
            results.append(
                CrossCheckResult(
                    field="vendor_name",
                    valid=is_known,
                    message="Known vendor" if is_known else "New vendor",
                )
            )

        if existing_invoice_numbers is not None and candidate.invoice_number:
            is_duplicate = candidate.invoice_number in existing_invoice_numbers
            results.append(
                CrossCheckResult(
                    field="invoice_number",
                    valid=not is_duplicate,
                    message="Possible duplicate invoice" if is_duplicate else "Unique invoice number",
                )
            )

        return results
