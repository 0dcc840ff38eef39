from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from invoiceflow.extraction.schema import CandidateRecord

logger = logging.getLogger(__name__)

TOLERANCE = 0.01
RELATIVE_ERROR_THRESHOLD = 0.05
MAX_WARNINGS_WITHOUT_REVIEW = 2

SUPPORTED_CURRENCIES = frozenset({"USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CNY", "INR"})
MAX_INVOICE_AGE_DAYS = 365
MAX_FUTURE_DAYS = 30
MAX_TAX_RATE = 50.0
HIGH_TOTAL_THRESHOLD = 1_000_000
ROUND_TOTAL_THRESHOLD = 1_000

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ALL_ZEROS_RE = re.compile(r"^0+$")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%B %d, %Y", "%b %d, %Y")


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def requires_review(self) -> bool:
        return len(self.errors) > 0 or len(self.warnings) > MAX_WARNINGS_WITHOUT_REVIEW

    @property
    def is_valid(self) -> bool:
        return not self.errors


def parse_date(value: str | None) -> date | None:
    if not value:
        return None
    text = value.strip()
    try:
        # ISO date or datetime, with or without offset
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def fmt_amount(value: float) -> str:
    """Render 20.0 as ``20`` and 12.5 as ``12.5``."""
    return f"{round(value, 2):.2f}".rstrip("0").rstrip(".")


def _missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RuleEngine:
    def validate(self, candidate: CandidateRecord, *, today: date | None = None) -> ValidationReport:
        """Run every check and collect errors and warnings.

        Checks never short-circuit: a missing vendor does not stop the
        arithmetic checks from running.

        Args:
            candidate: The extracted invoice data.
            today: Reference date for the age/future rules. Defaults to the
                current UTC date.
        """
        today = today or datetime.now(timezone.utc).date()
        report = ValidationReport()

        self._check_required_fields(candidate, report)
        self._check_line_items(candidate, report)
        self._check_subtotal(candidate, report)
        self._check_total(candidate, report)
        self._check_tax_rate(candidate, report)
        self._check_formats(candidate, report, today)
        self._check_business_rules(candidate, report)
        self._check_anomalies(candidate, report)

        logger.debug(
            "validation_complete",
            extra={"errors": len(report.errors), "warnings": len(report.warnings)},
        )
        return report

    # ------------------------------------------------------------------ #
    #  1. Required fields                                                  #
    # ------------------------------------------------------------------ #

    def _check_required_fields(self, c: CandidateRecord, report: ValidationReport) -> None:
        required = {
            "Vendor name": c.vendor_name,
            "Invoice number": c.invoice_number,
            "Invoice date": c.invoice_date,
        }
        for label, value in required.items():
            if _missing(value):
                report.errors.append(f"{label} is required")

        # A total can be derived from line items, so it is only required without them
        if c.total_amount is None and not c.line_items:
            report.errors.append("Total amount is required")
            report.errors.append("Invoice must have line items or a total amount")

    # ------------------------------------------------------------------ #
    #  2-5. Arithmetic                                                     #
    # ------------------------------------------------------------------ #

    def _check_line_items(self, c: CandidateRecord, report: ValidationReport) -> None:
        for index, item in enumerate(c.line_items, start=1):
            if item.quantity is not None and item.unit_price is not None and item.amount is not None:
                expected = round(item.quantity * item.unit_price, 2)
                actual = round(item.amount, 2)
                if abs(actual - expected) > TOLERANCE:
                    report.errors.append(
                        f"Line item {index}: Amount mismatch "
                        f"(expected {fmt_amount(expected)}, got {fmt_amount(actual)})"
                    )

            if item.quantity is not None and item.quantity <= 0:
                report.warnings.append(
                    f"Line item {index} has non-positive quantity: {fmt_amount(item.quantity)}"
                )
            if item.unit_price is not None and item.unit_price < 0:
                report.warnings.append(
                    f"Line item {index} has negative unit price: {fmt_amount(item.unit_price)}"
                )

    @staticmethod
    def _computed_subtotal(c: CandidateRecord) -> float:
        return sum(item.amount or 0.0 for item in c.line_items)

    @staticmethod
    def _classify_mismatch(
        report: ValidationReport,
        diff: float,
        reference: float,
        error: str,
        warning: str,
    ) -> None:
        if diff <= TOLERANCE:
            return
        relative = diff / abs(reference) if reference else float("inf")
        if relative > RELATIVE_ERROR_THRESHOLD:
            report.errors.append(error)
        else:
            report.warnings.append(warning)

    def _check_subtotal(self, c: CandidateRecord, report: ValidationReport) -> None:
        if not c.line_items or c.subtotal is None:
            return
        computed = self._computed_subtotal(c)
        self._classify_mismatch(
            report,
            abs(c.subtotal - computed),
            computed,
            f"Subtotal mismatch: extracted {fmt_amount(c.subtotal)}, calculated {computed:.2f}",
            f"Minor subtotal discrepancy: {fmt_amount(c.subtotal)} vs {computed:.2f}",
        )

    def _check_total(self, c: CandidateRecord, report: ValidationReport) -> None:
        if c.total_amount is None or (c.subtotal is None and not c.line_items):
            return
        subtotal = c.subtotal if c.subtotal is not None else self._computed_subtotal(c)
        expected = (
            subtotal
            + (c.tax_amount or 0.0)
            - (c.discount_amount or 0.0)
            + (c.shipping_amount or 0.0)
        )
        self._classify_mismatch(
            report,
            abs(c.total_amount - expected),
            expected,
            f"Total mismatch: extracted {fmt_amount(c.total_amount)}, calculated {expected:.2f}",
            f"Minor total discrepancy: {fmt_amount(c.total_amount)} vs {expected:.2f}",
        )

    def _check_tax_rate(self, c: CandidateRecord, report: ValidationReport) -> None:
        if c.tax_rate is None or c.tax_amount is None or c.subtotal is None:
            return
        expected = c.subtotal * (c.tax_rate / 100)
        if abs(expected - c.tax_amount) > TOLERANCE:
            # Never an error: exemptions and compound taxes are legitimate
            report.warnings.append(
                f"Tax calculation discrepancy: {fmt_amount(c.tax_rate)}% of {fmt_amount(c.subtotal)} "
                f"= {expected:.2f}, but got {fmt_amount(c.tax_amount)}"
            )

    # ------------------------------------------------------------------ #
    #  6. Formats                                                          #
    # ------------------------------------------------------------------ #

    def _check_formats(self, c: CandidateRecord, report: ValidationReport, today: date) -> None:
        if not _missing(c.invoice_date):
            invoice_date = parse_date(c.invoice_date)
            if invoice_date is None:
                report.errors.append(f"Invalid invoice date format: {c.invoice_date}")
            else:
                if invoice_date < today - timedelta(days=MAX_INVOICE_AGE_DAYS):
                    report.warnings.append(f"Invoice date is more than 1 year old: {c.invoice_date}")
                if invoice_date > today + timedelta(days=MAX_FUTURE_DAYS):
                    report.warnings.append(f"Invoice date is in the future: {c.invoice_date}")

        if not _missing(c.due_date) and parse_date(c.due_date) is None:
            report.errors.append(f"Invalid due date format: {c.due_date}")

        if not _missing(c.vendor_email) and not _EMAIL_RE.match(c.vendor_email.strip()):
            report.warnings.append(f"Invalid vendor email format: {c.vendor_email}")

        if not _missing(c.currency) and c.currency.strip().upper() not in SUPPORTED_CURRENCIES:
            report.warnings.append(f"Unusual currency code: {c.currency}")

    # ------------------------------------------------------------------ #
    #  7. Business rules                                                   #
    # ------------------------------------------------------------------ #

    def _check_business_rules(self, c: CandidateRecord, report: ValidationReport) -> None:
        invoice_date = parse_date(c.invoice_date)
        due_date = parse_date(c.due_date)
        if invoice_date and due_date and due_date < invoice_date:
            report.errors.append("Due date is before invoice date")

        if c.discount_amount and c.subtotal:
            if c.discount_amount > c.subtotal:
                report.errors.append("Discount amount exceeds subtotal")
            if c.discount_amount / c.subtotal > 0.5:
                report.warnings.append("Discount is more than 50% of subtotal")

        if c.tax_rate is not None and not 0 <= c.tax_rate <= MAX_TAX_RATE:
            report.warnings.append(f"Unusual tax rate: {fmt_amount(c.tax_rate)}%")

        if c.total_amount is not None:
            if c.total_amount <= 0:
                report.errors.append("Total amount must be positive")
            if c.total_amount > HIGH_TOTAL_THRESHOLD:
                report.warnings.append(f"Very high invoice amount: {fmt_amount(c.total_amount)}")

    # ------------------------------------------------------------------ #
    #  8. Anomaly heuristics (warnings only)                               #
    # ------------------------------------------------------------------ #

    def _check_anomalies(self, c: CandidateRecord, report: ValidationReport) -> None:
        if c.invoice_number and _ALL_ZEROS_RE.match(c.invoice_number.strip()):
            report.warnings.append("Invoice number appears to be all zeros")

        total = c.total_amount
        if total is not None and total > ROUND_TOTAL_THRESHOLD and total % 100 == 0:
            report.warnings.append("Total amount is a round number - may be estimated")

        if total is not None and total > ROUND_TOTAL_THRESHOLD and c.tax_amount is None and c.tax_rate is None:
            report.warnings.append("High invoice amount without tax information")

        if len(c.line_items) > 3:
            quantities = {item.quantity for item in c.line_items}
            if len(quantities) == 1:
                report.warnings.append("All line items have identical quantities")
