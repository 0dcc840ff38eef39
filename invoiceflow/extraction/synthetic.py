"""Synthetic candidates used when the extraction backend rejects our credentials.

Amounts are built in integer cents so that quantity x unit price, the subtotal
and the total add up exactly once converted back to currency units.
"""
from __future__ import annotations

import random
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from invoiceflow.extraction.schema import CandidateRecord, LineItem

SYNTHETIC_TAX_RATE = 18

_VENDORS = ["ABC Technologies", "XYZ Services", "Global Solutions Inc", "Tech Innovations"]
_CUSTOMERS = ["Acme Corp", "Beta Industries", "Gamma Enterprises"]


def _units(cents: int) -> float:
    return float(Decimal(cents) / 100)


def generate_candidate(rng: random.Random | None = None, *, today: date | None = None) -> CandidateRecord:
    rng = rng or random.Random()
    today = today or date.today()

    vendor = rng.choice(_VENDORS)
    customer = rng.choice(_CUSTOMERS)

    first_qty = rng.randint(1, 10)
    first_price = rng.randint(500_00, 2_000_00)
    second_qty = rng.randint(1, 5)
    second_price = rng.randint(500_00, 10_000_00)

    first_amount = first_qty * first_price
    second_amount = second_qty * second_price
    subtotal = first_amount + second_amount
    tax = int((Decimal(subtotal) * SYNTHETIC_TAX_RATE / 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    total = subtotal + tax

    line_items = [
        LineItem(
            description="Professional Services",
            quantity=float(first_qty),
            unit_price=_units(first_price),
            amount=_units(first_amount),
            confidence=round(rng.uniform(0.9, 1.0), 4),
        ),
        LineItem(
            description="Consulting Fees",
            quantity=float(second_qty),
            unit_price=_units(second_price),
            amount=_units(second_amount),
            confidence=round(rng.uniform(0.9, 1.0), 4),
        ),
    ]

    return CandidateRecord(
        vendor_name=vendor,
        vendor_address="123 Business Park, Mumbai, Maharashtra 400001",
        vendor_email=f"contact@{vendor.lower().replace(' ', '')}.com",
        vendor_phone=f"+91 {rng.randint(1_000_000_000, 9_999_999_999)}",
        invoice_number=f"INV-{rng.randint(100_000, 999_999)}",
        invoice_date=today.isoformat(),
        due_date=(today + timedelta(days=30)).isoformat(),
        purchase_order_number=f"PO-{rng.randint(10_000, 99_999)}",
        customer_name=customer,
        customer_address="456 Corporate Avenue, Delhi 110001",
        line_items=line_items,
        subtotal=_units(subtotal),
        tax_rate=float(SYNTHETIC_TAX_RATE),
        tax_amount=_units(tax),
        discount_amount=0.0,
        shipping_amount=0.0,
        total_amount=_units(total),
        currency="INR",
        payment_terms="Net 30 days",
        payment_method="Bank Transfer",
        bank_details="HDFC Bank, Account: XXXX1234",
        confidence_score=round(rng.uniform(0.85, 0.95), 4),
        anomalies=[],
    )
