"""Candidate record: the structured output of extraction, before validation.

The model answers in camelCase JSON. Fields are strictly typed so that a
string where a number belongs (``"$1,200"``) fails decoding instead of being
coerced.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictStr, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(_CamelModel):
    description: StrictStr | None = None
    quantity: StrictFloat | None = None
    unit_price: StrictFloat | None = None
    amount: StrictFloat | None = None
    confidence: StrictFloat | None = Field(default=None, ge=0.0, le=1.0)


class Anomaly(_CamelModel):
    field: StrictStr | None = None
    message: StrictStr
    severity: StrictStr = "low"


class CandidateRecord(_CamelModel):
    vendor_name: StrictStr | None = None
    vendor_address: StrictStr | None = None
    vendor_email: StrictStr | None = None
    vendor_phone: StrictStr | None = None

    invoice_number: StrictStr | None = None
    invoice_date: StrictStr | None = None
    due_date: StrictStr | None = None
    purchase_order_number: StrictStr | None = None

    customer_name: StrictStr | None = None
    customer_address: StrictStr | None = None

    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: StrictFloat | None = None
    tax_rate: StrictFloat | None = None
    tax_amount: StrictFloat | None = None
    discount_amount: StrictFloat | None = None
    shipping_amount: StrictFloat | None = None
    total_amount: StrictFloat | None = None
    currency: StrictStr | None = None

    payment_terms: StrictStr | None = None
    payment_method: StrictStr | None = None
    bank_details: StrictStr | None = None

    confidence_score: StrictFloat | None = Field(default=None, ge=0.0, le=1.0)
    anomalies: list[Anomaly] = Field(default_factory=list)
    notes: StrictStr | None = None

    @field_validator("line_items", "anomalies", mode="before")
    @classmethod
    def _null_list_is_empty(cls, value):
        # "not found" is reported as null; any other non-list still fails
        return [] if value is None else value


# Keys the model must always return (null is allowed, absence is not).
REQUIRED_KEYS: tuple[str, ...] = (
    "vendorName",
    "invoiceNumber",
    "invoiceDate",
    "totalAmount",
    "lineItems",
)
