"""Webhook dispatcher tests using httpx.MockTransport."""
from __future__ import annotations

import hashlib
import hmac
import json

import httpx
import pytest

from invoiceflow.notifications.webhook import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    WebhookDispatcher,
    batch_completed_event,
    invoice_failed_event,
    invoice_processed_event,
    verification_event,
)
from invoiceflow.records import InvoiceStatus

SECRET = "s3cret"


def _dispatcher(handler) -> WebhookDispatcher:
    return WebhookDispatcher(SECRET, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_notify_signs_body_and_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    dispatcher = _dispatcher(handler)
    result = await dispatcher.notify("https://hooks.example/in", verification_event())
    await dispatcher.aclose()

    assert result.delivered is True
    assert result.status_code == 200
    request = seen[0]
    body = request.content.decode()
    timestamp = request.headers[TIMESTAMP_HEADER]
    expected = hmac.new(SECRET.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    assert request.headers[SIGNATURE_HEADER] == expected
    assert request.headers["Content-Type"] == "application/json"
    assert int(timestamp) == result.timestamp
    # compact separators
    assert ", " not in body and '": ' not in body
    assert json.loads(body)["event"] == "test"


@pytest.mark.asyncio
async def test_non_2xx_is_not_delivered() -> None:
    dispatcher = _dispatcher(lambda request: httpx.Response(500))
    result = await dispatcher.notify("https://hooks.example/in", verification_event())
    await dispatcher.aclose()

    assert result.delivered is False
    assert result.status_code == 500
    assert result.error == "HTTP 500"


@pytest.mark.asyncio
async def test_connection_error_never_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = _dispatcher(handler)
    result = await dispatcher.notify("https://hooks.example/in", verification_event())
    await dispatcher.aclose()

    assert result.delivered is False
    assert result.status_code is None
    assert "connection refused" in result.error


def test_verify_signature() -> None:
    dispatcher = WebhookDispatcher(SECRET)
    body = '{"event":"test"}'
    signature = dispatcher.sign(body, 1700000000000)

    assert dispatcher.verify_signature(body, signature, 1700000000000) is True
    assert dispatcher.verify_signature(body, signature, 1700000000001) is False
    assert dispatcher.verify_signature(body + " ", signature, 1700000000000) is False


def test_event_payloads(make_record) -> None:
    record = make_record(
        status=InvoiceStatus.COMPLETED,
        confidence_score=0.91,
        processing_time_ms=1200,
    )
    processed = invoice_processed_event(record)
    assert processed["event"] == "invoice.processed"
    assert processed["invoiceId"] == str(record.id)
    assert processed["confidenceScore"] == 0.91
    assert processed["processingTimeMs"] == 1200
    assert processed["timestamp"].endswith("Z")

    failed = invoice_failed_event(make_record(status=InvoiceStatus.FAILED, last_error="Malformed: bad"))
    assert failed["event"] == "invoice.failed"
    assert failed["error"] == "Malformed: bad"

    batch = batch_completed_event("b-1", {"total": 2, "completed": 2})
    assert batch["batchId"] == "b-1"
    assert batch["summary"] == {"total": 2, "completed": 2}
