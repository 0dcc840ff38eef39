"""Signed webhook delivery.

Each event is POSTed once, with:

    X-Webhook-Timestamp: <epoch millis>
    X-Webhook-Signature: hex(HMAC-SHA256(secret, "<timestamp>.<body>"))

Delivery is best-effort: no retries, and ``notify`` never raises.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from invoiceflow.records import InvoiceRecord

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    timestamp: int
    status_code: int | None = None
    error: str | None = None


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)


# ---------------------------------------------------------------------------
# Event builders
# ---------------------------------------------------------------------------

def invoice_processed_event(record: InvoiceRecord) -> dict[str, Any]:
    return {
        "event": "invoice.processed",
        "invoiceId": str(record.id),
        "status": record.status.value,
        "confidenceScore": record.confidence_score,
        "processingTimeMs": record.processing_time_ms,
        "timestamp": iso_now(),
    }


def invoice_failed_event(record: InvoiceRecord) -> dict[str, Any]:
    return {
        "event": "invoice.failed",
        "invoiceId": str(record.id),
        "status": record.status.value,
        "error": record.last_error,
        "processingTimeMs": record.processing_time_ms,
        "timestamp": iso_now(),
    }


def batch_completed_event(batch_id: str, summary: dict[str, int]) -> dict[str, Any]:
    return {
        "event": "batch.completed",
        "batchId": batch_id,
        "summary": summary,
        "timestamp": iso_now(),
    }


def verification_event() -> dict[str, Any]:
    return {
        "event": "test",
        "message": "Webhook endpoint verification",
        "timestamp": iso_now(),
    }


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class WebhookDispatcher:
    def __init__(
        self,
        secret: str,
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret = secret.encode()
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    def sign(self, body: str, timestamp: int) -> str:
        message = f"{timestamp}.{body}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify_signature(self, body: str, signature: str, timestamp: int) -> bool:
        return hmac.compare_digest(self.sign(body, timestamp), signature)

    async def notify(self, url: str, event: dict[str, Any]) -> DeliveryResult:
        timestamp = int(time.time() * 1000)
        try:
            body = encode_payload(event)
            headers = {
                "Content-Type": "application/json",
                SIGNATURE_HEADER: self.sign(body, timestamp),
                TIMESTAMP_HEADER: str(timestamp),
            }
            response = await self._client.post(url, content=body.encode(), headers=headers)
        except Exception as exc:
            logger.error(
                "webhook_failed",
                extra={"url": url, "webhook_event": event.get("event"), "error": str(exc)},
            )
            return DeliveryResult(delivered=False, timestamp=timestamp, error=str(exc))

        if response.is_success:
            logger.info(
                "webhook_sent",
                extra={"url": url, "webhook_event": event.get("event"), "status_code": response.status_code},
            )
            return DeliveryResult(delivered=True, timestamp=timestamp, status_code=response.status_code)

        logger.error(
            "webhook_rejected",
            extra={"url": url, "webhook_event": event.get("event"), "status_code": response.status_code},
        )
        return DeliveryResult(
            delivered=False,
            timestamp=timestamp,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )

    async def aclose(self) -> None:
        await self._client.aclose()
