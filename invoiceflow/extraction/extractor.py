"""Vision-LLM extraction for invoice documents.

Sends the document (text, image or PDF) to an OpenAI chat model with a fixed
JSON schema and decodes the answer into a ``CandidateRecord``.

Failures are classified into ``ExtractionError`` kinds:

    AuthFailure  missing/placeholder key or 401/403 → synthetic candidate
    RateLimited  429                                 → caller retries
    Transient    timeouts, connection and 5xx errors → caller retries
    Malformed    answer is not the expected JSON     → not retried

Config:
    OPENAI_API_KEY=...      # unset → synthetic candidates
    OPENAI_MODEL=gpt-4o
"""
from __future__ import annotations

import json
import logging
import random
import time

import openai
from pydantic import ValidationError

from invoiceflow.core.errors import ExtractionError, ExtractionErrorKind
from invoiceflow.documents.base import DocumentPayload
from invoiceflow.extraction.schema import REQUIRED_KEYS, CandidateRecord
from invoiceflow.extraction.synthetic import generate_candidate

logger = logging.getLogger(__name__)

_PLACEHOLDER_KEYS = {"", "your_openai_api_key_here"}


# ---------------------------------------------------------------------------
# Extraction prompt
# ---------------------------------------------------------------------------

_EXTRACTION_SYSTEM_PROMPT = """\
You are an expert invoice data extraction system. Analyze the provided invoice
and extract all relevant information with high accuracy.

Return a JSON object with exactly this structure:
{
  "vendorName": "string", "vendorAddress": "string",
  "vendorEmail": "string", "vendorPhone": "string",
  "invoiceNumber": "string", "invoiceDate": "YYYY-MM-DD",
  "dueDate": "YYYY-MM-DD", "purchaseOrderNumber": "string",
  "customerName": "string", "customerAddress": "string",
  "lineItems": [
    {"description": "string", "quantity": number, "unitPrice": number,
     "amount": number, "confidence": number (0-1)}
  ],
  "subtotal": number, "taxRate": number, "taxAmount": number,
  "discountAmount": number, "shippingAmount": number, "totalAmount": number,
  "currency": "ISO 4217 code",
  "paymentTerms": "string", "paymentMethod": "string", "bankDetails": "string",
  "confidenceScore": number (0-1),
  "anomalies": [{"field": "string", "message": "string", "severity": "low|medium|high"}],
  "notes": "string"
}

Guidelines:
- Always include every key; use null for values that cannot be found.
- Monetary values are plain numbers without currency symbols or separators.
- taxRate is a percentage (18 means 18%).
- Dates are ISO 8601 (YYYY-MM-DD).
- Do not correct arithmetic; if amounts don't add up, report an anomaly.
- Confidence: 1.0 = certain, 0.8 = likely, 0.6 = possible, below 0.5 = uncertain.

Respond ONLY with valid JSON. No explanation, no markdown fences.
"""


def build_messages(document: DocumentPayload) -> list[dict]:
    if document.kind == "text":
        user_content: list[dict] = [
            {"type": "text", "text": f"Extract invoice data from the following text:\n\n{document.content}"},
        ]
    elif document.kind == "image":
        user_content = [
            {"type": "text", "text": "Extract all invoice data from this image:"},
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{document.mime_type or 'image/jpeg'};base64,{document.content}",
                    "detail": "high",
                },
            },
        ]
    elif document.kind == "pdf":
        user_content = [
            {"type": "text", "text": "Extract all invoice data from this PDF document:"},
            {
                "type": "file",
                "file": {
                    "filename": "invoice.pdf",
                    "file_data": f"data:application/pdf;base64,{document.content}",
                },
            },
        ]
    else:
        raise ValueError(f"Unknown document kind={document.kind!r}")

    return [
        {"role": "system", "content": _EXTRACTION_SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_candidate(raw: str) -> CandidateRecord:
    """Decode the model's answer. Anything off-schema is ``Malformed``."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ExtractionError(ExtractionErrorKind.MALFORMED, f"Response is not JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ExtractionError(ExtractionErrorKind.MALFORMED, "Response is not a JSON object")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ExtractionError(
            ExtractionErrorKind.MALFORMED, f"Response is missing keys: {', '.join(missing)}"
        )

    try:
        return CandidateRecord.model_validate_json(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ExtractionError(ExtractionErrorKind.MALFORMED, f"Response does not match schema: {problems}") from exc


def classify_api_error(exc: openai.OpenAIError) -> ExtractionError:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ExtractionError(ExtractionErrorKind.AUTH_FAILURE, str(exc))
    if isinstance(exc, openai.RateLimitError):
        return ExtractionError(ExtractionErrorKind.RATE_LIMITED, str(exc))
    # APITimeoutError subclasses APIConnectionError
    return ExtractionError(ExtractionErrorKind.TRANSIENT, str(exc))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ExtractionClient:
    """Extract a ``CandidateRecord`` from a document payload."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gpt-4o",
        max_tokens: int = 4096,
        temperature: float = 0.1,
        timeout_s: float = 60.0,
        rng: random.Random | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_s = timeout_s
        self._rng = rng or random.Random()
        self._client: openai.AsyncOpenAI | None = None

    @property
    def has_credentials(self) -> bool:
        return (self._api_key or "").strip() not in _PLACEHOLDER_KEYS

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            # max_retries=0: retrying is the orchestrator's job
            self._client = openai.AsyncOpenAI(
                api_key=self._api_key, timeout=self._timeout_s, max_retries=0
            )
        return self._client

    async def extract(self, document: DocumentPayload) -> CandidateRecord:
        try:
            return await self._extract(document)
        except ExtractionError as exc:
            if exc.kind is not ExtractionErrorKind.AUTH_FAILURE:
                raise
            logger.warning("extraction_auth_failed_using_synthetic", extra={"error": exc.message})
            return generate_candidate(self._rng)

    async def _extract(self, document: DocumentPayload) -> CandidateRecord:
        if not self.has_credentials:
            raise ExtractionError(ExtractionErrorKind.AUTH_FAILURE, "OpenAI API key is not configured")

        t0 = time.monotonic()
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=build_messages(document),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            raise classify_api_error(exc) from exc

        if not response.choices:
            raise ExtractionError(ExtractionErrorKind.MALFORMED, "Response has no choices")
        raw = response.choices[0].message.content or ""
        candidate = decode_candidate(raw)

        logger.info(
            "llm_extraction_complete",
            extra={
                "duration_ms": int((time.monotonic() - t0) * 1000),
                "tokens": response.usage.total_tokens if response.usage else None,
                "line_items": len(candidate.line_items),
            },
        )
        return candidate
