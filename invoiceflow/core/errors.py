from __future__ import annotations

from enum import Enum


class ExtractionErrorKind(str, Enum):
    AUTH_FAILURE = "AuthFailure"
    RATE_LIMITED = "RateLimited"
    TRANSIENT = "Transient"
    MALFORMED = "Malformed"


class ExtractionError(Exception):
    """Raised by the extraction client. Only rate limits and transient errors are retried."""

    def __init__(self, kind: ExtractionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.kind in (ExtractionErrorKind.RATE_LIMITED, ExtractionErrorKind.TRANSIENT)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class PersistenceError(RuntimeError):
    pass


class JobNotFoundError(LookupError):
    pass


class InvalidTransitionError(ValueError):
    pass


class UnsupportedDocumentError(ValueError):
    pass
