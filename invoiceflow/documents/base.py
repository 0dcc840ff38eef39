from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

DocumentKind = Literal["text", "image", "pdf"]


@dataclass(frozen=True)
class DocumentPayload:
    kind: DocumentKind
    content: str  # raw text, or base64 for image / pdf
    mime_type: str | None = None
    page_count: int | None = None


class DocumentLoader:
    async def load(self, file_path: str) -> DocumentPayload:
        raise NotImplementedError
