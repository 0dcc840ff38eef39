"""FileDocumentLoader: turns an uploaded file into a payload for the extractor.

PDFs with an extractable text layer are sent as text (pdfminer.six); scanned
PDFs are sent as base64 PDF. Images are downscaled and re-encoded as JPEG
(Pillow) before being base64-encoded.
"""
from __future__ import annotations

import asyncio
import base64
import io
import logging
from pathlib import Path

from invoiceflow.core.errors import UnsupportedDocumentError
from invoiceflow.documents.base import DocumentLoader, DocumentPayload

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {"pdf", "png", "jpg", "jpeg", "tiff"}

# Below this many characters a PDF is treated as scanned.
_MIN_TEXT_CHARS = 50
_MAX_IMAGE_SIDE = 2000


class FileDocumentLoader(DocumentLoader):
    async def load(self, file_path: str) -> DocumentPayload:
        ext = Path(file_path).suffix.lower().lstrip(".")
        if ext not in SUPPORTED_FORMATS:
            raise UnsupportedDocumentError(f"Unsupported file format: {ext or '<none>'}")

        loop = asyncio.get_running_loop()
        if ext == "pdf":
            return await loop.run_in_executor(None, self._load_pdf, file_path)
        return await loop.run_in_executor(None, self._load_image, file_path)

    def _load_pdf(self, file_path: str) -> DocumentPayload:
        from pdfminer.high_level import extract_text  # type: ignore[import]
        from pdfminer.pdfpage import PDFPage  # type: ignore[import]

        data = Path(file_path).read_bytes()
        text = extract_text(io.BytesIO(data)) or ""
        page_count = sum(1 for _ in PDFPage.get_pages(io.BytesIO(data)))

        if len(text.strip()) > _MIN_TEXT_CHARS:
            logger.info("pdf_text_layer_found", extra={"chars": len(text), "pages": page_count})
            return DocumentPayload(kind="text", content=text, mime_type="text/plain", page_count=page_count)

        logger.info("pdf_scanned_sending_binary", extra={"pages": page_count})
        return DocumentPayload(
            kind="pdf",
            content=base64.b64encode(data).decode("ascii"),
            mime_type="application/pdf",
            page_count=page_count,
        )

    def _load_image(self, file_path: str) -> DocumentPayload:
        from PIL import Image, ImageOps  # type: ignore[import]

        with Image.open(file_path) as img:
            img = ImageOps.exif_transpose(img).convert("RGB")
            img.thumbnail((_MAX_IMAGE_SIDE, _MAX_IMAGE_SIDE))
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=85)

        logger.info("image_prepared", extra={"bytes": buf.tell()})
        return DocumentPayload(
            kind="image",
            content=base64.b64encode(buf.getvalue()).decode("ascii"),
            mime_type="image/jpeg",
        )
