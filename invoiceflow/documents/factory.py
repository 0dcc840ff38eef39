from __future__ import annotations

from invoiceflow.documents.base import DocumentLoader
from invoiceflow.documents.loaders import FileDocumentLoader
from invoiceflow.documents.mock_loader import MockDocumentLoader


def get_document_loader(name: str) -> DocumentLoader:
    """Return the configured document loader.

    DOCUMENT_LOADER options:
        file  - read the stored upload (pdfminer.six for PDFs, Pillow for images)
        mock  - fixed invoice text (dev/test, no file needed)
    """
    loader = name.lower().strip()

    if loader == "file":
        return FileDocumentLoader()

    if loader == "mock":
        return MockDocumentLoader()

    raise ValueError(f"Unknown DOCUMENT_LOADER={name!r}")
