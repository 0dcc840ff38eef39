from __future__ import annotations

from invoiceflow.documents.base import DocumentLoader, DocumentPayload


class MockDocumentLoader(DocumentLoader):
    async def load(self, file_path: str) -> DocumentPayload:
        # Fixed invoice text for development/testing
        return DocumentPayload(
            kind="text",
            content=(
                "INVOICE\nVendor: Acme Corp\nInvoice #: INV-2024-001\nDate: 2024-01-15\n\n"
                "Line Items:\nWidget x2 @ 50.00 = 100.00\nGadget x1 @ 200.00 = 200.00\n"
                "Subtotal: 300.00\nTax (18%): 54.00\nTotal: 354.00"
            ),
            mime_type="text/plain",
        )
