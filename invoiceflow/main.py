from __future__ import annotations

import logging
import random

from fastapi import FastAPI

from invoiceflow.api.routes import router
from invoiceflow.core.config import settings
from invoiceflow.core.logging import configure_logging
from invoiceflow.db.init_db import init_db
from invoiceflow.db.repository import SqlInvoiceRepository
from invoiceflow.db.session import SessionLocal
from invoiceflow.documents.factory import get_document_loader
from invoiceflow.export.exporter import InvoiceExporter
from invoiceflow.extraction.extractor import ExtractionClient
from invoiceflow.notifications.webhook import WebhookDispatcher
from invoiceflow.pipeline.orchestrator import ProcessingOrchestrator
from invoiceflow.pipeline.pipeline import ProcessingPipeline
from invoiceflow.validation.validator import Validator

logger = logging.getLogger(__name__)


def build_components(app: FastAPI) -> None:
    """Wire the processing stack from settings and attach it to ``app.state``."""
    repository = SqlInvoiceRepository(SessionLocal)
    validator = Validator()
    dispatcher = WebhookDispatcher(settings.webhook_secret, timeout_s=settings.webhook_timeout_s)
    extractor = ExtractionClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        max_tokens=settings.openai_max_tokens,
        temperature=settings.openai_temperature,
        timeout_s=settings.openai_timeout_s,
        rng=random.Random(),
    )
    pipeline = ProcessingPipeline(
        repository=repository,
        document_loader=get_document_loader(settings.document_loader),
        extractor=extractor,
        validator=validator,
        dispatcher=dispatcher,
        retry_attempts=settings.retry_attempts,
        retry_delay_s=settings.retry_delay_ms / 1000,
        attempt_timeout_s=settings.processing_timeout_ms / 1000,
    )

    app.state.repository = repository
    app.state.validator = validator
    app.state.dispatcher = dispatcher
    app.state.exporter = InvoiceExporter(settings.export_dir)
    app.state.orchestrator = ProcessingOrchestrator(
        repository=repository,
        pipeline=pipeline,
        max_concurrent=settings.max_concurrent_processing,
    )


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="InvoiceFlow", version="0.1.0")
    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "message": "InvoiceFlow invoice processing API",
            "docs": "/docs",
            "health": "/health",
        }

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info("startup", extra={"app_env": settings.app_env})
        await init_db()
        build_components(app)
        await app.state.orchestrator.recover_pending()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.orchestrator.shutdown()
        await app.state.dispatcher.aclose()
        logger.info("shutdown")

    return app


app = create_app()
