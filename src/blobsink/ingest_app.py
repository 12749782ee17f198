from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response

from blobsink.logging_setup import configure_logging
from blobsink.orchestrator import IngestionOrchestrator
from blobsink.request_middleware import RequestCorrelationMiddleware
from blobsink.schema_engine import SchemaEngine, load_schemas
from blobsink.settings import Settings, load_settings
from blobsink.storage_client import BlobStorageClient, build_http_client
from blobsink.time_bucket import TimeBucketer

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> IngestionOrchestrator:
    """Loads schemas and wires the storage stack. Schema errors propagate and abort startup."""
    engine = None
    if settings.schemas_enabled:
        schemas = load_schemas(settings.schemas)
        logger.info("loaded %d schema(s) from %s", len(schemas), settings.schemas)
        engine = SchemaEngine(schemas)
    else:
        logger.info("schema processing disabled")

    storage = BlobStorageClient(settings, http=build_http_client(settings, transport=transport))
    return IngestionOrchestrator(
        storage=storage,
        engine=engine,
        bucketer=TimeBucketer(settings.period, settings.format),
        write_headers=settings.write_headers,
    )


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="blobsink")
    app.add_middleware(RequestCorrelationMiddleware, slow_ms=settings.slow_ms)
    app.state.settings = settings
    app.state.orchestrator = None

    @app.on_event("startup")
    async def _startup():
        app.state.orchestrator = build_orchestrator(settings, transport=transport)

    @app.on_event("shutdown")
    async def _shutdown():
        orchestrator = app.state.orchestrator
        if orchestrator is not None:
            await orchestrator.storage.aclose()

    # any content type is accepted, the body is stored verbatim
    @app.post("/")
    async def ingest(request: Request):
        body = await request.body()
        result = await app.state.orchestrator.ingest(body)
        return Response(status_code=200 if result.ok else 500)

    return app
