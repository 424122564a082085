"""FastAPI application wiring for the chatcrm messaging pipeline.

``create_app`` assembles the pipeline from configuration:

- Configures logging and Prometheus metrics.
- Builds the database session factory, the tenant routing index and its
  refresher, outbound transports and the optional delegated generator.
- Mounts the provider webhook routes plus health and version probes.

Run with ``uvicorn chatcrm.main:create_app --factory``. Collaborators can be
injected for tests (an in-memory session factory, dry-run transports, a fake
generator).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session, sessionmaker

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .delivery.credentials import CredentialRegistry
from .delivery.transports import TransportFactory
from .documents import DocumentNotifier
from .models.session import create_schema, get_engine, get_sessionmaker
from .pipeline.dispatcher import ConversationDispatcher
from .pipeline.orchestrator import InboundPipeline
from .responders.delegated import DelegatedGenerator, build_delegated_generator
from .routers import webhooks
from .settings import Settings, load_settings
from .tenants.resolver import RoutingIndexRefresher, TenantResolver

load_dotenv()

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    credentials: CredentialRegistry | None = None,
    transports: TransportFactory | None = None,
    generator: DelegatedGenerator | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    if session_factory is None:
        engine = get_engine(
            settings.database_url,
            statement_timeout_ms=settings.db_statement_timeout_ms,
            pool_pre_ping=True,
        )
        create_schema(engine)
        session_factory = get_sessionmaker(engine=engine)

    resolver = TenantResolver.from_sessionmaker(
        session_factory, default_account_id=settings.default_channel_account_id
    )
    refresher = RoutingIndexRefresher(resolver, settings.routing_refresh_seconds)
    credentials = credentials or CredentialRegistry()
    transports = transports or TransportFactory(
        credentials,
        resolver=resolver,
        dry_run=settings.dry_run,
        timeout=settings.transport_timeout_seconds,
    )
    if generator is None:
        generator = build_delegated_generator(settings)
    delegated_executor = (
        ThreadPoolExecutor(
            max_workers=settings.processing_workers, thread_name_prefix="delegated"
        )
        if generator is not None
        else None
    )
    document_notifier = DocumentNotifier(settings.document_service_url)
    dispatcher = ConversationDispatcher(
        settings.processing_workers, inline=settings.inline_processing
    )
    pipeline = InboundPipeline(
        session_factory,
        resolver,
        transports,
        settings=settings,
        generator=generator,
        delegated_executor=delegated_executor,
        document_notifier=document_notifier,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        refresher.start()
        logger.info(
            "chatcrm %s started (processing=%s, outbound=%s)",
            __version__,
            settings.processing_mode,
            settings.outbound_mode,
        )
        try:
            yield
        finally:
            refresher.stop()
            dispatcher.shutdown(wait_for_jobs=True)
            if delegated_executor is not None:
                delegated_executor.shutdown(wait=False)
            document_notifier.shutdown()

    app = FastAPI(title="chatcrm", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.settings = settings
    app.state.resolver = resolver
    app.state.credentials = credentials
    app.state.transports = transports
    app.state.pipeline = pipeline
    app.state.dispatcher = dispatcher
    app.include_router(webhooks.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


__all__ = ["create_app"]
