"""FastAPI application factory and lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hookrelay import __version__
from hookrelay.config import settings
from hookrelay.db.engine import create_db_engine, create_session_factory, create_tables
from hookrelay.events.publisher import create_publisher
from hookrelay.logging_config import configure_logging
from hookrelay.webhooks.config import WebhookConfig
from hookrelay.webhooks.pipeline import build_pipeline

# Configure logging at import time
configure_logging(log_level=settings.log_level, json_output=settings.json_logs and not settings.local_mode)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    db_url = settings.effective_database_url
    engine = create_db_engine(db_url)

    if settings.auto_create_tables:
        await create_tables(engine)
        logger.info("Database tables ensured")

    session_factory = create_session_factory(engine)
    publisher = create_publisher(
        settings.effective_publisher_backend,
        settings.redis_url,
        settings.publisher_stream_prefix,
    )
    await publisher.init()

    config = WebhookConfig.from_settings(settings)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.publisher = publisher
    app.state.pipeline = build_pipeline(session_factory, config, publisher)

    logger.info(
        "hookrelay started (db=%s, publisher=%s)",
        "sqlite" if "sqlite" in db_url else "postgresql",
        settings.effective_publisher_backend,
    )
    yield

    # Shutdown
    await publisher.shutdown()
    await engine.dispose()
    logger.info("hookrelay shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="hookrelay",
        version=__version__,
        description="Signed webhook ingestion with durable delivery records and bounded retry.",
        lifespan=lifespan,
    )

    from hookrelay.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    from hookrelay.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from hookrelay.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
