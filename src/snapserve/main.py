"""FastAPI application factory.

Learn: App factory pattern: create_app() returns a configured FastAPI
instance. The realtime hub is created right here, together with the app,
and lives on app.state.realtime; the lifespan tears it down (closing any
socket still connected) at shutdown.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snapserve import __version__
from snapserve.api import api_router
from snapserve.config import settings
from snapserve.realtime.hub import RealtimeHub

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "snapserve.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        ws_path=settings.ws_path,
    )

    from snapserve.db.engine import create_tables, engine

    if settings.create_tables_on_startup:
        await create_tables()
        logger.info("snapserve.tables_created")

    yield

    logger.info("snapserve.shutdown")
    await app.state.realtime.close()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SnapServe",
        description="QR table ordering with live order and feedback push to staff",
        version=__version__,
        lifespan=lifespan,
    )

    # One hub per app, never shared across processes
    app.state.realtime = RealtimeHub(
        trust_claims=settings.ws_trust_claimed_identity,
        send_timeout=settings.ws_send_timeout_seconds,
    )

    # ── Middleware stack ──────────────────────────────────────
    from snapserve.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from snapserve.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: snapserve.main:app)
app = create_app()
