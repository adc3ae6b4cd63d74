"""Webphone - FastAPI Application Entry Point.

Composition root: builds the session registry, state machine, optional ARI
client and relay router, and exposes them over HTTP and WebSocket.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from webphone import __version__
from webphone.api.routes import health
from webphone.api.routes import sessions
from webphone.config.settings import get_settings
from webphone.observability.logging import get_logger, init_logging
from webphone.observability.metrics import set_build_info
from webphone.signaling.directory import InMemoryDirectory
from webphone.signaling.router import RelayRouter
from webphone.signaling.session import SessionRegistry
from webphone.signaling.state_machine import SignalingStateMachine
from webphone.telephony.ari_client import AriClient, create_ari_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown of components.
    """
    settings = get_settings()
    init_logging(
        json_format=settings.environment == "production",
        level=settings.log_level,
    )
    logger.info(
        "webphone_starting",
        version=__version__,
        environment=settings.environment,
        port=settings.api_port,
        telephony_enabled=settings.telephony_enabled,
    )

    telephony: AriClient | None = None
    try:
        if settings.metrics_enabled:
            set_build_info(__version__, settings.environment)

        registry = SessionRegistry(max_sessions=settings.max_sessions)
        machine = SignalingStateMachine(
            max_protocol_violations=settings.max_protocol_violations
        )
        health.set_component_health("session_registry", True)

        if settings.telephony_enabled:
            telephony = create_ari_client()
            await telephony.start()
            health.set_component_health("telephony", True, critical=True)
            logger.info("telephony_initialized", base_url=settings.ari_base_url)

        app.state.relay = RelayRouter(
            registry,
            machine,
            telephony=telephony,
            directory=InMemoryDirectory(),
            endpoint_ref=settings.ari_endpoint,
            auto_pair=settings.auto_pair,
        )
        health.set_component_health("relay_router", True)

        health.set_ready(True)
        logger.info("webphone_ready", components=health.get_component_health())

    except Exception as e:
        logger.error("webphone_startup_failed", error=str(e))
        if telephony is not None:
            await telephony.stop()
        raise

    yield  # Application runs here

    logger.info("webphone_shutting_down")
    health.set_ready(False)

    ended_count = await app.state.relay.shutdown()
    logger.info("sessions_ended", count=ended_count)

    if telephony is not None:
        await telephony.stop()
        logger.info("telephony_closed")

    health.reset_health()
    logger.info("webphone_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Webphone",
        description="WebRTC call-signaling relay with an Asterisk ARI bridge",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(sessions.router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "webphone.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=settings.environment == "development",
    )
