"""App Maker orchestrator service: FastAPI app hosting the WebSocket hub."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import time
import uuid

from fastapi import FastAPI, Request
import structlog
import uvicorn

from app_maker.config import get_settings
from app_maker.container import Container
from app_maker.logging import clear_context, set_correlation_id, setup_logging
from app_maker.ws import create_ws_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the container, mount its WebSocket routes and run its workers."""
    settings = get_settings()
    setup_logging(
        service_name=settings.service_name,
        log_format=settings.log_format,
        log_level=settings.log_level,
    )

    container = await Container.create(settings)
    app.state.container = container
    app.include_router(create_ws_router(container.hub))
    await container.start()
    logger.info("service_started", host=settings.host, port=settings.port)
    try:
        yield
    finally:
        await container.stop()
        logger.info("service_stopped")


app = FastAPI(
    title="App Maker Orchestrator",
    description="Drives projects through the agent development pipeline",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID", f"req_{uuid.uuid4().hex[:8]}")
    set_correlation_id(correlation_id)
    structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)

    start = time.time()
    try:
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000
        if response.status_code >= 500:  # noqa: PLR2004
            logger.error(
                "http_request_failed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
        else:
            logger.info(
                "http_request", status_code=response.status_code, duration_ms=round(duration_ms, 2)
            )
        return response
    except Exception as e:
        logger.error(
            "http_request_exception",
            error=str(e),
            error_type=type(e).__name__,
            duration_ms=round((time.time() - start) * 1000, 2),
            exc_info=True,
        )
        raise
    finally:
        clear_context()


@app.get("/health")
async def health(request: Request):
    container: Container = request.app.state.container
    return {"status": "ok", "websocket": await container.hub.get_stats()}


def run() -> None:
    settings = get_settings()
    uvicorn.run("app_maker.main:app", host=settings.host, port=settings.port)
