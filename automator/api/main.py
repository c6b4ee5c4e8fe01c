"""
Automator API

FastAPI application controlling the batch run and exposing standalone
watermark removal.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from rich.logging import RichHandler

from ..service import AutomatorService
from .routes import health_router, jobs_router, watermark_router

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[], AsyncContextManager[Optional[AutomatorService]]]


@asynccontextmanager
async def browser_service() -> AsyncIterator[Optional[AutomatorService]]:
    """Open the browser session and wire the automation service on it."""
    from ..remote.browser import BrowserSession
    from ..service import build_service

    async with AsyncExitStack() as stack:
        try:
            adapter = await stack.enter_async_context(BrowserSession())
        except Exception as e:
            logger.error(f"Could not open browser session: {e}")
            adapter = None

        if adapter is None:
            yield None
            return

        service = build_service(adapter, feed=adapter)
        stack.push_async_callback(service.aclose)
        yield service


def create_app(service_factory: ServiceFactory = browser_service) -> FastAPI:
    """Build the app; `service_factory` provides the automation service for its lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting Automator API...")
        async with service_factory() as service:
            app.state.service = service
            if service is not None:
                logger.info("Automation service ready")
            yield
            logger.info("Shutting down Automator API...")
            app.state.service = None

    app = FastAPI(
        title="Gemini Automator",
        description="Batch prompt automation and watermark removal",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.include_router(health_router)
    app.include_router(jobs_router, prefix="/api")
    app.include_router(watermark_router, prefix="/api")

    # Prometheus metrics endpoint
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": app.title,
            "docs": "/docs",
            "health": "/health",
        }

    return app


logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)

app = create_app()
