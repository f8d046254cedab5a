"""
Main FastAPI application (entrypoint).

Responsibilities:
- Build the pipeline container (stores, eligibility client, push transport, processors)
- Wire API routers (notifications, scheduler triggers, push subscriptions)
- Register centralized exception handlers
- Provide middleware: request-id logging
- Add health endpoint

Run with: uvicorn main:app --host 0.0.0.0 --port 8000
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import routes_notifications, routes_push, routes_scheduler
from config.settings import settings
from core.container import Container, build_container
from core.db import get_session_factory
from core.exception_handlers import register_exception_handlers
from core.logging import configure_logging, request_logging_middleware
from core.response import ok

logger = logging.getLogger(__name__)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Build the app. Tests pass a prebuilt container; otherwise one is built on
    startup from settings and the process-wide DB session factory.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container(settings, get_session_factory())
            logger.info("Pipeline container built (push=%s)", app.state.container.dispatcher.transport is not None)
        yield

    app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION, lifespan=lifespan)
    app.state.container = container

    # CORS - adjust origins for production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_notifications.router, prefix="/notifications", tags=["notifications"])
    app.include_router(routes_scheduler.router, prefix="/notifications", tags=["scheduler"])
    app.include_router(routes_push.router, prefix="/push", tags=["push"])

    register_exception_handlers(app)
    app.middleware("http")(request_logging_middleware)

    @app.get("/health")
    async def health():
        """Simple health endpoint used by load balancers and orchestrators."""
        return ok({"status": "ok"})

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()

if __name__ == "__main__":
    # Run with: python main.py for local dev. For production use uvicorn/gunicorn with workers.
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
