############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# main.py: FastAPI application entry point and configuration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""FastAPI application entry point."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api import api_router
from backend.app.db.session import engine
from backend.app.errors import ToolGateError
from backend.app.logging_config import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from backend.app.settings import get_settings

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info("toolgate_starting", version=settings.app_version, environment=settings.environment)

    yield

    logger.info("toolgate_shutting_down")
    await engine.dispose()
    logger.info("toolgate_shutdown_complete")


class RequestIDMiddleware:
    """Tag every HTTP exchange with an ``X-Request-ID``.

    Plain ASGI rather than ``BaseHTTPMiddleware``: the endpoint runs in the
    caller's task, so a client disconnect cannot cancel a tool request
    between its processor and its usage record.
    """

    header = b"x-request-id"

    def __init__(self, app):
        self.app = app

    def _incoming_id(self, scope) -> str:
        for name, value in scope.get("headers", []):
            if name == self.header and value:
                return value.decode("latin-1")
        return str(uuid.uuid4())

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = self._incoming_id(scope)
        bind_request_context(request_id=request_id, path=scope.get("path"))

        async def send_with_id(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((self.header, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            clear_request_context()


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": ..., "code": ...}``."""

    @app.exception_handler(ToolGateError)
    async def toolgate_error_handler(request: Request, exc: ToolGateError):
        if exc.status_code >= 500:
            logger.warning("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message, "code": "validation_error"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": "server_error"},
        )


def create_app() -> FastAPI:
    """Build the toolgate application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Usage metering and AI provider failover for AI website tools",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
    )

    # Credentials are required for the guest and user session cookies
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)
    app.include_router(api_router)

    return app


# Create application instance
app = create_app()


def main():
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "backend.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
