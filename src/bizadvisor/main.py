"""
FastAPI application entry point.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bizadvisor.api.dependencies import ServiceContainer, build_container
from bizadvisor.api.router import router as advisor_router
from bizadvisor.config import get_settings
from bizadvisor.shared.exceptions import (
    BizAdvisorError,
    QueueFullError,
    SessionClosedError,
    SessionNotFoundError,
)
from bizadvisor.shared.logging import correlation_id_var, get_logger, setup_logging

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    container: ServiceContainer = app.state.container

    logger.info("Application starting", extra={"env": settings.app_env})

    await container.db.create_all()
    await container.coordinator.start()
    await container.sweeper.start()

    yield

    logger.info("Shutting down application")

    await container.sweeper.stop()
    await container.coordinator.stop()
    close = getattr(container.endpoint, "close", None)
    if close is not None:
        await close()
    await container.db.close()
    logger.info("Application shutdown complete")


def _error_body(code: str, exc: BizAdvisorError) -> dict:
    return {"detail": {"code": code, "message": str(exc), **exc.context}}


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BizAdvisor API",
        description="Context-aware dialogue for small-business guidance, offline first",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.container = container or build_container(settings)

    # Map domain exceptions to HTTP responses
    @app.exception_handler(SessionNotFoundError)
    async def _not_found(_: Request, exc: SessionNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body("SESSION_NOT_FOUND", exc))

    @app.exception_handler(SessionClosedError)
    async def _closed(_: Request, exc: SessionClosedError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_error_body("SESSION_CLOSED", exc))

    @app.exception_handler(QueueFullError)
    async def _queue_full(_: Request, exc: QueueFullError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE,
            content=_error_body("STORAGE_FULL", exc),
        )

    @app.exception_handler(BizAdvisorError)
    async def _domain_error(_: Request, exc: BizAdvisorError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body("DOMAIN_ERROR", exc))

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(advisor_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
