"""
FastAPI application entry point.

Domain errors raised by the pipeline are translated to HTTP responses here;
routes only catch errors that need a side effect before responding.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from regmatrix import __version__
from regmatrix.config import get_settings
from regmatrix.exceptions import (
    DecodeError,
    InputValidationError,
    NotFoundError,
    ProviderError,
    RegMatrixError,
)
from regmatrix.logging_config import configure_logging

logger = structlog.get_logger(__name__)

# First match wins, so subclasses must precede their bases
ERROR_STATUS_CODES: tuple[tuple[type[RegMatrixError], int], ...] = (
    (NotFoundError, 404),
    (InputValidationError, 400),
    (ProviderError, 502),
    (DecodeError, 502),
)


def status_code_for(exc: RegMatrixError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)
    logger.info(
        "api_starting",
        environment=settings.environment,
        model=settings.llm_model,
        batch_expiry_hours=settings.batch_expiry_hours,
    )

    yield

    from regmatrix.storage.store import get_compliance_store

    await get_compliance_store().close()
    logger.info("api_stopped")


def create_app() -> FastAPI:
    """Build the API with its routers and error translation."""
    settings = get_settings()

    app = FastAPI(
        title="RegMatrix API",
        description="Regulatory obligation matching and T&Cs compliance analysis",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else settings.cors_origins,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["*"],
    )

    @app.exception_handler(RegMatrixError)
    async def domain_error_handler(request: Request, exc: RegMatrixError) -> JSONResponse:
        status_code = status_code_for(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            "request_failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            status_code=status_code,
            error=str(exc),
        )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", path=request.url.path, method=request.method)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.debug else "Internal server error",
            },
        )

    from regmatrix.api.routes import batch, products

    app.include_router(batch.router, prefix="/api/v1/batch", tags=["batch"])
    app.include_router(products.router, prefix="/api/v1/products", tags=["products"])

    @app.get("/health")
    async def health_check() -> dict:
        from regmatrix.storage.store import get_compliance_store

        store = get_compliance_store()
        database = await store.health_check()
        outstanding = len(await store.list_active_batch_jobs()) if database else None
        return {
            "status": "healthy" if database else "degraded",
            "services": {
                "database": database,
                "llm": bool(settings.anthropic_api_key),
            },
            "outstandingBatchJobs": outstanding,
        }

    @app.get("/")
    async def root() -> dict:
        return {"name": "RegMatrix API", "version": __version__}

    return app


app = create_app()
