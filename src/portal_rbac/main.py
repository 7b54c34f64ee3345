"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from portal_rbac import __version__
from portal_rbac.core.config import get_settings
from portal_rbac.core.database import dispose_engine, init_engine
from portal_rbac.core.errors import InternalError, RbacError
from portal_rbac.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle: init engine on startup, dispose on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)
    logger.info(f"portal-rbac {__version__} started ({settings.environment})")

    yield

    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Portal RBAC",
        description="Role assignment with hierarchy enforcement and an append-only audit trail",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(RbacError)
    async def rbac_error_handler(request: Request, exc: RbacError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]} for err in exc.errors()
        ]
        detail = "; ".join(f"{'.'.join(e['loc'])}: {e['msg']}" for e in errors)
        return JSONResponse(
            status_code=400,
            content={"detail": detail or "Invalid request", "code": "ValidationError", "errors": errors},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "code": "ValidationError"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error = InternalError("Internal server error")
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    from portal_rbac.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
