"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kmsgate import __version__
from kmsgate.config import get_settings
from kmsgate.errors import GatewayError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    yield
    # Shutdown
    from kmsgate.services.signing_service import get_existing_signing_service

    service = get_existing_signing_service()
    if service is not None:
        await service.custody.close()


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render pipeline errors as structured JSON."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are client errors."""
    return JSONResponse(
        status_code=400,
        content={"error": "InvalidRequest", "detail": "Invalid request", "errors": exc.errors()},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="kmsgate API",
        description="Custodial EVM transaction signing backed by AWS KMS",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type"],
    )

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Register routes
    from kmsgate.api.routers import sign, wallets
    from kmsgate.api.routes import health

    app.include_router(health.router, tags=["Health"])
    app.include_router(wallets.router, tags=["Wallets"])
    app.include_router(sign.router, tags=["Signing"])

    return app
