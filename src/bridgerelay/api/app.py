"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bridgerelay.config import get_settings
from bridgerelay.errors import InvalidOwnerError, RegistryError
from bridgerelay.ledger.database import close_db, init_db
from bridgerelay.registry import AddressRegistry, get_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await close_db()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(registry: Optional[AddressRegistry] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Bridge Relayer API",
        description="Deposit address and status API for the bridge relayer",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.registry = registry or get_registry(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request parameters")

    @app.exception_handler(InvalidOwnerError)
    async def invalid_owner_handler(request: Request, exc: InvalidOwnerError):
        return _error(400, str(exc))

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        logger.error(f"Registry error on {request.url.path}: {exc}")
        return _error(500, "Address registry unavailable")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return _error(500, "Internal error")

    # Register routes
    from bridgerelay.api.routes import deposits, health

    app.include_router(health.router, tags=["Health"])
    app.include_router(deposits.router, tags=["Deposits"])

    return app
