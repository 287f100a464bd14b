"""
Application factory for the Chow Bot API.

``create_app`` wires middleware, exception handlers and routers. The storage
backend is resolved at startup (or injected by tests) and the default menu
is seeded when the catalog is empty.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import config
from .errors import ExternalProviderError, InvalidTransition, NotFound, PersistenceError
from .menu_catalog import seed_menu
from .middleware import RequestIDMiddleware
from .routes import chat_router, limiter, menu_router, orders_router, payment_router
from .storage import get_storage, set_storage
from .storage.base import StorageBackend

logger = logging.getLogger(__name__)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"status": False, "message": str(exc)})
    return handler


def create_app(
    storage: Optional[StorageBackend] = None,
    seed: Optional[bool] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        storage: Backend to use. If None, one is selected from configuration
                 on first use (STORAGE_BACKEND / DATABASE_URL).
        seed: Seed the default menu at startup. Defaults to SEED_MENU_ON_STARTUP.

    Returns:
        Configured FastAPI application
    """
    if storage is not None:
        set_storage(storage)
    seed_on_startup = config.SEED_MENU_ON_STARTUP if seed is None else seed

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = get_storage()
        logger.info("Storage backend: %s", active.name)
        if seed_on_startup:
            seed_menu(active)
        yield

    app = FastAPI(
        title="Chow Bot API",
        description="Conversational restaurant ordering assistant",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ORIGINS != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Configure rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(NotFound, _error_handler(404))
    app.add_exception_handler(InvalidTransition, _error_handler(400))
    app.add_exception_handler(ExternalProviderError, _error_handler(502))
    app.add_exception_handler(PersistenceError, _error_handler(503))

    api = APIRouter(prefix="/api")
    for router in (chat_router, payment_router, orders_router, menu_router):
        api.include_router(router)
    app.include_router(api)

    # Also mount at root
    for router in (chat_router, payment_router, orders_router, menu_router):
        app.include_router(router)

    @app.get("/health", tags=["Health"])
    def health_check(active: StorageBackend = Depends(get_storage)):
        return {"status": "ok", "storage": active.name}

    logger.info("Application created")
    return app
