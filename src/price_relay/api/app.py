"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from price_relay.api.deps import AppState, api_key_middleware
from price_relay.api.routes import router
from price_relay.api.schemas import ErrorResponse, ProvidersFailedResponse
from price_relay.core.config import RelayConfig, load_config
from price_relay.core.exceptions import (
    AllProvidersFailedError,
    ConfigError,
    PriceRelayError,
    UnknownProviderError,
)
from price_relay.feed.adapter import PriceAdapter, create_price_adapter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    adapter = app.state._pending_adapter or create_price_adapter(config)
    adapter.start()

    app.state.app_state = AppState(config=config, adapter=adapter)

    yield

    await adapter.aclose()


def create_app(
    config: RelayConfig | None = None,
    adapter: PriceAdapter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``adapter`` overrides the one normally built from ``config`` (tests
    inject adapters over scripted providers this way).
    """
    import price_relay

    app = FastAPI(
        title="price-relay API",
        description="Market quotes with multi-provider failover",
        version=price_relay.__version__,
        lifespan=lifespan,
    )

    # Stash config and adapter so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_adapter = adapter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API key check; a no-op unless api.api_key is set in the loaded config
    app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(AllProvidersFailedError)
    async def providers_failed_handler(request: Request, exc: AllProvidersFailedError):
        body = ProvidersFailedResponse(
            error=type(exc).__name__,
            detail=str(exc),
            symbol=exc.symbol,
            tried=list(exc.failures),
            failures=exc.failures,
        )
        return JSONResponse(status_code=503, content=body.model_dump())

    @app.exception_handler(PriceRelayError)
    async def relay_exception_handler(request: Request, exc: PriceRelayError):
        status_map = {
            ConfigError: 400,
            UnknownProviderError: 400,
        }
        status = status_map.get(type(exc), 500)
        if status == 500:
            logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
        body = ErrorResponse(error=type(exc).__name__, detail=str(exc))
        return JSONResponse(status_code=status, content=body.model_dump())

    return app
