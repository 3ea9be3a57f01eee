"""
Exchange router API

create_app() builds the FastAPI application around a ServiceContainer.
The container is created from Settings when none is passed, started in the
lifespan handler and shut down when the application stops.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from api.exception_handlers import setup_exception_handlers
from api.route_router import router as route_router
from config import Settings, get_settings
from services.container import ServiceContainer, build_container
from shared.logging_setup import setup_logging

logger = logging.getLogger("exchange-router")


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())
    setup_logging(settings.logging)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = app.state.container
        await services.startup()
        logger.info(f"🚀 Exchange router ready ({settings.environment}, rpc={settings.rpc.url})")
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(
        title="UUSD Exchange Router",
        description="Chooses between protocol mint/redeem and the Curve LUSD/UUSD pool",
        version="1.0.0",
        debug=settings.is_debug_enabled(),
        lifespan=lifespan,
    )
    app.state.container = container or build_container(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    setup_exception_handlers(app)
    app.include_router(route_router)
    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(create_app(_settings), host=_settings.host, port=_settings.port)
