from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import auth, health, wallet
from .config import Settings, settings as default_settings
from .container import ServiceContainer
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build (or adopt) the services, start them, and close them on shutdown."""
    services: Optional[ServiceContainer] = app.state.services
    if services is None:
        services = ServiceContainer.build(app.state.settings)
        app.state.services = services

    await services.start()
    try:
        yield
    finally:
        await services.close()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    cfg = settings or (services.settings if services else default_settings)

    app = FastAPI(
        title="Wren Wallet API",
        description="Passkey wallets, Wren airdrops and durable-nonce transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=_lifespan,
    )
    app.state.settings = cfg
    app.state.services = services

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(auth.router)
    app.include_router(wallet.router)

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Wren Wallet API",
            "version": __version__,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    setup_logging()
    uvicorn.run(
        create_app(),
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
    )
