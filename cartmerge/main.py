from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cartmerge.api.v1.carts import router as carts_router
from cartmerge.config import Settings
from cartmerge.log import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure storage dirs exist so repos can write
    settings = Settings()
    os.makedirs(settings.data_dir, exist_ok=True)
    os.makedirs(settings.orders_dir, exist_ok=True)
    logger.info("Cart consolidation API ready (orders in %s)", settings.orders_dir)
    yield


def create_app() -> FastAPI:
    settings = Settings()
    setup_logging(settings.log_level)
    app = FastAPI(title="Cart Consolidation API", version="1.0", lifespan=lifespan)

    # CORS (narrow it down in .env via CORS_ALLOW_ORIGINS if you want)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(carts_router)

    if settings.enable_tracing:
        from cartmerge.telemetry import setup_telemetry
        setup_telemetry(app, settings)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz():
        return {"status": "ready"}

    return app

app = create_app()
