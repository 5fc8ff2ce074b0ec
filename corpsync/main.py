from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from corpsync.config import FRONTEND_ORIGIN, LOG_LEVEL, SYNC_AUTOSTART
from corpsync.db import engine, init_models
from corpsync.api import data, health, sync, tokens
from corpsync.runtime import get_runtime

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="corpsync API")

# CORS setup
origins = [FRONTEND_ORIGIN]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Startup / shutdown hooks
# ---------------------------------------------------------------------------


@app.on_event("startup")
async def startup_event():
    """Create tables, then start the sync scheduler."""
    await init_models()
    logger.info("[Startup] Database tables ready")

    if SYNC_AUTOSTART:
        await get_runtime().start()
        logger.info("[Startup] Sync scheduler started")
    else:
        logger.info("[Startup] SYNC_AUTOSTART disabled, scheduler not started")


@app.on_event("shutdown")
async def shutdown_event():
    """Let in-flight runs finish before the engine goes away."""
    await get_runtime().stop()
    logger.info("[Shutdown] Sync scheduler stopped")

    await engine.dispose()


# Include API routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(data.router)
app.include_router(tokens.router)
