"""DeviceLink Server - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from devicelink.config import settings
from devicelink.database import engine, init_db
from devicelink.services.sweeper import ExpirySweeper
from devicelink.services.token_service import ValidationCache
from devicelink.utils.logging import setup_logging

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, validation cache and expiry sweeper on startup."""
    setup_logging(settings.log_level)
    init_db()

    app.state.validation_cache = ValidationCache(settings.validation_cache_ttl_seconds)
    sweeper = ExpirySweeper(engine, settings.cleanup_interval_seconds)
    sweeper.start()
    app.state.sweeper = sweeper
    logger.info("%s %s ready", settings.server_name, VERSION)

    yield

    sweeper.stop()


app = FastAPI(
    title="DeviceLink",
    description="Device pairing and rotating bearer-token authentication",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Register API routers ---
from devicelink.api.pairing import router as pairing_router  # noqa: E402
from devicelink.api.devices import router as devices_router  # noqa: E402
from devicelink.api.system import router as system_router  # noqa: E402

API_PREFIX = "/api/v1"

app.include_router(pairing_router, prefix=API_PREFIX)
app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(system_router, prefix=API_PREFIX)


@app.get("/")
def root():
    """Server info."""
    return {
        "name": settings.server_name,
        "version": VERSION,
        "status": "running",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("devicelink.main:app", host=settings.host, port=settings.port)
