"""
Peer Call Backend - Main Application

This is the entry point for the local FastAPI application.
It handles:
- REST endpoints the call UI uses to place, answer and end calls
- Redis connection lifecycle for the signaling channel
- Optional Prometheus metrics server
"""
from contextlib import asynccontextmanager
import logging
from datetime import datetime, UTC

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from peercall import __version__
from peercall.api import router as api_router
from peercall.api.deps import shutdown_call_controller
from peercall.config.redis import get_redis, close_redis
from peercall.config.settings import settings
from peercall.services.metrics import start_metrics_server

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # === STARTUP ===
    logger.info("🚀 Starting Peer Call Backend...")

    await get_redis()
    logger.info("✅ Redis connected")

    if settings.METRICS_ENABLED:
        start_metrics_server(port=settings.METRICS_PORT)

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("🛑 Shutting down...")
    await shutdown_call_controller()
    await close_redis()


app = FastAPI(
    title="Peer Call Backend",
    description="Peer-to-peer video call negotiation over a shared call record",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Peer Call",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "peercall.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
