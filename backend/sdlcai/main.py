"""SDLC AI orchestrator — FastAPI application entry point.

Mounts the pipeline API, configures CORS and logging, and on shutdown drains
the event bus and closes the shared agent-service client.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sdlcai import __version__
from sdlcai.api.router import api_router
from sdlcai.config import get_settings
from sdlcai.services.agent_client import close_client
from sdlcai.services.pipeline_controller import get_controller

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: prepare directories on startup, close the event bus and client on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    logger.info("Agent service: %s", settings.AGENT_SERVICE_URL)
    logger.info("Default agents: %s", ", ".join(settings.default_agent_sequence))

    os.makedirs(settings.REVIEW_DIR, exist_ok=True)
    os.makedirs(settings.AUDIT_DIR, exist_ok=True)

    yield

    await get_controller().bus.close()
    await close_client()
    logger.info("%s shut down", settings.APP_NAME)


app = FastAPI(
    title="SDLC AI Orchestrator API",
    description="Sequential agent pipeline with a human review checkpoint after every agent",
    version=__version__,
    lifespan=lifespan,
    redirect_slashes=False,
)

# CORS — allow the presentation layer (configurable via CORS_ORIGINS env)
_cors_origins = os.environ.get(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
).split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "service": settings.APP_NAME,
        "status": "running",
        "agent_service": settings.AGENT_SERVICE_URL,
    }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "sdlcai.main:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8100")),
        reload=settings.DEBUG,
    )
