from __future__ import annotations
"""Master API router — mounts all sub-routers."""

from fastapi import APIRouter

from sdlcai.api.pipeline import router as pipeline_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(pipeline_router, prefix="/pipeline", tags=["Pipeline"])
