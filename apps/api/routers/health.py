"""
Health check endpoints.
"""

import shutil

import yt_dlp
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from config import settings

router = APIRouter()


def _tool_status() -> dict:
    return {
        "ffmpeg": "up" if shutil.which("ffmpeg") else "missing",
        "yt_dlp": getattr(getattr(yt_dlp, "version", None), "__version__", "unknown"),
        "openai_api_key": "configured" if settings.OPENAI_API_KEY else "missing",
    }


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {"status": "healthy", "api": "up", **_tool_status()}
    if health_status["ffmpeg"] != "up" or health_status["openai_api_key"] != "configured":
        health_status["status"] = "degraded"
    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    missing = []
    if not settings.OPENAI_API_KEY:
        missing.append("OPENAI_API_KEY")
    if not shutil.which("ffmpeg"):
        missing.append("ffmpeg")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
