"""
Video Creative Breakdown - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from routers import (
    health,
    analysis,
)
from services.pipeline import build_pipeline


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    configure_logging(settings.LOG_LEVEL)
    print("🚀 Starting Video Creative Breakdown API...")
    if getattr(app.state, "pipeline", None) is None:
        try:
            app.state.pipeline = build_pipeline(settings)
            print("🎬 Analysis pipeline ready.")
        except ValueError as exc:
            print(f"⚠️ Analysis pipeline not configured: {exc}")
    yield
    # Shutdown
    print("👋 Shutting down API...")


app = FastAPI(
    title="Video Creative Breakdown API",
    description="Break a short-form social video down into shots, style and creative insights",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Video Creative Breakdown API",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT, log_level=settings.LOG_LEVEL.lower())
