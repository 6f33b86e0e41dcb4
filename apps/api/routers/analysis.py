"""
Analysis router.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from multimodal.errors import AcquisitionError, AcquisitionFailure, PipelineError
from multimodal.models import VideoAnalysisReport
from multimodal.types import VideoSource
from routers.rate_limit import rate_limit
from services.pipeline import VideoAnalysisPipeline, build_pipeline
from services.progress import INITIAL_ENTRY, ProgressStore, progress_store

router = APIRouter()
logger = logging.getLogger(__name__)

REQUEST_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"
ALLOWED_VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".webm", ".avi", ".mkv"}
ALLOWED_VIDEO_MIME_PREFIXES = ("video/",)


class AnalyzeVideoRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=8, max_length=2000)
    # Netscape cookie-file text, not a path
    cookies: Optional[str] = Field(default=None, max_length=settings.MAX_COOKIES_CHARS)
    title: Optional[str] = Field(default=None, max_length=300)
    request_id: Optional[str] = Field(default=None, pattern=REQUEST_ID_PATTERN)


class EstimateDurationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=8, max_length=2000)
    cookies: Optional[str] = Field(default=None, max_length=settings.MAX_COOKIES_CHARS)


class DurationEstimateResponse(BaseModel):
    duration_seconds: float
    duration: str
    is_estimate: bool
    note: Optional[str] = None


class ProgressResponse(BaseModel):
    request_id: str
    stage: str
    percent: int
    message: str
    error: Optional[str] = None


def get_pipeline(request: Request) -> VideoAnalysisPipeline:
    """Pipeline shared by all requests; built lazily so startup works without a key."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        try:
            pipeline = build_pipeline(settings)
        except ValueError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        request.app.state.pipeline = pipeline
    return pipeline


def get_progress_store() -> ProgressStore:
    return progress_store


_ACQUISITION_RESPONSES = {
    AcquisitionFailure.INVALID_URL: (422, "The URL is not a valid http(s) video link."),
    AcquisitionFailure.NETWORK_UNREACHABLE: (
        422,
        "The video host could not be reached. Check the link and try again.",
    ),
    AcquisitionFailure.CONTENT_UNAVAILABLE: (
        422,
        "The video is private, removed, or requires login. Try a public video.",
    ),
    AcquisitionFailure.TIMEOUT: (504, "Downloading the video took too long. Try a shorter video."),
    AcquisitionFailure.DOWNLOAD_FAILED: (502, "The video could not be downloaded."),
}


def error_response(exc: PipelineError) -> Tuple[int, dict]:
    """Map a pipeline failure to an HTTP status and user-facing payload."""
    if isinstance(exc, AcquisitionError):
        status_code, message = _ACQUISITION_RESPONSES[exc.kind]
    else:
        status_code, message = 500, "Video analysis failed due to an internal error."
    return status_code, {
        "error": exc.category,
        "stage": exc.stage,
        "message": message,
    }


def format_duration(seconds: float) -> str:
    """15 -> "15s", 75 -> "1:15", 3725 -> "1:02:05"."""
    total = max(0, int(round(seconds)))
    if total < 60:
        return f"{total}s"
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _sanitize_filename(filename: str) -> str:
    base = os.path.basename(filename or "upload.mp4")
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base)
    return safe or "upload.mp4"


async def _run_analysis(
    pipeline: VideoAnalysisPipeline,
    store: ProgressStore,
    source: VideoSource,
    request_id: str,
    title: Optional[str],
) -> VideoAnalysisReport:
    store.update(request_id, "initializing", 0)
    try:
        return await pipeline.run(source, request_id, title=title, on_progress=store.tracker(request_id))
    except PipelineError as exc:
        status_code, detail = error_response(exc)
        store.fail(request_id, detail["error"], detail["message"])
        logger.warning(f"Analysis {request_id} failed: {detail['error']} at {detail['stage']}: {exc}")
        raise HTTPException(status_code=status_code, detail=detail, headers={"X-Request-ID": request_id}) from exc
    except Exception:
        store.fail(request_id, "internal_failure")
        raise


@router.post("/video", response_model=VideoAnalysisReport)
async def analyze_video(
    payload: AnalyzeVideoRequest,
    response: Response,
    _rate_limit: None = Depends(
        rate_limit("analysis_video", limit=settings.ANALYSIS_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    pipeline: VideoAnalysisPipeline = Depends(get_pipeline),
    store: ProgressStore = Depends(get_progress_store),
):
    """Download, analyze and return the creative breakdown of a social video."""
    request_id = payload.request_id or uuid.uuid4().hex
    response.headers["X-Request-ID"] = request_id
    source = VideoSource(url=payload.url.strip(), cookies=payload.cookies or None)
    return await _run_analysis(pipeline, store, source, request_id, payload.title)


@router.post("/upload", response_model=VideoAnalysisReport)
async def analyze_upload(
    response: Response,
    file: UploadFile = File(...),
    title: Optional[str] = Form(default=None, max_length=300),
    request_id: Optional[str] = Form(default=None, pattern=REQUEST_ID_PATTERN),
    _rate_limit: None = Depends(
        rate_limit("analysis_upload", limit=settings.ANALYSIS_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    pipeline: VideoAnalysisPipeline = Depends(get_pipeline),
    store: ProgressStore = Depends(get_progress_store),
):
    """Analyze a video file sent directly instead of by URL."""
    original_filename = _sanitize_filename(file.filename or "upload.mp4")
    suffix = Path(original_filename).suffix.lower()
    content_type = (file.content_type or "").lower()

    if suffix not in ALLOWED_VIDEO_EXTENSIONS and not content_type.startswith(ALLOWED_VIDEO_MIME_PREFIXES):
        raise HTTPException(
            status_code=422,
            detail="Unsupported file type. Upload a video file (mp4, mov, m4v, webm, avi, mkv).",
        )

    request_id = request_id or uuid.uuid4().hex
    response.headers["X-Request-ID"] = request_id
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    destination = upload_dir / f"{uuid.uuid4().hex}_{original_filename}"

    total_size = 0
    try:
        with destination.open("wb") as out:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > settings.MAX_UPLOAD_BYTES:
                    out.close()
                    destination.unlink(missing_ok=True)
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Max upload size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB.",
                    )
                out.write(chunk)
    finally:
        await file.close()

    if total_size == 0:
        destination.unlink(missing_ok=True)
        raise HTTPException(status_code=422, detail="Uploaded file is empty.")

    logger.info(f"Stored upload {original_filename} ({total_size} bytes) for {request_id}")
    try:
        source = VideoSource(upload_path=str(destination))
        return await _run_analysis(pipeline, store, source, request_id, title or Path(original_filename).stem)
    finally:
        destination.unlink(missing_ok=True)


@router.post("/estimate-duration", response_model=DurationEstimateResponse)
async def estimate_duration(
    payload: EstimateDurationRequest,
    _rate_limit: None = Depends(
        rate_limit("analysis_estimate", limit=settings.ESTIMATE_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    pipeline: VideoAnalysisPipeline = Depends(get_pipeline),
):
    """Read the video's length from metadata without running an analysis."""
    source = VideoSource(url=payload.url.strip(), cookies=payload.cookies or None)
    try:
        estimate = await pipeline.estimate_duration(source)
    except PipelineError as exc:
        status_code, detail = error_response(exc)
        raise HTTPException(status_code=status_code, detail=detail) from exc
    return DurationEstimateResponse(
        duration_seconds=estimate.seconds,
        duration=format_duration(estimate.seconds),
        is_estimate=estimate.is_estimate,
        note=estimate.note,
    )


@router.get("/progress/{request_id}", response_model=ProgressResponse)
async def get_progress(request_id: str, store: ProgressStore = Depends(get_progress_store)):
    """Latest stage for a request; unknown ids report that analysis has not started yet."""
    entry = store.get(request_id) or INITIAL_ENTRY
    return ProgressResponse(
        request_id=request_id,
        stage=entry.stage,
        percent=entry.percent,
        message=entry.message,
        error=entry.error,
    )
