import asyncio
import os
import glob
import logging
import math
import re
import shutil
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import yt_dlp
import ffmpeg
from yt_dlp.utils import DownloadCancelled, YoutubeDLError

from config import Settings
from multimodal.audio import extract_audio
from multimodal.errors import (
    AcquisitionError,
    AcquisitionFailure,
    FrameExtractionError,
    MediaProcessingError,
    NoSceneBoundariesError,
)
from multimodal.tools import run_ffmpeg
from multimodal.types import DurationEstimate, Frame, VideoSource

logger = logging.getLogger(__name__)

# Prefer a merged mp4 of the best streams, fall back to whatever is available.
DEFAULT_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
EMBED_FORMAT = "best[ext=mp4]/best"

_NETWORK_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "failed to resolve",
    "no address associated with hostname",
    "network is unreachable",
    "connection refused",
    "unable to connect",
)
_TIMEOUT_MARKERS = ("timed out", "timeout")
_UNAVAILABLE_MARKERS = (
    "login required",
    "private",
    "not available",
    "unavailable",
    "removed",
    "rate-limit",
    "rate limit",
    "http error 403",
    "http error 404",
    "unsupported url",
    "sign in",
)


def classify_download_error(message: str) -> AcquisitionFailure:
    """Map downloader output to the failure kind shown to users."""
    lowered = (message or "").lower()
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return AcquisitionFailure.NETWORK_UNREACHABLE
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return AcquisitionFailure.TIMEOUT
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return AcquisitionFailure.CONTENT_UNAVAILABLE
    return AcquisitionFailure.DOWNLOAD_FAILED


def validate_source_url(url: str) -> str:
    cleaned = str(url or "").strip()
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise AcquisitionError(
            f"Invalid URL format, expected an absolute http(s) URL: {cleaned!r}",
            AcquisitionFailure.INVALID_URL,
        )
    return cleaned


def has_active_cookies(cookies_file: Optional[str]) -> bool:
    """True when a Netscape cookie file holds at least one real cookie line."""
    if not cookies_file:
        return False
    try:
        with open(cookies_file, "r", encoding="utf-8", errors="replace") as handle:
            lines = handle.read().splitlines()
    except OSError as e:
        logger.warning(f"Failed to read cookies file {cookies_file}: {e}")
        return False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("#HttpOnly_"):
            stripped = stripped[len("#HttpOnly_"):]
        if not stripped or stripped.startswith("#") or stripped.startswith("//"):
            continue
        if len(stripped.split("\t")) >= 6:
            return True
    return False


def _deadline_hook(deadline: float):
    def _hook(status):
        if time.monotonic() > deadline:
            raise DownloadCancelled("Download timed out")
    return _hook


def _find_downloaded_file(output_path: str) -> Optional[str]:
    if os.path.exists(output_path):
        return output_path
    # yt-dlp may swap the extension after merging
    base_name = os.path.splitext(output_path)[0]
    matches = sorted(
        path for path in glob.glob(f"{glob.escape(base_name)}.*")
        if not path.endswith((".part", ".ytdl"))
    )
    return matches[0] if matches else None


def download_video(
    url: str,
    output_path: str,
    cookies_file: Optional[str] = None,
    format_spec: str = DEFAULT_FORMAT,
    timeout_seconds: Optional[float] = None,
    socket_timeout: Optional[float] = 30,
    check_certificate: bool = True,
) -> str:
    """
    Download video from URL using yt-dlp.
    Returns the absolute path to the downloaded file.
    """
    ydl_opts = {
        "format": format_spec,
        "outtmpl": output_path,
        "merge_output_format": "mp4",
        "noplaylist": True,
        "quiet": True,
        "no_warnings": True,
        "overwrites": True,
    }
    if socket_timeout:
        ydl_opts["socket_timeout"] = socket_timeout
    if cookies_file:
        ydl_opts["cookiefile"] = cookies_file
    if not check_certificate:
        ydl_opts["nocheckcertificate"] = True
    if timeout_seconds:
        ydl_opts["progress_hooks"] = [_deadline_hook(time.monotonic() + timeout_seconds)]

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            ydl.download([url])
    except DownloadCancelled as e:
        logger.error(f"Video download cancelled for {url}: {e}")
        raise AcquisitionError(f"Video download timed out: {e}", AcquisitionFailure.TIMEOUT) from e
    except (YoutubeDLError, OSError) as e:
        kind = classify_download_error(str(e))
        logger.error(f"Error downloading video ({kind.value}): {e}")
        raise AcquisitionError(f"Failed to download video: {e}", kind) from e

    downloaded = _find_downloaded_file(output_path)
    if not downloaded:
        raise AcquisitionError("Video download failed - no output file found")
    return os.path.abspath(downloaded)


def get_video_duration_seconds(video_path: str) -> float:
    """
    Read video metadata and return duration in seconds (0.0 when unknown).
    """
    try:
        metadata = ffmpeg.probe(video_path)
    except (ffmpeg.Error, OSError) as e:
        logger.warning(f"Could not read video duration for {video_path}: {e}")
        return 0.0
    fmt = metadata.get("format", {})
    duration = float(fmt.get("duration", 0.0) or 0.0)
    if duration <= 0:
        for stream in metadata.get("streams", []):
            if stream.get("codec_type") == "video":
                duration = float(stream.get("duration", 0.0) or 0.0)
                if duration > 0:
                    break
    return max(0.0, round(duration, 2))


def fetch_remote_duration(
    url: str,
    cookies_file: Optional[str] = None,
    format_spec: str = DEFAULT_FORMAT,
    socket_timeout: Optional[float] = 30,
    check_certificate: bool = True,
) -> Optional[float]:
    """Ask yt-dlp for the video's metadata without downloading it."""
    ydl_opts = {
        "format": format_spec,
        "noplaylist": True,
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
    }
    if socket_timeout:
        ydl_opts["socket_timeout"] = socket_timeout
    if cookies_file:
        ydl_opts["cookiefile"] = cookies_file
    if not check_certificate:
        ydl_opts["nocheckcertificate"] = True

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=False)
    except (YoutubeDLError, OSError) as e:
        kind = classify_download_error(str(e))
        raise AcquisitionError(f"Failed to read video metadata: {e}", kind) from e

    duration = (info or {}).get("duration")
    if duration is None:
        return None
    try:
        return float(duration)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class DownloadStrategy:
    name: str
    format_spec: str
    cookies_file: Optional[str] = None
    check_certificate: bool = True


# Failures worth retrying with a different strategy; network and timeout are not.
_FALLBACK_KINDS = {AcquisitionFailure.CONTENT_UNAVAILABLE, AcquisitionFailure.DOWNLOAD_FAILED}

COOKIES_FILENAME = "cookies.txt"


class Acquirer:
    """Fetches the source video into the request workspace."""

    def __init__(self, config: Settings):
        self.timeout_seconds = config.DOWNLOAD_TIMEOUT_SECONDS
        self.socket_timeout = config.DOWNLOAD_SOCKET_TIMEOUT_SECONDS
        self.default_cookies_file = config.DOWNLOAD_COOKIES_FILE or None
        self.fallback_duration = config.DURATION_FALLBACK_SECONDS

    def stage_cookies(self, source: VideoSource, workspace) -> Optional[str]:
        """
        Write the cookies for this request into the workspace.

        yt-dlp saves its cookie jar back to `cookiefile` when it finishes, so
        it only ever sees this per-request copy. Caller-supplied text wins
        over the configured file; returns None when there is nothing usable.
        """
        content = source.cookies
        if not content and self.default_cookies_file:
            try:
                with open(self.default_cookies_file, "r", encoding="utf-8", errors="replace") as handle:
                    content = handle.read()
            except OSError as e:
                logger.warning(f"Failed to read cookies file {self.default_cookies_file}: {e}")
                return None
        if not content:
            return None

        staged = workspace.file(COOKIES_FILENAME)
        with open(staged, "w", encoding="utf-8") as handle:
            handle.write(content)
        return staged if has_active_cookies(staged) else None

    def strategies(self, cookies_file: Optional[str] = None) -> List[DownloadStrategy]:
        strategies: List[DownloadStrategy] = []
        if has_active_cookies(cookies_file):
            strategies.append(DownloadStrategy("cookies_file", DEFAULT_FORMAT, cookies_file=cookies_file))
        strategies.append(DownloadStrategy("no_cookies", DEFAULT_FORMAT))
        strategies.append(DownloadStrategy("embed_only", EMBED_FORMAT, check_certificate=False))
        return strategies

    def _download_with_fallbacks(self, url: str, output_path: str, strategies: List[DownloadStrategy]) -> str:
        last_error: Optional[AcquisitionError] = None
        for strategy in strategies:
            try:
                logger.info(f"Downloading {url} with strategy {strategy.name}")
                return download_video(
                    url,
                    output_path,
                    cookies_file=strategy.cookies_file,
                    format_spec=strategy.format_spec,
                    timeout_seconds=self.timeout_seconds,
                    socket_timeout=self.socket_timeout,
                    check_certificate=strategy.check_certificate,
                )
            except AcquisitionError as e:
                last_error = e
                if e.kind not in _FALLBACK_KINDS:
                    raise
                logger.warning(f"Strategy {strategy.name} failed ({e.kind.value}), trying next")
        assert last_error is not None
        raise last_error

    async def _copy_upload(self, upload_path: str, workspace) -> str:
        if not os.path.isfile(upload_path) or os.path.getsize(upload_path) == 0:
            raise AcquisitionError(
                f"Uploaded file not found or empty: {upload_path}", AcquisitionFailure.CONTENT_UNAVAILABLE
            )
        suffix = os.path.splitext(upload_path)[1].lower() or ".mp4"
        working_path = workspace.file(f"video{suffix}")
        try:
            await asyncio.to_thread(shutil.copy2, upload_path, working_path)
        except OSError as e:
            raise AcquisitionError(f"Could not copy uploaded file: {e}") from e
        logger.info(f"Uploaded video copied to {working_path} ({os.path.getsize(working_path)} bytes)")
        return working_path

    async def fetch(self, source: VideoSource, workspace) -> str:
        if source.is_upload:
            return await self._copy_upload(source.upload_path, workspace)

        url = validate_source_url(source.url)
        output_path = workspace.file("video.mp4")
        cookies_file = await asyncio.to_thread(self.stage_cookies, source, workspace)
        strategies = self.strategies(cookies_file)
        # The progress hook enforces the deadline; this guards stalls before any progress.
        budget = self.timeout_seconds * len(strategies) + 5
        try:
            path = await asyncio.wait_for(
                asyncio.to_thread(self._download_with_fallbacks, url, output_path, strategies),
                timeout=budget,
            )
        except asyncio.TimeoutError as e:
            raise AcquisitionError(
                f"Video download took longer than {budget}s", AcquisitionFailure.TIMEOUT
            ) from e
        logger.info(f"Video downloaded to {path} ({os.path.getsize(path)} bytes)")
        return path

    def _duration_with_fallbacks(self, url: str, strategies: List[DownloadStrategy]) -> Optional[float]:
        for strategy in strategies:
            try:
                duration = fetch_remote_duration(
                    url,
                    cookies_file=strategy.cookies_file,
                    format_spec=strategy.format_spec,
                    socket_timeout=self.socket_timeout,
                    check_certificate=strategy.check_certificate,
                )
            except AcquisitionError as e:
                logger.warning(f"Duration lookup with {strategy.name} failed ({e.kind.value})")
                if e.kind not in _FALLBACK_KINDS:
                    return None
                continue
            if duration is not None and duration > 0:
                return duration
        return None

    async def estimate_duration(self, source: VideoSource, workspace) -> DurationEstimate:
        """
        How long the video runs, read from metadata before any analysis.

        Uploads are read with ffprobe. URLs go through the same cookie
        strategy chain as downloads; when every strategy fails a fixed
        estimate is returned instead of an error. Invalid URLs still raise.
        """
        if source.is_upload:
            seconds = await asyncio.to_thread(get_video_duration_seconds, source.upload_path)
            if seconds > 0:
                return DurationEstimate(seconds=seconds)
            return self._fallback_estimate("Could not read the uploaded file's duration.")

        url = validate_source_url(source.url)
        cookies_file = await asyncio.to_thread(self.stage_cookies, source, workspace)
        strategies = self.strategies(cookies_file)
        try:
            seconds = await asyncio.wait_for(
                asyncio.to_thread(self._duration_with_fallbacks, url, strategies),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            seconds = None
        if seconds is None:
            return self._fallback_estimate("Could not read the video's duration; using a typical short-form length.")
        return DurationEstimate(seconds=round(seconds, 2))

    def _fallback_estimate(self, note: str) -> DurationEstimate:
        return DurationEstimate(seconds=self.fallback_duration, is_estimate=True, note=note)


_PTS_TIME_PATTERN = re.compile(r"pts_time:\s*(\d+(?:\.\d+)?)")


def parse_scene_timestamps(output: str) -> List[float]:
    """Pull `pts_time:` values out of showinfo output, keeping strictly positive ones in order."""
    timestamps: List[float] = []
    for line in output.splitlines():
        if "pts_time" not in line:
            continue
        match = _PTS_TIME_PATTERN.search(line)
        if not match:
            continue
        value = float(match.group(1))
        if value > 0:
            timestamps.append(value)
    return timestamps


def detect_scene_boundaries(
    video_path: str,
    threshold: float = 0.3,
    timeout_seconds: Optional[float] = None,
) -> List[float]:
    """
    Run ffmpeg's scene-change score filter and return boundary timestamps.
    """
    # ffmpeg -i video.mp4 -vf "select='gt(scene,0.3)',showinfo" -f null -
    stream = ffmpeg.input(video_path).output(
        "-", format="null", vf=f"select='gt(scene,{threshold})',showinfo"
    )
    _, stderr = run_ffmpeg(stream, timeout_seconds=timeout_seconds, action="scene detection")
    boundaries = parse_scene_timestamps(stderr.decode("utf-8", errors="replace"))
    if not boundaries:
        raise NoSceneBoundariesError("Scene detection produced no parsable boundaries")
    return boundaries


def plan_frames(boundaries: Iterable[float], max_gap: float = 5.0) -> List[Tuple[float, bool]]:
    """
    Decide which timestamps to render.

    Every boundary becomes a key frame; adjacent boundaries more than
    `max_gap` seconds apart get one extra frame at their midpoint. The result
    is strictly ascending with no duplicate timestamps.
    """
    points = sorted({float(b) for b in boundaries if b is not None and math.isfinite(b) and b >= 0})
    plan: List[Tuple[float, bool]] = [(t, True) for t in points]
    for start, end in zip(points, points[1:]):
        gap = end - start
        if gap > max_gap:
            plan.append((start + gap / 2, False))
    plan.sort(key=lambda item: item[0])
    return plan


def render_frame(
    video_path: str,
    timestamp: float,
    output_path: str,
    timeout_seconds: Optional[float] = None,
) -> str:
    # ffmpeg -ss 3.0 -i video.mp4 -vframes 1 -q:v 2 frame.jpg
    stream = (
        ffmpeg
        .input(video_path, ss=timestamp)
        .output(output_path, vframes=1, **{"q:v": 2})
        .overwrite_output()
    )
    try:
        run_ffmpeg(stream, timeout_seconds=timeout_seconds, action=f"frame render at {timestamp}s")
    except MediaProcessingError as e:
        raise FrameExtractionError(str(e), timestamp) from e
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise FrameExtractionError(f"No frame rendered at {timestamp}s", timestamp)
    return output_path


class MediaExtractor:
    """Audio demux and scene-boundary detection."""

    def __init__(self, config: Settings):
        self.threshold = config.SCENE_THRESHOLD
        self.timeout_seconds = config.EXTRACTION_TIMEOUT_SECONDS

    async def extract_audio(self, video_path: str, workspace) -> str:
        audio_path = workspace.file("audio.m4a")
        return await asyncio.to_thread(extract_audio, video_path, audio_path, self.timeout_seconds)

    async def detect_scene_boundaries(self, video_path: str) -> List[float]:
        boundaries = await asyncio.to_thread(
            detect_scene_boundaries, video_path, self.threshold, self.timeout_seconds
        )
        logger.info(f"Detected {len(boundaries)} scene boundaries in {video_path}")
        return boundaries


class FrameSampler:
    """Turns scene boundaries into rendered, timestamp-ordered frames."""

    def __init__(self, config: Settings):
        self.max_gap = config.MIDPOINT_GAP_SECONDS
        self.allow_partial = config.ALLOW_PARTIAL_FRAMES
        self.timeout_seconds = config.EXTRACTION_TIMEOUT_SECONDS

    async def sample(self, video_path: str, boundaries: List[float], workspace) -> List[Frame]:
        frames_dir = workspace.subdir("frames")
        plan = plan_frames(boundaries, self.max_gap)
        frames: List[Frame] = []
        for index, (timestamp, is_key) in enumerate(plan):
            frame_path = os.path.join(frames_dir, f"frame_{index:04d}_{int(round(timestamp * 1000))}ms.jpg")
            try:
                await asyncio.to_thread(render_frame, video_path, timestamp, frame_path, self.timeout_seconds)
            except FrameExtractionError as e:
                if not self.allow_partial:
                    raise
                logger.warning(f"Skipping frame at {timestamp}s: {e}")
                continue
            frames.append(Frame(path=frame_path, timestamp=timestamp, is_key_frame=is_key))

        if not frames:
            raise MediaProcessingError(f"No frames could be extracted from {len(plan)} planned timestamps")
        logger.info(f"Extracted {len(frames)}/{len(plan)} frames")
        return frames
