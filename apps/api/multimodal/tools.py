"""Helpers for running ffmpeg-python graphs with a deadline."""

from __future__ import annotations

import logging
import subprocess
from typing import Optional, Tuple

import ffmpeg

from multimodal.errors import MediaProcessingError

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 800


def _tail(data: Optional[bytes]) -> str:
    if not data:
        return ""
    text = data.decode("utf-8", errors="replace").strip()
    return text[-STDERR_TAIL_CHARS:]


def run_ffmpeg(stream, *, timeout_seconds: Optional[float], action: str) -> Tuple[bytes, bytes]:
    """
    Run an ffmpeg graph and return (stdout, stderr).

    Non-zero exit, a missing binary and timeouts all surface as
    MediaProcessingError so callers see a single failure kind per stage.
    """
    try:
        process = stream.run_async(pipe_stdout=True, pipe_stderr=True)
    except (OSError, ffmpeg.Error) as e:
        logger.error(f"Could not start ffmpeg for {action}: {e}")
        raise MediaProcessingError(f"Could not start ffmpeg for {action}: {e}") from e

    try:
        stdout, stderr = process.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired as e:
        process.kill()
        process.communicate()
        logger.error(f"ffmpeg timed out after {timeout_seconds}s during {action}")
        raise MediaProcessingError(f"ffmpeg timed out during {action}") from e

    if process.returncode != 0:
        detail = _tail(stderr)
        logger.error(f"ffmpeg failed during {action} (exit {process.returncode}): {detail}")
        raise MediaProcessingError(f"ffmpeg failed during {action}: {detail or 'no output'}")
    return stdout or b"", stderr or b""
