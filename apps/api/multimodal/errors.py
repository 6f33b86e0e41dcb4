"""Error taxonomy for the video analysis pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AcquisitionFailure(str, Enum):
    INVALID_URL = "invalid_url"
    NETWORK_UNREACHABLE = "network_unreachable"
    CONTENT_UNAVAILABLE = "content_unavailable"
    TIMEOUT = "timeout"
    DOWNLOAD_FAILED = "download_failed"


class PipelineError(RuntimeError):
    """Base class for failures that abort an analysis request."""

    stage = "pipeline"
    category = "internal_failure"

    def __init__(self, message: str, *, stage: Optional[str] = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class AcquisitionError(PipelineError):
    """Raised when the source video cannot be downloaded."""

    stage = "download"

    def __init__(
        self,
        message: str,
        kind: AcquisitionFailure = AcquisitionFailure.DOWNLOAD_FAILED,
    ) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def category(self) -> str:  # type: ignore[override]
        return self.kind.value


class MediaProcessingError(PipelineError):
    """Raised when ffmpeg fails to demux, detect scenes or render frames."""

    stage = "media_processing"


class NoSceneBoundariesError(MediaProcessingError):
    """Scene detection ran but produced nothing parsable. Callers fall back to t=0."""


class FrameExtractionError(MediaProcessingError):
    """Raised when a single frame cannot be rendered."""

    stage = "frame_extraction"

    def __init__(self, message: str, timestamp: float) -> None:
        super().__init__(message)
        self.timestamp = timestamp


class TranscriptionError(PipelineError):
    """Raised when the speech-to-text service fails."""

    stage = "transcription"


class AnalysisError(PipelineError):
    """Raised when a vision batch or the style summary call fails."""

    stage = "analysis"

    def __init__(
        self,
        message: str,
        *,
        batch_index: Optional[int] = None,
        refused: bool = False,
    ) -> None:
        super().__init__(message)
        self.batch_index = batch_index
        self.refused = refused


class UnreadableResponseError(AnalysisError):
    """Model output that cannot be read as text at all."""


@dataclass(frozen=True)
class ParseDegradation:
    """A labelled field missing from model output; recorded, never raised."""

    label: str
    timestamp: Optional[float] = None
