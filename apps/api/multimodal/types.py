"""Value types passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class VideoSource:
    """
    Where the video comes from.

    `cookies` is Netscape cookie-file text supplied by the caller, never a
    path. `upload_path` points at a file the server itself stored; when set
    the URL is ignored.
    """

    url: str = ""
    cookies: Optional[str] = field(default=None, repr=False)
    upload_path: Optional[str] = None

    @property
    def is_upload(self) -> bool:
        return bool(self.upload_path)


@dataclass(frozen=True)
class DurationEstimate:
    seconds: float
    is_estimate: bool = False
    note: Optional[str] = None


@dataclass(frozen=True)
class Frame:
    path: str
    timestamp: float
    is_key_frame: bool


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(frozen=True)
class Transcript:
    text: str
    segments: Tuple[TranscriptSegment, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> "Transcript":
        return cls(text="")

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    def excerpt(self, start: float, end: float, padding: Optional[float] = None) -> str:
        """
        Return the transcript text spoken between `start` and `end`.

        With no padding the full transcript is returned. Otherwise segments
        overlapping the padded window are joined; when the transcript has no
        segment timing, or nothing overlaps, the full text is returned.
        """
        if padding is None or not self.segments:
            return self.text
        lower = start - padding
        upper = end + padding
        chunks = [
            seg.text.strip()
            for seg in self.segments
            if seg.end >= lower and seg.start <= upper and seg.text.strip()
        ]
        if not chunks:
            return self.text
        return " ".join(chunks)
