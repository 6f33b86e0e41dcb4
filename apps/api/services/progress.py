"""In-process progress tracking keyed by request id."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from config import settings

logger = logging.getLogger(__name__)

STAGE_MESSAGES = {
    "initializing": "Starting analysis...",
    "downloading": "Downloading video...",
    "processing_audio": "Extracting and transcribing audio...",
    "processing_video": "Detecting scenes and extracting frames...",
    "analyzing": "Analyzing shots...",
    "summarizing": "Summarizing overall style...",
    "completed": "Analysis complete.",
    "failed": "Analysis failed.",
}


@dataclass(frozen=True)
class ProgressEntry:
    stage: str
    percent: int
    message: str
    error: Optional[str] = None
    updated_at: float = 0.0

    @property
    def finished(self) -> bool:
        return self.stage in ("completed", "failed")


INITIAL_ENTRY = ProgressEntry(stage="initializing", percent=0, message=STAGE_MESSAGES["initializing"])


class ProgressStore:
    """
    Latest stage per request, dropped `ttl_seconds` after its last update.

    Entries are written from the event loop only, so no locking is needed.
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, ProgressEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def update(
        self,
        request_id: str,
        stage: str,
        percent: int,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ProgressEntry:
        self.purge_expired()
        entry = ProgressEntry(
            stage=stage,
            percent=max(0, min(100, int(percent))),
            message=message or STAGE_MESSAGES.get(stage, stage),
            error=error,
            updated_at=self._clock(),
        )
        self._entries[request_id] = entry
        return entry

    def fail(self, request_id: str, error: str, message: Optional[str] = None) -> ProgressEntry:
        previous = self._entries.get(request_id)
        percent = previous.percent if previous else 0
        return self.update(request_id, "failed", percent, message=message, error=error)

    def get(self, request_id: str) -> Optional[ProgressEntry]:
        entry = self._entries.get(request_id)
        if entry is None:
            return None
        if self._clock() - entry.updated_at > self.ttl_seconds:
            self._entries.pop(request_id, None)
            return None
        return entry

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.updated_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired progress entries")
        return len(expired)

    def tracker(self, request_id: str) -> Callable[[str, int], None]:
        """Callback suitable for `VideoAnalysisPipeline.run(on_progress=...)`."""

        def _on_progress(stage: str, percent: int) -> None:
            self.update(request_id, stage, percent)

        return _on_progress


progress_store = ProgressStore(ttl_seconds=settings.PROGRESS_TTL_SECONDS)
