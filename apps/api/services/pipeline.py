"""
Video analysis pipeline orchestration.

URL -> download -> audio + scene boundaries -> transcript + frames
-> batched vision analysis -> overall style -> report.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

from openai import OpenAI

from config import Settings, settings as default_settings
from multimodal.audio import Transcriber
from multimodal.errors import NoSceneBoundariesError, PipelineError, TranscriptionError
from multimodal.llm import VisionBatchAnalyzer, client_from_settings
from multimodal.models import VideoAnalysisReport
from multimodal.throttle import RateLimiter, build_rate_limiter
from multimodal.types import DurationEstimate, Transcript, VideoSource
from multimodal.video import Acquirer, FrameSampler, MediaExtractor
from services.report import aggregate
from services.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]


class VideoAnalysisPipeline:
    """
    Runs one analysis request end to end.

    Components are injected so the same stateless clients can serve many
    concurrent requests; each request gets its own workspace, which is
    removed on every exit path before an error propagates.
    """

    def __init__(
        self,
        *,
        workspace_manager: WorkspaceManager,
        acquirer: Acquirer,
        extractor: MediaExtractor,
        sampler: FrameSampler,
        transcriber: Transcriber,
        analyzer: VisionBatchAnalyzer,
        transcription_required: bool = False,
        derive_insights: bool = True,
    ):
        self.workspace_manager = workspace_manager
        self.acquirer = acquirer
        self.extractor = extractor
        self.sampler = sampler
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.transcription_required = transcription_required
        self.derive_insights = derive_insights

    async def _transcribe(self, audio_path: str, request_id: str) -> Transcript:
        try:
            return await self.transcriber.transcribe(audio_path)
        except TranscriptionError as e:
            if self.transcription_required:
                raise
            logger.warning(f"Transcription failed for {request_id}, continuing without transcript: {e}")
            return Transcript.empty()

    async def _scene_boundaries(self, video_path: str, request_id: str):
        try:
            return await self.extractor.detect_scene_boundaries(video_path)
        except NoSceneBoundariesError:
            logger.warning(f"No scene boundaries for {request_id}, sampling a single frame at 0s")
            return [0.0]

    async def run(
        self,
        source: VideoSource,
        request_id: Optional[str] = None,
        *,
        title: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> VideoAnalysisReport:
        request_id = request_id or uuid.uuid4().hex
        started = time.monotonic()

        def progress(stage: str, percent: int) -> None:
            logger.info(f"[{request_id}] {stage} ({percent}%)")
            if on_progress is not None:
                on_progress(stage, percent)

        async with self.workspace_manager.session(request_id) as workspace:
            try:
                progress("downloading", 5)
                video_path = await self.acquirer.fetch(source, workspace)

                progress("processing_audio", 20)
                audio_path = await self.extractor.extract_audio(video_path, workspace)
                transcript = await self._transcribe(audio_path, request_id)

                progress("processing_video", 35)
                boundaries = await self._scene_boundaries(video_path, request_id)
                frames = await self.sampler.sample(video_path, boundaries, workspace)

                progress("analyzing", 50)
                shots = await self.analyzer.analyze_batches(frames, transcript)

                progress("summarizing", 85)
                overall_style = await self.analyzer.summarize_style(shots)

                report = aggregate(
                    shots,
                    overall_style,
                    frames,
                    title=title,
                    with_insights=self.derive_insights,
                )
            except PipelineError as e:
                logger.error(f"Analysis {request_id} failed at {e.stage} ({e.category}): {e}")
                raise

        progress("completed", 100)
        logger.info(f"Analysis {request_id} completed in {time.monotonic() - started:.1f}s")
        return report

    async def estimate_duration(self, source: VideoSource, request_id: Optional[str] = None) -> DurationEstimate:
        request_id = request_id or uuid.uuid4().hex
        async with self.workspace_manager.session(request_id) as workspace:
            estimate = await self.acquirer.estimate_duration(source, workspace)
        logger.info(f"Duration for {request_id}: {estimate.seconds}s (estimate={estimate.is_estimate})")
        return estimate


def build_pipeline(
    config: Optional[Settings] = None,
    client: Optional[OpenAI] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> VideoAnalysisPipeline:
    """Wire the default components from settings."""
    config = config or default_settings
    client = client or client_from_settings(config)
    return VideoAnalysisPipeline(
        workspace_manager=WorkspaceManager(config.WORKSPACE_ROOT),
        acquirer=Acquirer(config),
        extractor=MediaExtractor(config),
        sampler=FrameSampler(config),
        transcriber=Transcriber(client, config),
        analyzer=VisionBatchAnalyzer(client, config, rate_limiter or build_rate_limiter(config)),
        transcription_required=config.TRANSCRIPTION_REQUIRED,
        derive_insights=config.DERIVE_INSIGHTS,
    )
