"""
Service for aggregating shot analyses into a unified report.
"""

import logging
from typing import Optional, Sequence

from multimodal.models import OverallStyle, ShotAnalysis, VideoAnalysisReport
from multimodal.types import Frame
from services.insights import derive_insights

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Video Analysis"


def aggregate(
    shots: Sequence[ShotAnalysis],
    overall_style: OverallStyle,
    frames: Sequence[Frame],
    title: Optional[str] = None,
    with_insights: bool = True,
) -> VideoAnalysisReport:
    """
    Merge per-shot records and the overall style into the final report.

    Duration is the latest sampled frame timestamp. Derived insights are
    computed in a separate pass so consumers can tell them apart from
    model-grounded fields.
    """
    ordered = sorted(shots, key=lambda shot: shot.timestamp)
    duration = max((frame.timestamp for frame in frames), default=0.0)
    insights = derive_insights(ordered, overall_style) if with_insights else None
    report = VideoAnalysisReport(
        title=(title or "").strip() or DEFAULT_TITLE,
        duration=duration,
        overall_style=overall_style,
        shots=ordered,
        frame_count=len(frames),
        insights=insights,
    )
    logger.info(f"Aggregated report: {len(ordered)} shots over {duration:g}s")
    return report
