import asyncio
import base64
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI, OpenAIError

from config import Settings, require_openai_api_key
from multimodal.errors import AnalysisError
from multimodal.models import OverallStyle, ShotAnalysis
from multimodal.parsing import (
    SHOT_FIELDS,
    STYLE_FIELDS,
    format_field_instructions,
    parse_overall_style,
    parse_shot_with_degradations,
)
from multimodal.throttle import NoopRateLimiter, RateLimiter
from multimodal.types import Frame, Transcript

logger = logging.getLogger(__name__)

SHOT_SYSTEM_PROMPT = f"""
You are an expert video editor and cinematographer breaking down short-form social video.
Analyze the provided sequential frames in extreme detail, focusing on:

1. Shot Composition: shot type, framing and camera angle, background, lighting, color palette
2. Visual Elements: main subject, props and objects, graphic elements (text, overlays), clothing and styling
3. Audio Elements (based on the transcript): dialogue context, music style if apparent, sound effects
4. Editing Techniques: transitions, visual effects, pacing and rhythm
5. Purpose: narrative contribution, emotional impact, technical objectives

Answer with exactly one line per field, using these labels verbatim and in this order.
Write a single line per label even when unsure; use "None" when a field does not apply.

{format_field_instructions(SHOT_FIELDS)}
""".strip()

STYLE_SYSTEM_PROMPT = f"""
Analyze the overall style and themes of the video based on all shots.
Answer with exactly one line per field, using these labels verbatim:

{format_field_instructions(STYLE_FIELDS)}
""".strip()

_REFUSAL_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bi'?m (?:unable|not able) to\b",
        r"\bi (?:can'?t|cannot) (?:help|assist|analy[sz]e|see|provide)\b",
        r"\bi don'?t have (?:the ability|access)\b",
        r"\bunable to (?:provide|analy[sz]e)\b",
        r"\bi'?m not (?:capable|designed to)\b",
    )
]


def get_openai_client(api_key: str, max_retries: int = 0, timeout: Optional[float] = None) -> OpenAI:
    """Build the shared OpenAI client. Retries are an explicit policy, not implicit."""
    if not api_key or "your_" in api_key:
        raise ValueError("OPENAI_API_KEY is not configured")
    return OpenAI(api_key=api_key, max_retries=max_retries, timeout=timeout)


def client_from_settings(config: Settings) -> OpenAI:
    return get_openai_client(
        require_openai_api_key(config),
        max_retries=config.OPENAI_MAX_RETRIES,
        timeout=config.OPENAI_TIMEOUT_SECONDS,
    )


def encode_image(image_path: str) -> str:
    """Encode image to base64 string."""
    with open(image_path, "rb") as image_file:
        return base64.b64encode(image_file.read()).decode("utf-8")


def batch_frames(frames: Sequence[Frame], size: int = 3) -> List[List[Frame]]:
    """Split frames into consecutive groups of `size`; the last group may be shorter."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(frames[i:i + size]) for i in range(0, len(frames), size)]


def is_refusal(text: str) -> bool:
    lines = (text or "").strip().splitlines()
    if not lines:
        return False
    # Only the opening line matters; labelled answers may quote dialogue like "I can't help it".
    head = lines[0][:300]
    return any(pattern.search(head) for pattern in _REFUSAL_PATTERNS)


def _format_seconds(value: float) -> str:
    return f"{value:g}s"


def _truncate(text: str, limit: int) -> str:
    if limit and len(text) > limit:
        return text[:limit] + "...(truncated)"
    return text


def _message_text(response: Any) -> Any:
    try:
        return response.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return None


class VisionBatchAnalyzer:
    """
    Sequential batched frame analysis against a multimodal chat model.

    Batches run one at a time so the shared rate limiter sees a steady
    stream of calls; results come back in frame order.
    """

    def __init__(
        self,
        client: OpenAI,
        config: Settings,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.client = client
        self.vision_model = config.VISION_MODEL
        self.summary_model = config.SUMMARY_MODEL
        self.max_tokens = config.VISION_MAX_TOKENS
        self.batch_size = config.VISION_BATCH_SIZE
        self.skip_failed_batches = config.SKIP_FAILED_BATCHES
        self.transcript_window = config.TRANSCRIPT_WINDOW_SECONDS
        self.max_transcript_chars = config.MAX_TRANSCRIPT_CHARS
        self.rate_limiter = rate_limiter or NoopRateLimiter()

    def build_batch_messages(self, batch: List[Frame], transcript: Transcript) -> List[Dict[str, Any]]:
        start = batch[0].timestamp
        end = batch[-1].timestamp
        excerpt = _truncate(transcript.excerpt(start, end, self.transcript_window), self.max_transcript_chars)
        if not excerpt.strip():
            excerpt = "(no speech transcribed)"

        visual_parts = [
            {
                "type": "image_url",
                "image_url": {"url": f"data:image/jpeg;base64,{encode_image(frame.path)}"},
            }
            for frame in batch
        ]
        timestamps = ", ".join(_format_seconds(frame.timestamp) for frame in batch)
        user_text = (
            f"Analyze these {len(batch)} sequential frames occurring at {timestamps}.\n"
            f'Context: The audio transcript during this segment says: "{excerpt}"\n\n'
            "Describe the shot composition, visual style, audio elements and editing techniques, "
            "and how they work together to create meaning and impact."
        )
        return [
            {"role": "system", "content": SHOT_SYSTEM_PROMPT},
            {"role": "user", "content": [{"type": "text", "text": user_text}, *visual_parts]},
        ]

    def _complete(self, model: str, messages: List[Dict[str, Any]], max_tokens: Optional[int]) -> Any:
        kwargs: Dict[str, Any] = {"model": model, "messages": messages}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        response = self.client.chat.completions.create(**kwargs)
        return _message_text(response)

    async def analyze_batch(self, batch: List[Frame], transcript: Transcript, batch_index: int) -> ShotAnalysis:
        try:
            messages = await asyncio.to_thread(self.build_batch_messages, batch, transcript)
        except OSError as e:
            raise AnalysisError(f"Could not read frames for batch {batch_index}: {e}", batch_index=batch_index) from e

        await self.rate_limiter.acquire()
        try:
            content = await asyncio.to_thread(self._complete, self.vision_model, messages, self.max_tokens)
        except OpenAIError as e:
            logger.error(f"Vision batch {batch_index} failed: {e}")
            raise AnalysisError(f"Vision analysis failed for batch {batch_index}: {e}", batch_index=batch_index) from e

        if isinstance(content, str) and is_refusal(content):
            raise AnalysisError(
                f"Model refused to analyze batch {batch_index}", batch_index=batch_index, refused=True
            )

        try:
            shot, missing = parse_shot_with_degradations(
                content, batch[0].timestamp, [frame.timestamp for frame in batch]
            )
        except AnalysisError as e:
            e.batch_index = batch_index
            raise
        if missing:
            logger.warning(
                f"Batch {batch_index} response missing {len(missing)} fields: "
                f"{', '.join(m.label for m in missing)}"
            )
        return shot

    async def analyze_batches(self, frames: Sequence[Frame], transcript: Transcript) -> List[ShotAnalysis]:
        batches = batch_frames(frames, self.batch_size)
        shots: List[ShotAnalysis] = []
        for index, batch in enumerate(batches):
            try:
                shot = await self.analyze_batch(batch, transcript, index)
            except AnalysisError as e:
                if not self.skip_failed_batches:
                    raise
                logger.warning(f"Skipping failed batch {index}: {e}")
                continue
            shots.append(shot)
            logger.info(f"Analyzed batch {index + 1}/{len(batches)}")

        if batches and not shots:
            raise AnalysisError("Every vision batch failed")
        shots.sort(key=lambda shot: shot.timestamp)
        return shots

    async def summarize_style(self, shots: Sequence[ShotAnalysis]) -> OverallStyle:
        shots_json = "[" + ",".join(shot.model_dump_json() for shot in shots) + "]"
        messages = [
            {"role": "system", "content": STYLE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Based on these shots: {shots_json}, provide an analysis of the overall:\n"
                    "1. Visual theme and style\n2. Editing approach\n3. Music and sound design\n4. Pacing and rhythm"
                ),
            },
        ]
        await self.rate_limiter.acquire()
        try:
            content = await asyncio.to_thread(self._complete, self.summary_model, messages, None)
        except OpenAIError as e:
            logger.error(f"Overall style analysis failed: {e}")
            raise AnalysisError(f"Overall style analysis failed: {e}") from e
        return parse_overall_style(content)

