import asyncio
import os
import logging
import ffmpeg
from openai import OpenAI, OpenAIError
from typing import Any, List, Optional

from config import Settings
from multimodal.errors import TranscriptionError
from multimodal.tools import run_ffmpeg
from multimodal.types import Transcript, TranscriptSegment

logger = logging.getLogger(__name__)


def extract_audio(video_path: str, output_path: str, timeout_seconds: Optional[float] = None) -> str:
    """
    Demux the first audio stream into its own file without re-encoding.
    Returns path to audio file.
    """
    # ffmpeg -i video.mp4 -map 0:a:0 -vn -acodec copy audio.m4a
    stream = (
        ffmpeg
        .input(video_path)
        .output(output_path, map="0:a:0", vn=None, acodec="copy")
        .overwrite_output()
    )
    run_ffmpeg(stream, timeout_seconds=timeout_seconds, action="audio extraction")
    return output_path


def _segment_field(segment: Any, field: str, default: Any) -> Any:
    if isinstance(segment, dict):
        return segment.get(field, default)
    return getattr(segment, field, default)


def _to_transcript(payload: Any) -> Transcript:
    if isinstance(payload, dict):
        text = str(payload.get("text", "") or "").strip()
        raw_segments = payload.get("segments", []) or []
    else:
        text = str(getattr(payload, "text", "") or "").strip()
        raw_segments = getattr(payload, "segments", []) or []

    segments: List[TranscriptSegment] = []
    for seg in raw_segments:
        seg_text = str(_segment_field(seg, "text", "") or "").strip()
        if not seg_text:
            continue
        try:
            start = float(_segment_field(seg, "start", 0.0) or 0.0)
            end = float(_segment_field(seg, "end", start) or start)
        except (TypeError, ValueError):
            continue
        segments.append(TranscriptSegment(start=start, end=max(start, end), text=seg_text))
    segments.sort(key=lambda s: s.start)

    if not text and segments:
        text = " ".join(seg.text for seg in segments)
    return Transcript(text=text, segments=tuple(segments))


def transcribe_audio(
    audio_path: str,
    client: OpenAI,
    model: str = "whisper-1",
    max_bytes: Optional[int] = None,
) -> Transcript:
    """
    Transcribe audio using OpenAI Whisper API.
    Returns the full text plus segment timings when the service provides them.
    """
    try:
        size = os.path.getsize(audio_path)
    except OSError as e:
        raise TranscriptionError(f"Audio file not readable: {e}") from e
    if max_bytes and size > max_bytes:
        raise TranscriptionError(
            f"Audio file is {size} bytes, above the {max_bytes} byte transcription limit"
        )

    try:
        with open(audio_path, "rb") as audio_file:
            response = client.audio.transcriptions.create(
                model=model,
                file=audio_file,
                response_format="verbose_json",
                timestamp_granularities=["segment"],
            )
    except (OpenAIError, OSError) as e:
        logger.error(f"Error transcribing audio: {e}")
        raise TranscriptionError(f"Transcription failed: {e}") from e

    return _to_transcript(response)


class Transcriber:
    """Speech-to-text stage. The client is shared across requests."""

    def __init__(self, client: OpenAI, config: Settings):
        self.client = client
        self.model = config.TRANSCRIPTION_MODEL
        self.max_bytes = config.TRANSCRIPTION_MAX_BYTES

    async def transcribe(self, audio_path: str) -> Transcript:
        transcript = await asyncio.to_thread(
            transcribe_audio, audio_path, self.client, self.model, self.max_bytes
        )
        logger.info(
            f"Transcribed {audio_path}: {len(transcript.text)} chars, {len(transcript.segments)} segments"
        )
        return transcript
