"""
Turn free-form model output into typed shot and style records.

The vision prompt asks for one labelled line per field ("Shot type: ...").
Field labels, where they land in the record and their defaults all live in
the tables below, so a prompt change only touches one place.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from multimodal.errors import ParseDegradation, UnreadableResponseError
from multimodal.models import OverallStyle, ShotAnalysis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSpec:
    label: str
    path: Tuple[str, ...]
    is_list: bool = False
    default: str = ""
    hint: str = ""


SHOT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("Shot type", ("shot_type",), default="Unknown", hint="close-up, mid shot, wide shot, ..."),
    FieldSpec("Framing", ("composition", "framing"), hint="how the subject is framed, camera angle"),
    FieldSpec("Background", ("composition", "background"), hint="background elements"),
    FieldSpec("Lighting", ("composition", "lighting"), hint="lighting style and direction"),
    FieldSpec("Colors", ("composition", "colors"), is_list=True, hint="comma-separated key colors"),
    FieldSpec("Main subject", ("visual_elements", "main_subject"), hint="who or what the shot is about"),
    FieldSpec("Props", ("visual_elements", "props"), is_list=True, hint="comma-separated props and objects"),
    FieldSpec(
        "Graphic elements",
        ("visual_elements", "graphic_elements"),
        is_list=True,
        hint="comma-separated on-screen text and overlays, quote any text exactly",
    ),
    FieldSpec("Clothing", ("visual_elements", "clothing"), hint="clothing and styling"),
    FieldSpec("Dialogue", ("audio_elements", "dialogue"), hint="what is being said in this segment"),
    FieldSpec("Music style", ("audio_elements", "music_style"), hint="genre, tempo (e.g. 120 BPM) and feel, if apparent"),
    FieldSpec("Sound effects", ("audio_elements", "sound_effects"), is_list=True, hint="comma-separated sound effects"),
    FieldSpec("Transitions", ("editing_techniques", "transitions"), is_list=True, hint="comma-separated transitions"),
    FieldSpec("Effects", ("editing_techniques", "effects"), is_list=True, hint="comma-separated visual effects"),
    FieldSpec("Pacing", ("editing_techniques", "pacing"), hint="editing pace and rhythm"),
    FieldSpec("Narrative purpose", ("purpose", "narrative"), hint="how the shot moves the story"),
    FieldSpec("Emotional impact", ("purpose", "emotional"), hint="intended emotional effect"),
    FieldSpec("Technical purpose", ("purpose", "technical"), hint="technical objective of the shot"),
)

STYLE_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("Visual theme", ("visual_theme",), hint="overall visual theme and style"),
    FieldSpec("Editing style", ("editing_style",), hint="editing approach"),
    FieldSpec("Music style", ("music_style",), hint="music and sound design"),
    FieldSpec("Pacing", ("pacing",), hint="pacing and rhythm"),
)

_EMPTY_VALUES = {"none", "n/a", "na", "null", "-", "not applicable", "not visible"}

_PATTERN_CACHE: Dict[str, "re.Pattern[str]"] = {}


def _label_pattern(label: str) -> "re.Pattern[str]":
    pattern = _PATTERN_CACHE.get(label)
    if pattern is None:
        # Optional bullet / numbering / heading / markdown emphasis before the label.
        pattern = re.compile(
            r"^[ \t]*(?:[-*•]|\d+[.)]|#{1,6})?[ \t]*(?:\*\*|__)?"
            + re.escape(label)
            + r"(?:\*\*|__)?[ \t]*:(?:\*\*|__)?[ \t]*(.*?)[ \t]*$",
            re.IGNORECASE | re.MULTILINE,
        )
        _PATTERN_CACHE[label] = pattern
    return pattern


def _as_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            return bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnreadableResponseError(f"Model response is not valid UTF-8: {e}") from e
    raise UnreadableResponseError(f"Model response is not text (got {type(raw).__name__})")


def extract_field(text: str, label: str) -> Optional[str]:
    """Value on the line labelled `label`, or None when the label is absent."""
    match = _label_pattern(label).search(text)
    if not match:
        return None
    return match.group(1).strip().strip("*_").strip()


def split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def extract_list(text: str, label: str) -> List[str]:
    value = extract_field(text, label)
    return split_list(value) if value else []


def _parse_fields(
    text: str,
    fields: Tuple[FieldSpec, ...],
    timestamp: Optional[float] = None,
) -> Tuple[Dict[str, Any], List[ParseDegradation]]:
    data: Dict[str, Any] = {}
    missing: List[ParseDegradation] = []
    for spec in fields:
        value = extract_field(text, spec.label)
        if value is None:
            missing.append(ParseDegradation(label=spec.label, timestamp=timestamp))
        elif value.lower().rstrip(".") in _EMPTY_VALUES:
            value = ""
        if spec.is_list:
            parsed: Any = split_list(value) if value else []
        else:
            parsed = value or spec.default
        node = data
        for key in spec.path[:-1]:
            node = node.setdefault(key, {})
        node[spec.path[-1]] = parsed
    return data, missing


def parse_shot_with_degradations(
    raw: Any,
    timestamp: float,
    frame_timestamps: Optional[List[float]] = None,
) -> Tuple[ShotAnalysis, List[ParseDegradation]]:
    text = _as_text(raw)
    data, missing = _parse_fields(text, SHOT_FIELDS, timestamp)
    shot = ShotAnalysis(
        timestamp=timestamp,
        frame_timestamps=list(frame_timestamps or [timestamp]),
        **data,
    )
    return shot, missing


def parse_shot(raw: Any, timestamp: float, frame_timestamps: Optional[List[float]] = None) -> ShotAnalysis:
    shot, missing = parse_shot_with_degradations(raw, timestamp, frame_timestamps)
    if missing:
        logger.debug(f"Shot at {timestamp}s missing fields: {', '.join(m.label for m in missing)}")
    return shot


def parse_overall_style(raw: Any) -> OverallStyle:
    text = _as_text(raw)
    data, missing = _parse_fields(text, STYLE_FIELDS)
    if missing:
        logger.debug(f"Overall style missing fields: {', '.join(m.label for m in missing)}")
    return OverallStyle(**data)


def format_field_instructions(fields: Tuple[FieldSpec, ...]) -> str:
    """Labelled-line template for prompts, generated from the field table."""
    return "\n".join(f"{spec.label}: [{spec.hint}]" for spec in fields)
