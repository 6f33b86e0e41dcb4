"""
Heuristic UI annotations derived from the parsed shot sequence.

These are best-effort hints layered on top of the model-grounded report.
Every helper returns a neutral default ("Unknown", "No music detected", 0)
instead of raising when data is missing.
"""

import logging
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from multimodal.models import DerivedInsights, EffectUsage, MusicProfile, OverallStyle, ShotAnalysis

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
NO_MUSIC = "No music detected"

# (pattern, beat label) checked against on-screen text, first match wins per element.
STRUCTURE_MARKERS: Tuple[Tuple[str, str], ...] = (
    (r"\bhow to\b", "Tutorial"),
    (r"\bstep\s*\d+|\bstep\b", "Step"),
    (r"\btips?\b|\bhacks?\b", "Tips"),
    (r"\bbefore\b|\bafter\b", "Before/after"),
    (r"\bpov\b", "POV setup"),
    (r"\bstory ?time\b", "Storytime"),
    (r"\bwait for it\b|\bwatch (?:till|until) the end\b|\bthe end\b", "Payoff"),
    (r"\bpart\s*\d+\b", "Series"),
    (r"\b\d+\s+(?:things|reasons|ways|mistakes|steps)\b", "List"),
    (r"\bfollow\b|\bsubscribe\b|\blink in bio\b|\bcomment\b|\bshare\b|\bsave this\b", "Call to action"),
)

ENERGY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "High": ("upbeat", "energetic", "fast", "intense", "hype", "driving", "dance", "electronic", "edm", "punchy", "exciting"),
    "Medium": ("moderate", "steady", "groovy", "mid-tempo", "pop", "light"),
    "Low": ("calm", "slow", "ambient", "soft", "mellow", "relaxed", "acoustic", "gentle", "chill", "lo-fi", "lofi"),
}

MOOD_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Uplifting": ("happy", "uplifting", "joyful", "cheerful", "fun", "playful", "positive", "inspiring", "bright"),
    "Dramatic": ("dramatic", "tense", "suspense", "epic", "cinematic", "intense", "dark"),
    "Melancholic": ("sad", "melancholic", "nostalgic", "somber", "emotional", "wistful"),
    "Calm": ("calm", "peaceful", "serene", "relaxing", "soothing", "chill"),
}

_BPM_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*bpm\b", re.IGNORECASE)
_NO_MUSIC_PATTERN = re.compile(r"^\s*(?:no|none|not|n/a)\b", re.IGNORECASE)


def _shorten(text: str, limit: int = 80) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def _format_seconds(value: float) -> str:
    return f"{value:g}s"


def extract_hook(shots: Sequence[ShotAnalysis]) -> str:
    """Opening hook from the first shot's narrative purpose and on-screen text."""
    if not shots:
        return UNKNOWN
    first = shots[0]
    parts: List[str] = []
    narrative = first.purpose.narrative.strip()
    if narrative:
        parts.append(narrative)
    on_screen = [item for item in first.visual_elements.graphic_elements if item.strip()]
    if on_screen:
        parts.append(f"On-screen text: {', '.join(on_screen)}")
    if parts:
        return " | ".join(parts)
    subject = first.visual_elements.main_subject.strip()
    if subject:
        return f"Opening featuring {subject}"
    return UNKNOWN


def _match_marker(text: str) -> Optional[str]:
    lowered = text.lower()
    for pattern, label in STRUCTURE_MARKERS:
        if re.search(pattern, lowered):
            return label
    return None


def build_content_structure(shots: Sequence[ShotAnalysis]) -> str:
    """Ordered beats found by scanning on-screen text for known phrase markers."""
    beats: List[str] = []
    last_label: Optional[str] = None
    for shot in shots:
        for element in shot.visual_elements.graphic_elements:
            label = _match_marker(element)
            if label is None:
                continue
            # Consecutive "Step" beats are still distinct steps.
            if label == last_label and label != "Step":
                continue
            beats.append(f'{label} at {_format_seconds(shot.timestamp)} ("{_shorten(element)}")')
            last_label = label
    if not beats:
        return UNKNOWN
    return " -> ".join(beats)


def collect_effects(shots: Sequence[ShotAnalysis]) -> List[EffectUsage]:
    """Transitions and effects named per shot, grouped by name in first-seen order."""
    names: Dict[str, str] = {}
    timestamps: Dict[str, List[float]] = {}
    for shot in shots:
        for item in [*shot.editing_techniques.transitions, *shot.editing_techniques.effects]:
            name = item.strip()
            if not name:
                continue
            key = name.lower()
            if key not in names:
                names[key] = name
                timestamps[key] = []
            if shot.timestamp not in timestamps[key]:
                timestamps[key].append(shot.timestamp)
    return [EffectUsage(name=names[key], timestamps=timestamps[key]) for key in names]


def _vote(texts: Iterable[str], keywords: Dict[str, Tuple[str, ...]]) -> Optional[str]:
    """Each text votes for its best-matching bucket; majority wins, ties go to table order."""
    votes: Counter = Counter()
    order = list(keywords)
    for text in texts:
        lowered = text.lower()
        hits = {
            bucket: sum(1 for word in words if re.search(rf"\b{re.escape(word)}\b", lowered))
            for bucket, words in keywords.items()
        }
        best = max(order, key=lambda bucket: (hits[bucket], -order.index(bucket)))
        if hits[best] > 0:
            votes[best] += 1
    if not votes:
        return None
    return max(order, key=lambda bucket: (votes[bucket], -order.index(bucket)))


def _most_frequent(values: Sequence[str]) -> Optional[str]:
    counts: Counter = Counter()
    first_seen: Dict[str, str] = {}
    for value in values:
        key = value.strip().lower()
        counts[key] += 1
        first_seen.setdefault(key, value.strip())
    if not counts:
        return None
    keys = list(first_seen)
    best = max(keys, key=lambda key: (counts[key], -keys.index(key)))
    return first_seen[best]


def build_music_profile(shots: Sequence[ShotAnalysis], overall_style: Optional[OverallStyle] = None) -> MusicProfile:
    styles = [
        shot.audio_elements.music_style.strip()
        for shot in shots
        if shot.audio_elements.music_style.strip()
        and not _NO_MUSIC_PATTERN.match(shot.audio_elements.music_style)
    ]
    overall_music = (overall_style.music_style.strip() if overall_style else "")
    if overall_music and _NO_MUSIC_PATTERN.match(overall_music):
        overall_music = ""

    genre = _most_frequent(styles) or overall_music
    if not genre:
        return MusicProfile()

    mood_texts = styles + [shot.purpose.emotional for shot in shots if shot.purpose.emotional.strip()]
    energy_texts = styles + ([overall_music] if overall_music else [])
    bpm_values = [float(match) for text in [*styles, overall_music] for match in _BPM_PATTERN.findall(text)]
    bpm = int(round(sum(bpm_values) / len(bpm_values))) if bpm_values else 0

    return MusicProfile(
        genre=genre,
        bpm=bpm,
        energy=_vote(energy_texts, ENERGY_KEYWORDS) or UNKNOWN,
        mood=_vote(mood_texts, MOOD_KEYWORDS) or UNKNOWN,
    )


def derive_insights(shots: Sequence[ShotAnalysis], overall_style: Optional[OverallStyle] = None) -> DerivedInsights:
    insights = DerivedInsights(
        hook=extract_hook(shots),
        content_structure=build_content_structure(shots),
        effects=collect_effects(shots),
        music=build_music_profile(shots, overall_style),
    )
    logger.debug(f"Derived insights: {len(insights.effects)} effects, music genre {insights.music.genre!r}")
    return insights
