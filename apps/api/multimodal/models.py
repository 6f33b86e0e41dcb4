from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Composition(BaseModel):
    framing: str = ""
    background: str = ""
    lighting: str = ""
    colors: List[str] = Field(default_factory=list)


class VisualElements(BaseModel):
    main_subject: str = ""
    props: List[str] = Field(default_factory=list)
    graphic_elements: List[str] = Field(default_factory=list)  # on-screen text, overlays
    clothing: str = ""


class AudioElements(BaseModel):
    dialogue: str = ""
    music_style: str = ""
    sound_effects: List[str] = Field(default_factory=list)


class EditingTechniques(BaseModel):
    transitions: List[str] = Field(default_factory=list)
    effects: List[str] = Field(default_factory=list)
    pacing: str = ""


class Purpose(BaseModel):
    narrative: str = ""
    emotional: str = ""
    technical: str = ""


class ShotAnalysis(BaseModel):
    timestamp: float = 0.0  # first frame of the batch, seconds
    frame_timestamps: List[float] = Field(default_factory=list)
    shot_type: str = "Unknown"
    composition: Composition = Field(default_factory=Composition)
    visual_elements: VisualElements = Field(default_factory=VisualElements)
    audio_elements: AudioElements = Field(default_factory=AudioElements)
    editing_techniques: EditingTechniques = Field(default_factory=EditingTechniques)
    purpose: Purpose = Field(default_factory=Purpose)


class OverallStyle(BaseModel):
    visual_theme: str = ""
    editing_style: str = ""
    music_style: str = ""
    pacing: str = ""


class EffectUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    timestamps: List[float]


class MusicProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    genre: str = "No music detected"
    bpm: int = 0
    energy: str = "Unknown"
    mood: str = "Unknown"


class DerivedInsights(BaseModel):
    """Heuristic UI annotations. Not grounded in model output the way shots are."""

    model_config = ConfigDict(frozen=True)

    hook: str = "Unknown"
    content_structure: str = "Unknown"
    effects: List[EffectUsage] = Field(default_factory=list)
    music: MusicProfile = Field(default_factory=MusicProfile)


class VideoAnalysisReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    duration: float  # seconds, latest sampled frame
    overall_style: OverallStyle
    shots: List[ShotAnalysis]
    frame_count: int = 0
    insights: Optional[DerivedInsights] = None
