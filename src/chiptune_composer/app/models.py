from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Mood(str, Enum):
    UPBEAT = "upbeat"
    SAD = "sad"
    TENSE = "tense"
    PEACEFUL = "peaceful"


class Tempo(str, Enum):
    SLOW = "slow"
    MEDIUM = "medium"
    FAST = "fast"


class EnergyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Texture(str, Enum):
    STEADY = "steady"
    BROKEN = "broken"
    ARPEGGIO = "arpeggio"


class StylePreset(str, Enum):
    MINIMAL_TECHNO = "minimal-techno"
    PROGRESSIVE_HOUSE = "progressive-house"
    RETRO_LOOPWAVE = "retro-loopwave"
    BREAKBEAT_JUNGLE = "breakbeat-jungle"
    LOFI_CHILLHOP = "lofi-chillhop"


class Channel(str, Enum):
    SQUARE1 = "square1"
    SQUARE2 = "square2"
    TRIANGLE = "triangle"
    NOISE = "noise"


class VoiceRole(str, Enum):
    MELODY = "melody"
    MELODY_ALT = "melody_alt"
    BASS = "bass"
    BASS_ALT = "bass_alt"
    ACCOMPANIMENT = "accompaniment"
    PAD = "pad"


class EventCommand(str, Enum):
    NOTE_ON = "note_on"
    NOTE_OFF = "note_off"
    SET_PARAM = "set_param"


class ArrangementId(str, Enum):
    STANDARD = "standard"
    SWAPPED = "swapped"
    DUAL_BASS = "dual_bass"
    BASS_LED = "bass_led"
    LAYERED_BASS = "layered_bass"
    MINIMAL = "minimal"
    BREAK_LAYERED = "break_layered"
    LOFI_PAD_LEAD = "lofi_pad_lead"
    RETRO_PULSE = "retro_pulse"


class TwoAxisStyle(BaseModel):
    percussive_melodic: float = Field(default=0.0, allow_inf_nan=False)
    calm_energetic: float = Field(default=0.0, allow_inf_nan=False)


class StyleIntent(BaseModel):
    texture_focus: bool = False
    loop_centric: bool = False
    gradual_build: bool = False
    harmonic_static: bool = False
    percussive_layering: bool = False
    break_insertion: bool = False
    filter_motion: bool = False
    syncopation_bias: bool = False
    atmos_pad: bool = False


class IntentOverrides(BaseModel):
    texture_focus: Optional[bool] = None
    loop_centric: Optional[bool] = None
    gradual_build: Optional[bool] = None
    harmonic_static: Optional[bool] = None
    percussive_layering: Optional[bool] = None
    break_insertion: Optional[bool] = None
    filter_motion: Optional[bool] = None
    syncopation_bias: Optional[bool] = None
    atmos_pad: Optional[bool] = None


class StyleOverrides(BaseModel):
    tempo: Optional[Tempo] = None
    intent: Optional[IntentOverrides] = None
    randomize_unset_intent: Optional[bool] = None


class CompositionOptions(BaseModel):
    length_in_measures: Optional[int] = Field(default=None, ge=1, le=512)
    seed: Optional[int] = Field(default=None)
    two_axis_style: Optional[TwoAxisStyle] = None
    preset: Optional[str] = Field(default=None, min_length=1, max_length=64)
    overrides: Optional[StyleOverrides] = None


class StyleTags(BaseModel):
    mood: Mood
    energy: EnergyLevel


class ResolvedStyleProfile(BaseModel):
    tempo: Tempo
    intent: StyleIntent
    randomize_unset_intent: bool = False
    tags: StyleTags
    two_axis_style: TwoAxisStyle


class Voice(BaseModel):
    role: VoiceRole
    channel: Channel
    priority: float = Field(default=1.0, ge=0.0, le=1.0)
    octave_offset: int = 0
    seed_offset: int = 0


class VoiceArrangement(BaseModel):
    id: ArrangementId
    label: str
    description: str
    voices: list[Voice]


class TechniqueStrategy(BaseModel):
    echo_probability: float
    detune_probability: float
    fast_arpeggio_probability: float


class Event(BaseModel):
    time: float
    channel: Channel
    command: EventCommand
    data: dict[str, Any] = Field(default_factory=dict)


class VoiceAllocationEntry(BaseModel):
    time: float
    channel: Channel
    active_count: int


class LoopWindow(BaseModel):
    head: list[Event] = Field(default_factory=list)
    tail: list[Event] = Field(default_factory=list)


class MotifUsage(BaseModel):
    rhythm: dict[str, int] = Field(default_factory=dict)
    melody: dict[str, int] = Field(default_factory=dict)
    drums: dict[str, int] = Field(default_factory=dict)
    melody_rhythm: dict[str, int] = Field(default_factory=dict)
    bass: dict[str, int] = Field(default_factory=dict)
    transitions: dict[str, int] = Field(default_factory=dict)


class SectionMotifPlan(BaseModel):
    section_id: str
    template_id: str
    occurrence_index: int
    primary_rhythm: str
    primary_melody: str
    primary_melody_rhythm: str
    reprises_hook: bool


class Diagnostics(BaseModel):
    voice_allocation: list[VoiceAllocationEntry]
    loop_window: LoopWindow
    motif_usage: MotifUsage
    section_motif_plan: list[SectionMotifPlan]


class LoopInfo(BaseModel):
    loop_start_beat: float = 0.0
    loop_end_beat: float
    loop_start_time: float = 0.0
    loop_end_time: float
    total_beats: float
    total_duration: float


class SectionSummary(BaseModel):
    id: str
    template_id: str
    start_measure: int
    measures: int
    chord_progression: list[str]
    occurrence_index: int
    texture: Texture


class CompositionMeta(BaseModel):
    bpm: int
    key: str
    seed: int
    mood: Mood
    tempo: Tempo
    length_in_measures: int
    style_intent: StyleIntent
    voice_arrangement: VoiceArrangement
    sections: list[SectionSummary]
    technique_strategy: TechniqueStrategy
    profile: ResolvedStyleProfile
    replay_options: CompositionOptions
    loop_info: LoopInfo


class CompositionResult(BaseModel):
    events: list[Event]
    diagnostics: Diagnostics
    meta: CompositionMeta


class PresetDescriptor(BaseModel):
    name: StylePreset
    two_axis_style: TwoAxisStyle


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class GenerationStatus(BaseModel):
    job_id: str
    state: JobState
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    message: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utc_now)


class GenerationMetadata(BaseModel):
    seed: int
    length_in_measures: int
    bpm: int
    key: str
    voice_arrangement: ArrangementId
    event_count: int
    duration_seconds: float
    replay_options: CompositionOptions
    extras: dict[str, Any] = Field(default_factory=dict)


class GenerationArtifact(BaseModel):
    job_id: str
    artifact_path: str
    metadata: GenerationMetadata
