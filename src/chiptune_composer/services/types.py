"""Shared service data structures."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from ..app.models import (
    Channel,
    EventCommand,
    Mood,
    SectionSummary,
    StyleIntent,
    StylePreset,
    TechniqueStrategy,
    Tempo,
    Texture,
    VoiceArrangement,
    VoiceRole,
)
from .rng import DEFAULT_FALLBACK_SEED


@dataclass(frozen=True)
class PipelineOptions:
    mood: Mood
    tempo: Tempo
    length_in_measures: int
    seed: int
    style_preset: Optional[StylePreset]
    style_overrides: Optional[StyleIntent]
    fallback_seed: int = DEFAULT_FALLBACK_SEED


@dataclass(frozen=True)
class SectionDefinition:
    id: str
    start_measure: int
    measures: int
    chord_progression: Tuple[str, ...]
    template_id: str
    occurrence_index: int
    texture: Texture

    @property
    def end_measure(self) -> int:
        return self.start_measure + self.measures

    def chord_for_measure(self, measure_in_section: int) -> str:
        progression = self.chord_progression
        return progression[measure_in_section % len(progression)]

    def summary(self) -> SectionSummary:
        return SectionSummary(
            id=self.id,
            template_id=self.template_id,
            start_measure=self.start_measure,
            measures=self.measures,
            chord_progression=list(self.chord_progression),
            occurrence_index=self.occurrence_index,
            texture=self.texture,
        )


@dataclass(frozen=True)
class StructurePlan:
    bpm: int
    key: str
    scale_degrees: Tuple[int, ...]
    sections: Tuple[SectionDefinition, ...]
    technique_strategy: TechniqueStrategy
    style_intent: StyleIntent
    voice_arrangement: VoiceArrangement

    @property
    def total_measures(self) -> int:
        return sum(section.measures for section in self.sections)


@dataclass(frozen=True)
class AbstractNote:
    channel_role: VoiceRole
    start_beat: float
    duration_beats: float
    degree: int
    velocity: int
    section_id: str
    midi_override: Optional[int] = None

    def with_midi(self, midi: int) -> "MidiNote":
        return MidiNote(
            channel_role=self.channel_role,
            start_beat=self.start_beat,
            duration_beats=self.duration_beats,
            degree=self.degree,
            velocity=self.velocity,
            section_id=self.section_id,
            midi=midi,
        )


@dataclass(frozen=True)
class MidiNote:
    channel_role: VoiceRole
    start_beat: float
    duration_beats: float
    degree: int
    velocity: int
    section_id: str
    midi: int
    detune_cents: Optional[int] = None

    @property
    def end_beat(self) -> float:
        return self.start_beat + self.duration_beats

    def shifted(self, semitones: int) -> "MidiNote":
        return replace(self, midi=self.midi + semitones)


@dataclass(frozen=True)
class DrumHit:
    start_beat: float
    duration_beats: float
    instrument: str
    section_id: str


@dataclass
class VoiceTrack:
    role: VoiceRole
    notes: List[MidiNote]


@dataclass
class TimedEvent:
    beat: float
    channel: Channel
    command: EventCommand
    data: Dict[str, Any] = field(default_factory=dict)
