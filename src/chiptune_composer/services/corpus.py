"""Typed, read-only motif corpus and its consistency checks."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from ..app.models import Channel, Texture
from .exceptions import CorpusError, LengthMismatch
from .theory import EPSILON, note_value_to_beats

DEFAULT_MOTIF_DIR = Path(__file__).resolve().parents[1] / "motifs"

CORPUS_FILES: Dict[str, str] = {
    "chords": "chords.json",
    "rhythm": "rhythm.json",
    "melody": "melody.json",
    "melody_rhythm": "melody-rhythm.json",
    "drums": "drums.json",
    "bass_patterns": "bass-patterns.json",
    "transitions": "transitions.json",
    "techniques": "techniques.json",
}

DEFAULT_BASS_STEPS: Tuple[str, ...] = (
    "root", "root", "fifth", "root", "fifth", "root", "fifth", "approach",
)

HUMANIZE_SHORT_RUN_LIMIT = 1.0
HUMANIZE_LONG_NOTE = 0.5
HUMANIZE_REST_REQUIREMENT = 0.25


@dataclass(frozen=True)
class TagSet:
    tags: frozenset[str] = frozenset()

    @classmethod
    def of(cls, tags: Iterable[str]) -> "TagSet":
        return cls(frozenset(tags))

    def __contains__(self, tag: object) -> bool:
        return tag in self.tags

    def has_any(self, tags: Iterable[str]) -> bool:
        return any(tag in self.tags for tag in tags)

    def has_all(self, tags: Iterable[str]) -> bool:
        return all(tag in self.tags for tag in tags)


@dataclass(frozen=True)
class RhythmMotif:
    id: str
    length: float
    pattern: Tuple[int, ...]
    tags: TagSet
    variations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MelodyFragment:
    id: str
    pattern: Tuple[int, ...]
    tags: TagSet


@dataclass(frozen=True)
class MelodyRhythmStep:
    value: int
    rest: bool = False
    accent: bool = False

    @property
    def beats(self) -> float:
        return note_value_to_beats(self.value)


@dataclass(frozen=True)
class MelodyRhythmMotif:
    id: str
    length: float
    pattern: Tuple[MelodyRhythmStep, ...]
    tags: TagSet


@dataclass(frozen=True)
class DrumPattern:
    id: str
    length_beats: float
    type: str
    pattern: str
    tags: TagSet


@dataclass(frozen=True)
class BassPatternMotif:
    id: str
    texture: Texture
    steps: Tuple[str, ...]
    tags: TagSet


@dataclass(frozen=True)
class TransitionMotif:
    id: str
    length_beats: float
    pattern: str
    tags: TagSet
    channel: Channel = Channel.NOISE


@dataclass(frozen=True)
class InitialParam:
    channel: Channel
    param: str
    value: float


@dataclass(frozen=True)
class DutySweep:
    id: str
    param: str
    channels: Tuple[Channel, ...]
    min_duration_beats: float
    steps: Tuple[float, ...]
    require_measure_boundary: bool = False


@dataclass(frozen=True)
class GainProfile:
    id: str
    channel: Channel
    param: str
    measure_boundary_value: float
    default_value: float


@dataclass(frozen=True)
class TechniqueLibrary:
    initial_params: Tuple[InitialParam, ...] = ()
    duty_sweeps: Tuple[DutySweep, ...] = ()
    gain_profiles: Tuple[GainProfile, ...] = ()


FALLBACK_BASS_PATTERN = BassPatternMotif(
    id="BP_FALLBACK_STEADY",
    texture=Texture.STEADY,
    steps=DEFAULT_BASS_STEPS,
    tags=TagSet.of(["fallback"]),
)


@dataclass(frozen=True)
class MotifCorpus:
    chords: Mapping[str, Mapping[str, Tuple[Tuple[str, ...], ...]]] = field(default_factory=dict)
    rhythms: Tuple[RhythmMotif, ...] = ()
    melodies: Tuple[MelodyFragment, ...] = ()
    melody_rhythms: Tuple[MelodyRhythmMotif, ...] = ()
    drums: Tuple[DrumPattern, ...] = ()
    bass_patterns: Tuple[BassPatternMotif, ...] = ()
    transitions: Tuple[TransitionMotif, ...] = ()
    techniques: TechniqueLibrary = field(default_factory=TechniqueLibrary)
    _rhythm_index: Dict[str, RhythmMotif] = field(init=False, repr=False, compare=False)
    _melody_index: Dict[str, MelodyFragment] = field(init=False, repr=False, compare=False)
    _melody_rhythm_index: Dict[str, MelodyRhythmMotif] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_rhythm_index", {m.id: m for m in self.rhythms})
        object.__setattr__(self, "_melody_index", {m.id: m for m in self.melodies})
        object.__setattr__(self, "_melody_rhythm_index", {m.id: m for m in self.melody_rhythms})

    def rhythm(self, motif_id: str) -> Optional[RhythmMotif]:
        return self._rhythm_index.get(motif_id)

    def melody(self, motif_id: str) -> Optional[MelodyFragment]:
        return self._melody_index.get(motif_id)

    def melody_rhythm(self, motif_id: str) -> Optional[MelodyRhythmMotif]:
        return self._melody_rhythm_index.get(motif_id)

    def drum(self, pattern_id: str) -> Optional[DrumPattern]:
        return next((pattern for pattern in self.drums if pattern.id == pattern_id), None)

    def bass_for_texture(self, texture: Texture) -> List[BassPatternMotif]:
        return [pattern for pattern in self.bass_patterns if pattern.texture == texture]

    def progressions(self, key: str) -> Optional[Mapping[str, Tuple[Tuple[str, ...], ...]]]:
        return self.chords.get(key)

    def sizes(self) -> Dict[str, int]:
        return {
            "chord_keys": len(self.chords),
            "rhythm": len(self.rhythms),
            "melody": len(self.melodies),
            "melody_rhythm": len(self.melody_rhythms),
            "drums": len(self.drums),
            "bass_patterns": len(self.bass_patterns),
            "transitions": len(self.transitions),
        }


def rhythm_total(motif: RhythmMotif) -> float:
    return sum(note_value_to_beats(value) for value in motif.pattern)


def melody_rhythm_total(motif: MelodyRhythmMotif) -> float:
    return sum(step.beats for step in motif.pattern)


def is_rhythm_consistent(motif: RhythmMotif) -> bool:
    return abs(rhythm_total(motif) - motif.length) <= EPSILON


def is_melody_rhythm_consistent(motif: MelodyRhythmMotif) -> bool:
    return abs(melody_rhythm_total(motif) - motif.length) <= EPSILON


def rhythm_durations(motif: RhythmMotif) -> List[float]:
    """Durations in beats; raises :class:`LengthMismatch` for a defective record."""
    durations = [note_value_to_beats(value) for value in motif.pattern]
    total = sum(durations)
    if abs(total - motif.length) > EPSILON:
        raise LengthMismatch(motif.id, motif.length, total)
    return durations


def melody_rhythm_steps(motif: MelodyRhythmMotif) -> List[Tuple[float, bool]]:
    steps = [(step.beats, step.rest) for step in motif.pattern]
    total = sum(duration for duration, _ in steps)
    if abs(total - motif.length) > EPSILON:
        raise LengthMismatch(motif.id, motif.length, total)
    return steps


def passes_humanization(motif: MelodyRhythmMotif, total_beats: float) -> bool:
    """Reject mechanical material: long runs of short notes, no rest or sustain."""
    if not motif.pattern:
        return False
    rest_requirement = HUMANIZE_REST_REQUIREMENT if total_beats >= 4 else 0.0
    rest_total = 0.0
    short_run = 0.0
    has_long = False
    for step in motif.pattern:
        duration = step.beats
        if step.rest:
            rest_total += duration
            short_run = 0.0
            continue
        if duration >= HUMANIZE_LONG_NOTE:
            has_long = True
            short_run = 0.0
            continue
        short_run += duration
        if short_run > HUMANIZE_SHORT_RUN_LIMIT + EPSILON:
            return False
    if rest_total >= rest_requirement:
        return True
    return has_long


def _tags(raw: Mapping[str, Any]) -> TagSet:
    return TagSet.of(str(tag) for tag in raw.get("tags", []))


def _build_chords(raw: Mapping[str, Any]) -> Dict[str, Dict[str, Tuple[Tuple[str, ...], ...]]]:
    chords: Dict[str, Dict[str, Tuple[Tuple[str, ...], ...]]] = {}
    for key, by_tag in raw.items():
        chords[key] = {
            tag: tuple(tuple(str(chord) for chord in progression) for progression in progressions)
            for tag, progressions in by_tag.items()
        }
    return chords


def _build_techniques(raw: Mapping[str, Any]) -> TechniqueLibrary:
    return TechniqueLibrary(
        initial_params=tuple(
            InitialParam(
                channel=Channel(item["channel"]),
                param=item["param"],
                value=float(item["value"]),
            )
            for item in raw.get("initial_params", [])
        ),
        duty_sweeps=tuple(
            DutySweep(
                id=item["id"],
                param=item.get("param", "duty"),
                channels=tuple(Channel(channel) for channel in item["channels"]),
                min_duration_beats=float(item.get("min_duration_beats", 0.0)),
                steps=tuple(float(step) for step in item["steps"]),
                require_measure_boundary=bool(item.get("require_measure_boundary", False)),
            )
            for item in raw.get("duty_sweeps", [])
        ),
        gain_profiles=tuple(
            GainProfile(
                id=item["id"],
                channel=Channel(item["channel"]),
                param=item.get("param", "gain"),
                measure_boundary_value=float(item["measure_boundary_value"]),
                default_value=float(item["default_value"]),
            )
            for item in raw.get("gain_profiles", [])
        ),
    )


def build_corpus(raw: Mapping[str, Any]) -> MotifCorpus:
    """Build a corpus from decoded JSON tables keyed like :data:`CORPUS_FILES`."""
    return MotifCorpus(
        chords=_build_chords(raw.get("chords", {})),
        rhythms=tuple(
            RhythmMotif(
                id=item["id"],
                length=float(item["length"]),
                pattern=tuple(int(value) for value in item["pattern"]),
                tags=_tags(item),
                variations=tuple(item.get("variations", [])),
            )
            for item in raw.get("rhythm", [])
        ),
        melodies=tuple(
            MelodyFragment(
                id=item["id"],
                pattern=tuple(int(degree) for degree in item["pattern"]),
                tags=_tags(item),
            )
            for item in raw.get("melody", [])
        ),
        melody_rhythms=tuple(
            MelodyRhythmMotif(
                id=item["id"],
                length=float(item["length"]),
                pattern=tuple(
                    MelodyRhythmStep(
                        value=int(step["value"]),
                        rest=bool(step.get("rest", False)),
                        accent=bool(step.get("accent", False)),
                    )
                    for step in item["pattern"]
                ),
                tags=_tags(item),
            )
            for item in raw.get("melody_rhythm", [])
        ),
        drums=tuple(
            DrumPattern(
                id=item["id"],
                length_beats=float(item["length_beats"]),
                type=item["type"],
                pattern=item["pattern"],
                tags=_tags(item),
            )
            for item in raw.get("drums", [])
        ),
        bass_patterns=tuple(
            BassPatternMotif(
                id=item["id"],
                texture=Texture(item["texture"]),
                steps=tuple(item.get("steps") or DEFAULT_BASS_STEPS),
                tags=_tags(item),
            )
            for item in raw.get("bass_patterns", [])
        ),
        transitions=tuple(
            TransitionMotif(
                id=item["id"],
                length_beats=float(item["length_beats"]),
                pattern=item["pattern"],
                tags=_tags(item),
                channel=Channel(item.get("channel", Channel.NOISE.value)),
            )
            for item in raw.get("transitions", [])
        ),
        techniques=_build_techniques(raw.get("techniques", {})),
    )


def _read_table(directory: Path, name: str) -> Any:
    path = directory / CORPUS_FILES[name]
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:  # pragma: no cover - configuration error
        raise CorpusError(f"motif table missing at {path}") from exc


@lru_cache(maxsize=4)
def load_corpus(directory: Path = DEFAULT_MOTIF_DIR) -> MotifCorpus:
    raw: Dict[str, Any] = {name: _read_table(directory, name) for name in CORPUS_FILES}
    raw["bass_patterns"] = raw["bass_patterns"]["patterns"]
    raw["transitions"] = raw["transitions"]["transitions"]
    corpus = build_corpus(raw)
    logger.info("Loaded motif corpus from {}: {}", directory, corpus.sizes())
    return corpus


def default_corpus() -> MotifCorpus:
    return load_corpus(DEFAULT_MOTIF_DIR)
