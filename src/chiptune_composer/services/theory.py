"""Pitch, chord and grid helpers used across the pipeline."""

from __future__ import annotations

import bisect
import math
import re
from typing import Dict, List, Optional, Sequence, Tuple

from .types import DrumHit, MidiNote, SectionDefinition

BEATS_PER_MEASURE = 4
GRID_STEPS_PER_MEASURE = 16
EPSILON = 1e-6

NOTE_TO_SEMITONE: Dict[str, int] = {
    "C": 0,
    "C#": 1,
    "Db": 1,
    "D": 2,
    "D#": 3,
    "Eb": 3,
    "E": 4,
    "F": 5,
    "F#": 6,
    "Gb": 6,
    "G": 7,
    "G#": 8,
    "Ab": 8,
    "A": 9,
    "A#": 10,
    "Bb": 10,
    "B": 11,
}

NOTE_ORDER: Tuple[str, ...] = (
    "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B",
)

MAJOR_TRIAD = (0, 4, 7)
MINOR_TRIAD = (0, 3, 7)

CHORD_INTERVALS: Dict[str, Tuple[int, ...]] = {
    "": MAJOR_TRIAD,
    "m": MINOR_TRIAD,
    "7": (0, 4, 7, 10),
    "m7": (0, 3, 7, 10),
    "maj7": (0, 4, 7, 11),
    "sus2": (0, 2, 7),
    "sus4": (0, 5, 7),
    "dim": (0, 3, 6),
    "aug": (0, 4, 8),
}

DRUM_DURATION_BEATS: Dict[str, float] = {
    "K": 0.25,
    "S": 0.25,
    "H": 0.125,
    "O": 0.375,
    "T": 0.5,
    "N": 0.375,
}

CONSONANT_INTERVALS = frozenset({0, 3, 4, 5, 7, 8, 9})

_ROOT_PATTERN = re.compile(r"^([A-Ga-g])([#b]?)")
_CHORD_PATTERN = re.compile(r"^([A-G])([#b]?)(.*)$")
_QUALITY_PATTERN = re.compile(r"^([A-G][#b]?)(m?)(.*)$")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def is_strong_beat(beat: float) -> bool:
    return abs(beat % 1) < EPSILON


def chord_root_to_midi(chord: str, base_midi: int) -> int:
    """Place the chord root in the octave that contains ``base_midi``."""
    match = _ROOT_PATTERN.match(chord)
    if match is None:
        return base_midi
    note = match.group(1).upper() + match.group(2)
    semitone = NOTE_TO_SEMITONE.get(note, 0)
    return base_midi - (base_midi % 12) + semitone


def chord_intervals(chord: str) -> Tuple[int, ...]:
    match = _CHORD_PATTERN.match(chord)
    suffix = match.group(3) if match else ""
    if suffix in CHORD_INTERVALS:
        return CHORD_INTERVALS[suffix]
    return MINOR_TRIAD if suffix.startswith("m") else MAJOR_TRIAD


def scale_degree_to_midi(
    degree: int,
    scale: Sequence[int],
    base_midi: int,
    octave_offset: int = 0,
) -> int:
    size = len(scale)
    index = (degree - 1) % size
    octave = (degree - 1) // size + octave_offset
    return base_midi + scale[index] + 12 * octave


def quantize_to_chord(midi: int, chord: str) -> int:
    """Snap ``midi`` to the nearest chord tone within two octaves."""
    root = chord_root_to_midi(chord, midi)
    best = midi
    best_distance = math.inf
    for interval in chord_intervals(chord):
        for octave in range(-2, 3):
            candidate = root + interval + octave * 12
            distance = abs(candidate - midi)
            if distance < best_distance:
                best = candidate
                best_distance = distance
    return best


def ensure_consonant(midi: int, chord: str, reference: Optional[int] = None) -> int:
    """Pick a chord tone close to ``midi`` that sits consonantly against ``reference``."""
    if reference is None:
        return quantize_to_chord(midi, chord)
    root = chord_root_to_midi(chord, reference)
    best = midi
    best_score = math.inf
    for interval in chord_intervals(chord):
        for octave in range(-2, 3):
            candidate = root + interval + octave * 12
            dissonance = 0 if (candidate - reference) % 12 in CONSONANT_INTERVALS else 10
            score = dissonance + abs(candidate - midi) * 0.1 + abs(candidate - reference) * 0.05
            if score < best_score:
                best = candidate
                best_score = score
    return best


def transpose_chord(chord: str, semitones: int) -> str:
    match = _CHORD_PATTERN.match(chord)
    if match is None:
        return chord
    letter, accidental, suffix = match.groups()
    index = NOTE_TO_SEMITONE.get(letter + accidental, NOTE_TO_SEMITONE[letter])
    return NOTE_ORDER[(index + semitones) % 12] + suffix


def toggle_minor_major(chord: str) -> str:
    match = _QUALITY_PATTERN.match(chord)
    if match is None:
        return chord
    root, minor, rest = match.groups()
    if minor:
        return root + rest
    return root + "m" + rest


def related_chords(chord: str) -> List[str]:
    return [transpose_chord(chord, 7), transpose_chord(chord, 5), toggle_minor_major(chord)]


def drum_hits_from_pattern(pattern: str, start_beat: float, section_id: str) -> List[DrumHit]:
    """Expand a 16th-note grid string into hits; ``-`` marks silence."""
    hits: List[DrumHit] = []
    for index, symbol in enumerate(pattern):
        if symbol == "-":
            continue
        hits.append(
            DrumHit(
                start_beat=start_beat + index / GRID_STEPS_PER_MEASURE * BEATS_PER_MEASURE,
                duration_beats=DRUM_DURATION_BEATS.get(symbol, 0.25),
                instrument=symbol,
                section_id=section_id,
            )
        )
    return hits


def chord_at_beat(sections: Sequence[SectionDefinition], beat: float) -> str:
    measure = int(beat // BEATS_PER_MEASURE)
    for section in sections:
        if section.start_measure <= measure < section.end_measure:
            return section.chord_for_measure(measure - section.start_measure)
    if sections and sections[0].chord_progression:
        return sections[0].chord_progression[0]
    return "C"


class SoundingIndex:
    """Answers "which note is sounding at beat b" over a fixed note list."""

    def __init__(self, notes: Sequence[MidiNote]) -> None:
        self._notes = sorted(notes, key=lambda note: note.start_beat)
        self._starts = [note.start_beat for note in self._notes]
        self._longest = max((note.duration_beats for note in self._notes), default=0.0)

    def at(self, beat: float) -> Optional[MidiNote]:
        low = bisect.bisect_left(self._starts, beat - self._longest)
        high = bisect.bisect_right(self._starts, beat)
        for note in self._notes[low:high]:
            if note.start_beat <= beat < note.end_beat:
                return note
        return None


def note_value_to_beats(value: int) -> float:
    """Convert a note value (2 = half, 4 = quarter, ...) to beats."""
    if value == 2:
        return 2.0
    if value == 4:
        return 1.0
    if value == 8:
        return 0.5
    return 0.25
