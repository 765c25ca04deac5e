"""Event realization: voice tracks and drum hits to a beat-timed event stream."""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..app.models import (
    Channel,
    EventCommand,
    StyleIntent,
    TechniqueStrategy,
    Tempo,
    Texture,
    Voice,
    VoiceRole,
)
from .motifs import MotifSelection
from .rng import DEFAULT_FALLBACK_SEED, Rng, create_rng
from .theory import (
    BEATS_PER_MEASURE,
    SoundingIndex,
    chord_at_beat,
    chord_intervals,
    ensure_consonant,
    quantize_to_chord,
    round_half_up,
)
from .types import DrumHit, MidiNote, SectionDefinition, StructurePlan, TimedEvent

VELOCITY_MIN = 20
VELOCITY_MAX = 118
BASS_VELOCITY_SCALE = 0.7
BASS_LOW_RANGE_SCALE = 0.85
BASS_LOW_RANGE_MIDI = 52
TRIANGLE_VELOCITY_SCALE = 0.75
TRIANGLE_NON_BASS_SCALE = 0.9
SQUARE_BASS_SCALE = 0.82

PAD_MIN_VELOCITY = 48
ARPEGGIO_VELOCITY_SCALE = 0.75
BROKEN_VELOCITY_SCALE = 0.9
STEADY_VELOCITY_SCALE = 0.85
ECHO_VELOCITY_SCALE = 0.6
DETUNE_VELOCITY_SCALE = 0.7
ECHO_OFFSET_BEATS = 0.25
DETUNE_CENTS = 12

PORTAMENTO_MAX_INTERVAL = 5
PORTAMENTO_MAX_GAP_BEATS = 0.5
PORTAMENTO_MIN_DURATION_BEATS = 0.5
PORTAMENTO_DURATION_SECONDS = 0.06

NOISE_MAX_DURATION_BEATS = 0.5
NOISE_STACK_OFFSET = 1 / 16
NOISE_STACKABLE_PAIRS = frozenset({("H", "H"), ("H", "O"), ("O", "H")})

BASS_ROLES = frozenset({VoiceRole.BASS, VoiceRole.BASS_ALT})
MELODY_ROLES = frozenset({VoiceRole.MELODY, VoiceRole.MELODY_ALT})
SQUARE_CHANNELS = frozenset({Channel.SQUARE1, Channel.SQUARE2})
MONOPHONIC_CHANNELS = frozenset({Channel.TRIANGLE})


@dataclass(frozen=True)
class NoiseInstrument:
    mode: str
    period_index: int
    release_range: Tuple[float, float]
    velocity: int
    amplitude: float


NOISE_INSTRUMENTS: Dict[str, NoiseInstrument] = {
    "K": NoiseInstrument("long_period", 3, (0.045, 0.075), 120, 1.0),
    "T": NoiseInstrument("long_period", 5, (0.05, 0.09), 116, 0.92),
    "N": NoiseInstrument("long_period", 8, (0.06, 0.1), 112, 0.88),
    "S": NoiseInstrument("short_period", 1, (0.02, 0.045), 115, 0.9),
    "H": NoiseInstrument("short_period", 0, (0.015, 0.03), 118, 0.86),
    "O": NoiseInstrument("short_period", 2, (0.03, 0.055), 114, 0.94),
}


@dataclass(frozen=True)
class ArpeggioProfile:
    reverse_probability: float = 0.5
    sustain_probability: float = 0.2
    sparse_threshold: float = 0.45
    normal_threshold: float = 0.85


@dataclass
class RealizedEvents:
    events: List[TimedEvent]
    voice_allocation: List[Tuple[float, Channel, int]]
    total_beats: float


@dataclass
class _Context:
    plan: StructurePlan
    rng: Rng
    tempo: Tempo
    total_beats: float
    sections: Dict[str, SectionDefinition] = field(default_factory=dict)

    @property
    def intent(self) -> StyleIntent:
        return self.plan.style_intent

    @property
    def strategy(self) -> TechniqueStrategy:
        return self.plan.technique_strategy


@dataclass(frozen=True)
class _Pending:
    start_beat: float
    duration_beats: float
    data: Dict[str, Any]


def adjust_velocity(channel: Channel, role: VoiceRole, midi: int, velocity: int) -> int:
    """Scale a note velocity for the channel that will play it."""
    scale = 1.0
    is_bass = role in BASS_ROLES
    if is_bass:
        scale *= BASS_VELOCITY_SCALE
        if midi < BASS_LOW_RANGE_MIDI:
            scale *= BASS_LOW_RANGE_SCALE
    if channel == Channel.TRIANGLE:
        scale *= TRIANGLE_VELOCITY_SCALE
        if not is_bass:
            scale *= TRIANGLE_NON_BASS_SCALE
    if channel in SQUARE_CHANNELS and is_bass:
        scale *= SQUARE_BASS_SCALE
    return max(VELOCITY_MIN, min(VELOCITY_MAX, round_half_up(velocity * scale)))


def arpeggio_profile(intent: StyleIntent, texture: Optional[Texture]) -> ArpeggioProfile:
    profile = ArpeggioProfile()
    if intent.texture_focus:
        profile = ArpeggioProfile(0.35, 0.12, 0.3, 0.7)
    if intent.loop_centric:
        profile = replace(
            profile,
            sustain_probability=min(0.35, profile.sustain_probability + 0.1),
            sparse_threshold=min(0.5, profile.sparse_threshold + 0.05),
            normal_threshold=min(0.95, profile.normal_threshold + 0.05),
        )
    if texture == Texture.ARPEGGIO and intent.gradual_build:
        profile = replace(profile, sparse_threshold=0.25, normal_threshold=0.65)
    return profile


def portamento_probability(intent: StyleIntent) -> float:
    if intent.atmos_pad:
        return 0.4
    if intent.loop_centric and intent.texture_focus:
        return 0.35
    if intent.gradual_build and intent.break_insertion:
        return 0.25
    return 0.15


def should_apply_portamento(note: MidiNote, following: MidiNote, intent: StyleIntent, rng: Rng) -> bool:
    interval = abs(following.midi - note.midi)
    gap = following.start_beat - note.end_beat
    if not 0 < interval <= PORTAMENTO_MAX_INTERVAL:
        return False
    if not -1e-3 <= gap <= PORTAMENTO_MAX_GAP_BEATS:
        return False
    if note.duration_beats < PORTAMENTO_MIN_DURATION_BEATS:
        return False
    return rng() < portamento_probability(intent)


def portamento_seconds(tempo: Tempo, interval: int) -> float:
    duration = PORTAMENTO_DURATION_SECONDS
    if tempo == Tempo.SLOW:
        duration += 0.02
    elif tempo == Tempo.FAST:
        duration -= 0.015
    if interval >= 4:
        duration += 0.01
    return max(0.02, min(0.12, duration))


def arpeggio_intervals(chord: str) -> List[int]:
    cycle = chord_intervals(chord) or (0, 4, 7)
    return [cycle[step % len(cycle)] + (step // len(cycle)) * 12 for step in range(4)]


def expand_fast_arpeggio(
    seed: MidiNote, chord: str, rng: Rng, intent: StyleIntent, texture: Optional[Texture]
) -> List[MidiNote]:
    profile = arpeggio_profile(intent, texture)
    velocity = max(PAD_MIN_VELOCITY, round_half_up(seed.velocity * ARPEGGIO_VELOCITY_SCALE))
    if rng() < profile.sustain_probability:
        return [
            replace(
                seed,
                duration_beats=max(seed.duration_beats, 1.0),
                velocity=velocity,
                midi=ensure_consonant(seed.midi, chord, seed.midi),
            )
        ]

    pattern = arpeggio_intervals(chord)
    if rng() < profile.reverse_probability:
        pattern.reverse()
    roll = rng()
    if roll < profile.sparse_threshold:
        subdivisions, step = 2, 0.5
    elif roll < profile.normal_threshold:
        subdivisions, step = 4, 0.25
    else:
        subdivisions, step = 1, max(seed.duration_beats, 1.0)

    notes: List[MidiNote] = []
    for index in range(subdivisions):
        candidate = quantize_to_chord(seed.midi + pattern[index % len(pattern)], chord)
        notes.append(
            replace(
                seed,
                start_beat=seed.start_beat + step * index,
                duration_beats=step,
                velocity=velocity,
                midi=ensure_consonant(candidate, chord, seed.midi),
            )
        )
    return notes


def expand_broken(seeds: Sequence[MidiNote]) -> List[MidiNote]:
    notes: List[MidiNote] = []
    for seed in seeds:
        velocity = max(PAD_MIN_VELOCITY, round_half_up(seed.velocity * BROKEN_VELOCITY_SCALE))
        for offset in (0.0, 0.5):
            notes.append(
                replace(seed, start_beat=seed.start_beat + offset, duration_beats=0.5, velocity=velocity)
            )
    return notes


def expand_steady(seeds: Sequence[MidiNote]) -> List[MidiNote]:
    return [
        replace(
            seed,
            duration_beats=max(seed.duration_beats, 1.0),
            velocity=max(PAD_MIN_VELOCITY, round_half_up(seed.velocity * STEADY_VELOCITY_SCALE)),
        )
        for seed in seeds
    ]


def _note_data(note: MidiNote, voice: Voice) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "midi": note.midi,
        "velocity": adjust_velocity(voice.channel, voice.role, note.midi, note.velocity),
    }
    if note.detune_cents is not None:
        data["detune_cents"] = note.detune_cents
    return data


def _realize_melody(context: _Context, notes: List[MidiNote], voice: Voice) -> List[_Pending]:
    pending: List[_Pending] = []
    for index, note in enumerate(notes):
        data = _note_data(note, voice)
        following = notes[index + 1] if index + 1 < len(notes) else None
        if following is not None and should_apply_portamento(note, following, context.intent, context.rng):
            data["slide"] = {
                "target_midi": following.midi,
                "duration_seconds": portamento_seconds(
                    context.tempo, abs(following.midi - note.midi)
                ),
            }
        pending.append(_Pending(note.start_beat, note.duration_beats, data))
    return pending


def _realize_bass(notes: List[MidiNote], voice: Voice) -> List[_Pending]:
    return [_Pending(note.start_beat, note.duration_beats, _note_data(note, voice)) for note in notes]


def _realize_accompaniment(
    context: _Context, notes: List[MidiNote], voice: Voice, melody: SoundingIndex
) -> List[_Pending]:
    by_measure: Dict[int, List[MidiNote]] = defaultdict(list)
    for note in notes:
        by_measure[int(note.start_beat // BEATS_PER_MEASURE)].append(note)

    plan = context.plan
    pending: List[_Pending] = []
    for measure in sorted(by_measure):
        seeds = by_measure[measure]
        section = context.sections.get(seeds[0].section_id)
        texture = section.texture if section is not None else Texture.STEADY
        chord = chord_at_beat(plan.sections, seeds[0].start_beat)

        if texture == Texture.ARPEGGIO:
            processed = [
                note
                for seed in seeds
                for note in expand_fast_arpeggio(seed, chord, context.rng, context.intent, texture)
            ]
        elif texture == Texture.BROKEN:
            processed = expand_broken(seeds)
        else:
            processed = expand_steady(seeds)

        echoes: List[MidiNote] = []
        detuned: List[MidiNote] = []
        for note in processed:
            if context.rng() < context.strategy.echo_probability:
                echoes.append(
                    replace(
                        note,
                        start_beat=note.start_beat + ECHO_OFFSET_BEATS,
                        velocity=round_half_up(note.velocity * ECHO_VELOCITY_SCALE),
                    )
                )
            if context.rng() < context.strategy.detune_probability:
                detuned.append(
                    replace(
                        note,
                        velocity=round_half_up(note.velocity * DETUNE_VELOCITY_SCALE),
                        detune_cents=DETUNE_CENTS,
                    )
                )

        for note in processed + echoes + detuned:
            reference = melody.at(note.start_beat)
            midi = ensure_consonant(
                note.midi,
                chord_at_beat(plan.sections, note.start_beat),
                reference.midi if reference is not None else note.midi,
            )
            voiced = replace(note, midi=midi)
            pending.append(_Pending(voiced.start_beat, voiced.duration_beats, _note_data(voiced, voice)))
    return pending


def enforce_monophony(pending: Sequence[_Pending]) -> List[_Pending]:
    """Keep one sounding note at a time: clip at the next start, drop same-start duplicates."""
    ordered = sorted(pending, key=lambda item: item.start_beat)
    result: List[_Pending] = []
    for item in ordered:
        if result and math.isclose(result[-1].start_beat, item.start_beat, abs_tol=1e-9):
            continue
        if result:
            previous = result[-1]
            limit = item.start_beat - previous.start_beat
            if previous.duration_beats > limit:
                result[-1] = replace(previous, duration_beats=limit)
        result.append(item)
    return result


def _push_note(
    events: List[TimedEvent],
    channel: Channel,
    item: _Pending,
    total_beats: float,
) -> None:
    if item.start_beat >= total_beats:
        return
    end = min(item.start_beat + item.duration_beats, total_beats)
    events.append(TimedEvent(item.start_beat, channel, EventCommand.NOTE_ON, item.data))
    events.append(TimedEvent(end, channel, EventCommand.NOTE_OFF, {}))


def noise_release(instrument: NoiseInstrument, intent: StyleIntent, rng: Rng) -> float:
    low, high = instrument.release_range
    base = low + rng() * max(0.0, high - low)
    if intent.percussive_layering:
        return max(low, base * 0.85)
    if intent.gradual_build:
        return min(high, base * 1.05)
    return base


def realize_drums(
    hits: Sequence[DrumHit], intent: StyleIntent, rng: Rng, total_beats: float
) -> List[TimedEvent]:
    """Place drum hits on the noise channel so that at most one is ever sounding."""
    events: List[TimedEvent] = []
    last_on: Optional[float] = None
    last_off: Optional[float] = None
    last_instrument: Optional[str] = None

    for hit in sorted(hits, key=lambda item: item.start_beat):
        instrument = NOISE_INSTRUMENTS.get(hit.instrument)
        if instrument is None:
            continue
        stackable = (last_instrument, hit.instrument) in NOISE_STACKABLE_PAIRS
        offset = 0.0 if stackable else NOISE_STACK_OFFSET
        start = hit.start_beat
        if last_on is not None and start - last_on <= offset:
            start = last_on + max(offset, NOISE_STACK_OFFSET)

        release = noise_release(instrument, intent, rng)
        decay = max(0.01, min(release * 0.7, release))
        duration = min(hit.duration_beats, NOISE_MAX_DURATION_BEATS)
        if start >= total_beats:
            continue

        if last_off is not None and start < last_off:
            if stackable and len(events) >= 2:
                if events[-1].command == EventCommand.NOTE_OFF:
                    events[-1].beat = start
                last_off = start
            else:
                del events[-2:]
                last_on = None
                last_off = None
                if events and events[-1].beat > start:
                    events[-1].beat = start

        events.append(
            TimedEvent(
                start,
                Channel.NOISE,
                EventCommand.NOTE_ON,
                {
                    "noise_mode": instrument.mode,
                    "mode": instrument.mode,
                    "velocity": instrument.velocity,
                    "amplitude": instrument.amplitude,
                    "release_seconds": release,
                    "decay_seconds": decay,
                    "period_index": instrument.period_index,
                    "clock_divider": instrument.period_index,
                },
            )
        )
        off = min(start + duration, total_beats)
        events.append(TimedEvent(off, Channel.NOISE, EventCommand.NOTE_OFF, {}))
        last_on = start
        last_off = off
        last_instrument = hit.instrument
    return events


def voice_allocation(events: Sequence[TimedEvent]) -> List[Tuple[float, Channel, int]]:
    """Running count of sounding notes per channel, one entry per event."""
    counts: Dict[Channel, int] = defaultdict(int)
    trace: List[Tuple[float, Channel, int]] = []
    for event in events:
        if event.command == EventCommand.NOTE_ON:
            counts[event.channel] += 1
        elif event.command == EventCommand.NOTE_OFF and counts[event.channel] > 0:
            counts[event.channel] -= 1
        trace.append((event.beat, event.channel, counts[event.channel]))
    return trace


def realize_events(
    plan: StructurePlan,
    selection: MotifSelection,
    *,
    tempo: Tempo,
    seed: int,
    fallback_seed: int = DEFAULT_FALLBACK_SEED,
) -> RealizedEvents:
    context = _Context(
        plan=plan,
        rng=create_rng(seed, fallback_seed),
        tempo=tempo,
        total_beats=float(plan.total_measures * BEATS_PER_MEASURE),
        sections={section.id: section for section in plan.sections},
    )
    voices = {voice.role: voice for voice in plan.voice_arrangement.voices}
    melody_track = next((track for track in selection.tracks if track.role == VoiceRole.MELODY), None)
    melody = SoundingIndex(melody_track.notes if melody_track is not None else [])

    events: List[TimedEvent] = []
    for track in selection.tracks:
        voice = voices.get(track.role)
        if voice is None:
            continue
        if track.role in MELODY_ROLES:
            pending = _realize_melody(context, track.notes, voice)
        elif track.role in BASS_ROLES:
            pending = _realize_bass(track.notes, voice)
        else:
            pending = _realize_accompaniment(context, track.notes, voice, melody)
        if voice.channel in MONOPHONIC_CHANNELS:
            pending = enforce_monophony(pending)
        for item in pending:
            _push_note(events, voice.channel, item, context.total_beats)

    events.extend(
        realize_drums(selection.drums, context.intent, context.rng, context.total_beats)
    )
    events.sort(key=lambda event: event.beat)
    logger.debug(
        "Realized {} events over {} beats ({} drum hits in)",
        len(events),
        context.total_beats,
        len(selection.drums),
    )
    return RealizedEvents(
        events=events,
        voice_allocation=voice_allocation(events),
        total_beats=context.total_beats,
    )
