"""Motif selection: turns a structure plan into voice tracks and drum hits.

Selection walks sections, then phrases, then measures. Every decision draws
from one composition RNG, so the order of the calls below is part of the
output contract: reordering them changes every composition.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set, Tuple, cast

from loguru import logger

from ..app.models import (
    ArrangementId,
    Mood,
    MotifUsage,
    SectionMotifPlan,
    StyleIntent,
    StylePreset,
    Tempo,
    Voice,
    VoiceRole,
)
from .arrangements import LEGACY_ARRANGEMENTS, accompaniment_rule_for, drum_rule_for
from .corpus import (
    BassPatternMotif,
    MelodyFragment,
    MelodyRhythmMotif,
    MotifCorpus,
    RhythmMotif,
    melody_rhythm_steps,
    rhythm_durations,
)
from .filters import cache_key, functional_tag
from .resolvers import (
    EARLY_START_VELOCITY,
    PAD_MIN_VELOCITY,
    PICKUP_VELOCITY,
    accompaniment_degree,
    accompaniment_velocity,
    base_register,
    melody_register,
    melody_velocity,
    should_play_measure,
    tail_degree_variant,
)
from .rng import MASK_32, Rng, create_rng
from .selectors import (
    BASS_BASE_MIDI,
    DrumSelection,
    build_bass_pattern,
    maybe_generate_transition,
    merge_transition_hits,
    pick_rhythm_variation,
    resolve_bass_pattern,
    select_drum_pattern,
    select_melody_fragment,
    select_melody_rhythm_motif,
    select_rhythm_motif,
)
from .structure import establishes_hook, phrase_length_for, reprises_hook
from .theory import (
    BEATS_PER_MEASURE,
    EPSILON,
    SoundingIndex,
    chord_at_beat,
    drum_hits_from_pattern,
    ensure_consonant,
    is_strong_beat,
    quantize_to_chord,
    round_half_up,
    scale_degree_to_midi,
)
from .types import AbstractNote, DrumHit, MidiNote, SectionDefinition, StructurePlan, VoiceTrack

SECTION_REPEAT_BIAS = 0.3
ACCOMPANIMENT_BASE_MIDI = 67
BASS_DEGREE_BASE_MIDI = 52
BASS_ALT_PREFERRED_TAGS = ("drone", "accent")


@dataclass(frozen=True)
class HookMotifs:
    rhythm_id: str
    melody_id: str
    melody_rhythm_id: str


class HookCache:
    """Canonical motif choice per template, fixed by its first occurrence."""

    def __init__(self) -> None:
        self._hooks: Dict[str, HookMotifs] = {}

    def get(self, template_id: str) -> Optional[HookMotifs]:
        return self._hooks.get(template_id)

    def establish(self, template_id: str, hook: HookMotifs) -> HookMotifs:
        return self._hooks.setdefault(template_id, hook)


@dataclass
class PreviousChoice:
    rhythm: Optional[str] = None
    melody: Optional[str] = None
    melody_rhythm: Optional[str] = None
    drum: Optional[str] = None


@dataclass
class UsedMotifs:
    rhythms: Set[str] = field(default_factory=set)
    melodies: Set[str] = field(default_factory=set)
    melody_rhythms: Set[str] = field(default_factory=set)
    drums: Set[str] = field(default_factory=set)
    bass_patterns: Set[str] = field(default_factory=set)
    transitions: Set[str] = field(default_factory=set)


@dataclass
class UsageCounters:
    rhythm: Counter = field(default_factory=Counter)
    melody: Counter = field(default_factory=Counter)
    drums: Counter = field(default_factory=Counter)
    melody_rhythm: Counter = field(default_factory=Counter)
    bass: Counter = field(default_factory=Counter)
    transitions: Counter = field(default_factory=Counter)

    def to_model(self) -> MotifUsage:
        return MotifUsage(
            rhythm=dict(self.rhythm),
            melody=dict(self.melody),
            drums=dict(self.drums),
            melody_rhythm=dict(self.melody_rhythm),
            bass=dict(self.bass),
            transitions=dict(self.transitions),
        )


@dataclass
class SelectionContext:
    """All mutable selection state for one composition."""

    corpus: MotifCorpus
    plan: StructurePlan
    mood: Mood
    seed: int
    fallback_seed: int
    rng: Rng
    composition_register: int
    used: UsedMotifs = field(default_factory=UsedMotifs)
    usage: UsageCounters = field(default_factory=UsageCounters)
    hooks: HookCache = field(default_factory=HookCache)
    template_slots: Dict[Tuple[str, str], PreviousChoice] = field(default_factory=dict)
    bass_cache: Dict[str, BassPatternMotif] = field(default_factory=dict)
    last_rhythm: Optional[RhythmMotif] = None
    last_melody: Optional[MelodyFragment] = None
    last_drum_id: Optional[str] = None
    last_transition_id: Optional[str] = None

    @property
    def intent(self) -> StyleIntent:
        return self.plan.style_intent

    @property
    def total_measures(self) -> int:
        return self.plan.total_measures

    @property
    def arrangement_id(self) -> ArrangementId:
        return self.plan.voice_arrangement.id

    def slot(self, template_id: str, key: str) -> PreviousChoice:
        return self.template_slots.setdefault((template_id, key), PreviousChoice())


@dataclass
class MotifSelection:
    tracks: List[VoiceTrack]
    drums: List[DrumHit]
    motif_usage: MotifUsage
    section_motif_plan: List[SectionMotifPlan]


@dataclass
class _Phrase:
    section: SectionDefinition
    measures: int
    is_first: bool
    start_measure: int
    rhythm: RhythmMotif
    melody: MelodyFragment
    melody_rhythm: MelodyRhythmMotif


@dataclass
class _Measure:
    measure_in_section: int
    global_index: int
    start_beat: float
    function_tag: str
    required_tags: Tuple[str, ...]
    phrase_offset: int
    rhythm: RhythmMotif


@dataclass
class _MelodyCursor:
    beat: float = 0.0
    step: int = 0
    degree: int = 0


@dataclass
class _Output:
    melody: List[AbstractNote] = field(default_factory=list)
    bass: List[AbstractNote] = field(default_factory=list)
    accompaniment: List[AbstractNote] = field(default_factory=list)
    drums: List[DrumHit] = field(default_factory=list)
    plan: List[SectionMotifPlan] = field(default_factory=list)


def _required_tags(global_index: int, total: int, hook_measure: bool) -> Tuple[str, ...]:
    if global_index == total - 1:
        return ("loop_safe",)
    if global_index == total - 2 and not hook_measure:
        return ("cadence",)
    return ()


def _open_phrase(
    context: SelectionContext,
    section: SectionDefinition,
    phrase_measures: int,
    phrase_start: int,
    output: _Output,
) -> _Phrase:
    corpus = context.corpus
    is_first = phrase_start == section.start_measure
    reprise = reprises_hook(section) and is_first
    hook = context.hooks.get(section.template_id)
    function_tag = functional_tag(0, section.measures)
    required = _required_tags(phrase_start, context.total_measures, reprise)
    slot = context.slot(section.template_id, cache_key(function_tag, required))

    rhythm: Optional[RhythmMotif] = None
    melody: Optional[MelodyFragment] = None
    melody_rhythm: Optional[MelodyRhythmMotif] = None
    if reprise and hook is not None:
        rhythm = corpus.rhythm(hook.rhythm_id)
        melody = corpus.melody(hook.melody_id)
        melody_rhythm = corpus.melody_rhythm(hook.melody_rhythm_id)

    if rhythm is None:
        rhythm = corpus.rhythm(slot.rhythm) if slot.rhythm else None
        if rhythm is None:
            rhythm = select_rhythm_motif(
                corpus,
                mood=context.mood,
                intent=context.intent,
                function_tag=function_tag,
                required_tags=required,
                rng=context.rng,
                used=context.used.rhythms,
                last=context.last_rhythm,
            )
            slot.rhythm = rhythm.id
    if melody is None:
        melody = corpus.melody(slot.melody) if slot.melody else None
        if melody is None:
            melody = select_melody_fragment(
                corpus,
                mood=context.mood,
                intent=context.intent,
                required_tags=required,
                rng=context.rng,
                used=context.used.melodies,
                last=context.last_melody,
            )
            slot.melody = melody.id
    if melody_rhythm is None:
        melody_rhythm = corpus.melody_rhythm(slot.melody_rhythm) if slot.melody_rhythm else None
        if melody_rhythm is None:
            melody_rhythm = select_melody_rhythm_motif(
                corpus,
                mood=context.mood,
                intent=context.intent,
                function_tag=function_tag,
                total_beats=phrase_measures * BEATS_PER_MEASURE,
                required_tags=required,
                rng=context.rng,
                used=context.used.melody_rhythms,
            )
            slot.melody_rhythm = melody_rhythm.id

    if establishes_hook(section) and is_first:
        context.hooks.establish(
            section.template_id, HookMotifs(rhythm.id, melody.id, melody_rhythm.id)
        )

    context.used.rhythms.add(rhythm.id)
    context.used.melodies.add(melody.id)
    context.used.melody_rhythms.add(melody_rhythm.id)
    context.usage.melody[melody.id] += 1
    context.usage.melody_rhythm[melody_rhythm.id] += 1

    if is_first:
        output.plan.append(
            SectionMotifPlan(
                section_id=section.id,
                template_id=section.template_id,
                occurrence_index=section.occurrence_index,
                primary_rhythm=rhythm.id,
                primary_melody=melody.id,
                primary_melody_rhythm=melody_rhythm.id,
                reprises_hook=(
                    reprise
                    and hook is not None
                    and hook == HookMotifs(rhythm.id, melody.id, melody_rhythm.id)
                ),
            )
        )
    return _Phrase(
        section=section,
        measures=phrase_measures,
        is_first=is_first,
        start_measure=phrase_start,
        rhythm=rhythm,
        melody=melody,
        melody_rhythm=melody_rhythm,
    )


def _open_measure(context: SelectionContext, phrase: _Phrase, phrase_offset: int) -> _Measure:
    section = phrase.section
    measure_in_section = phrase.start_measure - section.start_measure + phrase_offset
    global_index = section.start_measure + measure_in_section
    function_tag = functional_tag(measure_in_section, section.measures)
    hook_measure = reprises_hook(section) and measure_in_section == 0
    required = _required_tags(global_index, context.total_measures, hook_measure)
    slot = context.slot(section.template_id, cache_key(function_tag, required))

    vary_by_position = phrase_offset > 0 or not phrase.is_first or section.occurrence_index > 1
    prefer_variation = (
        not reprises_hook(section) and vary_by_position and context.rng() > SECTION_REPEAT_BIAS
    )

    def variation() -> Optional[RhythmMotif]:
        return pick_rhythm_variation(
            context.corpus,
            phrase.rhythm,
            function_tag=function_tag,
            required_tags=required,
            rng=context.rng,
            used=context.used.rhythms,
        )

    rhythm = context.corpus.rhythm(slot.rhythm) if slot.rhythm else None
    if rhythm is None:
        rhythm = (variation() if prefer_variation else None) or phrase.rhythm
    elif prefer_variation and rhythm.id == phrase.rhythm.id:
        rhythm = variation() or rhythm

    if function_tag not in rhythm.tags or not rhythm.tags.has_all(required):
        rhythm = select_rhythm_motif(
            context.corpus,
            mood=context.mood,
            intent=context.intent,
            function_tag=function_tag,
            required_tags=required,
            rng=context.rng,
            used=context.used.rhythms,
            last=phrase.rhythm,
        )

    slot.rhythm = rhythm.id
    context.usage.rhythm[rhythm.id] += 1
    context.used.rhythms.add(rhythm.id)
    return _Measure(
        measure_in_section=measure_in_section,
        global_index=global_index,
        start_beat=float(global_index * BEATS_PER_MEASURE),
        function_tag=function_tag,
        required_tags=required,
        phrase_offset=phrase_offset,
        rhythm=rhythm,
    )


def _add_pickup(output: _Output, measure_start: float, melody: MelodyFragment, section_id: str) -> None:
    pickup_start = measure_start - 0.25
    if measure_start <= 0 or pickup_start < 0:
        return
    pattern = melody.pattern
    output.melody.append(
        AbstractNote(
            channel_role=VoiceRole.MELODY,
            start_beat=pickup_start,
            duration_beats=0.25,
            degree=pattern[-1] if pattern else 1,
            velocity=PICKUP_VELOCITY,
            section_id=section_id,
        )
    )


def _melody_for_measure(
    context: SelectionContext,
    phrase: _Phrase,
    measure: _Measure,
    steps: List[Tuple[float, bool]],
    cursor: _MelodyCursor,
    output: _Output,
) -> None:
    section = phrase.section
    pattern = phrase.melody.pattern
    limit = (measure.phrase_offset + 1) * BEATS_PER_MEASURE
    while cursor.step < len(steps) and cursor.beat < limit:
        duration, rest = steps[cursor.step]
        local_start = cursor.beat - measure.phrase_offset * BEATS_PER_MEASURE
        if not rest:
            degree = pattern[cursor.degree % len(pattern)]
            is_tail = cursor.step == len(steps) - 1
            if (
                is_tail
                and (section.occurrence_index > 1 or measure.measure_in_section > 0)
                and not reprises_hook(section)
            ):
                degree = tail_degree_variant(degree, pattern, context.intent, context.rng)
            output.melody.append(
                AbstractNote(
                    channel_role=VoiceRole.MELODY,
                    start_beat=measure.start_beat + local_start,
                    duration_beats=duration,
                    degree=degree,
                    velocity=melody_velocity(
                        section,
                        measure.measure_in_section,
                        measure.global_index,
                        context.total_measures,
                        context.intent,
                    ),
                    section_id=section.id,
                )
            )
            cursor.degree += 1
        cursor.beat += duration
        cursor.step += 1


def _bass_for_measure(
    context: SelectionContext, section: SectionDefinition, measure: _Measure, output: _Output
) -> None:
    pattern = resolve_bass_pattern(
        context.corpus,
        section,
        measure.measure_in_section,
        intent=context.intent,
        rng=context.rng,
        used=context.used.bass_patterns,
        cache=context.bass_cache,
        establishes_hook=establishes_hook(section),
    )
    context.usage.bass[pattern.id] += 1
    sections = context.plan.sections
    chord = chord_at_beat(sections, measure.start_beat)
    next_chord = chord_at_beat(sections, measure.start_beat + BEATS_PER_MEASURE)
    output.bass.extend(build_bass_pattern(section, measure.start_beat, chord, next_chord, pattern))


def build_accompaniment_seeds(
    section: SectionDefinition,
    measure_start: float,
    rhythm: RhythmMotif,
    melody: MelodyFragment,
    function_tag: str,
    arrangement_id: ArrangementId,
    rng: Rng,
) -> List[AbstractNote]:
    """Chord-tone seeds for one measure, later expanded by texture."""
    rule = accompaniment_rule_for(arrangement_id)
    seeds: List[AbstractNote] = []
    beat = 0.0
    for degree_index, step in enumerate(rhythm_durations(rhythm)):
        if beat >= BEATS_PER_MEASURE:
            break
        duration = min(step, BEATS_PER_MEASURE - beat)
        velocity = round_half_up(accompaniment_velocity(function_tag, beat) * rule.velocity_scale)
        if beat % 1 > EPSILON and rule.offbeat_boost:
            velocity += rule.offbeat_boost
        if rule.density < 1 and rng() > max(0.0, min(1.0, rule.density)):
            beat += duration
            continue
        seeds.append(
            AbstractNote(
                channel_role=VoiceRole.ACCOMPANIMENT,
                start_beat=measure_start + beat,
                duration_beats=duration,
                degree=accompaniment_degree(section.texture, degree_index, beat),
                velocity=velocity,
                section_id=section.id,
            )
        )
        beat += duration

    if (
        function_tag == "start"
        and establishes_hook(section)
        and melody.pattern
        and measure_start >= 0.5
        and not rule.density < 0.5
    ):
        seeds.append(
            AbstractNote(
                channel_role=VoiceRole.ACCOMPANIMENT,
                start_beat=max(0.0, measure_start - 0.5),
                duration_beats=0.5,
                degree=melody.pattern[0],
                velocity=EARLY_START_VELOCITY,
                section_id=section.id,
            )
        )

    if rule.sustain and seeds:
        average = round_half_up(sum(note.velocity for note in seeds) / len(seeds))
        return [
            AbstractNote(
                channel_role=VoiceRole.ACCOMPANIMENT,
                start_beat=measure_start,
                duration_beats=float(BEATS_PER_MEASURE),
                degree=seeds[0].degree,
                velocity=max(PAD_MIN_VELOCITY, average),
                section_id=section.id,
            )
        ]
    return seeds


def _drums_for_measure(
    context: SelectionContext, section: SectionDefinition, measure: _Measure, output: _Output
) -> None:
    index = measure.measure_in_section
    is_final = index == section.measures - 1
    force_fill = is_final or (section.measures > 2 and index == section.measures - 2)
    kind = "fill" if force_fill else "beat"
    slot = context.slot(section.template_id, cache_key(f"{index}:{kind}", measure.required_tags))

    pattern = context.corpus.drum(slot.drum) if slot.drum else None
    if pattern is None:
        pattern = select_drum_pattern(
            context.corpus,
            DrumSelection(index, section.measures, measure.required_tags, force_fill),
            intent=context.intent,
            rule=drum_rule_for(context.arrangement_id),
            rng=context.rng,
            used=context.used.drums,
            last_id=context.last_drum_id,
        )
        if pattern is not None:
            slot.drum = pattern.id

    if pattern is not None:
        context.usage.drums[pattern.id] += 1
        context.used.drums.add(pattern.id)
        output.drums.extend(drum_hits_from_pattern(pattern.pattern, measure.start_beat, section.id))
        context.last_drum_id = pattern.id

    if not is_final:
        return
    transition = maybe_generate_transition(
        context.corpus,
        section,
        measure.start_beat,
        is_last_section=section is context.plan.sections[-1],
        intent=context.intent,
        global_measure_index=measure.global_index,
        total_measures=context.total_measures,
        rng=context.rng,
        used=context.used.transitions,
        last_id=context.last_transition_id,
    )
    if transition is None:
        return
    motif_id, hits = transition
    context.usage.transitions[motif_id] += 1
    context.used.transitions.add(motif_id)
    output.drums.extend(merge_transition_hits(output.drums, hits))
    context.last_transition_id = motif_id


def _process_section(context: SelectionContext, section: SectionDefinition, output: _Output) -> None:
    phrase_length = max(1, phrase_length_for(section.template_id))
    measure = 0
    while measure < section.measures:
        phrase_measures = min(phrase_length, section.measures - measure)
        phrase = _open_phrase(
            context, section, phrase_measures, section.start_measure + measure, output
        )
        steps = melody_rhythm_steps(phrase.melody_rhythm)
        cursor = _MelodyCursor()
        for offset in range(phrase_measures):
            current = _open_measure(context, phrase, offset)
            if phrase.is_first and offset == 0:
                _add_pickup(output, current.start_beat, phrase.melody, section.id)
            _melody_for_measure(context, phrase, current, steps, cursor, output)
            _bass_for_measure(context, section, current, output)
            output.accompaniment.extend(
                build_accompaniment_seeds(
                    section,
                    current.start_beat,
                    current.rhythm,
                    phrase.melody,
                    current.function_tag,
                    context.arrangement_id,
                    context.rng,
                )
            )
            _drums_for_measure(context, section, current, output)
            context.last_rhythm = current.rhythm
            context.last_melody = phrase.melody
        measure += phrase_measures


def _section_index(plan: StructurePlan) -> Dict[str, SectionDefinition]:
    return {section.id: section for section in plan.sections}


def _melody_to_midi(context: SelectionContext, notes: List[AbstractNote]) -> List[MidiNote]:
    plan = context.plan
    by_id = _section_index(plan)
    converted: List[MidiNote] = []
    for note in notes:
        section = by_id.get(note.section_id)
        measure_index = int(note.start_beat // BEATS_PER_MEASURE)
        register = melody_register(
            section,
            measure_index - section.start_measure if section else 0,
            measure_index,
            context.total_measures,
            context.intent,
            context.composition_register,
        )
        base = scale_degree_to_midi(note.degree, plan.scale_degrees, register)
        chord = chord_at_beat(plan.sections, note.start_beat)
        if is_strong_beat(note.start_beat):
            midi = quantize_to_chord(base, chord)
        else:
            midi = ensure_consonant(base, chord)
        converted.append(note.with_midi(midi))
    return converted


def _bass_to_midi(plan: StructurePlan, notes: List[AbstractNote]) -> List[MidiNote]:
    converted: List[MidiNote] = []
    for note in notes:
        if note.midi_override is not None:
            base = note.midi_override
        else:
            base = scale_degree_to_midi(note.degree, plan.scale_degrees, BASS_DEGREE_BASE_MIDI, -1)
        converted.append(note.with_midi(quantize_to_chord(base, chord_at_beat(plan.sections, note.start_beat))))
    return converted


def _accompaniment_to_midi(
    plan: StructurePlan, notes: List[AbstractNote], melody: List[MidiNote]
) -> List[MidiNote]:
    sounding = SoundingIndex(melody)
    converted: List[MidiNote] = []
    for note in notes:
        base = scale_degree_to_midi(note.degree, plan.scale_degrees, ACCOMPANIMENT_BASE_MIDI)
        chord = chord_at_beat(plan.sections, note.start_beat)
        reference = sounding.at(note.start_beat)
        midi = ensure_consonant(base, chord, reference.midi if reference else None)
        converted.append(note.with_midi(midi))
    return converted


def _bass_voice(context: SelectionContext, voice: Voice) -> List[AbstractNote]:
    plan = context.plan
    rng = create_rng((context.seed + voice.seed_offset) & MASK_32, context.fallback_seed)
    used: Set[str] = set()
    cache: Dict[str, BassPatternMotif] = {}
    is_alt = voice.role == VoiceRole.BASS_ALT
    base_midi = BASS_BASE_MIDI + voice.octave_offset * 12
    notes: List[AbstractNote] = []
    for section in plan.sections:
        for measure in range(section.measures):
            if not should_play_measure(voice.priority, measure, section.measures, context.intent, rng):
                continue
            start = float((section.start_measure + measure) * BEATS_PER_MEASURE)
            pattern = resolve_bass_pattern(
                context.corpus,
                section,
                measure,
                intent=context.intent,
                rng=rng,
                used=used,
                cache=cache,
                establishes_hook=establishes_hook(section),
                enforce_drone_static=not is_alt,
                preferred_tags=BASS_ALT_PREFERRED_TAGS if is_alt else (),
            )
            chord = chord_at_beat(plan.sections, start)
            next_chord = chord_at_beat(plan.sections, start + BEATS_PER_MEASURE)
            notes.extend(build_bass_pattern(section, start, chord, next_chord, pattern, base_midi))
    return notes


def _pad_voice(context: SelectionContext, voice: Voice) -> List[AbstractNote]:
    rng = create_rng((context.seed + voice.seed_offset) & MASK_32, context.fallback_seed)
    notes: List[AbstractNote] = []
    for section in context.plan.sections:
        for measure in range(section.measures):
            if not should_play_measure(voice.priority, measure, section.measures, context.intent, rng):
                continue
            notes.append(
                AbstractNote(
                    channel_role=VoiceRole.PAD,
                    start_beat=float((section.start_measure + measure) * BEATS_PER_MEASURE),
                    duration_beats=float(BEATS_PER_MEASURE),
                    degree=1 if measure % 2 == 0 else 5,
                    velocity=PAD_MIN_VELOCITY,
                    section_id=section.id,
                )
            )
    return notes


def _layered_velocity(role: VoiceRole, velocity: int) -> int:
    if role == VoiceRole.BASS:
        return max(28, round_half_up(velocity * 0.65))
    if role == VoiceRole.BASS_ALT:
        return max(22, round_half_up(velocity * 0.5))
    return velocity


def _arrangement_tracks(
    context: SelectionContext,
    melody: List[MidiNote],
    accompaniment: List[MidiNote],
) -> List[VoiceTrack]:
    plan = context.plan
    arrangement_id = context.arrangement_id
    tracks: List[VoiceTrack] = []
    for voice in plan.voice_arrangement.voices:
        shift = voice.octave_offset * 12
        if voice.role in (VoiceRole.BASS, VoiceRole.BASS_ALT):
            notes = [
                note.with_midi(cast(int, note.midi_override))
                for note in _bass_voice(context, voice)
            ]
        elif voice.role == VoiceRole.PAD:
            notes = [
                note.with_midi(
                    quantize_to_chord(
                        scale_degree_to_midi(note.degree, plan.scale_degrees, ACCOMPANIMENT_BASE_MIDI),
                        chord_at_beat(plan.sections, note.start_beat),
                    )
                    + shift
                )
                for note in _pad_voice(context, voice)
            ]
        elif voice.role == VoiceRole.MELODY:
            if arrangement_id == ArrangementId.MINIMAL:
                continue
            notes = [note.shifted(shift) for note in melody]
        else:
            notes = [note.shifted(shift) for note in accompaniment]

        notes = [
            replace(
                note,
                channel_role=voice.role,
                velocity=(
                    _layered_velocity(voice.role, note.velocity)
                    if arrangement_id == ArrangementId.LAYERED_BASS
                    else note.velocity
                ),
            )
            for note in notes
        ]
        if notes:
            tracks.append(VoiceTrack(role=voice.role, notes=notes))
    return tracks


def select_motifs(
    plan: StructurePlan,
    corpus: MotifCorpus,
    *,
    mood: Mood,
    tempo: Tempo,
    seed: int,
    preset: Optional[StylePreset],
    fallback_seed: int,
) -> MotifSelection:
    """Choose motifs for every measure of ``plan`` and build the voice tracks."""
    context = SelectionContext(
        corpus=corpus,
        plan=plan,
        mood=mood,
        seed=seed,
        fallback_seed=fallback_seed,
        rng=create_rng(seed, fallback_seed),
        composition_register=base_register(
            mood, tempo, preset, plan.style_intent, seed, fallback_seed
        ),
    )
    output = _Output()
    for section in plan.sections:
        _process_section(context, section, output)

    melody = _melody_to_midi(context, output.melody)
    bass = _bass_to_midi(plan, output.bass)
    accompaniment = _accompaniment_to_midi(plan, output.accompaniment, melody)

    if context.arrangement_id in LEGACY_ARRANGEMENTS:
        tracks = [
            VoiceTrack(role=VoiceRole.MELODY, notes=melody),
            VoiceTrack(role=VoiceRole.BASS, notes=bass),
            VoiceTrack(role=VoiceRole.ACCOMPANIMENT, notes=accompaniment),
        ]
    else:
        tracks = _arrangement_tracks(context, melody, accompaniment)

    logger.debug(
        "Selected motifs for {} sections: {} drum hits, tracks {}",
        len(plan.sections),
        len(output.drums),
        [track.role.value for track in tracks],
    )
    return MotifSelection(
        tracks=tracks,
        drums=output.drums,
        motif_usage=context.usage.to_model(),
        section_motif_plan=output.plan,
    )
