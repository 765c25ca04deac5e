"""Per-family motif selectors.

Each selector narrows a corpus family through the shared stages in
:mod:`.filters` and then draws one candidate. Narrowing steps fall back to
the wider pool whenever they would leave nothing, so a selector only fails
when the family itself is empty.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import AbstractSet, Dict, List, MutableMapping, MutableSet, Optional, Sequence, Tuple

from ..app.models import Mood, StyleIntent, Texture, VoiceRole
from .arrangements import DrumRule
from .corpus import (
    FALLBACK_BASS_PATTERN,
    BassPatternMotif,
    DrumPattern,
    MelodyFragment,
    MelodyRhythmMotif,
    MotifCorpus,
    RhythmMotif,
    is_melody_rhythm_consistent,
    is_rhythm_consistent,
    melody_rhythm_total,
    passes_humanization,
)
from .exceptions import LengthMismatch, NoCandidatesAtLength
from .filters import (
    bias_by_tag_presence,
    narrow,
    pick_with_avoid,
    prefer_tag_presence,
    prefer_unused,
    with_all_tags,
    with_any_tag,
    without_tags,
)
from .resolvers import bass_velocity
from .rng import Rng
from .theory import (
    BEATS_PER_MEASURE,
    EPSILON,
    chord_root_to_midi,
    drum_hits_from_pattern,
    quantize_to_chord,
)
from .types import AbstractNote, DrumHit, SectionDefinition

RHYTHM_PROPERTY_TAGS: Dict[Mood, Tuple[str, ...]] = {
    Mood.UPBEAT: ("straight", "syncopation"),
    Mood.SAD: ("straight", "simple"),
    Mood.TENSE: ("syncopation", "accented"),
    Mood.PEACEFUL: ("straight", "open"),
}

MELODY_MOOD_TAGS: Dict[Mood, Tuple[str, ...]] = {
    Mood.UPBEAT: ("bright", "ascending"),
    Mood.SAD: ("dark", "descending"),
    Mood.TENSE: ("dark", "complex", "leaping"),
    Mood.PEACEFUL: ("simple", "arch", "bright"),
}

MELODY_RHYTHM_TAGS: Dict[Mood, Tuple[str, ...]] = {
    Mood.UPBEAT: ("syncopated", "drive"),
    Mood.SAD: ("legato", "rest_heavy"),
    Mood.TENSE: ("syncopated", "staccato"),
    Mood.PEACEFUL: ("legato", "simple"),
}

BASS_BASE_MIDI = 40
BASS_STEP_BEATS = 0.5

VARIATION_PROBABILITY = 0.5
EARLY_SPARSE_SKIP = 0.3
TRANSITION_COLLISION_GAP = 1 / 16
TRANSITION_MAX_NUDGES = 4

_BASS_STEP_INTERVALS: Dict[str, int] = {
    "root": 0,
    "fifth": 7,
    "lowFifth": -5,
    "octave": 12,
    "octaveHigh": 19,
}


def select_rhythm_motif(
    corpus: MotifCorpus,
    *,
    mood: Mood,
    intent: StyleIntent,
    function_tag: str,
    required_tags: Sequence[str],
    rng: Rng,
    used: AbstractSet[str],
    last: Optional[RhythmMotif] = None,
) -> RhythmMotif:
    safe = [motif for motif in corpus.rhythms if is_rhythm_consistent(motif)] or list(
        corpus.rhythms
    )
    property_tags = RHYTHM_PROPERTY_TAGS.get(mood, ())
    required_pool = with_all_tags(safe, required_tags)

    candidates = [motif for motif in safe if function_tag in motif.tags]
    by_property = with_any_tag(candidates, property_tags)
    if by_property:
        candidates = by_property
    else:
        candidates = narrow(candidates, with_any_tag(safe, property_tags))

    if intent.loop_centric:
        candidates = prefer_tag_presence(candidates, ["loop_safe", "texture_loop"])
    if intent.texture_focus:
        candidates = prefer_tag_presence(
            candidates, ["texture_loop", "straight", "simple", "grid16"]
        )
    if intent.percussive_layering:
        candidates = prefer_tag_presence(candidates, ["grid16", "percussive_layer"])
    if intent.syncopation_bias:
        candidates = prefer_tag_presence(candidates, ["syncopation"])
    if not candidates:
        candidates = safe

    if required_tags:
        candidates = narrow(required_pool or candidates, with_all_tags(candidates, required_tags))

    if last is not None and last.variations:
        variations = _rhythm_variations(corpus, last)
        if variations and rng() < VARIATION_PROBABILITY:
            return pick_with_avoid(prefer_unused(variations, used), rng, last.id)
    return pick_with_avoid(prefer_unused(candidates, used), rng, last.id if last else None)


def _rhythm_variations(corpus: MotifCorpus, base: RhythmMotif) -> List[RhythmMotif]:
    variations = []
    for variation_id in base.variations:
        motif = corpus.rhythm(variation_id)
        if motif is not None and is_rhythm_consistent(motif):
            variations.append(motif)
    return variations


def pick_rhythm_variation(
    corpus: MotifCorpus,
    base: RhythmMotif,
    *,
    function_tag: str,
    required_tags: Sequence[str],
    rng: Rng,
    used: AbstractSet[str],
) -> Optional[RhythmMotif]:
    """Return a variation of ``base`` fitting the measure, or ``None``."""
    variations = [
        motif
        for motif in _rhythm_variations(corpus, base)
        if function_tag in motif.tags and motif.tags.has_all(required_tags)
    ]
    if not variations:
        return None
    return pick_with_avoid(prefer_unused(variations, used), rng, base.id)


def select_melody_fragment(
    corpus: MotifCorpus,
    *,
    mood: Mood,
    intent: StyleIntent,
    required_tags: Sequence[str],
    rng: Rng,
    used: AbstractSet[str],
    last: Optional[MelodyFragment] = None,
) -> MelodyFragment:
    candidates = with_any_tag(corpus.melodies, MELODY_MOOD_TAGS.get(mood, ()))
    if required_tags:
        required = with_all_tags(candidates, required_tags)
        if required:
            candidates = required
        else:
            candidates = narrow(candidates, with_all_tags(corpus.melodies, required_tags))
    if not candidates:
        candidates = list(corpus.melodies)

    if intent.texture_focus:
        candidates = prefer_tag_presence(
            candidates, ["texture_loop", "ostinato", "loop_safe", "short", "static"]
        )
    if intent.harmonic_static:
        candidates = bias_by_tag_presence(candidates, ["scalar", "stepwise", "static"], rng, 0.6)
    if intent.gradual_build:
        candidates = prefer_tag_presence(candidates, ["ascending"])

    return pick_with_avoid(prefer_unused(candidates, used), rng, last.id if last else None)


def select_melody_rhythm_motif(
    corpus: MotifCorpus,
    *,
    mood: Mood,
    intent: StyleIntent,
    function_tag: str,
    total_beats: float,
    required_tags: Sequence[str],
    rng: Rng,
    used: AbstractSet[str],
    last_id: Optional[str] = None,
) -> MelodyRhythmMotif:
    """Select a melody rhythm spanning exactly ``total_beats``.

    Raises :class:`NoCandidatesAtLength` when nothing is declared at that
    length and :class:`LengthMismatch` when every such motif is defective.
    """
    at_length = [
        motif for motif in corpus.melody_rhythms if abs(motif.length - total_beats) < EPSILON
    ]
    if not at_length:
        raise NoCandidatesAtLength(total_beats)
    candidates = [motif for motif in at_length if is_melody_rhythm_consistent(motif)]
    if not candidates:
        defective = at_length[0]
        raise LengthMismatch(defective.id, defective.length, melody_rhythm_total(defective))

    candidates = narrow(candidates, [motif for motif in candidates if function_tag in motif.tags])
    candidates = narrow(candidates, with_any_tag(candidates, MELODY_RHYTHM_TAGS.get(mood, ())))

    if intent.loop_centric:
        candidates = prefer_tag_presence(candidates, ["loop_safe", "texture_loop"])
    if intent.texture_focus:
        candidates = prefer_tag_presence(candidates, ["texture_loop", "grid16", "simple"])
    if intent.syncopation_bias:
        candidates = prefer_tag_presence(candidates, ["syncopated", "drive"])

    if required_tags:
        candidates = narrow(candidates, with_all_tags(candidates, required_tags))

    candidates = narrow(
        candidates, [motif for motif in candidates if passes_humanization(motif, total_beats)]
    )
    return pick_with_avoid(prefer_unused(candidates, used), rng, last_id)


def select_bass_pattern(
    corpus: MotifCorpus,
    *,
    texture: Texture,
    intent: StyleIntent,
    rng: Rng,
    used: AbstractSet[str],
    required_tags: Sequence[str] = (),
    avoid_id: Optional[str] = None,
) -> Optional[BassPatternMotif]:
    candidates = corpus.bass_for_texture(texture)
    if not candidates and texture != Texture.STEADY:
        candidates = corpus.bass_for_texture(Texture.STEADY)
    if not candidates:
        return None

    if intent.loop_centric or intent.harmonic_static:
        candidates = prefer_tag_presence(candidates, ["loop_safe"])
    if intent.syncopation_bias:
        candidates = prefer_tag_presence(candidates, ["syncopated"])
    if intent.texture_focus:
        candidates = prefer_tag_presence(candidates, ["default"])
    if intent.percussive_layering:
        candidates = prefer_tag_presence(candidates, ["percussive_layer", "four_on_floor"])
    if intent.percussive_layering and intent.syncopation_bias and intent.break_insertion:
        candidates = prefer_tag_presence(candidates, ["breakbeat", "variation"], 0.2)
    if intent.atmos_pad and intent.loop_centric:
        candidates = prefer_tag_presence(candidates, ["lofi", "rest_heavy"], 0.25)
    if intent.harmonic_static:
        candidates = bias_by_tag_presence(candidates, ["drone", "static"], rng, 0.65)
    if required_tags:
        candidates = narrow(candidates, with_all_tags(candidates, required_tags))
    if not candidates:
        return None
    return pick_with_avoid(prefer_unused(candidates, used), rng, avoid_id)


def resolve_bass_pattern(
    corpus: MotifCorpus,
    section: SectionDefinition,
    measure_in_section: int,
    *,
    intent: StyleIntent,
    rng: Rng,
    used: MutableSet[str],
    cache: MutableMapping[str, BassPatternMotif],
    establishes_hook: bool = False,
    enforce_drone_static: bool = True,
    preferred_tags: Sequence[str] = (),
) -> BassPatternMotif:
    """Return the bass pattern for one measure of ``section``.

    The first call for a section picks and caches its pattern. The final
    measure swaps in a ``section_end`` pattern when the cached one lacks it.
    """
    is_final_measure = measure_in_section == section.measures - 1
    cached = cache.get(section.id)
    if cached is not None:
        if is_final_measure:
            return _section_end_pattern(corpus, section, cached, intent, rng, used) or cached
        return cached

    if intent.harmonic_static:
        if not enforce_drone_static and preferred_tags:
            preferred = select_bass_pattern(
                corpus,
                texture=section.texture,
                intent=intent,
                rng=rng,
                used=used,
                required_tags=preferred_tags,
            )
            if preferred is not None:
                cache[section.id] = preferred
                used.add(preferred.id)
                return preferred
        drone = select_bass_pattern(
            corpus,
            texture=section.texture,
            intent=intent,
            rng=rng,
            used=used,
            required_tags=("drone", "static"),
        )
        if drone is not None and enforce_drone_static:
            cache[section.id] = drone
            used.add(drone.id)
            return drone

    initial_tags = ("pickup",) if establishes_hook else ()
    base = (
        select_bass_pattern(
            corpus,
            texture=section.texture,
            intent=intent,
            rng=rng,
            used=used,
            required_tags=initial_tags,
        )
        or select_bass_pattern(
            corpus, texture=section.texture, intent=intent, rng=rng, used=used
        )
        or FALLBACK_BASS_PATTERN
    )
    cache[section.id] = base
    used.add(base.id)
    if is_final_measure:
        return _section_end_pattern(corpus, section, base, intent, rng, used) or base
    return base


def _section_end_pattern(
    corpus: MotifCorpus,
    section: SectionDefinition,
    current: BassPatternMotif,
    intent: StyleIntent,
    rng: Rng,
    used: MutableSet[str],
) -> Optional[BassPatternMotif]:
    if "section_end" in current.tags:
        return None
    ending = select_bass_pattern(
        corpus,
        texture=section.texture,
        intent=intent,
        rng=rng,
        used=used,
        required_tags=("section_end",),
        avoid_id=current.id,
    )
    if ending is not None:
        used.add(ending.id)
    return ending


def bass_step_to_midi(step: str, chord: str, next_chord: str, base_midi: int) -> Optional[int]:
    """Map a symbolic bass step onto the current chord; ``rest`` yields ``None``."""
    if step == "rest":
        return None
    if step == "approach":
        next_root = chord_root_to_midi(next_chord, base_midi + 5)
        return quantize_to_chord(next_root - 1, next_chord)
    return quantize_to_chord(base_midi + _BASS_STEP_INTERVALS.get(step, 0), chord)


def build_bass_pattern(
    section: SectionDefinition,
    measure_start_beat: float,
    chord: str,
    next_chord: Optional[str],
    motif: BassPatternMotif,
    base_midi: Optional[int] = None,
) -> List[AbstractNote]:
    root_midi = chord_root_to_midi(chord, BASS_BASE_MIDI) if base_midi is None else base_midi
    target = next_chord or chord
    notes: List[AbstractNote] = []
    for index, step in enumerate(motif.steps):
        midi = bass_step_to_midi(step, chord, target, root_midi)
        if midi is None:
            continue
        notes.append(
            AbstractNote(
                channel_role=VoiceRole.BASS,
                start_beat=measure_start_beat + index * BASS_STEP_BEATS,
                duration_beats=BASS_STEP_BEATS,
                degree=0,
                velocity=bass_velocity(section.texture, index),
                section_id=section.id,
                midi_override=midi,
            )
        )
    return notes


@dataclass(frozen=True)
class DrumSelection:
    measure_in_section: int
    section_measures: int
    required_tags: Tuple[str, ...]
    force_fill: bool


def select_drum_pattern(
    corpus: MotifCorpus,
    selection: DrumSelection,
    *,
    intent: StyleIntent,
    rule: DrumRule,
    rng: Rng,
    used: AbstractSet[str],
    last_id: Optional[str] = None,
) -> Optional[DrumPattern]:
    """Pick a beat or fill for one measure; ``None`` leaves the measure silent."""
    index = selection.measure_in_section
    total = selection.section_measures
    if not selection.force_fill and rule.early_sparse_measures and index < rule.early_sparse_measures:
        if rng() < EARLY_SPARSE_SKIP:
            return None

    if intent.gradual_build and total >= 8:
        progress = index / max(1, total - 1)
        early = min(0.35, 6 / max(1, total))
        middle = min(0.7, 14 / max(1, total))
        if progress < early:
            if rng() < 0.75:
                return None
        elif progress < middle:
            if rng() < 0.35:
                return None

    fill_every = 2 if intent.break_insertion else 4
    cycle_fill = total >= fill_every and (index + 1) % fill_every == 0
    is_fill = selection.force_fill or cycle_fill
    wanted_type = "fill" if is_fill else "beat"

    by_type = [pattern for pattern in corpus.drums if pattern.type == wanted_type]
    candidates = narrow(
        by_type, [pattern for pattern in by_type if pattern.length_beats <= BEATS_PER_MEASURE]
    )
    if selection.required_tags:
        candidates = narrow(candidates, with_all_tags(candidates, selection.required_tags))
    if not candidates:
        candidates = list(corpus.drums)

    breakbeat_focus = (
        intent.percussive_layering
        and intent.syncopation_bias
        and intent.break_insertion
        and not intent.loop_centric
    )
    lofi_groove = intent.atmos_pad and intent.loop_centric and intent.harmonic_static
    retro_pulse = intent.loop_centric and intent.texture_focus and intent.percussive_layering

    if not is_fill:
        if intent.loop_centric:
            candidates = prefer_tag_presence(candidates, ["loop_safe"])
        if intent.syncopation_bias:
            sync_tags = (
                ["breakbeat", "syncopation", "grid16"] if breakbeat_focus else ["syncopation"]
            )
            candidates = prefer_tag_presence(candidates, sync_tags)
        if intent.texture_focus:
            candidates = prefer_tag_presence(candidates, ["texture_loop", "straight", "grid16"])
        if intent.percussive_layering:
            layer_tags = (
                ["breakbeat", "percussive_layer", "grid16"]
                if breakbeat_focus
                else ["percussive_layer", "four_on_floor"]
            )
            candidates = prefer_tag_presence(candidates, layer_tags)
        if lofi_groove:
            candidates = prefer_tag_presence(candidates, ["lofi", "rest_heavy", "swing_hint"], 0.3)
        if retro_pulse:
            candidates = prefer_tag_presence(candidates, ["loop_safe", "grid16", "texture_loop"], 0.25)
        if rule.beat_tags:
            candidates = prefer_tag_presence(candidates, rule.beat_tags, 0.25)
    elif rule.fill_tags:
        candidates = prefer_tag_presence(candidates, rule.fill_tags, 0.25)

    if breakbeat_focus:
        candidates = prefer_tag_presence(candidates, ["breakbeat", "grid16"], 0.2)
    if rule.avoid_tags:
        candidates = narrow(candidates, without_tags(candidates, rule.avoid_tags))
    if not candidates:
        return None
    return pick_with_avoid(prefer_unused(candidates, used), rng, last_id)


def maybe_generate_transition(
    corpus: MotifCorpus,
    section: SectionDefinition,
    measure_start_beat: float,
    *,
    is_last_section: bool,
    intent: StyleIntent,
    global_measure_index: int,
    total_measures: int,
    rng: Rng,
    used: AbstractSet[str],
    last_id: Optional[str] = None,
) -> Optional[Tuple[str, List[DrumHit]]]:
    """Place a section-ending transition so it finishes on the bar line."""
    if not corpus.transitions:
        return None
    required = ["transition", "section_end"]
    if is_last_section:
        required.append("loop_out")

    candidates = narrow(
        corpus.transitions,
        [motif for motif in corpus.transitions if motif.length_beats <= BEATS_PER_MEASURE],
    )
    progress = global_measure_index / max(1, total_measures - 1) if total_measures > 1 else 0.0
    priority: List[str] = []
    if intent.gradual_build:
        if progress < 0.4:
            priority.append("build")
        elif progress < 0.8:
            priority.append("drum_fill")
        else:
            priority.append("loop_out")
    if intent.break_insertion and progress >= 0.5:
        priority.append("noise_fx")
    if intent.percussive_layering:
        priority.append("drum_fill")
    if priority:
        candidates = prefer_tag_presence(candidates, priority, 0.2)
    candidates = narrow(candidates, with_all_tags(candidates, required))
    if not candidates:
        return None

    motif = pick_with_avoid(prefer_unused(candidates, used), rng, last_id)
    if motif.length_beats >= BEATS_PER_MEASURE:
        offset = measure_start_beat
    else:
        offset = measure_start_beat + max(0.0, BEATS_PER_MEASURE - motif.length_beats)
    return motif.id, drum_hits_from_pattern(motif.pattern, offset, section.id)


def merge_transition_hits(existing: Sequence[DrumHit], transition: Sequence[DrumHit]) -> List[DrumHit]:
    """Nudge transition hits later in 1/16-beat steps until clear of ``existing``."""
    merged: List[DrumHit] = []
    for hit in transition:
        start = hit.start_beat
        nudges = 0
        while nudges < TRANSITION_MAX_NUDGES and any(
            abs(other.start_beat - start) < TRANSITION_COLLISION_GAP for other in existing
        ):
            nudges += 1
            start = hit.start_beat + nudges * TRANSITION_COLLISION_GAP
        merged.append(replace(hit, start_beat=start) if start != hit.start_beat else hit)
    return merged
