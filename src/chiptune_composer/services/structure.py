"""Structure planning: tempo, key, section timeline, chords and textures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from ..app.models import Mood, StyleIntent, StylePreset, TechniqueStrategy, Tempo, Texture
from .arrangements import select_voice_arrangement
from .corpus import MotifCorpus
from .exceptions import CorpusError, SectionLengthMismatch
from .rng import Rng, create_rng, pick_index, random_from_seed, shuffle_with_seed
from .theory import clamp, related_chords, round_half_up
from .types import PipelineOptions, SectionDefinition, StructurePlan

TEMPO_BASE_BPM: Dict[Tempo, int] = {Tempo.SLOW: 90, Tempo.MEDIUM: 120, Tempo.FAST: 150}
BPM_JITTER_RANGE = 30
BPM_JITTER_LIMIT = 15

LIMITED_PROGRESSION_SEED = 987654321

MOOD_TAG_MAP: Dict[Mood, Tuple[str, ...]] = {
    Mood.UPBEAT: ("overworld_bright", "heroic"),
    Mood.SAD: ("ending_sorrowful", "dark"),
    Mood.TENSE: ("final_battle_tense", "castle_majestic"),
    Mood.PEACEFUL: ("town_peaceful", "simple"),
}

DEFAULT_KEY_PER_MOOD: Dict[Mood, str] = {
    Mood.UPBEAT: "G_Major",
    Mood.SAD: "E_Minor",
    Mood.TENSE: "E_Minor",
    Mood.PEACEFUL: "C_Major",
}

MAJOR_SCALE = (0, 2, 4, 5, 7, 9, 11)
NATURAL_MINOR_SCALE = (0, 2, 3, 5, 7, 8, 10)

SCALE_DEGREES: Dict[str, Tuple[int, ...]] = {
    "G_Major": MAJOR_SCALE,
    "C_Major": MAJOR_SCALE,
    "E_Minor": NATURAL_MINOR_SCALE,
}

TEMPLATE_TEXTURE_SEQUENCE: Dict[str, Tuple[Texture, ...]] = {
    "Intro": (Texture.BROKEN,),
    "A": (Texture.BROKEN, Texture.STEADY, Texture.BROKEN),
    "B": (Texture.STEADY, Texture.STEADY, Texture.ARPEGGIO),
    "Bridge": (Texture.ARPEGGIO, Texture.STEADY),
    "C": (Texture.STEADY, Texture.ARPEGGIO, Texture.STEADY),
}

TEMPLATE_PHRASE_LENGTH: Dict[str, int] = {"Intro": 1, "A": 2, "B": 2, "Bridge": 4, "C": 2}
DEFAULT_PHRASE_LENGTH = 1

ARPEGGIO_KEEP_FIRST = 0.7
ARPEGGIO_KEEP_REPEAT = 0.4
TEXTURE_VARIATION_PROBABILITY = 0.1


@dataclass(frozen=True)
class TemplateSlot:
    template_id: str
    measures: int


def _slots(*pairs: Tuple[str, int]) -> Tuple[TemplateSlot, ...]:
    return tuple(TemplateSlot(template_id, measures) for template_id, measures in pairs)


SECTION_TEMPLATE_POOL: Tuple[Tuple[TemplateSlot, ...], ...] = (
    _slots(("Intro", 1), ("A", 3), ("B", 2), ("A", 2)),
    _slots(("A", 2), ("B", 2), ("A", 2), ("C", 2)),
    _slots(("Intro", 2), ("A", 2), ("Bridge", 2), ("A", 2)),
    _slots(("A", 4), ("B", 2), ("C", 2)),
)

TEMPLATE_INDEX_BY_MOOD: Dict[Mood, Tuple[int, ...]] = {
    Mood.TENSE: (0, 3),
    Mood.UPBEAT: (1, 2),
    Mood.SAD: (2, 3),
    Mood.PEACEFUL: (1, 2),
}

_SIXTEEN = _slots(("A", 8), ("B", 8))

SECTION_TEMPLATES_BY_LENGTH: Dict[int, Dict[Mood, Tuple[TemplateSlot, ...]]] = {
    16: {mood: _SIXTEEN for mood in Mood},
    32: {
        Mood.UPBEAT: _slots(("A", 8), ("B", 8), ("C", 8), ("D", 8)),
        Mood.PEACEFUL: _slots(("A", 16), ("B", 16)),
        Mood.TENSE: _slots(("A", 8), ("B", 8), ("A", 8), ("C", 8)),
        Mood.SAD: _slots(("Intro", 4), ("A", 12), ("B", 8), ("A", 8)),
    },
    64: {
        Mood.UPBEAT: _slots(("A", 16), ("B", 16), ("C", 16), ("D", 16)),
        Mood.PEACEFUL: _slots(("A", 16), ("B", 16), ("A", 16), ("C", 16)),
        Mood.TENSE: _slots(("Intro", 8), ("A", 16), ("B", 16), ("C", 12), ("A", 12)),
        Mood.SAD: _slots(("Intro", 8), ("A", 20), ("B", 16), ("A", 20)),
    },
}

STYLE_PRESET_MAP: Dict[StylePreset, Dict[str, bool]] = {
    StylePreset.MINIMAL_TECHNO: {
        "texture_focus": True,
        "loop_centric": True,
        "harmonic_static": True,
        "percussive_layering": True,
        "filter_motion": True,
        "syncopation_bias": True,
    },
    StylePreset.PROGRESSIVE_HOUSE: {
        "texture_focus": True,
        "loop_centric": True,
        "gradual_build": True,
        "percussive_layering": True,
        "break_insertion": True,
        "filter_motion": True,
        "atmos_pad": True,
    },
    StylePreset.RETRO_LOOPWAVE: {
        "texture_focus": True,
        "loop_centric": True,
        "percussive_layering": True,
        "filter_motion": True,
        "syncopation_bias": True,
    },
    StylePreset.BREAKBEAT_JUNGLE: {
        "texture_focus": True,
        "percussive_layering": True,
        "break_insertion": True,
        "filter_motion": True,
        "syncopation_bias": True,
    },
    StylePreset.LOFI_CHILLHOP: {
        "loop_centric": True,
        "harmonic_static": True,
        "atmos_pad": True,
        "texture_focus": True,
    },
}

# (echo, detune, fast arpeggio, jitter salt)
_MOOD_TECHNIQUE_BASE: Dict[Mood, Tuple[float, float, float, int]] = {
    Mood.TENSE: (0.5, 0.3, 0.4, 10),
    Mood.UPBEAT: (0.4, 0.2, 0.2, 20),
    Mood.SAD: (0.6, 0.1, 0.1, 30),
    Mood.PEACEFUL: (0.5, 0.05, 0.05, 40),
}
_DEFAULT_TECHNIQUE_BASE = (0.3, 0.3, 0.3, 50)


def phrase_length_for(template_id: str) -> int:
    return TEMPLATE_PHRASE_LENGTH.get(template_id, DEFAULT_PHRASE_LENGTH)


def establishes_hook(section: SectionDefinition) -> bool:
    return section.occurrence_index == 1


def reprises_hook(section: SectionDefinition) -> bool:
    return section.occurrence_index > 1


def select_bpm(tempo: Tempo, seed: int) -> int:
    base = TEMPO_BASE_BPM.get(tempo, TEMPO_BASE_BPM[Tempo.MEDIUM])
    offset = round_half_up((random_from_seed(seed, 1) - 0.5) * BPM_JITTER_RANGE)
    offset = int(clamp(offset, -BPM_JITTER_LIMIT, BPM_JITTER_LIMIT))
    return base + offset


def select_key(mood: Mood, seed: int, available: Sequence[str]) -> str:
    preferred = DEFAULT_KEY_PER_MOOD.get(mood)
    if preferred is not None and preferred in available:
        return preferred
    if not available:
        raise CorpusError("chord library has no keys")
    return available[pick_index(random_from_seed(seed, 5), len(available))]


def scale_for_key(key: str) -> Tuple[int, ...]:
    if key in SCALE_DEGREES:
        return SCALE_DEGREES[key]
    return NATURAL_MINOR_SCALE if key.lower().endswith("minor") else MAJOR_SCALE


def fit_template(template: Sequence[TemplateSlot], target: int) -> List[TemplateSlot]:
    """Repeat or truncate ``template`` so its measures sum to ``target``."""
    total = sum(slot.measures for slot in template)
    if total == target or total <= 0:
        return list(template)

    fitted: List[TemplateSlot] = []
    remaining = target
    if total < target:
        while remaining >= total:
            fitted.extend(template)
            remaining -= total
    for slot in template:
        if remaining <= 0:
            break
        measures = min(slot.measures, remaining)
        fitted.append(TemplateSlot(slot.template_id, measures))
        remaining -= measures
    return fitted


def select_template(length: int, mood: Mood, seed: int) -> List[TemplateSlot]:
    by_length = SECTION_TEMPLATES_BY_LENGTH.get(length)
    if by_length is not None and mood in by_length:
        return fit_template(by_length[mood], length)
    indices = TEMPLATE_INDEX_BY_MOOD.get(mood) or tuple(range(len(SECTION_TEMPLATE_POOL)))
    choice = indices[pick_index(random_from_seed(seed, 60), len(indices))]
    return fit_template(SECTION_TEMPLATE_POOL[choice], length)


def select_chord_progressions(
    corpus: MotifCorpus, key: str, mood_tags: Sequence[str], seed: int
) -> List[Tuple[str, ...]]:
    library = corpus.progressions(key)
    if library is None:
        raise CorpusError(f"no chord progressions for key {key}")
    matches: List[Tuple[str, ...]] = []
    for tag in mood_tags:
        matches.extend(library.get(tag, ()))
    if not matches:
        matches = [progression for group in library.values() for progression in group]
    matches = [progression for progression in matches if progression]
    if not matches:
        raise CorpusError(f"chord library for {key} is empty")
    return shuffle_with_seed(matches, seed, 100)


def build_limited_progression(base_chord: str, rng: Rng) -> Tuple[str, ...]:
    repeats = 3 + pick_index(rng(), 2)
    progression = [base_chord] * repeats
    if rng() < 0.2:
        related = related_chords(base_chord)
        progression.append(related[pick_index(rng(), len(related))])
    return tuple(progression)


def resolve_texture(template_id: str, occurrence: int, seed: int) -> Texture:
    sequence = TEMPLATE_TEXTURE_SEQUENCE.get(template_id, (Texture.STEADY,))
    planned = sequence[(occurrence - 1) % len(sequence)]
    if planned == Texture.ARPEGGIO:
        keep = ARPEGGIO_KEEP_FIRST if occurrence == 1 else ARPEGGIO_KEEP_REPEAT
        salt = 1000 + sum(ord(char) for char in template_id) * 7 + occurrence * 13
        if random_from_seed(seed, salt) > keep:
            planned = next(
                (texture for texture in sequence if texture != Texture.ARPEGGIO),
                Texture.STEADY,
            )
    variation_salt = ord(template_id[0]) * 100 + occurrence if template_id else occurrence
    if random_from_seed(seed, 2000 + variation_salt) < TEXTURE_VARIATION_PROBABILITY:
        alternatives = [texture for texture in Texture if texture != planned]
        draw = random_from_seed(seed, 3000 + variation_salt)
        return alternatives[pick_index(draw, len(alternatives))]
    return planned


def merge_intent(base: StyleIntent, patch: Optional[Mapping[str, bool]]) -> StyleIntent:
    if not patch:
        return base
    return base.model_copy(update={key: bool(value) for key, value in patch.items()})


def precompute_style_intent(options: PipelineOptions) -> StyleIntent:
    intent = StyleIntent()
    if options.style_preset is not None:
        intent = merge_intent(intent, STYLE_PRESET_MAP.get(options.style_preset))
    if options.style_overrides is not None:
        intent = merge_intent(intent, options.style_overrides.model_dump())
    return intent


def build_sections(
    template: Sequence[TemplateSlot],
    progressions: Sequence[Tuple[str, ...]],
    seed: int,
    precomputed: StyleIntent,
) -> List[SectionDefinition]:
    randomized = shuffle_with_seed(progressions, seed, 200)
    variety = {chord for progression in progressions for chord in progression}
    rng = create_rng(seed, LIMITED_PROGRESSION_SEED)
    use_static = precomputed.harmonic_static
    use_single = use_static and len(variety) <= 1

    sections: List[SectionDefinition] = []
    occurrences: Dict[str, int] = {}
    start_measure = 0
    cursor = 0
    for slot in template:
        if use_single:
            progression: Tuple[str, ...] = (randomized[0][0],)
        else:
            base = randomized[cursor % len(randomized)]
            cursor += 1
            progression = build_limited_progression(base[0], rng) if use_static else base

        occurrence = occurrences.get(slot.template_id, 0) + 1
        occurrences[slot.template_id] = occurrence
        same_prefix = sum(1 for section in sections if section.id.startswith(slot.template_id))
        sections.append(
            SectionDefinition(
                id=f"{slot.template_id}{same_prefix + 1}",
                start_measure=start_measure,
                measures=slot.measures,
                chord_progression=tuple(progression),
                template_id=slot.template_id,
                occurrence_index=occurrence,
                texture=resolve_texture(slot.template_id, occurrence, seed),
            )
        )
        start_measure += slot.measures
    return sections


def resolve_style_intent(
    options: PipelineOptions, sections: Sequence[SectionDefinition]
) -> StyleIntent:
    """Infer intent from the built structure, then apply caller overrides."""
    flags = StyleIntent().model_dump()
    if options.style_preset is not None:
        flags.update(STYLE_PRESET_MAP.get(options.style_preset, {}))

    total = sum(section.measures for section in sections)
    template_counts: Dict[str, int] = {}
    for section in sections:
        template_counts[section.template_id] = template_counts.get(section.template_id, 0) + 1
    repeated = any(count >= 2 for count in template_counts.values())
    average = total / len(sections) if sections else total

    if repeated or average <= 4:
        flags["loop_centric"] = True
    if options.tempo != Tempo.SLOW and total >= 8:
        flags["loop_centric"] = True
        flags["percussive_layering"] = True
    if options.mood in (Mood.TENSE, Mood.SAD):
        flags["texture_focus"] = True
    if options.mood == Mood.PEACEFUL:
        flags["atmos_pad"] = True
    if options.mood in (Mood.UPBEAT, Mood.TENSE):
        flags["syncopation_bias"] = True
    if options.tempo == Tempo.FAST:
        flags["filter_motion"] = True
        flags["percussive_layering"] = True
    if total >= 12:
        flags["gradual_build"] = True

    unique_chords = {chord for section in sections for chord in section.chord_progression}
    distinct_progressions = {section.chord_progression for section in sections}
    all_static = bool(sections) and all(
        len(set(section.chord_progression)) <= 1 for section in sections
    )
    if len(distinct_progressions) <= 1 and (len(unique_chords) <= 2 or all_static):
        flags["harmonic_static"] = True
    if total >= 8 and options.tempo != Tempo.SLOW:
        flags["break_insertion"] = True

    inferred_static = flags["harmonic_static"]
    intent = StyleIntent(**flags)
    if options.style_overrides is not None:
        intent = merge_intent(intent, options.style_overrides.model_dump())
    # Overrides can clear harmonic_static but never introduce it.
    if not inferred_static and intent.harmonic_static:
        intent = intent.model_copy(update={"harmonic_static": False})
    return intent


def derive_technique_strategy(options: PipelineOptions, intent: StyleIntent) -> TechniqueStrategy:
    echo, detune, fast_arp, salt = _MOOD_TECHNIQUE_BASE.get(options.mood, _DEFAULT_TECHNIQUE_BASE)
    if intent.texture_focus:
        fast_arp = max(0.05, fast_arp * 0.6)
        echo = min(0.95, echo + 0.05)
    if intent.loop_centric:
        detune = max(0.05, detune * 0.8)
    if intent.gradual_build:
        echo = min(0.95, echo + 0.1)
    if intent.harmonic_static:
        detune = max(0.05, detune * 0.7)
    if intent.percussive_layering:
        fast_arp = min(0.9, fast_arp + 0.05)
    if intent.filter_motion:
        detune = min(0.9, detune + 0.1)
    if intent.syncopation_bias:
        echo = min(0.9, echo + 0.05)
    if intent.atmos_pad:
        echo = min(0.95, echo + 0.08)
    if intent.break_insertion:
        fast_arp = max(0.05, fast_arp * 0.9)

    def jitter(value: float, offset: int) -> float:
        shifted = value + (random_from_seed(options.seed, salt + offset) - 0.5) * 0.2
        return clamp(shifted, 0.05, 0.95)

    return TechniqueStrategy(
        echo_probability=jitter(echo, 1),
        detune_probability=jitter(detune, 2),
        fast_arpeggio_probability=jitter(fast_arp, 3),
    )


def validate_section_length(sections: Sequence[SectionDefinition], expected: int) -> None:
    actual = sum(section.measures for section in sections)
    if actual != expected:
        raise SectionLengthMismatch(expected, actual)


def plan_structure(options: PipelineOptions, corpus: MotifCorpus) -> StructurePlan:
    bpm = select_bpm(options.tempo, options.seed)
    mood_tags = MOOD_TAG_MAP.get(options.mood, MOOD_TAG_MAP[Mood.UPBEAT])
    key = select_key(options.mood, options.seed, list(corpus.chords))
    scale = scale_for_key(key)
    progressions = select_chord_progressions(corpus, key, mood_tags, options.seed)
    precomputed = precompute_style_intent(options)
    template = select_template(options.length_in_measures, options.mood, options.seed)
    sections = build_sections(template, progressions, options.seed, precomputed)
    intent = resolve_style_intent(options, sections)
    strategy = derive_technique_strategy(options, intent)
    validate_section_length(sections, options.length_in_measures)
    arrangement = select_voice_arrangement(options.seed, options.style_preset)
    logger.debug(
        "Planned {} sections for seed {} ({} bpm, {}, arrangement {})",
        len(sections),
        options.seed,
        bpm,
        key,
        arrangement.id.value,
    )
    return StructurePlan(
        bpm=bpm,
        key=key,
        scale_degrees=scale,
        sections=tuple(sections),
        technique_strategy=strategy,
        style_intent=intent,
        voice_arrangement=arrangement,
    )
