"""Velocity and register resolution for generated notes."""

from __future__ import annotations

import math
from typing import Dict, Optional, Sequence

from ..app.models import Mood, StyleIntent, StylePreset, Tempo, Texture
from .rng import DEFAULT_FALLBACK_SEED, Rng, create_rng, pick_index
from .structure import establishes_hook, reprises_hook
from .theory import round_half_up
from .types import SectionDefinition

MELODY_VELOCITY_BY_TEXTURE: Dict[Texture, int] = {
    Texture.BROKEN: 90,
    Texture.STEADY: 86,
    Texture.ARPEGGIO: 92,
}
MELODY_VELOCITY_DEFAULT = 88
MELODY_VELOCITY_MIN = 58
MELODY_VELOCITY_MAX = 110
PICKUP_VELOCITY = 72

BASS_VELOCITY_BY_TEXTURE: Dict[Texture, int] = {
    Texture.BROKEN: 74,
    Texture.STEADY: 70,
    Texture.ARPEGGIO: 76,
}
BASS_VELOCITY_DEFAULT = 72

ACCOMPANIMENT_VELOCITY = 58
EARLY_START_VELOCITY = 52
PAD_MIN_VELOCITY = 48

DEFAULT_REGISTER = 72
BASE_REGISTER_RANGE = (63, 78)
MELODY_REGISTER_RANGE = (60, 84)

MOOD_REGISTER_OFFSETS: Dict[Mood, int] = {
    Mood.UPBEAT: 0,
    Mood.PEACEFUL: -3,
    Mood.TENSE: -5,
    Mood.SAD: -2,
}
TEMPO_REGISTER_OFFSETS: Dict[Tempo, int] = {Tempo.SLOW: -2, Tempo.MEDIUM: 0, Tempo.FAST: 2}
PRESET_REGISTER_OFFSETS: Dict[StylePreset, int] = {
    StylePreset.MINIMAL_TECHNO: -4,
    StylePreset.PROGRESSIVE_HOUSE: 3,
    StylePreset.RETRO_LOOPWAVE: 2,
    StylePreset.BREAKBEAT_JUNGLE: -2,
    StylePreset.LOFI_CHILLHOP: -5,
}
TEXTURE_REGISTER_OFFSETS: Dict[Texture, int] = {
    Texture.STEADY: 0,
    Texture.BROKEN: -3,
    Texture.ARPEGGIO: 4,
}


def _clamp_int(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def _global_progress(global_measure_index: int, total_measures: int) -> float:
    return global_measure_index / max(1, total_measures - 1)


def _gradual_velocity_shape(total_measures: int) -> tuple[float, int]:
    if total_measures <= 16:
        return 0.6, 14
    if total_measures <= 32:
        return 0.75, 18
    return 0.9, 20


def melody_velocity(
    section: SectionDefinition,
    measure_in_section: int,
    global_measure_index: int,
    total_measures: int,
    intent: StyleIntent,
) -> int:
    base = MELODY_VELOCITY_BY_TEXTURE.get(section.texture, MELODY_VELOCITY_DEFAULT)
    downbeat_boost = 6 if measure_in_section == 0 else 0
    cadence_lift = 4 if section.measures - measure_in_section <= 1 else 0
    if intent.texture_focus:
        base -= 8
    if intent.gradual_build:
        progress = (
            _global_progress(global_measure_index, total_measures) if total_measures > 1 else 0.0
        )
        exponent, ceiling = _gradual_velocity_shape(total_measures)
        base += math.floor(min(1.0, max(0.0, progress)) ** exponent * ceiling)
    if intent.loop_centric:
        base = max(60, base - 2)
    return _clamp_int(base + downbeat_boost + cadence_lift, MELODY_VELOCITY_MIN, MELODY_VELOCITY_MAX)


def bass_velocity(texture: Texture, step: int) -> int:
    base = BASS_VELOCITY_BY_TEXTURE.get(texture, BASS_VELOCITY_DEFAULT)
    if step == 0:
        return base + 6
    if step % 4 == 0:
        return base + 3
    return base


def accompaniment_velocity(function_tag: str, beat_in_measure: float) -> int:
    accent = 6 if function_tag == "start" and beat_in_measure == 0 else 0
    return ACCOMPANIMENT_VELOCITY + accent


def base_register(
    mood: Mood,
    tempo: Tempo,
    preset: Optional[StylePreset],
    intent: StyleIntent,
    seed: int,
    fallback_seed: int = DEFAULT_FALLBACK_SEED,
) -> int:
    """Composition-wide melody register before per-measure shaping."""
    intent_offset = (
        (2 if intent.texture_focus else 0)
        + (1 if intent.gradual_build else 0)
        - (1 if intent.loop_centric else 0)
        + (2 if intent.atmos_pad else 0)
        - (2 if intent.percussive_layering else 0)
    )
    preset_offset = PRESET_REGISTER_OFFSETS.get(preset, 0) if preset is not None else 0
    variation = math.floor(create_rng(seed, fallback_seed)() * 7) - 3
    register = (
        DEFAULT_REGISTER
        + MOOD_REGISTER_OFFSETS.get(mood, 0)
        + TEMPO_REGISTER_OFFSETS.get(tempo, 0)
        + preset_offset
        + intent_offset
        + variation
    )
    return _clamp_int(register, *BASE_REGISTER_RANGE)


def melody_register(
    section: Optional[SectionDefinition],
    measure_in_section: int,
    global_measure_index: int,
    total_measures: int,
    intent: StyleIntent,
    composition_register: int,
) -> int:
    if section is None:
        return composition_register
    measure = max(0, measure_in_section)
    offset = TEXTURE_REGISTER_OFFSETS.get(section.texture, 0)
    if intent.texture_focus:
        offset -= 4
    if intent.filter_motion:
        offset += 1
    if measure == 0:
        if establishes_hook(section):
            offset += 3
        elif reprises_hook(section):
            offset -= 2
    if intent.gradual_build:
        progress = _global_progress(global_measure_index, total_measures)
        offset += round_half_up(progress**0.7 * 8)
    if section.measures > 0 and measure / section.measures >= 0.75:
        offset -= 2
    offset -= min(section.occurrence_index - 1, 2) * 2
    if intent.atmos_pad:
        offset -= 1
    return _clamp_int(composition_register + offset, *MELODY_REGISTER_RANGE)


def tail_degree_variant(
    degree: int, pattern: Sequence[int], intent: StyleIntent, rng: Rng
) -> int:
    """Vary the closing degree of a phrase among nearby options."""
    if not pattern:
        return degree
    tail = pattern[-1]
    neighbor = tail + (2 if intent.texture_focus else 1)
    fall = tail - (1 if intent.loop_centric else 2)
    options = list(dict.fromkeys([degree, tail, neighbor, fall]))
    return options[pick_index(rng(), len(options))]


def accompaniment_degree(texture: Texture, degree_index: int, beat_in_measure: float) -> int:
    if texture == Texture.STEADY:
        return (1, 5)[int(beat_in_measure // 2) % 2]
    return (1, 3, 5, 7)[degree_index % 4]


def should_play_measure(
    priority: float, measure_in_section: int, section_measures: int, intent: StyleIntent, rng: Rng
) -> bool:
    """Density gate for arrangement voices below full priority."""
    if priority >= 1.0:
        return True
    if intent.gradual_build:
        progress = measure_in_section / max(1, section_measures - 1)
        return rng() < min(1.0, priority + progress * 0.3)
    return rng() < priority
