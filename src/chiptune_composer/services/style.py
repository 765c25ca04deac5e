"""Style resolution: two-axis coordinates to intent flags, tempo and mood.

Legacy preset names are translated to axis coordinates first so both input
styles share one thresholding path.
"""

from __future__ import annotations

import math
import secrets
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..app.models import (
    CompositionOptions,
    EnergyLevel,
    Mood,
    ResolvedStyleProfile,
    StyleIntent,
    StyleOverrides,
    StylePreset,
    StyleTags,
    Tempo,
    TwoAxisStyle,
)
from .exceptions import UnknownPresetError
from .rng import DEFAULT_FALLBACK_SEED, MASK_32, create_rng
from .types import PipelineOptions

DEFAULT_LENGTH_IN_MEASURES = 32
PRESET_INFERENCE_RADIUS = 0.35

INTENT_FLAGS: Tuple[str, ...] = tuple(StyleIntent.model_fields)

PRESET_TO_TWO_AXIS: Dict[StylePreset, Tuple[float, float]] = {
    StylePreset.MINIMAL_TECHNO: (-0.4, -0.3),
    StylePreset.PROGRESSIVE_HOUSE: (-0.45, 0.6),
    StylePreset.RETRO_LOOPWAVE: (0.3, -0.2),
    StylePreset.BREAKBEAT_JUNGLE: (-0.7, 0.7),
    StylePreset.LOFI_CHILLHOP: (0.5, -0.6),
}


@dataclass(frozen=True)
class AxisStrengths:
    percussive: float
    melodic: float
    calm: float
    energy: float


@dataclass(frozen=True)
class GenerationContext:
    pipeline: PipelineOptions
    profile: ResolvedStyleProfile
    replay_options: CompositionOptions


def clamp_axis(style: TwoAxisStyle) -> TwoAxisStyle:
    return TwoAxisStyle(
        percussive_melodic=max(-1.0, min(1.0, style.percussive_melodic)),
        calm_energetic=max(-1.0, min(1.0, style.calm_energetic)),
    )


def axis_strengths(style: TwoAxisStyle) -> AxisStrengths:
    pm = style.percussive_melodic
    ce = style.calm_energetic
    return AxisStrengths(
        percussive=max(0.0, -pm),
        melodic=max(0.0, pm),
        calm=max(0.0, -ce),
        energy=max(0.0, ce),
    )


def intent_from_axis(style: TwoAxisStyle) -> StyleIntent:
    s = axis_strengths(clamp_axis(style))
    return StyleIntent(
        percussive_layering=s.percussive > 0.3,
        syncopation_bias=s.percussive > 0.4,
        break_insertion=s.percussive > 0.35 and s.energy > 0.4,
        harmonic_static=(s.melodic > 0.4 and s.calm > 0.3)
        or (s.percussive > 0.3 and s.calm > 0.2),
        atmos_pad=s.melodic > 0.3 or s.calm > 0.5 or s.energy > 0.55,
        filter_motion=s.melodic > 0.3 or s.energy > 0.5,
        loop_centric=s.calm > 0.3,
        texture_focus=s.calm > 0.4 or (s.percussive > 0.5 and s.calm > 0.2),
        gradual_build=s.energy > 0.4,
    )


def tempo_from_axis(style: TwoAxisStyle) -> Tempo:
    ce = clamp_axis(style).calm_energetic
    if ce < -0.4:
        return Tempo.SLOW
    if ce > 0.4:
        return Tempo.FAST
    return Tempo.MEDIUM


def energy_from_axis(style: TwoAxisStyle) -> EnergyLevel:
    ce = clamp_axis(style).calm_energetic
    if ce > 0.4:
        return EnergyLevel.HIGH
    if ce < -0.4:
        return EnergyLevel.LOW
    return EnergyLevel.MEDIUM


def mood_from_axis(style: TwoAxisStyle) -> Mood:
    clamped = clamp_axis(style)
    if clamped.calm_energetic <= -0.5:
        return Mood.PEACEFUL
    if clamped.percussive_melodic <= -0.4:
        return Mood.TENSE
    if clamped.percussive_melodic >= 0.4:
        return Mood.SAD
    return Mood.UPBEAT


def parse_preset(name: str) -> StylePreset:
    try:
        return StylePreset(name)
    except ValueError as exc:
        raise UnknownPresetError(name) from exc


def preset_to_two_axis(preset: str | StylePreset) -> TwoAxisStyle:
    resolved = preset if isinstance(preset, StylePreset) else parse_preset(preset)
    pm, ce = PRESET_TO_TWO_AXIS[resolved]
    return TwoAxisStyle(percussive_melodic=pm, calm_energetic=ce)


def infer_preset_from_axis(style: TwoAxisStyle) -> Optional[StylePreset]:
    """Nearest preset within the inference radius, if any."""
    clamped = clamp_axis(style)
    best: Optional[StylePreset] = None
    best_distance = math.inf
    for preset, (pm, ce) in PRESET_TO_TWO_AXIS.items():
        distance = math.hypot(clamped.percussive_melodic - pm, clamped.calm_energetic - ce)
        if distance < best_distance:
            best = preset
            best_distance = distance
    if best is None or best_distance > PRESET_INFERENCE_RADIUS:
        return None
    return best


def apply_intent_overrides(intent: StyleIntent, overrides: Optional[StyleOverrides]) -> StyleIntent:
    if overrides is None or overrides.intent is None:
        return intent
    patch = overrides.intent.model_dump(exclude_none=True)
    return intent.model_copy(update=patch)


def _resolve_axis(options: CompositionOptions) -> TwoAxisStyle:
    if options.preset is not None:
        preset_axis = preset_to_two_axis(options.preset)
        if options.two_axis_style is None:
            return preset_axis
    if options.two_axis_style is None:
        return TwoAxisStyle()
    return clamp_axis(options.two_axis_style)


def _randomize_unset_intent(
    provided: Dict[str, Optional[bool]],
    seed: int,
    fallback: int,
) -> StyleIntent:
    """Fill flags that were never provided with seeded coin flips."""
    rng = create_rng(seed, fallback)
    resolved: Dict[str, bool] = {}
    for flag in INTENT_FLAGS:
        value = provided.get(flag)
        resolved[flag] = rng() >= 0.5 if value is None else value
    return StyleIntent(**resolved)


def validate_options(options: CompositionOptions) -> None:
    """Raise on options that cannot be resolved, before any work starts."""
    if options.preset is not None:
        parse_preset(options.preset)


def resolve_generation_context(
    options: CompositionOptions,
    *,
    default_length: int = DEFAULT_LENGTH_IN_MEASURES,
    fallback_seed: int = DEFAULT_FALLBACK_SEED,
    seed_source: Optional[Callable[[], int]] = None,
) -> GenerationContext:
    validate_options(options)
    length = int(options.length_in_measures) if options.length_in_measures else default_length

    if options.seed is not None:
        seed = int(options.seed)
    elif seed_source is not None:
        seed = seed_source()
    else:
        seed = secrets.randbelow(MASK_32)

    axis = _resolve_axis(options)
    overrides = options.overrides
    intent = apply_intent_overrides(intent_from_axis(axis), overrides)

    tempo = tempo_from_axis(axis)
    if overrides is not None and overrides.tempo is not None:
        tempo = overrides.tempo

    randomize = bool(overrides is not None and overrides.randomize_unset_intent)
    if randomize:
        intent = _randomize_unset_intent(intent.model_dump(), seed, fallback_seed)

    mood = mood_from_axis(axis)
    pipeline = PipelineOptions(
        mood=mood,
        tempo=tempo,
        length_in_measures=length,
        seed=seed,
        style_preset=infer_preset_from_axis(axis),
        style_overrides=intent,
        fallback_seed=fallback_seed,
    )
    profile = ResolvedStyleProfile(
        tempo=tempo,
        intent=intent,
        randomize_unset_intent=randomize,
        tags=StyleTags(mood=mood, energy=energy_from_axis(axis)),
        two_axis_style=axis,
    )
    replay = CompositionOptions(
        length_in_measures=length,
        seed=seed,
        two_axis_style=axis,
        overrides=overrides.model_copy(deep=True) if overrides is not None else None,
    )
    return GenerationContext(pipeline=pipeline, profile=profile, replay_options=replay)
