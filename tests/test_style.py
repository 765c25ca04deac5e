from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from chiptune_composer.app.models import (
    CompositionOptions,
    EnergyLevel,
    IntentOverrides,
    Mood,
    StyleOverrides,
    StylePreset,
    Tempo,
    TwoAxisStyle,
)
from chiptune_composer.services.exceptions import ConfigurationError, UnknownPresetError
from chiptune_composer.services.style import (
    energy_from_axis,
    infer_preset_from_axis,
    intent_from_axis,
    mood_from_axis,
    preset_to_two_axis,
    resolve_generation_context,
    tempo_from_axis,
)


def test_preset_axis_round_trips_through_inference() -> None:
    for preset in StylePreset:
        assert infer_preset_from_axis(preset_to_two_axis(preset)) == preset


def test_center_of_axis_has_no_preset() -> None:
    assert infer_preset_from_axis(TwoAxisStyle()) is None


def test_minimal_techno_axis_resolution() -> None:
    axis = preset_to_two_axis("minimal-techno")
    assert mood_from_axis(axis) == Mood.TENSE
    assert tempo_from_axis(axis) == Tempo.MEDIUM
    assert energy_from_axis(axis) == EnergyLevel.MEDIUM
    intent = intent_from_axis(axis)
    assert intent.percussive_layering
    assert intent.harmonic_static
    assert not intent.gradual_build


def test_axis_values_are_clamped() -> None:
    extreme = TwoAxisStyle(percussive_melodic=5.0, calm_energetic=-9.0)
    assert tempo_from_axis(extreme) == Tempo.SLOW
    assert mood_from_axis(extreme) == Mood.PEACEFUL
    assert intent_from_axis(extreme) == intent_from_axis(
        TwoAxisStyle(percussive_melodic=1.0, calm_energetic=-1.0)
    )


def test_non_finite_axis_is_rejected() -> None:
    with pytest.raises(ValidationError):
        TwoAxisStyle(percussive_melodic=math.nan)
    with pytest.raises(ValidationError):
        TwoAxisStyle(calm_energetic=math.inf)


def test_unknown_preset_raises_configuration_error() -> None:
    with pytest.raises(UnknownPresetError) as excinfo:
        resolve_generation_context(CompositionOptions(seed=1, preset="polka"))
    assert excinfo.value.preset == "polka"
    assert isinstance(excinfo.value, ConfigurationError)


def test_explicit_axis_wins_over_preset() -> None:
    axis = TwoAxisStyle(percussive_melodic=0.5, calm_energetic=-0.6)
    context = resolve_generation_context(
        CompositionOptions(seed=3, preset="minimal-techno", two_axis_style=axis)
    )
    assert context.profile.two_axis_style == axis
    assert context.pipeline.style_preset == StylePreset.LOFI_CHILLHOP


def test_context_defaults_length_and_seed_source() -> None:
    context = resolve_generation_context(
        CompositionOptions(), default_length=24, seed_source=lambda: 777
    )
    assert context.pipeline.length_in_measures == 24
    assert context.pipeline.seed == 777
    assert context.replay_options.seed == 777
    assert context.replay_options.length_in_measures == 24
    assert context.replay_options.preset is None


def test_overrides_apply_tempo_and_intent() -> None:
    overrides = StyleOverrides(
        tempo=Tempo.FAST,
        intent=IntentOverrides(atmos_pad=True, percussive_layering=False),
    )
    context = resolve_generation_context(
        CompositionOptions(seed=5, preset="minimal-techno", overrides=overrides)
    )
    assert context.pipeline.tempo == Tempo.FAST
    intent = context.profile.intent
    assert intent.atmos_pad is True
    assert intent.percussive_layering is False
    assert context.replay_options.overrides == overrides
    assert context.replay_options.overrides is not overrides


def test_randomized_intent_keeps_explicit_flags() -> None:
    overrides = StyleOverrides(
        intent=IntentOverrides(gradual_build=True), randomize_unset_intent=True
    )
    first = resolve_generation_context(CompositionOptions(seed=11, overrides=overrides))
    second = resolve_generation_context(CompositionOptions(seed=11, overrides=overrides))
    assert first.profile.intent == second.profile.intent
    assert first.profile.intent.gradual_build is True
    assert first.profile.randomize_unset_intent is True


def test_randomized_intent_keeps_axis_flags() -> None:
    axis = TwoAxisStyle(percussive_melodic=0.6, calm_energetic=-0.6)
    context = resolve_generation_context(
        CompositionOptions(
            seed=7,
            two_axis_style=axis,
            overrides=StyleOverrides(randomize_unset_intent=True),
        )
    )
    assert context.profile.randomize_unset_intent is True
    assert context.profile.intent == intent_from_axis(axis)
    assert context.profile.intent.atmos_pad is True
