from __future__ import annotations

from chiptune_composer.app.models import Mood, StyleIntent, StylePreset, Tempo, Texture
from chiptune_composer.services.resolvers import (
    BASE_REGISTER_RANGE,
    MELODY_REGISTER_RANGE,
    accompaniment_degree,
    base_register,
    bass_velocity,
    melody_register,
    melody_velocity,
    should_play_measure,
)
from chiptune_composer.services.rng import create_rng
from chiptune_composer.services.types import SectionDefinition


def _section(occurrence: int = 1, texture: Texture = Texture.STEADY) -> SectionDefinition:
    return SectionDefinition(
        id=f"A{occurrence}",
        start_measure=0,
        measures=8,
        chord_progression=("C",),
        template_id="A",
        occurrence_index=occurrence,
        texture=texture,
    )


def test_melody_velocity_accents_downbeat_and_cadence() -> None:
    section = _section()
    intent = StyleIntent()
    assert melody_velocity(section, 0, 0, 8, intent) == 86 + 6
    assert melody_velocity(section, 3, 3, 8, intent) == 86
    assert melody_velocity(section, 7, 7, 8, intent) == 86 + 4


def test_gradual_build_raises_velocity_over_time() -> None:
    section = _section()
    intent = StyleIntent(gradual_build=True)
    early = melody_velocity(section, 1, 1, 16, intent)
    late = melody_velocity(section, 6, 14, 16, intent)
    assert late > early


def test_bass_velocity_accents_steps() -> None:
    assert bass_velocity(Texture.STEADY, 0) == 76
    assert bass_velocity(Texture.STEADY, 4) == 73
    assert bass_velocity(Texture.STEADY, 3) == 70


def test_registers_stay_in_range() -> None:
    for seed in range(20):
        register = base_register(
            Mood.TENSE, Tempo.SLOW, StylePreset.LOFI_CHILLHOP, StyleIntent(), seed
        )
        assert BASE_REGISTER_RANGE[0] <= register <= BASE_REGISTER_RANGE[1]
    for occurrence in (1, 2, 3):
        register = melody_register(
            _section(occurrence, Texture.ARPEGGIO), 0, 0, 32, StyleIntent(gradual_build=True), 78
        )
        assert MELODY_REGISTER_RANGE[0] <= register <= MELODY_REGISTER_RANGE[1]


def test_hook_register_lifts_first_occurrence() -> None:
    intent = StyleIntent()
    first = melody_register(_section(1), 0, 0, 32, intent, 70)
    reprise = melody_register(_section(2), 0, 0, 32, intent, 70)
    assert first > reprise


def test_accompaniment_degree_by_texture() -> None:
    assert accompaniment_degree(Texture.STEADY, 0, 0.0) == 1
    assert accompaniment_degree(Texture.STEADY, 1, 2.0) == 5
    assert accompaniment_degree(Texture.BROKEN, 2, 1.0) == 5


def test_full_priority_always_plays() -> None:
    rng = create_rng(2)
    assert all(should_play_measure(1.0, index, 8, StyleIntent(), rng) for index in range(8))
