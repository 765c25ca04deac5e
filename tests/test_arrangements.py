from __future__ import annotations

from chiptune_composer.app.models import ArrangementId, Channel, StylePreset
from chiptune_composer.services.arrangements import (
    VOICE_ARRANGEMENTS,
    arrangement_weights,
    select_arrangement_from_weights,
    select_voice_arrangement,
)


def test_weighted_selection_walks_cumulative_distribution() -> None:
    weights = {ArrangementId.STANDARD: 5, ArrangementId.MINIMAL: 1}
    assert select_arrangement_from_weights(weights, 0.5) == ArrangementId.STANDARD
    assert select_arrangement_from_weights(weights, 0.9) == ArrangementId.MINIMAL


def test_zero_weights_fall_back_to_standard() -> None:
    weights = {ArrangementId.MINIMAL: 0, ArrangementId.DUAL_BASS: -2}
    assert select_arrangement_from_weights(weights, 0.3) == ArrangementId.STANDARD
    assert select_arrangement_from_weights({}, 0.3) == ArrangementId.STANDARD


def test_style_weights_override_defaults() -> None:
    weights = arrangement_weights(StylePreset.MINIMAL_TECHNO)
    assert weights[ArrangementId.MINIMAL] == 5
    assert weights[ArrangementId.RETRO_PULSE] == 2
    assert arrangement_weights(None)[ArrangementId.MINIMAL] == 1


def test_arrangements_never_use_noise_or_share_channels() -> None:
    for arrangement in VOICE_ARRANGEMENTS.values():
        channels = [voice.channel for voice in arrangement.voices]
        assert Channel.NOISE not in channels
        assert len(channels) == len(set(channels))


def test_select_voice_arrangement_returns_copy() -> None:
    first = select_voice_arrangement(42, StylePreset.MINIMAL_TECHNO)
    second = select_voice_arrangement(42, StylePreset.MINIMAL_TECHNO)
    assert first == second
    first.voices.clear()
    assert VOICE_ARRANGEMENTS[second.id].voices
