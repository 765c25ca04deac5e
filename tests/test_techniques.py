from __future__ import annotations

import pytest

from chiptune_composer.app.models import Channel, EventCommand, StyleIntent
from chiptune_composer.services.corpus import DutySweep, InitialParam, TechniqueLibrary
from chiptune_composer.services.techniques import (
    NOISE_PUNCH,
    SIDECHAIN_SQUARE1,
    apply_techniques,
    gradual_build_ramp,
    is_measure_boundary,
    style_automation,
)
from chiptune_composer.services.types import TimedEvent


def _note(channel: Channel, on: float, off: float) -> list[TimedEvent]:
    return [
        TimedEvent(on, channel, EventCommand.NOTE_ON, {"midi": 60, "velocity": 90}),
        TimedEvent(off, channel, EventCommand.NOTE_OFF, {}),
    ]


def _library() -> TechniqueLibrary:
    return TechniqueLibrary(
        initial_params=(InitialParam(Channel.SQUARE1, "duty", 0.5),),
        duty_sweeps=(
            DutySweep(
                id="LEAD_SWELL",
                param="duty",
                channels=(Channel.SQUARE1,),
                min_duration_beats=2,
                steps=(0.25, 0.5),
            ),
        ),
    )


def test_duty_sweep_spreads_steps_over_note() -> None:
    events = apply_techniques(_note(Channel.SQUARE1, 0.0, 4.0), StyleIntent(), _library())
    assert [(round(event.beat, 3), event.command) for event in events] == [
        (0.0, EventCommand.SET_PARAM),
        (0.0, EventCommand.NOTE_ON),
        (1.333, EventCommand.SET_PARAM),
        (2.667, EventCommand.SET_PARAM),
        (4.0, EventCommand.NOTE_OFF),
    ]
    assert [event.data["value"] for event in events if event.command == EventCommand.SET_PARAM] == [
        0.5,
        0.25,
        0.5,
    ]


def test_short_notes_are_not_swept() -> None:
    events = apply_techniques(_note(Channel.SQUARE1, 1.0, 2.0), StyleIntent(), _library())
    assert sum(1 for event in events if event.command == EventCommand.SET_PARAM) == 1


def test_break_insertion_dips_before_eighth_measure() -> None:
    intent = StyleIntent(break_insertion=True)
    events = apply_techniques(_note(Channel.NOISE, 28.0, 28.25), intent, TechniqueLibrary())
    params = [event for event in events if event.command == EventCommand.SET_PARAM]
    assert len(params) == 6
    assert {event.beat for event in params} == {27.75, 29.0}
    noise = [event.data["value"] for event in params if event.channel == Channel.NOISE]
    assert noise == [0.45, 0.78]


def test_style_automation_adds_profiles() -> None:
    sweeps, profiles = style_automation(TechniqueLibrary(), StyleIntent(percussive_layering=True))
    assert sweeps == []
    assert NOISE_PUNCH in profiles
    assert SIDECHAIN_SQUARE1 in profiles

    _, with_break = style_automation(
        TechniqueLibrary(), StyleIntent(percussive_layering=True, break_insertion=True)
    )
    assert SIDECHAIN_SQUARE1 not in with_break


def test_gain_profile_uses_boundary_value() -> None:
    events = apply_techniques(
        _note(Channel.NOISE, 4.0, 4.25) + _note(Channel.NOISE, 5.0, 5.25),
        StyleIntent(percussive_layering=True, break_insertion=True),
        TechniqueLibrary(),
    )
    gains = [
        event.data["value"]
        for event in events
        if event.command == EventCommand.SET_PARAM and event.channel == Channel.NOISE
    ]
    assert gains == [NOISE_PUNCH.measure_boundary_value, NOISE_PUNCH.default_value]


def test_gradual_build_ramp() -> None:
    assert gradual_build_ramp(16, StyleIntent()) == []
    ramp = gradual_build_ramp(16, StyleIntent(gradual_build=True))
    assert len(ramp) == 32
    square1 = [event for event in ramp if event.channel == Channel.SQUARE1]
    assert square1[0].data["value"] == pytest.approx(0.68)
    assert square1[-1].beat == 56.0
    assert square1[-1].data["value"] == pytest.approx(0.885)


def test_measure_boundary() -> None:
    assert is_measure_boundary(8.0)
    assert not is_measure_boundary(9.0)
