from __future__ import annotations

import pytest

from chiptune_composer.app.models import Channel, EventCommand, MotifUsage
from chiptune_composer.services.timeline import (
    beats_to_seconds,
    finalize_timeline,
    loop_info,
    loop_window,
    to_output_events,
)
from chiptune_composer.services.types import TimedEvent


def _events() -> list[TimedEvent]:
    return [
        TimedEvent(0.0, Channel.SQUARE1, EventCommand.NOTE_ON, {"midi": 60}),
        TimedEvent(0.1, Channel.NOISE, EventCommand.NOTE_ON, {}),
        TimedEvent(0.5, Channel.NOISE, EventCommand.NOTE_OFF, {}),
        TimedEvent(7.9, Channel.SQUARE1, EventCommand.NOTE_OFF, {}),
        TimedEvent(8.0, Channel.TRIANGLE, EventCommand.SET_PARAM, {"param": "gain", "value": 0.7}),
    ]


def test_beats_to_seconds() -> None:
    assert beats_to_seconds(4.0, 120) == pytest.approx(2.0)
    assert beats_to_seconds(1.0, 60) == pytest.approx(1.0)


def test_output_events_are_time_sorted() -> None:
    events = list(reversed(_events()))
    converted = to_output_events(events, 120)
    times = [event.time for event in converted]
    assert times == sorted(times)
    assert converted[0].data == {"midi": 60}


def test_loop_window_selects_head_and_tail() -> None:
    converted = to_output_events(_events(), 120)
    window = loop_window(converted, 0.1)
    assert [event.time for event in window.head] == pytest.approx([0.0, 0.05])
    assert [event.time for event in window.tail] == pytest.approx([3.95, 4.0])
    empty = loop_window([], 0.1)
    assert empty.head == [] and empty.tail == []


def test_loop_info() -> None:
    info = loop_info(32, 120)
    assert info.loop_start_beat == 0.0
    assert info.total_beats == 128.0
    assert info.loop_end_beat == 128.0
    assert info.total_duration == pytest.approx(64.0)
    assert info.loop_end_time == info.total_duration


def test_finalize_timeline_converts_diagnostics() -> None:
    events, diagnostics = finalize_timeline(
        _events(),
        [(0.0, Channel.SQUARE1, 1), (4.0, Channel.SQUARE1, 0)],
        bpm=120,
        motif_usage=MotifUsage(rhythm={"R1": 2}),
        section_motif_plan=[],
    )
    assert len(events) == 5
    assert [entry.time for entry in diagnostics.voice_allocation] == pytest.approx([0.0, 2.0])
    assert diagnostics.motif_usage.rhythm == {"R1": 2}
    assert diagnostics.section_motif_plan == []
