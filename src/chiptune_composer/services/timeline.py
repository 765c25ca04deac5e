"""Timeline finalisation: beat-timed events to the time-sorted output stream."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from ..app.models import (
    Channel,
    Diagnostics,
    Event,
    LoopInfo,
    LoopWindow,
    MotifUsage,
    SectionMotifPlan,
    VoiceAllocationEntry,
)
from .theory import BEATS_PER_MEASURE
from .types import TimedEvent

DEFAULT_LOOP_WINDOW_SECONDS = 0.1


def beats_to_seconds(beat: float, bpm: int) -> float:
    return beat * 60.0 / bpm


def to_output_events(events: Sequence[TimedEvent], bpm: int) -> List[Event]:
    converted = [
        Event(
            time=beats_to_seconds(event.beat, bpm),
            channel=event.channel,
            command=event.command,
            data=dict(event.data),
        )
        for event in events
    ]
    converted.sort(key=lambda event: event.time)
    return converted


def loop_window(events: Sequence[Event], window_seconds: float = DEFAULT_LOOP_WINDOW_SECONDS) -> LoopWindow:
    """Events close enough to either end of the loop to matter when it wraps."""
    if not events:
        return LoopWindow()
    last = events[-1].time
    return LoopWindow(
        head=[event for event in events if event.time < window_seconds],
        tail=[event for event in events if last - event.time < window_seconds],
    )


def loop_info(length_in_measures: int, bpm: int) -> LoopInfo:
    total_beats = float(length_in_measures * BEATS_PER_MEASURE)
    total_duration = total_beats / bpm * 60.0
    return LoopInfo(
        loop_end_beat=total_beats,
        loop_end_time=total_duration,
        total_beats=total_beats,
        total_duration=total_duration,
    )


def finalize_timeline(
    events: Sequence[TimedEvent],
    voice_allocation: Sequence[Tuple[float, Channel, int]],
    *,
    bpm: int,
    motif_usage: MotifUsage,
    section_motif_plan: Sequence[SectionMotifPlan],
    window_seconds: float = DEFAULT_LOOP_WINDOW_SECONDS,
) -> Tuple[List[Event], Diagnostics]:
    output = to_output_events(events, bpm)
    diagnostics = Diagnostics(
        voice_allocation=[
            VoiceAllocationEntry(
                time=beats_to_seconds(beat, bpm), channel=channel, active_count=count
            )
            for beat, channel, count in voice_allocation
        ],
        loop_window=loop_window(output, window_seconds),
        motif_usage=motif_usage,
        section_motif_plan=list(section_motif_plan),
    )
    return output, diagnostics
