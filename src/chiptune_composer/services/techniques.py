"""Channel parameter automation layered over realized note events."""

from __future__ import annotations

import bisect
import math
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from loguru import logger

from ..app.models import Channel, EventCommand, StyleIntent
from .corpus import DutySweep, GainProfile, TechniqueLibrary
from .theory import BEATS_PER_MEASURE, EPSILON
from .types import TimedEvent

BREAK_INTERVAL_MEASURES = 8
BREAK_DIP_LEAD_BEATS = 0.25
BREAK_RECOVERY_BEATS = 1.0
BREAK_NOISE_GAIN = (0.45, 0.78)
BREAK_SQUARE_GAIN = (0.55, 0.82)

GRADUAL_BUILD_GAIN_RAMP: Dict[Channel, Tuple[float, float]] = {
    Channel.SQUARE1: (0.68, 0.9),
    Channel.SQUARE2: (0.66, 0.88),
    Channel.TRIANGLE: (0.48, 0.68),
    Channel.NOISE: (0.74, 0.82),
}

FILTER_SWELL = DutySweep(
    id="STYLE_FILTER_SWELL",
    param="duty",
    channels=(Channel.SQUARE1, Channel.SQUARE2),
    min_duration_beats=2,
    steps=(0.2, 0.6, 0.4, 0.75),
)
PROGRESSIVE_DUTY_SWELL = DutySweep(
    id="STYLE_PROGRESSIVE_DUTY_SWELL",
    param="duty",
    channels=(Channel.SQUARE2,),
    min_duration_beats=1,
    steps=(0.32, 0.48, 0.58, 0.68),
)
NOISE_PUNCH = GainProfile("STYLE_NOISE_PUNCH", Channel.NOISE, "gain", 0.85, 0.78)
SIDECHAIN_SQUARE1 = GainProfile("STYLE_MINIMAL_SIDECHAIN_SQ1", Channel.SQUARE1, "gain", 0.74, 0.62)
SIDECHAIN_SQUARE2 = GainProfile("STYLE_MINIMAL_SIDECHAIN_SQ2", Channel.SQUARE2, "gain", 0.72, 0.6)
TRIANGLE_PAD = GainProfile("STYLE_TRIANGLE_PAD", Channel.TRIANGLE, "gain", 0.82, 0.72)
PROGRESSIVE_TRIANGLE_RISE = GainProfile("STYLE_PROGRESSIVE_TRI_RISE", Channel.TRIANGLE, "gain", 0.9, 0.76)


def is_measure_boundary(beat: float) -> bool:
    return abs(beat % BEATS_PER_MEASURE) < EPSILON


def _set_param(beat: float, channel: Channel, param: str, value: float) -> TimedEvent:
    return TimedEvent(beat, channel, EventCommand.SET_PARAM, {"param": param, "value": value})


def style_automation(
    library: TechniqueLibrary, intent: StyleIntent
) -> Tuple[List[DutySweep], List[GainProfile]]:
    """Library sweeps and gain profiles plus the additions implied by ``intent``."""
    sweeps = list(library.duty_sweeps)
    profiles = list(library.gain_profiles)
    if intent.filter_motion:
        sweeps.append(FILTER_SWELL)
    if intent.percussive_layering:
        profiles.append(NOISE_PUNCH)
        if not intent.break_insertion:
            profiles.extend((SIDECHAIN_SQUARE1, SIDECHAIN_SQUARE2))
    if intent.atmos_pad:
        profiles.append(TRIANGLE_PAD)
    if intent.gradual_build and intent.break_insertion:
        sweeps.append(PROGRESSIVE_DUTY_SWELL)
        profiles.append(PROGRESSIVE_TRIANGLE_RISE)
    return sweeps, profiles


class _NoteOffIndex:
    """Finds the nearest note_off strictly after a beat on a channel."""

    def __init__(self, events: Sequence[TimedEvent]) -> None:
        offs: Dict[Channel, List[float]] = defaultdict(list)
        for event in events:
            if event.command == EventCommand.NOTE_OFF:
                offs[event.channel].append(event.beat)
        self._offs = {channel: sorted(beats) for channel, beats in offs.items()}

    def after(self, channel: Channel, beat: float) -> Optional[float]:
        beats = self._offs.get(channel)
        if not beats:
            return None
        index = bisect.bisect_right(beats, beat)
        return beats[index] if index < len(beats) else None


def _sweep_events(sweep: DutySweep, channel: Channel, on: float, off: float) -> List[TimedEvent]:
    duration = off - on
    if duration < sweep.min_duration_beats:
        return []
    if sweep.require_measure_boundary and not (is_measure_boundary(on) or is_measure_boundary(off)):
        return []
    spacing = duration / (len(sweep.steps) + 1)
    return [
        _set_param(on + spacing * (index + 1), channel, sweep.param, value)
        for index, value in enumerate(sweep.steps)
    ]


def _break_events(measure: int) -> List[TimedEvent]:
    start = float(measure * BEATS_PER_MEASURE)
    dip = start - BREAK_DIP_LEAD_BEATS if start - BREAK_DIP_LEAD_BEATS >= 0 else start
    recovery = start + BREAK_RECOVERY_BEATS
    events = [
        _set_param(dip, Channel.NOISE, "gain", BREAK_NOISE_GAIN[0]),
        _set_param(recovery, Channel.NOISE, "gain", BREAK_NOISE_GAIN[1]),
    ]
    for channel in (Channel.SQUARE1, Channel.SQUARE2):
        events.append(_set_param(dip, channel, "gain", BREAK_SQUARE_GAIN[0]))
        events.append(_set_param(recovery, channel, "gain", BREAK_SQUARE_GAIN[1]))
    return events


def gradual_build_ramp(total_measures: int, intent: StyleIntent) -> List[TimedEvent]:
    if not intent.gradual_build or total_measures <= 1:
        return []
    step = max(1, total_measures // 8)
    exponent = 0.8 if intent.loop_centric else 1.0
    events: List[TimedEvent] = []
    for channel, (base, peak) in GRADUAL_BUILD_GAIN_RAMP.items():
        for measure in range(0, total_measures, step):
            shaped = (measure / (total_measures - 1)) ** exponent
            value = round(base + (peak - base) * shaped, 3)
            events.append(_set_param(float(measure * BEATS_PER_MEASURE), channel, "gain", value))
    return events


def apply_techniques(
    events: Sequence[TimedEvent], intent: StyleIntent, library: TechniqueLibrary
) -> List[TimedEvent]:
    """Merge automation into ``events``; set_param sorts before notes at equal beats."""
    last_beat = max((event.beat for event in events), default=0.0)
    total_measures = max(1, math.ceil(last_beat / BEATS_PER_MEASURE))

    added: List[TimedEvent] = [
        _set_param(0.0, param.channel, param.param, param.value) for param in library.initial_params
    ]
    sweeps, profiles = style_automation(library, intent)
    offs = _NoteOffIndex(events)
    break_measures: Set[int] = set()

    for event in events:
        if event.command != EventCommand.NOTE_ON:
            continue
        off = offs.after(event.channel, event.beat)
        if off is not None:
            for sweep in sweeps:
                if event.channel in sweep.channels:
                    added.extend(_sweep_events(sweep, event.channel, event.beat, off))
        for profile in profiles:
            if event.channel != profile.channel:
                continue
            value = (
                profile.measure_boundary_value
                if is_measure_boundary(event.beat)
                else profile.default_value
            )
            added.append(_set_param(event.beat, event.channel, profile.param, value))
        if intent.break_insertion and event.channel == Channel.NOISE:
            measure = int(event.beat // BEATS_PER_MEASURE)
            if measure > 0 and (measure + 1) % BREAK_INTERVAL_MEASURES == 0 and measure not in break_measures:
                break_measures.add(measure)
                added.extend(_break_events(measure))

    added.extend(gradual_build_ramp(total_measures, intent))
    merged = list(events) + added
    merged.sort(key=lambda item: (item.beat, 0 if item.command == EventCommand.SET_PARAM else 1))
    logger.debug(
        "Added {} automation events ({} break measures)", len(added), len(break_measures)
    )
    return merged
