"""Voice arrangement presets and the weighted arrangement draw."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from ..app.models import ArrangementId, Channel, StylePreset, Voice, VoiceArrangement, VoiceRole
from .rng import random_from_seed

ARRANGEMENT_SALT = 100


def _voice(
    role: VoiceRole,
    channel: Channel,
    priority: float = 1.0,
    octave_offset: int = 0,
    seed_offset: int = 0,
) -> Voice:
    return Voice(
        role=role,
        channel=channel,
        priority=priority,
        octave_offset=octave_offset,
        seed_offset=seed_offset,
    )


VOICE_ARRANGEMENTS: Dict[ArrangementId, VoiceArrangement] = {
    ArrangementId.STANDARD: VoiceArrangement(
        id=ArrangementId.STANDARD,
        label="Standard",
        description="Lead on square1, harmony on square2, bass on triangle.",
        voices=[
            _voice(VoiceRole.MELODY, Channel.SQUARE1),
            _voice(VoiceRole.ACCOMPANIMENT, Channel.SQUARE2),
            _voice(VoiceRole.BASS, Channel.TRIANGLE),
        ],
    ),
    ArrangementId.SWAPPED: VoiceArrangement(
        id=ArrangementId.SWAPPED,
        label="Swapped squares",
        description="Lead and harmony trade square channels.",
        voices=[
            _voice(VoiceRole.MELODY, Channel.SQUARE2),
            _voice(VoiceRole.ACCOMPANIMENT, Channel.SQUARE1),
            _voice(VoiceRole.BASS, Channel.TRIANGLE),
        ],
    ),
    ArrangementId.DUAL_BASS: VoiceArrangement(
        id=ArrangementId.DUAL_BASS,
        label="Dual bass",
        description="Square bass doubled by a lower triangle line.",
        voices=[
            _voice(VoiceRole.MELODY, Channel.SQUARE1),
            _voice(VoiceRole.BASS, Channel.SQUARE2),
            _voice(VoiceRole.BASS_ALT, Channel.TRIANGLE, 0.7, -1, 100),
        ],
    ),
    ArrangementId.BASS_LED: VoiceArrangement(
        id=ArrangementId.BASS_LED,
        label="Bass led",
        description="Bass carries the piece with a sparse lead.",
        voices=[
            _voice(VoiceRole.BASS, Channel.TRIANGLE, 1.0, -1),
            _voice(VoiceRole.BASS_ALT, Channel.SQUARE2, 0.8, 0, 200),
            _voice(VoiceRole.MELODY, Channel.SQUARE1, 0.3),
        ],
    ),
    ArrangementId.LAYERED_BASS: VoiceArrangement(
        id=ArrangementId.LAYERED_BASS,
        label="Layered bass",
        description="Two softened bass layers under a square2 lead.",
        voices=[
            _voice(VoiceRole.BASS, Channel.SQUARE1),
            _voice(VoiceRole.BASS_ALT, Channel.TRIANGLE, 0.85, 0, 160),
            _voice(VoiceRole.MELODY, Channel.SQUARE2),
        ],
    ),
    ArrangementId.MINIMAL: VoiceArrangement(
        id=ArrangementId.MINIMAL,
        label="Minimal",
        description="Bass and a quiet pad, no lead.",
        voices=[
            _voice(VoiceRole.BASS, Channel.SQUARE1),
            _voice(VoiceRole.PAD, Channel.TRIANGLE, 0.4),
        ],
    ),
    ArrangementId.BREAK_LAYERED: VoiceArrangement(
        id=ArrangementId.BREAK_LAYERED,
        label="Break layered",
        description="Driving bass layers for breakbeat material.",
        voices=[
            _voice(VoiceRole.BASS, Channel.SQUARE1),
            _voice(VoiceRole.BASS_ALT, Channel.TRIANGLE, 0.95, -1, 140),
            _voice(VoiceRole.MELODY, Channel.SQUARE2, 0.85, 0, 240),
        ],
    ),
    ArrangementId.LOFI_PAD_LEAD: VoiceArrangement(
        id=ArrangementId.LOFI_PAD_LEAD,
        label="Lo-fi pad lead",
        description="Triangle pad with low chords and a sparse lead.",
        voices=[
            _voice(VoiceRole.PAD, Channel.TRIANGLE, 0.9, -1),
            _voice(VoiceRole.ACCOMPANIMENT, Channel.SQUARE2, 1.0, -1, 60),
            _voice(VoiceRole.MELODY, Channel.SQUARE1, 0.45, 0, 180),
        ],
    ),
    ArrangementId.RETRO_PULSE: VoiceArrangement(
        id=ArrangementId.RETRO_PULSE,
        label="Retro pulse",
        description="Classic pulse lead with a lowered triangle bass.",
        voices=[
            _voice(VoiceRole.MELODY, Channel.SQUARE1, 1.0, 0, 80),
            _voice(VoiceRole.ACCOMPANIMENT, Channel.SQUARE2, 0.85, 0, 140),
            _voice(VoiceRole.BASS, Channel.TRIANGLE, 0.9, -1, 40),
        ],
    ),
}

DEFAULT_ARRANGEMENT_WEIGHTS: Dict[ArrangementId, float] = {
    ArrangementId.STANDARD: 5,
    ArrangementId.SWAPPED: 4,
    ArrangementId.DUAL_BASS: 2,
    ArrangementId.BASS_LED: 2,
    ArrangementId.LAYERED_BASS: 2,
    ArrangementId.MINIMAL: 1,
    ArrangementId.BREAK_LAYERED: 1,
    ArrangementId.LOFI_PAD_LEAD: 1,
    ArrangementId.RETRO_PULSE: 2,
}

ARRANGEMENT_WEIGHTS_BY_STYLE: Dict[StylePreset, Dict[ArrangementId, float]] = {
    StylePreset.MINIMAL_TECHNO: {
        ArrangementId.STANDARD: 2,
        ArrangementId.MINIMAL: 5,
        ArrangementId.BASS_LED: 3,
        ArrangementId.DUAL_BASS: 2,
        ArrangementId.SWAPPED: 1,
        ArrangementId.LAYERED_BASS: 1,
    },
    StylePreset.PROGRESSIVE_HOUSE: {
        ArrangementId.STANDARD: 4,
        ArrangementId.SWAPPED: 3,
        ArrangementId.LAYERED_BASS: 3,
        ArrangementId.DUAL_BASS: 2,
        ArrangementId.BASS_LED: 1,
        ArrangementId.MINIMAL: 0,
    },
    StylePreset.RETRO_LOOPWAVE: {
        ArrangementId.STANDARD: 2,
        ArrangementId.SWAPPED: 3,
        ArrangementId.RETRO_PULSE: 5,
        ArrangementId.LAYERED_BASS: 1,
        ArrangementId.MINIMAL: 0,
        ArrangementId.BASS_LED: 1,
    },
    StylePreset.BREAKBEAT_JUNGLE: {
        ArrangementId.BREAK_LAYERED: 5,
        ArrangementId.DUAL_BASS: 3,
        ArrangementId.LAYERED_BASS: 2,
        ArrangementId.BASS_LED: 2,
        ArrangementId.STANDARD: 1,
        ArrangementId.SWAPPED: 1,
        ArrangementId.MINIMAL: 0,
    },
    StylePreset.LOFI_CHILLHOP: {
        ArrangementId.LOFI_PAD_LEAD: 5,
        ArrangementId.MINIMAL: 3,
        ArrangementId.STANDARD: 2,
        ArrangementId.SWAPPED: 1,
        ArrangementId.BASS_LED: 1,
        ArrangementId.LAYERED_BASS: 0,
        ArrangementId.DUAL_BASS: 1,
    },
}

LEGACY_ARRANGEMENTS = frozenset({ArrangementId.STANDARD, ArrangementId.SWAPPED})


@dataclass(frozen=True)
class DrumRule:
    beat_tags: Tuple[str, ...] = ()
    fill_tags: Tuple[str, ...] = ()
    avoid_tags: Tuple[str, ...] = ()
    early_sparse_measures: int = 0


@dataclass(frozen=True)
class AccompanimentRule:
    density: float = 1.0
    sustain: bool = False
    velocity_scale: float = 1.0
    offbeat_boost: int = 0


ARRANGEMENT_DRUM_RULES: Dict[ArrangementId, DrumRule] = {
    ArrangementId.DUAL_BASS: DrumRule(
        beat_tags=("percussive_layer", "syncopation"),
        fill_tags=("drum_fill", "build"),
    ),
    ArrangementId.BASS_LED: DrumRule(
        beat_tags=("four_on_floor", "drive"),
        fill_tags=("build",),
        early_sparse_measures=1,
    ),
    ArrangementId.LAYERED_BASS: DrumRule(
        beat_tags=("four_on_floor", "loop_safe"),
        fill_tags=("drum_fill",),
    ),
    ArrangementId.MINIMAL: DrumRule(
        beat_tags=("simple", "open"),
        fill_tags=("noise_fx",),
        avoid_tags=("build", "drive"),
        early_sparse_measures=2,
    ),
    ArrangementId.BREAK_LAYERED: DrumRule(
        beat_tags=("breakbeat", "percussive_layer", "grid16"),
        fill_tags=("break", "drum_fill", "breakbeat"),
        avoid_tags=("four_on_floor",),
    ),
    ArrangementId.LOFI_PAD_LEAD: DrumRule(
        beat_tags=("lofi", "rest_heavy", "swing_hint"),
        fill_tags=("noise_fx", "lofi"),
        avoid_tags=("breakbeat",),
        early_sparse_measures=2,
    ),
    ArrangementId.RETRO_PULSE: DrumRule(
        beat_tags=("loop_safe", "grid16", "syncopation"),
        fill_tags=("build", "transition"),
        avoid_tags=("rest_heavy",),
    ),
}

ARRANGEMENT_ACCOMPANIMENT_RULES: Dict[ArrangementId, AccompanimentRule] = {
    ArrangementId.DUAL_BASS: AccompanimentRule(density=0.85, velocity_scale=0.9, offbeat_boost=3),
    ArrangementId.BASS_LED: AccompanimentRule(density=0.6, sustain=False, offbeat_boost=5),
    ArrangementId.LAYERED_BASS: AccompanimentRule(density=0.75, velocity_scale=0.95),
    ArrangementId.MINIMAL: AccompanimentRule(density=0.5, sustain=True, velocity_scale=0.8),
    ArrangementId.BREAK_LAYERED: AccompanimentRule(
        density=0.95, velocity_scale=1.05, offbeat_boost=6
    ),
    ArrangementId.LOFI_PAD_LEAD: AccompanimentRule(
        density=0.55, sustain=True, velocity_scale=0.7
    ),
    ArrangementId.RETRO_PULSE: AccompanimentRule(
        density=0.78, velocity_scale=0.95, offbeat_boost=2
    ),
}

DEFAULT_DRUM_RULE = DrumRule()
DEFAULT_ACCOMPANIMENT_RULE = AccompanimentRule()


def arrangement_weights(preset: Optional[StylePreset]) -> Dict[ArrangementId, float]:
    weights = dict(DEFAULT_ARRANGEMENT_WEIGHTS)
    if preset is not None:
        weights.update(ARRANGEMENT_WEIGHTS_BY_STYLE.get(preset, {}))
    return weights


def select_arrangement_from_weights(
    weights: Mapping[ArrangementId, float], draw: float
) -> ArrangementId:
    """Walk the cumulative distribution in table order and stop past ``draw``."""
    total = sum(max(0.0, weight) for weight in weights.values())
    if total <= 0:
        return ArrangementId.STANDARD
    cumulative = 0.0
    for arrangement_id, weight in weights.items():
        cumulative += max(0.0, weight) / total
        if draw < cumulative:
            return arrangement_id
    return ArrangementId.STANDARD


def select_voice_arrangement(seed: int, preset: Optional[StylePreset]) -> VoiceArrangement:
    draw = random_from_seed(seed, ARRANGEMENT_SALT)
    arrangement_id = select_arrangement_from_weights(arrangement_weights(preset), draw)
    return VOICE_ARRANGEMENTS[arrangement_id].model_copy(deep=True)


def drum_rule_for(arrangement_id: ArrangementId) -> DrumRule:
    return ARRANGEMENT_DRUM_RULES.get(arrangement_id, DEFAULT_DRUM_RULE)


def accompaniment_rule_for(arrangement_id: ArrangementId) -> AccompanimentRule:
    return ARRANGEMENT_ACCOMPANIMENT_RULES.get(arrangement_id, DEFAULT_ACCOMPANIMENT_RULE)
