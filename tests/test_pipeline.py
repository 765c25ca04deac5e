from __future__ import annotations

import pytest

from chiptune_composer.app.models import (
    Channel,
    CompositionOptions,
    EventCommand,
    Mood,
    StylePreset,
    TwoAxisStyle,
)
from chiptune_composer.services.corpus import default_corpus, passes_humanization
from chiptune_composer.services.exceptions import ConfigurationError
from chiptune_composer.services.pipeline import generate_composition, run_pipeline


def test_same_options_produce_identical_output() -> None:
    options = CompositionOptions(seed=42, length_in_measures=32, preset="minimal-techno")
    first = run_pipeline(options)
    second = run_pipeline(options)
    assert first == second
    assert first.events


def test_different_seeds_differ() -> None:
    first = run_pipeline(CompositionOptions(seed=1, length_in_measures=16))
    second = run_pipeline(CompositionOptions(seed=2, length_in_measures=16))
    assert first.events != second.events


def test_replay_options_reproduce_composition() -> None:
    original = run_pipeline(
        CompositionOptions(length_in_measures=16, preset="retro-loopwave"),
        seed_source=lambda: 123456,
    )
    assert original.meta.seed == 123456
    replayed = run_pipeline(original.meta.replay_options)
    assert replayed.events == original.events
    assert replayed.meta == original.meta


def test_minimal_techno_scenario() -> None:
    result = run_pipeline(
        CompositionOptions(seed=42, length_in_measures=32, preset="minimal-techno")
    )
    meta = result.meta
    assert meta.mood == Mood.TENSE
    assert meta.key == "E_Minor"
    assert meta.length_in_measures == 32
    assert meta.profile.two_axis_style == TwoAxisStyle(percussive_melodic=-0.4, calm_energetic=-0.3)
    assert [section.id for section in meta.sections] == ["A1", "B1", "A2", "C1"]
    assert [section.occurrence_index for section in meta.sections] == [1, 1, 2, 1]
    chords = {chord for section in meta.sections for chord in section.chord_progression}
    assert chords <= {"Em", "Bm", "Am", "E"}
    assert meta.loop_info.total_beats == 128.0
    assert meta.style_intent.harmonic_static is True


def _check_invariants(options: CompositionOptions) -> None:
    result = run_pipeline(options)
    meta = result.meta
    total = meta.loop_info.total_duration

    times = [event.time for event in result.events]
    assert times == sorted(times)
    assert all(0.0 <= time <= total + 1e-9 for time in times)
    assert sum(section.measures for section in meta.sections) == meta.length_in_measures

    for entry in result.diagnostics.voice_allocation:
        if entry.channel in (Channel.TRIANGLE, Channel.NOISE):
            assert entry.active_count <= 1

    voice_channels = {voice.channel for voice in meta.voice_arrangement.voices}
    assert Channel.NOISE not in voice_channels
    for event in result.events:
        if event.command == EventCommand.NOTE_ON and event.channel != Channel.NOISE:
            assert event.channel in voice_channels
            assert 20 <= event.data["velocity"] <= 118

    corpus = default_corpus()
    for motif_id in result.diagnostics.motif_usage.melody_rhythm:
        motif = corpus.melody_rhythm(motif_id)
        assert motif is not None
        assert passes_humanization(motif, motif.length)

    plan = result.diagnostics.section_motif_plan
    first_by_template = {entry.template_id: entry for entry in plan if entry.occurrence_index == 1}
    for entry in plan:
        if entry.occurrence_index > 1:
            hook = first_by_template[entry.template_id]
            assert entry.reprises_hook
            assert entry.primary_rhythm == hook.primary_rhythm
            assert entry.primary_melody == hook.primary_melody
            assert entry.primary_melody_rhythm == hook.primary_melody_rhythm


@pytest.mark.parametrize("preset", [preset.value for preset in StylePreset])
def test_presets_hold_invariants(preset: str) -> None:
    for seed in (7, 42, 2024):
        _check_invariants(CompositionOptions(seed=seed, length_in_measures=32, preset=preset))


@pytest.mark.parametrize("length", [1, 3, 8, 16, 24, 64])
def test_lengths_hold_invariants(length: int) -> None:
    for seed in (5, 99):
        _check_invariants(CompositionOptions(seed=seed, length_in_measures=length))


def test_axis_corners_hold_invariants() -> None:
    for pm, ce in ((-1.0, -1.0), (-1.0, 1.0), (1.0, -1.0), (1.0, 1.0), (0.0, 0.0)):
        _check_invariants(
            CompositionOptions(
                seed=31,
                length_in_measures=16,
                two_axis_style=TwoAxisStyle(percussive_melodic=pm, calm_energetic=ce),
            )
        )


def test_gradual_build_raises_late_melody_velocity() -> None:
    result = run_pipeline(
        CompositionOptions(seed=812345, length_in_measures=32, preset="progressive-house")
    )
    bpm = result.meta.bpm
    split_beat = result.meta.length_in_measures / 2 * 4

    early: list[int] = []
    late: list[int] = []
    early_noise = late_noise = 0
    for event in result.events:
        if event.command != EventCommand.NOTE_ON:
            continue
        beat = event.time * bpm / 60
        if event.channel == Channel.NOISE:
            if beat < split_beat:
                early_noise += 1
            else:
                late_noise += 1
            continue
        if event.channel != Channel.SQUARE1:
            continue
        velocity = event.data.get("velocity", 0)
        if not velocity:
            continue
        (early if beat < split_beat else late).append(velocity)

    assert early and late
    assert sum(late) / len(late) >= sum(early) / len(early) + 4
    assert late_noise >= early_noise // 2


def test_length_above_limit_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        run_pipeline(CompositionOptions(seed=1, length_in_measures=300), max_length=256)


def test_loop_window_reports_edges() -> None:
    result = run_pipeline(CompositionOptions(seed=8, length_in_measures=8))
    window = result.diagnostics.loop_window
    assert window.head
    assert all(event.time < 0.1 for event in window.head)
    last = result.events[-1].time
    assert all(last - event.time < 0.1 for event in window.tail)


@pytest.mark.asyncio
async def test_generate_composition_wraps_pipeline() -> None:
    options = CompositionOptions(seed=64, length_in_measures=8)
    result = await generate_composition(options)
    assert result == run_pipeline(options)
