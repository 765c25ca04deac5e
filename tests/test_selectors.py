from __future__ import annotations

import pytest

from chiptune_composer.app.models import Mood, StyleIntent
from chiptune_composer.services.corpus import build_corpus, default_corpus
from chiptune_composer.services.exceptions import LengthMismatch, NoCandidatesAtLength
from chiptune_composer.services.rng import create_rng
from chiptune_composer.services.selectors import (
    bass_step_to_midi,
    select_melody_rhythm_motif,
    select_rhythm_motif,
)


def _melody_rhythm_corpus(include_defect: bool = False):
    records = [
        {
            "id": "MR_HUMAN",
            "length": 4,
            "pattern": [{"value": 4}, {"value": 4, "rest": True}, {"value": 2}],
            "tags": ["start"],
        },
        {
            "id": "MR_MACHINE",
            "length": 4,
            "pattern": [{"value": 16} for _ in range(16)],
            "tags": ["start"],
        },
    ]
    if include_defect:
        records = [{"id": "MR_SHORT", "length": 8, "pattern": [{"value": 4}], "tags": ["start"]}]
    return build_corpus({"melody_rhythm": records})


def test_melody_rhythm_prefers_humanized_material() -> None:
    corpus = _melody_rhythm_corpus()
    rng = create_rng(17)
    for _ in range(10):
        motif = select_melody_rhythm_motif(
            corpus,
            mood=Mood.UPBEAT,
            intent=StyleIntent(),
            function_tag="start",
            total_beats=4,
            required_tags=(),
            rng=rng,
            used=set(),
        )
        assert motif.id == "MR_HUMAN"


def test_melody_rhythm_length_errors() -> None:
    corpus = _melody_rhythm_corpus()
    with pytest.raises(NoCandidatesAtLength) as excinfo:
        select_melody_rhythm_motif(
            corpus,
            mood=Mood.UPBEAT,
            intent=StyleIntent(),
            function_tag="start",
            total_beats=12,
            required_tags=(),
            rng=create_rng(1),
            used=set(),
        )
    assert excinfo.value.length_beats == 12

    with pytest.raises(LengthMismatch):
        select_melody_rhythm_motif(
            _melody_rhythm_corpus(include_defect=True),
            mood=Mood.UPBEAT,
            intent=StyleIntent(),
            function_tag="start",
            total_beats=8,
            required_tags=(),
            rng=create_rng(1),
            used=set(),
        )


def test_rhythm_selection_honours_required_tags() -> None:
    corpus = default_corpus()
    rng = create_rng(8)
    for function_tag in ("start", "middle", "end"):
        motif = select_rhythm_motif(
            corpus,
            mood=Mood.TENSE,
            intent=StyleIntent(loop_centric=True),
            function_tag=function_tag,
            required_tags=("loop_safe",),
            rng=rng,
            used=set(),
        )
        assert "loop_safe" in motif.tags


def test_bass_steps_follow_chord() -> None:
    assert bass_step_to_midi("rest", "C", "G", 36) is None
    assert bass_step_to_midi("root", "C", "G", 36) == 36
    assert bass_step_to_midi("fifth", "C", "G", 36) == 43
    approach = bass_step_to_midi("approach", "C", "G", 36)
    assert approach is not None
    assert approach % 12 in {7, 11, 2}


def test_rhythm_with_mismatched_length_is_excluded() -> None:
    corpus = build_corpus(
        {
            "rhythm": [
                {"id": "R_LONG", "length": 2, "pattern": [4, 4, 8], "tags": ["start"]},
                {"id": "R_EVEN", "length": 2, "pattern": [4, 8, 8], "tags": ["start"]},
            ]
        }
    )
    rng = create_rng(23)
    picked = {
        select_rhythm_motif(
            corpus,
            mood=Mood.UPBEAT,
            intent=StyleIntent(),
            function_tag="start",
            required_tags=(),
            rng=rng,
            used=set(),
        ).id
        for _ in range(12)
    }
    assert picked == {"R_EVEN"}


def test_melody_rhythm_mismatch_reports_lengths() -> None:
    corpus = build_corpus(
        {
            "melody_rhythm": [
                {
                    "id": "MR_OVERLONG",
                    "length": 2,
                    "pattern": [{"value": 4}, {"value": 8, "rest": True}, {"value": 4}],
                    "tags": ["end"],
                }
            ]
        }
    )
    with pytest.raises(LengthMismatch) as excinfo:
        select_melody_rhythm_motif(
            corpus,
            mood=Mood.SAD,
            intent=StyleIntent(),
            function_tag="end",
            total_beats=2,
            required_tags=(),
            rng=create_rng(1),
            used=set(),
        )
    assert excinfo.value.motif_id == "MR_OVERLONG"
    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 2.5
