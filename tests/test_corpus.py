from __future__ import annotations

import pytest

from chiptune_composer.app.models import Channel, Texture
from chiptune_composer.services.corpus import (
    build_corpus,
    default_corpus,
    is_melody_rhythm_consistent,
    is_rhythm_consistent,
    melody_rhythm_steps,
    passes_humanization,
    rhythm_durations,
)
from chiptune_composer.services.exceptions import LengthMismatch


def _raw() -> dict:
    return {
        "chords": {"C_Major": {"simple": [["C", "G"], ["Am", "F"]]}},
        "rhythm": [
            {"id": "R_OK", "length": 4, "pattern": [4, 4, 8, 8, 4], "tags": ["start"]},
            {"id": "R_BAD", "length": 4, "pattern": [4, 4], "tags": ["middle"]},
        ],
        "melody": [{"id": "M1", "pattern": [1, 3, 5], "tags": ["happy"]}],
        "melody_rhythm": [
            {
                "id": "MR_SWING",
                "length": 4,
                "pattern": [{"value": 4}, {"value": 8}, {"value": 8, "rest": True}, {"value": 2}],
                "tags": ["start"],
            },
            {
                "id": "MR_MACHINE",
                "length": 2,
                "pattern": [{"value": 16} for _ in range(8)],
                "tags": ["middle"],
            },
        ],
        "techniques": {
            "initial_params": [{"channel": "square1", "param": "duty", "value": 0.5}],
            "duty_sweeps": [
                {"id": "LEAD", "channels": ["square1"], "min_duration_beats": 2, "steps": [0.25, 0.5]}
            ],
        },
    }


def test_build_corpus_indexes_records() -> None:
    corpus = build_corpus(_raw())
    assert corpus.rhythm("R_OK") is not None
    assert corpus.melody("M1") is not None
    assert corpus.melody_rhythm("MR_SWING") is not None
    assert corpus.rhythm("missing") is None
    assert corpus.progressions("C_Major") == {"simple": (("C", "G"), ("Am", "F"))}
    assert corpus.techniques.initial_params[0].channel == Channel.SQUARE1
    assert corpus.techniques.duty_sweeps[0].param == "duty"
    assert corpus.sizes()["rhythm"] == 2


def test_length_consistency_checks() -> None:
    corpus = build_corpus(_raw())
    good = corpus.rhythm("R_OK")
    bad = corpus.rhythm("R_BAD")
    assert good is not None and bad is not None
    assert is_rhythm_consistent(good)
    assert rhythm_durations(good) == [1.0, 1.0, 0.5, 0.5, 1.0]
    assert not is_rhythm_consistent(bad)
    with pytest.raises(LengthMismatch) as excinfo:
        rhythm_durations(bad)
    assert excinfo.value.motif_id == "R_BAD"
    assert excinfo.value.actual == 2.0


def test_melody_rhythm_steps_and_humanization() -> None:
    corpus = build_corpus(_raw())
    swing = corpus.melody_rhythm("MR_SWING")
    machine = corpus.melody_rhythm("MR_MACHINE")
    assert swing is not None and machine is not None
    assert is_melody_rhythm_consistent(swing)
    assert melody_rhythm_steps(swing) == [(1.0, False), (0.5, False), (0.5, True), (2.0, False)]
    assert passes_humanization(swing, 4)
    assert not passes_humanization(machine, 2)


def test_default_corpus_is_consistent() -> None:
    corpus = default_corpus()
    assert corpus is default_corpus()
    assert all(is_rhythm_consistent(motif) for motif in corpus.rhythms)
    assert all(is_melody_rhythm_consistent(motif) for motif in corpus.melody_rhythms)
    assert set(corpus.chords) == {"C_Major", "E_Minor", "G_Major"}
    for texture in Texture:
        assert corpus.bass_for_texture(texture)
