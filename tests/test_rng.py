from __future__ import annotations

from chiptune_composer.services.rng import (
    MASK_32,
    create_rng,
    create_voice_rng,
    pick_index,
    random_from_seed,
    shuffle_with_rng,
    shuffle_with_seed,
)


def test_create_rng_matches_lcg_sequence() -> None:
    rng = create_rng(1)
    first = rng()
    assert first == 1015568748 / MASK_32
    second_state = (1015568748 * 1664525 + 1013904223) & MASK_32
    assert rng() == second_state / MASK_32


def test_zero_seed_uses_fallback() -> None:
    assert create_rng(0, 1337)() == create_rng(1337)()
    assert create_rng(None, 99)() == create_rng(99)()
    assert create_rng(MASK_32 + 1, 7)() == create_rng(7)()


def test_voice_rng_is_offset_seed() -> None:
    assert create_voice_rng(10, 2)() == create_rng(210)()


def test_random_from_seed_is_stable_and_salted() -> None:
    assert random_from_seed(42, 1) == random_from_seed(42, 1)
    assert random_from_seed(42, 1) != random_from_seed(42, 2)
    base = (42 * 1664525 + 5 * 1013904223) & MASK_32
    assert random_from_seed(42, 5) == ((base * 22695477 + 1) & MASK_32) / MASK_32


def test_pick_index_clamps_upper_bound() -> None:
    assert pick_index(1.0, 4) == 3
    assert pick_index(0.0, 4) == 0
    assert pick_index(0.5, 4) == 2


def test_shuffles_are_permutations_and_deterministic() -> None:
    items = list(range(10))
    shuffled = shuffle_with_seed(items, 42, 100)
    assert sorted(shuffled) == items
    assert shuffled == shuffle_with_seed(items, 42, 100)
    assert items == list(range(10))

    by_rng = shuffle_with_rng(items, create_rng(9))
    assert sorted(by_rng) == items
    assert by_rng == shuffle_with_rng(items, create_rng(9))
