from __future__ import annotations

from dataclasses import dataclass

import pytest

from chiptune_composer.services.corpus import TagSet
from chiptune_composer.services.exceptions import CorpusError
from chiptune_composer.services.filters import (
    bias_by_tag_presence,
    cache_key,
    functional_tag,
    narrow,
    pick_with_avoid,
    prefer_tag_presence,
    prefer_unused,
    with_all_tags,
    with_any_tag,
    without_tags,
)
from chiptune_composer.services.rng import create_rng


@dataclass(frozen=True)
class Item:
    id: str
    tags: TagSet


def _items() -> list[Item]:
    return [
        Item("a", TagSet.of(["start", "loop_safe"])),
        Item("b", TagSet.of(["middle"])),
        Item("c", TagSet.of(["middle", "loop_safe"])),
        Item("d", TagSet.of(["end"])),
    ]


def test_tag_filters() -> None:
    items = _items()
    assert [item.id for item in with_all_tags(items, ["middle", "loop_safe"])] == ["c"]
    assert [item.id for item in with_any_tag(items, ["start", "end"])] == ["a", "d"]
    assert [item.id for item in without_tags(items, ["loop_safe"])] == ["b", "d"]


def test_narrow_keeps_pool_when_empty() -> None:
    items = _items()
    assert narrow(items, []) == items
    assert narrow(items, items[:1]) == items[:1]


def test_prefer_tag_presence_ignores_sparse_matches() -> None:
    items = _items()
    assert [item.id for item in prefer_tag_presence(items, ["loop_safe"])] == ["a", "c"]
    assert prefer_tag_presence(items, ["end"]) == items
    assert prefer_tag_presence(items, ["missing"]) == items
    assert prefer_tag_presence(items, []) == items


def test_bias_keeps_every_candidate() -> None:
    items = _items()
    biased = bias_by_tag_presence(items, ["loop_safe"], create_rng(3))
    assert sorted(item.id for item in biased) == ["a", "b", "c", "d"]
    assert {item.id for item in biased[:2]} == {"a", "c"}


def test_prefer_unused_and_pick_with_avoid() -> None:
    items = _items()
    assert [item.id for item in prefer_unused(items, {"a", "b", "c"})] == ["d"]
    assert prefer_unused(items, {"a", "b", "c", "d"}) == items

    rng = create_rng(5)
    for _ in range(20):
        assert pick_with_avoid(items, rng) in items
    assert pick_with_avoid(items[:1], rng, avoid_id="a").id == "a"
    with pytest.raises(CorpusError):
        pick_with_avoid([], rng)


def test_functional_tag_and_cache_key() -> None:
    assert functional_tag(0, 8) == "start"
    assert functional_tag(7, 8) == "end"
    assert functional_tag(3, 8) == "middle"
    assert cache_key("start", []) == "start"
    assert cache_key("end", ["loop_safe", "cadence"]) == "end:cadence|loop_safe"
