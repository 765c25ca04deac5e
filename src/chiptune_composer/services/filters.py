"""Candidate-pool stages shared by every motif family selector."""

from __future__ import annotations

import math
from typing import AbstractSet, List, Optional, Protocol, Sequence, TypeVar

from .corpus import TagSet
from .exceptions import CorpusError
from .rng import Rng, pick_index, shuffle_with_rng

DEFAULT_MIN_MATCH_RATIO = 0.4
DEFAULT_BIAS_RATIO = 0.6
MAX_REPEAT_REDRAWS = 3


class Tagged(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def tags(self) -> TagSet: ...


M = TypeVar("M", bound=Tagged)


def with_all_tags(candidates: Sequence[M], tags: Sequence[str]) -> List[M]:
    return [candidate for candidate in candidates if candidate.tags.has_all(tags)]


def with_any_tag(candidates: Sequence[M], tags: Sequence[str]) -> List[M]:
    return [candidate for candidate in candidates if candidate.tags.has_any(tags)]


def without_tags(candidates: Sequence[M], tags: Sequence[str]) -> List[M]:
    return [candidate for candidate in candidates if not candidate.tags.has_any(tags)]


def narrow(candidates: Sequence[M], narrowed: Sequence[M]) -> List[M]:
    """Keep ``narrowed`` unless it is empty."""
    return list(narrowed) if narrowed else list(candidates)


def prefer_tag_presence(
    candidates: Sequence[M],
    tags: Sequence[str],
    min_ratio: float = DEFAULT_MIN_MATCH_RATIO,
) -> List[M]:
    """Restrict to tagged candidates unless matches are too sparse to trust."""
    if not tags:
        return list(candidates)
    matched = with_any_tag(candidates, tags)
    if not matched:
        return list(candidates)
    if len(candidates) >= 4 and len(matched) < len(candidates) * min_ratio:
        return list(candidates)
    return matched


def bias_by_tag_presence(
    candidates: Sequence[M],
    tags: Sequence[str],
    rng: Rng,
    ratio: float = DEFAULT_BIAS_RATIO,
) -> List[M]:
    """Reorder so a share of tagged candidates leads, keeping every candidate."""
    if not tags or len(candidates) <= 1:
        return list(candidates)
    matched: List[M] = []
    others: List[M] = []
    for candidate in candidates:
        (matched if candidate.tags.has_any(tags) else others).append(candidate)
    if not matched or not others:
        return list(candidates)
    matched = shuffle_with_rng(matched, rng)
    others = shuffle_with_rng(others, rng)
    desired = min(len(matched), max(1, math.ceil(len(candidates) * ratio)))
    return matched[:desired] + matched[desired:] + others


def prefer_unused(candidates: Sequence[M], used: AbstractSet[str]) -> List[M]:
    unused = [candidate for candidate in candidates if candidate.id not in used]
    return unused if unused else list(candidates)


def pick_with_avoid(candidates: Sequence[M], rng: Rng, avoid_id: Optional[str] = None) -> M:
    if not candidates:
        raise CorpusError("no candidates available for selection")
    if len(candidates) == 1:
        return candidates[0]
    choice = candidates[pick_index(rng(), len(candidates))]
    attempts = 0
    while avoid_id is not None and choice.id == avoid_id and attempts < MAX_REPEAT_REDRAWS:
        choice = candidates[pick_index(rng(), len(candidates))]
        attempts += 1
    return choice


def functional_tag(measure_index: int, total_measures: int) -> str:
    if measure_index == 0:
        return "start"
    if measure_index == total_measures - 1:
        return "end"
    return "middle"


def cache_key(function_tag: str, required_tags: Sequence[str]) -> str:
    if not required_tags:
        return function_tag
    return f"{function_tag}:{'|'.join(sorted(required_tags))}"
