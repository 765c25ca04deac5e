"""Composition pipeline: options in, complete composition out.

Phases run strictly in order (style resolution, structure planning, motif
selection, event realization, technique automation, timeline finalisation)
and share nothing between invocations, so equal options always produce an
equal result.
"""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from ..app.models import CompositionMeta, CompositionOptions, CompositionResult
from .corpus import MotifCorpus, default_corpus
from .exceptions import ConfigurationError
from .motifs import select_motifs
from .realization import realize_events
from .rng import DEFAULT_FALLBACK_SEED
from .structure import plan_structure
from .style import DEFAULT_LENGTH_IN_MEASURES, resolve_generation_context
from .techniques import apply_techniques
from .timeline import DEFAULT_LOOP_WINDOW_SECONDS, finalize_timeline, loop_info


def run_pipeline(
    options: CompositionOptions,
    *,
    corpus: Optional[MotifCorpus] = None,
    default_length: int = DEFAULT_LENGTH_IN_MEASURES,
    max_length: Optional[int] = None,
    fallback_seed: int = DEFAULT_FALLBACK_SEED,
    loop_window_seconds: float = DEFAULT_LOOP_WINDOW_SECONDS,
    seed_source: Optional[Callable[[], int]] = None,
) -> CompositionResult:
    """Generate one composition synchronously."""
    if (
        max_length is not None
        and options.length_in_measures is not None
        and options.length_in_measures > max_length
    ):
        raise ConfigurationError(
            f"length_in_measures {options.length_in_measures} exceeds the limit of {max_length}"
        )
    corpus = corpus or default_corpus()
    context = resolve_generation_context(
        options,
        default_length=default_length,
        fallback_seed=fallback_seed,
        seed_source=seed_source,
    )
    pipeline = context.pipeline

    plan = plan_structure(pipeline, corpus)
    selection = select_motifs(
        plan,
        corpus,
        mood=pipeline.mood,
        tempo=pipeline.tempo,
        seed=pipeline.seed,
        preset=pipeline.style_preset,
        fallback_seed=pipeline.fallback_seed,
    )
    realized = realize_events(
        plan,
        selection,
        tempo=pipeline.tempo,
        seed=pipeline.seed,
        fallback_seed=pipeline.fallback_seed,
    )
    automated = apply_techniques(realized.events, plan.style_intent, corpus.techniques)
    events, diagnostics = finalize_timeline(
        automated,
        realized.voice_allocation,
        bpm=plan.bpm,
        motif_usage=selection.motif_usage,
        section_motif_plan=selection.section_motif_plan,
        window_seconds=loop_window_seconds,
    )

    meta = CompositionMeta(
        bpm=plan.bpm,
        key=plan.key,
        seed=pipeline.seed,
        mood=pipeline.mood,
        tempo=pipeline.tempo,
        length_in_measures=pipeline.length_in_measures,
        style_intent=plan.style_intent,
        voice_arrangement=plan.voice_arrangement,
        sections=[section.summary() for section in plan.sections],
        technique_strategy=plan.technique_strategy,
        profile=context.profile,
        replay_options=context.replay_options,
        loop_info=loop_info(pipeline.length_in_measures, plan.bpm),
    )
    logger.info(
        "Composed seed {} ({} measures, {} bpm, {}, arrangement {}): {} events",
        pipeline.seed,
        pipeline.length_in_measures,
        plan.bpm,
        plan.key,
        plan.voice_arrangement.id.value,
        len(events),
    )
    return CompositionResult(events=events, diagnostics=diagnostics, meta=meta)


async def generate_composition(
    options: CompositionOptions,
    *,
    corpus: Optional[MotifCorpus] = None,
    default_length: int = DEFAULT_LENGTH_IN_MEASURES,
    max_length: Optional[int] = None,
    fallback_seed: int = DEFAULT_FALLBACK_SEED,
    loop_window_seconds: float = DEFAULT_LOOP_WINDOW_SECONDS,
) -> CompositionResult:
    return run_pipeline(
        options,
        corpus=corpus,
        default_length=default_length,
        max_length=max_length,
        fallback_seed=fallback_seed,
        loop_window_seconds=loop_window_seconds,
    )
