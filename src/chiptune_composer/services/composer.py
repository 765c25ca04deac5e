"""Composition service used by the job manager, the HTTP routes and the CLI."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from ..app.models import (
    CompositionOptions,
    CompositionResult,
    GenerationArtifact,
    GenerationMetadata,
)
from ..app.settings import Settings
from .corpus import MotifCorpus, load_corpus
from .pipeline import run_pipeline


class CompositionService:
    """Runs the pipeline with configured defaults and persists results as JSON."""

    def __init__(self, settings: Settings, corpus: Optional[MotifCorpus] = None) -> None:
        self._settings = settings
        self._corpus = corpus
        self._artifact_root = settings.artifact_root

    @property
    def corpus(self) -> MotifCorpus:
        if self._corpus is None:
            self._corpus = load_corpus(Path(self._settings.motif_dir))
        return self._corpus

    async def warmup(self) -> Dict[str, int]:
        sizes = self.corpus.sizes()
        logger.info("Composer warmup complete: {}", sizes)
        return sizes

    def compose(self, options: CompositionOptions) -> CompositionResult:
        return run_pipeline(
            options,
            corpus=self.corpus,
            default_length=self._settings.default_length_measures,
            max_length=self._settings.max_length_measures,
            fallback_seed=self._settings.rng_fallback_seed,
            loop_window_seconds=self._settings.loop_window_seconds,
        )

    async def generate(self, job_id: str, options: CompositionOptions) -> GenerationArtifact:
        result = await asyncio.to_thread(self.compose, options)

        artifact_path = self._artifact_root / f"{job_id}.json"
        artifact_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(
            artifact_path.write_text, result.model_dump_json(indent=2), encoding="utf-8"
        )
        logger.info("Wrote composition artifact {}", artifact_path)

        meta = result.meta
        extras: Dict[str, object] = {
            "mood": meta.mood.value,
            "tempo": meta.tempo.value,
            "sections": [section.id for section in meta.sections],
            "style_intent": meta.style_intent.model_dump(),
        }
        metadata = GenerationMetadata(
            seed=meta.seed,
            length_in_measures=meta.length_in_measures,
            bpm=meta.bpm,
            key=meta.key,
            voice_arrangement=meta.voice_arrangement.id,
            event_count=len(result.events),
            duration_seconds=meta.loop_info.total_duration,
            replay_options=meta.replay_options,
            extras=extras,
        )
        return GenerationArtifact(
            job_id=job_id,
            artifact_path=str(artifact_path),
            metadata=metadata,
        )
