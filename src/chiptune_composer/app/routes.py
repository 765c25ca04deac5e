from __future__ import annotations

import asyncio
from typing import cast

from fastapi import APIRouter, HTTPException, Request

from ..services.composer import CompositionService
from ..services.exceptions import CompositionError, ConfigurationError
from ..services.style import preset_to_two_axis
from .jobs import JobManager
from .models import (
    CompositionOptions,
    CompositionResult,
    GenerationArtifact,
    GenerationStatus,
    JobState,
    PresetDescriptor,
    StylePreset,
)
from .settings import Settings

router = APIRouter()


def get_job_manager(request: Request) -> JobManager:
    return cast(JobManager, request.app.state.job_manager)


def get_composer(request: Request) -> CompositionService:
    return cast(CompositionService, request.app.state.composer)


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    settings = cast(Settings, request.app.state.settings)
    corpus_sizes = getattr(request.app.state, "corpus_sizes", {})
    return {
        "status": "ok",
        "artifact_root": str(settings.artifact_root),
        "motif_dir": str(settings.motif_dir),
        "default_length_measures": settings.default_length_measures,
        "max_length_measures": settings.max_length_measures,
        "corpus": corpus_sizes,
        "warmup_complete": bool(corpus_sizes),
    }


@router.get("/presets", response_model=list[PresetDescriptor])
async def presets() -> list[PresetDescriptor]:
    return [
        PresetDescriptor(name=preset, two_axis_style=preset_to_two_axis(preset))
        for preset in StylePreset
    ]


@router.post("/compose", response_model=CompositionResult)
async def compose(payload: CompositionOptions, request: Request) -> CompositionResult:
    composer = get_composer(request)
    try:
        return await asyncio.to_thread(composer.compose, payload)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except CompositionError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("/generate", response_model=GenerationStatus)
async def generate(payload: CompositionOptions, request: Request) -> GenerationStatus:
    manager = get_job_manager(request)
    return await manager.enqueue(payload)


@router.get("/status/{job_id}", response_model=GenerationStatus)
async def status(job_id: str, request: Request) -> GenerationStatus:
    manager = get_job_manager(request)
    status = await manager.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="job not found")
    return status


@router.get("/artifact/{job_id}", response_model=GenerationArtifact)
async def artifact(job_id: str, request: Request) -> GenerationArtifact:
    manager = get_job_manager(request)
    status = await manager.get_status(job_id)
    if status is None or status.state != JobState.SUCCEEDED:
        raise HTTPException(status_code=404, detail="artifact not available")
    artifact = await manager.get_artifact(job_id)
    if artifact is None:
        raise HTTPException(status_code=404, detail="artifact not available")
    return artifact
