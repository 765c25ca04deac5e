from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from chiptune_composer.app.jobs import JobManager
from chiptune_composer.app.models import (
    ArrangementId,
    CompositionOptions,
    CompositionResult,
    GenerationArtifact,
    GenerationMetadata,
    GenerationStatus,
    JobState,
)
from chiptune_composer.app.settings import Settings
from chiptune_composer.services.composer import CompositionService
from chiptune_composer.services.exceptions import GenerationFailure


class StubComposer:
    def __init__(self, artifact_root: Path) -> None:
        self._artifact_root = artifact_root
        self._artifact_root.mkdir(parents=True, exist_ok=True)

    async def warmup(self) -> dict[str, int]:  # pragma: no cover - not used in tests
        return {}

    async def generate(self, job_id: str, options: CompositionOptions) -> GenerationArtifact:
        artifact_path = self._artifact_root / f"{job_id}.json"
        artifact_path.write_text("{}", encoding="utf-8")
        metadata = GenerationMetadata(
            seed=options.seed or 0,
            length_in_measures=options.length_in_measures or 32,
            bpm=120,
            key="C_Major",
            voice_arrangement=ArrangementId.STANDARD,
            event_count=0,
            duration_seconds=0.0,
            replay_options=options,
            extras={"backend": "stub"},
        )
        return GenerationArtifact(
            job_id=job_id,
            artifact_path=str(artifact_path),
            metadata=metadata,
        )


class FailingComposer(StubComposer):
    async def generate(self, job_id: str, options: CompositionOptions) -> GenerationArtifact:
        raise GenerationFailure("boom")


class BrokenComposer(StubComposer):
    async def generate(self, job_id: str, options: CompositionOptions) -> GenerationArtifact:
        raise RuntimeError("unexpected")


@pytest.mark.asyncio
async def test_job_manager_success_flow(tmp_path: Path) -> None:
    composer = StubComposer(tmp_path)
    manager = JobManager(composer)
    options = CompositionOptions(seed=3, length_in_measures=8)

    status = await manager.enqueue(options)
    assert status.state == JobState.QUEUED

    result = await _wait_for_terminal_state(manager, status.job_id)
    assert result.state == JobState.SUCCEEDED
    assert result.progress == 1.0
    artifact = await manager.get_artifact(status.job_id)
    assert artifact is not None
    assert Path(artifact.artifact_path).exists()


@pytest.mark.asyncio
async def test_job_manager_failure_flow(tmp_path: Path) -> None:
    composer = FailingComposer(tmp_path)
    manager = JobManager(composer)

    status = await manager.enqueue(CompositionOptions(seed=3))
    assert status.state == JobState.QUEUED

    result = await _wait_for_terminal_state(manager, status.job_id)
    assert result.state == JobState.FAILED
    assert result.message == "boom"
    artifact = await manager.get_artifact(status.job_id)
    assert artifact is None


@pytest.mark.asyncio
async def test_job_manager_unexpected_error(tmp_path: Path) -> None:
    manager = JobManager(BrokenComposer(tmp_path))
    status = await manager.enqueue(CompositionOptions(seed=3))
    result = await _wait_for_terminal_state(manager, status.job_id)
    assert result.state == JobState.FAILED
    assert result.message == "unexpected error during generation"


@pytest.mark.asyncio
async def test_job_manager_with_composition_service(tmp_path: Path) -> None:
    settings = Settings(artifact_root=tmp_path / "artifacts")
    manager = JobManager(CompositionService(settings))

    status = await manager.enqueue(CompositionOptions(seed=42, length_in_measures=8))
    result = await _wait_for_terminal_state(manager, status.job_id)
    assert result.state == JobState.SUCCEEDED

    artifact = await manager.get_artifact(status.job_id)
    assert artifact is not None
    assert artifact.metadata.seed == 42
    assert artifact.metadata.length_in_measures == 8
    payload = json.loads(Path(artifact.artifact_path).read_text(encoding="utf-8"))
    assert payload["meta"]["seed"] == 42
    assert len(payload["events"]) == artifact.metadata.event_count


@pytest.mark.asyncio
async def test_unknown_preset_fails_job(tmp_path: Path) -> None:
    settings = Settings(artifact_root=tmp_path / "artifacts")
    manager = JobManager(CompositionService(settings))

    status = await manager.enqueue(CompositionOptions(seed=1, preset="polka"))
    result = await _wait_for_terminal_state(manager, status.job_id)
    assert result.state == JobState.FAILED
    assert "polka" in (result.message or "")


async def _wait_for_terminal_state(manager: JobManager, job_id: str) -> GenerationStatus:
    for _ in range(60):
        status = await manager.get_status(job_id)
        if status is None:
            await asyncio.sleep(0.05)
            continue
        if status.state in {JobState.SUCCEEDED, JobState.FAILED}:
            return status
        await asyncio.sleep(0.05)
    raise AssertionError("job did not complete within timeout")


class ThreadRecordingService(CompositionService):
    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.compose_threads: list[int] = []

    def compose(self, options: CompositionOptions) -> CompositionResult:
        self.compose_threads.append(threading.get_ident())
        return super().compose(options)


@pytest.mark.asyncio
async def test_composition_runs_off_the_event_loop(tmp_path: Path) -> None:
    service = ThreadRecordingService(Settings(artifact_root=tmp_path / "artifacts"))

    artifact = await service.generate("offload", CompositionOptions(seed=9, length_in_measures=4))

    assert Path(artifact.artifact_path).exists()
    assert service.compose_threads
    assert threading.get_ident() not in service.compose_threads
