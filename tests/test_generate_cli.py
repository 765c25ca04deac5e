from __future__ import annotations

import json
from pathlib import Path

import pytest

from chiptune_composer.generate import _run


@pytest.mark.asyncio
async def test_generate_cli_writes_artifact(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    artifact_dir = tmp_path / "artifacts"

    await _run(
        seed=42,
        length=8,
        preset="minimal-techno",
        percussive_melodic=None,
        calm_energetic=None,
        artifact_dir=artifact_dir,
    )

    captured = capsys.readouterr()
    assert "artifact_path" in captured.out
    assert "seed          : 42" in captured.out
    written = list(artifact_dir.glob("cli-*.json"))
    assert len(written) == 1
    payload = json.loads(written[0].read_text(encoding="utf-8"))
    assert payload["meta"]["length_in_measures"] == 8


@pytest.mark.asyncio
async def test_generate_cli_accepts_axis(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    await _run(
        seed=7,
        length=4,
        preset=None,
        percussive_melodic=0.8,
        calm_energetic=None,
        artifact_dir=tmp_path,
    )

    captured = capsys.readouterr()
    assert "events" in captured.out
    written = list(tmp_path.glob("cli-*.json"))
    assert len(written) == 1
    payload = json.loads(written[0].read_text(encoding="utf-8"))
    assert payload["meta"]["profile"]["two_axis_style"] == {
        "percussive_melodic": 0.8,
        "calm_energetic": 0.0,
    }
