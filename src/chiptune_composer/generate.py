"""
CLI entry point to compose one chiptune artifact without running the HTTP service.

Example:
    python -m chiptune_composer.generate --seed 42 --preset minimal-techno --length 32
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Optional
from uuid import uuid4

from .app.models import CompositionOptions, TwoAxisStyle
from .app.settings import Settings
from .services.composer import CompositionService


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compose a chiptune loop from a style coordinate.")
    parser.add_argument("--seed", type=int, default=None, help="Composition seed (random if omitted).")
    parser.add_argument(
        "--length",
        type=int,
        default=None,
        help="Length in measures (defaults to settings).",
    )
    parser.add_argument(
        "--preset",
        default=None,
        help="Legacy style preset slug, e.g. minimal-techno.",
    )
    parser.add_argument(
        "--percussive-melodic",
        type=float,
        default=None,
        help="Style axis from -1 (percussive) to 1 (melodic).",
    )
    parser.add_argument(
        "--calm-energetic",
        type=float,
        default=None,
        help="Style axis from -1 (calm) to 1 (energetic).",
    )
    parser.add_argument(
        "--artifact-dir",
        type=Path,
        default=None,
        help="Override artifact directory (defaults to settings).",
    )
    return parser.parse_args()


async def _run(
    *,
    seed: Optional[int],
    length: Optional[int],
    preset: Optional[str],
    percussive_melodic: Optional[float],
    calm_energetic: Optional[float],
    artifact_dir: Optional[Path],
) -> None:
    settings_kwargs: dict[str, object] = {}
    if artifact_dir is not None:
        settings_kwargs["artifact_root"] = artifact_dir

    settings = Settings(**settings_kwargs)
    settings.ensure_directories()
    composer = CompositionService(settings)

    two_axis: Optional[TwoAxisStyle] = None
    if percussive_melodic is not None or calm_energetic is not None:
        two_axis = TwoAxisStyle(
            percussive_melodic=percussive_melodic or 0.0,
            calm_energetic=calm_energetic or 0.0,
        )
    options = CompositionOptions(
        length_in_measures=length,
        seed=seed,
        two_axis_style=two_axis,
        preset=preset,
    )

    job_id = f"cli-{uuid4()}"
    artifact = await composer.generate(job_id, options)
    metadata = artifact.metadata

    print(f"job_id        : {artifact.job_id}")
    print(f"artifact_path : {artifact.artifact_path}")
    print(f"seed          : {metadata.seed}")
    print(f"bpm           : {metadata.bpm}")
    print(f"key           : {metadata.key}")
    print(f"arrangement   : {metadata.voice_arrangement.value}")
    print(f"events        : {metadata.event_count}")


def main() -> None:
    args = _parse_args()
    asyncio.run(
        _run(
            seed=args.seed,
            length=args.length,
            preset=args.preset,
            percussive_melodic=args.percussive_melodic,
            calm_energetic=args.calm_energetic,
            artifact_dir=args.artifact_dir,
        )
    )


if __name__ == "__main__":
    main()
