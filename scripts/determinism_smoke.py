#!/usr/bin/env python3
"""
Quick smoke test for composition determinism.

Composes the same options twice, replays the composition from its recorded
replay options, and reports whether all three runs produced identical event
streams. Exits non-zero when any run diverges.
"""

from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

if TYPE_CHECKING:
    from chiptune_composer.app.models import CompositionResult


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check that compositions replay identically.")
    parser.add_argument("--seed", type=int, default=42, help="Composition seed.")
    parser.add_argument(
        "--length",
        type=int,
        default=32,
        help="Length in measures (1-512).",
    )
    parser.add_argument(
        "--preset",
        default="minimal-techno",
        help="Style preset slug; pass an empty string to use the axis centre.",
    )
    return parser.parse_args()


def digest(result: "CompositionResult") -> str:
    events = [event.model_dump(mode="json") for event in result.events]
    encoded = json.dumps(events, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


async def run_smoke(args: argparse.Namespace) -> None:
    from chiptune_composer.app.models import CompositionOptions
    from chiptune_composer.services.pipeline import generate_composition

    options = CompositionOptions(
        seed=args.seed,
        length_in_measures=args.length,
        preset=args.preset or None,
    )

    start = time.perf_counter()
    first = await generate_composition(options)
    elapsed = time.perf_counter() - start
    second = await generate_composition(options)
    replayed = await generate_composition(first.meta.replay_options)

    digests = {
        "first": digest(first),
        "second": digest(second),
        "replayed": digest(replayed),
    }
    payload = {
        "seed": first.meta.seed,
        "bpm": first.meta.bpm,
        "key": first.meta.key,
        "arrangement": first.meta.voice_arrangement.id.value,
        "sections": [section.id for section in first.meta.sections],
        "events": len(first.events),
        "compose_seconds": round(elapsed, 3),
        "digests": digests,
    }
    print(json.dumps(payload, indent=2))

    if len(set(digests.values())) != 1:
        print("Compositions diverged between runs.", file=sys.stderr)
        sys.exit(3)
    print("Compositions are identical across runs.", file=sys.stderr)


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(run_smoke(args))
    except KeyboardInterrupt:  # pragma: no cover - operator friendly exit
        print("Cancelled smoke test.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
