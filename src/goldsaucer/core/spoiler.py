"""Spoiler log: what a seed changed, as deterministic JSON."""

import json
from pathlib import Path
from typing import Any

from goldsaucer import __version__
from goldsaucer.engine.pipeline import RandomizeResult

SPOILER_NAME = "spoiler.json"


def build_spoiler(result: RandomizeResult, files: list[Path]) -> dict[str, Any]:
    """Spoiler document for a finished run. Holds no timestamps or host details."""
    return {
        "generator": f"goldsaucer {__version__}",
        "seed": result.seed,
        "config": result.config.model_dump(by_alias=True),
        "files": sorted(p.as_posix() for p in files),
        "stages": {
            name: {
                "attempts": stage.attempts,
                "sub_seed": f"{stage.seed:016x}",
                "changes": stage.changes,
            }
            for name, stage in sorted(result.stages.items())
        },
        "counts": result.entities.counts(),
    }


def render(spoiler: dict[str, Any]) -> bytes:
    return (json.dumps(spoiler, indent=2) + "\n").encode()
