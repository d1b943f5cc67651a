"""Staged randomization over immutable EntitySet snapshots.

Wave 1 runs items, materia and key items side by side; wave 2 runs enemy
and shops against the wave-1 result (both draw from the reshuffled pool).
The Balance Scaler and a global invariant check follow. Stages in a wave
own disjoint partitions, so their results are merged in a fixed order and
thread completion order never shows in the output.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from goldsaucer.balance import scaler
from goldsaucer.balance.constraints import InvariantResult, describe, first_error
from goldsaucer.config import RandomizerConfig
from goldsaucer.constants import DEFAULT_MAX_ATTEMPTS
from goldsaucer.data.entities import EntitySet
from goldsaucer.engine.enemies import EnemyStage
from goldsaucer.engine.items import ItemStage
from goldsaucer.engine.keyitems import KeyItemStage
from goldsaucer.engine.materia import MateriaStage
from goldsaucer.engine.randomizer import Stage, StageContext, StageResult, run_stage
from goldsaucer.engine.seeds import normalize_seed
from goldsaucer.engine.shops import ShopStage
from goldsaucer.errors import ConstraintViolation

logger = logging.getLogger(__name__)

WAVES: tuple[tuple[tuple[str, type[Stage]], ...], ...] = (
    (("items", ItemStage), ("materia", MateriaStage), ("key_items", KeyItemStage)),
    (("enemy", EnemyStage), ("shops", ShopStage)),
)


@dataclass
class RandomizeResult:
    """Everything a run decided, before compilation."""

    seed: str
    config: RandomizerConfig
    original: EntitySet
    entities: EntitySet
    stages: dict[str, StageResult] = field(default_factory=dict)
    validation: InvariantResult | None = None


class RandomizerPipeline:
    """Runs the enabled stages in dependency order."""

    def __init__(
        self,
        config: RandomizerConfig,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        workers: int = 4,
    ):
        self.config = config
        self.max_attempts = max_attempts
        self.workers = workers

    def _enabled(self, wave: tuple[tuple[str, type[Stage]], ...]) -> list[tuple[str, type[Stage]]]:
        return [(name, cls) for name, cls in wave if getattr(self.config, name)]

    def _run_wave(
        self,
        stages: list[Stage],
        snapshot: EntitySet,
        seed: str,
    ) -> list[StageResult]:
        if len(stages) == 1 or self.workers == 1:
            return [run_stage(stage, snapshot, seed, self.max_attempts) for stage in stages]
        with ThreadPoolExecutor(max_workers=min(self.workers, len(stages))) as pool:
            futures = [
                pool.submit(run_stage, stage, snapshot, seed, self.max_attempts) for stage in stages
            ]
            # Submission order, not completion order
            return [f.result() for f in futures]

    def randomize(self, original: EntitySet, seed: str | int) -> RandomizeResult:
        """Run every enabled stage, the scaler and the global check.

        Raises:
            ConstraintViolation: A stage ran out of attempts, or the merged
                result breaks a global invariant.
        """
        seed = normalize_seed(seed)
        context = StageContext.build(original, self.config)
        result = RandomizeResult(seed=seed, config=self.config, original=original, entities=original)

        snapshot = original
        for wave in WAVES:
            enabled = self._enabled(wave)
            if not enabled:
                continue
            logger.info("Running %s", ", ".join(name for name, _ in enabled))
            stages = [cls(context) for _, cls in enabled]
            merged: dict[str, Any] = {}
            for stage_result in self._run_wave(stages, snapshot, seed):
                result.stages[stage_result.category] = stage_result
                merged.update(stage_result.partitions)
            snapshot = snapshot.evolve(**merged)

        snapshot = scaler.scale(original, snapshot, self.config)

        validation = context.validator.validate_all(
            snapshot,
            allow_duplicates=self.config.allow_duplicate_drops,
            loose_categories=self.config.loose_shop_categories,
            full_logic=self.config.full_logic_key_items,
        )
        if not self.config.key_items:
            # Placement rules only judge placements this run made
            validation.issues = [i for i in validation.issues if not i.invariant.startswith("key_item")]
            validation.valid = not validation.errors
        for issue in validation.warnings:
            logger.warning("%s: %s", issue.invariant, issue.message)
        error = first_error(validation)
        if error is not None:
            raise ConstraintViolation("global", error.invariant, describe(validation))

        result.entities = snapshot
        result.validation = validation
        return result
