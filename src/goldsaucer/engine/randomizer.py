"""Generate-then-validate stages with a bounded, reseeded retry loop.

A stage owns a fixed set of EntitySet partitions. ``generate`` proposes new
values for them from a seeded Random (or returns None when it paints itself
into a corner); ``validate`` checks the proposal. ``run_stage`` reruns
``generate`` with the next derived sub-seed until validation passes or the
attempt budget is spent.
"""

import logging
from dataclasses import dataclass, field
from random import Random
from typing import Any

from goldsaucer.balance.constraints import InvariantIssue, InvariantResult, InvariantValidator
from goldsaucer.config import RandomizerConfig
from goldsaucer.constants import DEFAULT_MAX_ATTEMPTS
from goldsaucer.data.entities import EntitySet
from goldsaucer.engine.pools import (
    Identity,
    Obligations,
    ValueTiers,
    obtainable_identities,
    split_obligations,
)
from goldsaucer.engine.seeds import sub_seed
from goldsaucer.errors import ConstraintViolation

logger = logging.getLogger(__name__)

GENERATION = "generation"


@dataclass(frozen=True)
class StageContext:
    """Inputs every stage shares; all derived from the unmodified EntitySet."""

    original: EntitySet
    config: RandomizerConfig
    validator: InvariantValidator
    tiers: ValueTiers
    # Every identity a finished run must still grant
    required: frozenset[Identity]
    obtainable: frozenset[Identity]

    @classmethod
    def build(cls, original: EntitySet, config: RandomizerConfig) -> "StageContext":
        validator = InvariantValidator(original)
        return cls(
            original=original,
            config=config,
            validator=validator,
            tiers=ValueTiers(original),
            required=frozenset(validator.obtainable),
            obtainable=frozenset(obtainable_identities(original)),
        )

    def obligations(self, snapshot: EntitySet) -> Obligations:
        """What the enemy and shop stages owe, given the snapshot they start from."""
        return split_obligations(
            snapshot,
            self.required,
            enemy_enabled=self.config.enemy,
            shops_enabled=self.config.shops,
        )


@dataclass
class StageResult:
    """Outcome of one category: its new partitions, or what went wrong."""

    category: str
    success: bool
    partitions: dict[str, Any] = field(default_factory=dict)
    issues: list[InvariantIssue] = field(default_factory=list)
    attempts: int = 0
    seed: int = 0
    # Human-readable record of what moved where, for the spoiler log
    changes: dict[str, Any] = field(default_factory=dict)


class Stage:
    """Base class for one randomization category."""

    category: str = ""
    partitions: tuple[str, ...] = ()

    def __init__(self, context: StageContext):
        self.context = context

    def generate(self, snapshot: EntitySet, rng: Random) -> dict[str, Any] | None:
        raise NotImplementedError

    def validate(self, snapshot: EntitySet, proposal: EntitySet) -> InvariantResult:
        raise NotImplementedError

    def describe(self, snapshot: EntitySet, proposal: EntitySet) -> dict[str, Any]:
        """Spoiler entries for an accepted proposal."""
        return {}

    def attempt(self, snapshot: EntitySet, seed: int) -> StageResult:
        """Run one generate/validate round with the given sub-seed."""
        partitions = self.generate(snapshot, Random(seed))
        if partitions is None:
            issue = InvariantIssue("error", GENERATION, "generator found no assignment")
            return StageResult(self.category, False, issues=[issue], seed=seed)

        foreign = set(partitions) - set(self.partitions)
        if foreign:
            raise RuntimeError(f"{self.category} stage wrote partitions it does not own: {sorted(foreign)}")

        proposal = snapshot.evolve(**partitions)
        result = self.validate(snapshot, proposal)
        if not result.valid:
            return StageResult(self.category, False, issues=result.errors, seed=seed)
        return StageResult(
            self.category,
            True,
            partitions=partitions,
            issues=result.warnings,
            seed=seed,
            changes=self.describe(snapshot, proposal),
        )


def run_stage(
    stage: Stage,
    snapshot: EntitySet,
    master_seed: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> StageResult:
    """Retry ``stage`` with fresh sub-seeds until it validates.

    Raises:
        ConstraintViolation: No attempt produced a valid proposal.
    """
    issues: list[InvariantIssue] = []
    for attempt in range(max_attempts):
        result = stage.attempt(snapshot, sub_seed(master_seed, stage.category, attempt))
        result.attempts = attempt + 1
        if result.success:
            if attempt:
                logger.info("%s succeeded after %d attempts", stage.category, attempt + 1)
            return result
        issues = result.issues
        logger.info(
            "%s attempt %d rejected: %s",
            stage.category, attempt + 1, "; ".join(i.message for i in issues[:3]),
        )

    first = issues[0] if issues else InvariantIssue("error", GENERATION, "no attempts were made")
    raise ConstraintViolation(
        stage.category,
        first.invariant,
        f"{first.message} (after {max_attempts} attempts)",
    )
