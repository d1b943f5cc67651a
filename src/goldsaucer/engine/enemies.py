"""Enemy stage: donor stat profiles and new drop/steal/morph references.

Only regular enemies past the opening battles are touched. Each one takes
the stat block of a donor drawn with a bias towards its own difficulty tier
(the Balance Scaler later pulls the numbers back to the enemy's tier), and
every used drop, steal and morph slot receives a new inventory reference.
"""

import logging
from random import Random
from typing import Any

from goldsaucer.balance.constraints import InvariantResult
from goldsaucer.constants import (
    DONOR_TIER_WEIGHTS,
    EARLY_SAFE_SCENES,
    NO_ITEM,
    REWARD_TIER_WEIGHTS,
)
from goldsaucer.data.entities import ITEM, Enemy, EntitySet, InventoryRef
from goldsaucer.engine.pools import (
    TIER_COUNT,
    level_tier,
    ref_for_identity,
    reward_pool,
)
from goldsaucer.engine.randomizer import Stage, StageContext

logger = logging.getLogger(__name__)

# The part of the record that travels with a donor profile
STAT_FIELDS = (
    "level", "speed", "luck", "evade", "strength", "defense", "magic",
    "magic_defense", "hp", "mp", "exp", "ap", "gil",
)

MORPH = -1
# Weighted draws that hit an item already on the enemy are redrawn this often
# before falling back to an explicit filtered pool
REDRAW_LIMIT = 8


def is_eligible(enemy: Enemy) -> bool:
    return not enemy.is_placeholder and not enemy.boss and enemy.scene >= EARLY_SAFE_SCENES


def _weight(table: tuple[int, ...], distance: int) -> int:
    return table[min(distance, len(table) - 1)]


class EnemyStage(Stage):
    category = "enemy"
    partitions = ("enemies",)

    def __init__(self, context: StageContext):
        super().__init__(context)
        self._donors = [e for e in context.original.enemies if is_eligible(e)]
        self._donor_weights = [
            [
                _weight(DONOR_TIER_WEIGHTS, abs(level_tier(d.level) - tier))
                for d in self._donors
            ]
            for tier in range(TIER_COUNT)
        ]

    def _required_refs(self, snapshot: EntitySet) -> list[InventoryRef]:
        """Slots for identities only enemies used to grant and nothing untouched still does."""
        covered = {
            snapshot.identity(InventoryRef(ITEM, item))
            for enemy in snapshot.enemies
            if not is_eligible(enemy) and not enemy.is_placeholder
            for item in enemy.item_refs()
        }
        holders = ref_for_identity(snapshot)
        return [holders[i] for i in sorted(self.context.obligations(snapshot).enemy - covered) if i in holders]

    def generate(self, snapshot: EntitySet, rng: Random) -> dict[str, Any] | None:
        enemies = list(snapshot.enemies)
        eligible = [e.index for e in enemies if is_eligible(e)]
        if not eligible:
            return {"enemies": snapshot.enemies}

        # Stat profiles
        profiles: dict[int, dict[str, Any]] = {}
        for index in eligible:
            tier = level_tier(enemies[index].level)
            donor = rng.choices(self._donors, weights=self._donor_weights[tier])[0]
            profiles[index] = {name: donor[name] for name in STAT_FIELDS}

        # Reward slots: (enemy index, drop slot or MORPH)
        positions: list[tuple[int, int]] = []
        for index in eligible:
            enemy = enemies[index]
            positions += [(index, slot) for slot, item in enumerate(enemy["item_ids"]) if item != NO_ITEM]
            if enemy["morph"] != NO_ITEM:
                positions.append((index, MORPH))
        rng.shuffle(positions)

        pool = reward_pool(snapshot, set(self.context.obtainable))
        if not pool:
            return None
        tiers = self.context.tiers
        pool_tiers = [tiers[snapshot.identity(ref)] for ref in pool]
        reward_weights = [
            [_weight(REWARD_TIER_WEIGHTS, abs(t - tier)) for t in pool_tiers]
            for tier in range(TIER_COUNT)
        ]

        assigned: dict[tuple[int, int], int] = {}
        held: dict[int, set[int]] = {index: set() for index in eligible}
        allow_duplicates = self.context.config.allow_duplicate_drops

        def place(position: tuple[int, int], item: int) -> None:
            assigned[position] = item
            # Morph items are not part of the drop list
            if position[1] != MORPH:
                held[position[0]].add(item)

        required = self._required_refs(snapshot)
        if len(required) > len(positions):
            logger.debug("%d enemy-only identities but %d reward slots", len(required), len(positions))
            return None
        for position, ref in zip(positions, required):
            place(position, ref.id)

        for position in positions[len(required):]:
            index, slot = position
            tier = level_tier(enemies[index].level)
            item = None
            for _ in range(REDRAW_LIMIT):
                candidate = rng.choices(pool, weights=reward_weights[tier])[0].id
                if allow_duplicates or slot == MORPH or candidate not in held[index]:
                    item = candidate
                    break
            if item is None:
                options = [
                    (ref.id, w)
                    for ref, w in zip(pool, reward_weights[tier])
                    if ref.id not in held[index] and w
                ]
                if not options:
                    return None
                ids, weights = zip(*options)
                item = rng.choices(ids, weights=weights)[0]
            place(position, item)

        for index in eligible:
            enemy = enemies[index]
            item_ids = list(enemy["item_ids"])
            morph = enemy["morph"]
            for slot in range(len(item_ids)):
                if (index, slot) in assigned:
                    item_ids[slot] = assigned[(index, slot)]
            if (index, MORPH) in assigned:
                morph = assigned[(index, MORPH)]
            enemies[index] = enemy.evolve(**profiles[index], item_ids=tuple(item_ids), morph=morph)
        return {"enemies": tuple(enemies)}

    def validate(self, snapshot: EntitySet, proposal: EntitySet) -> InvariantResult:
        validator = self.context.validator
        return (
            validator.validate_counts(proposal)
            .merge(validator.validate_references(proposal))
            .merge(validator.validate_drops(proposal, self.context.config.allow_duplicate_drops))
            .merge(validator.validate_obtainability(proposal, self.context.obligations(snapshot).enemy))
        )

    def describe(self, snapshot: EntitySet, proposal: EntitySet) -> dict[str, Any]:
        out = {}
        for before, after in zip(snapshot.enemies, proposal.enemies):
            if before.values == after.values:
                continue
            out[f"{after.scene}:{after.slot} {after.name}"] = {
                "level": after.level,
                "hp": after["hp"],
                "drops": [f"{item:#05x}" for _, item in after.drops()],
                "morph": None if after["morph"] == NO_ITEM else f"{after['morph']:#05x}",
            }
        return out
