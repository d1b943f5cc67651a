"""Key item stage: a bijective remap of key items onto their original location groups."""

import logging
from dataclasses import replace
from random import Random
from typing import Any

from goldsaucer.balance.constraints import InvariantResult
from goldsaucer.data.entities import EntitySet
from goldsaucer.data.loader import KeyItem, key_item_by_flag
from goldsaucer.engine import progression
from goldsaucer.engine.progression import Flag, LocationGroup
from goldsaucer.engine.randomizer import Stage, StageContext

logger = logging.getLogger(__name__)

# Backtracking steps allowed per attempt before giving up on a seed
SEARCH_BUDGET = 20_000


class KeyItemStage(Stage):
    """Assign every key item to one location group.

    Both modes keep progression items ahead of the field that needs them.
    Conservative mode also keeps each item inside its allowed zones; full
    logic lifts that. Every finished placement is checked by the
    reachability sweep.
    """

    category = "key_items"
    partitions = ("key_sites",)

    def __init__(self, context: StageContext):
        super().__init__(context)
        original = context.original
        self.groups = progression.location_groups(original)
        self.homes = {g.flag: g for g in self.groups}
        self.positions = progression.field_positions(original)
        known = key_item_by_flag()
        self.items = [known[g.flag] for g in self.groups]
        full = context.config.full_logic_key_items
        self.options: dict[Flag, list[LocationGroup]] = {
            item.flag: [
                g for g in self.groups
                if progression.can_place(item, g, self.homes[item.flag], self.positions, full_logic=full)
            ]
            for item in self.items
        }

    def _search(self, rng: Random) -> dict[Flag, LocationGroup] | None:
        """Randomized depth-first matching, most constrained item first."""
        order: list[KeyItem] = sorted(
            self.items, key=lambda item: (len(self.options[item.flag]), rng.random())
        )
        shuffled = {flag: rng.sample(opts, len(opts)) for flag, opts in self.options.items()}
        assignment: dict[Flag, LocationGroup] = {}
        taken: set[Flag] = set()
        steps = 0

        def place(depth: int) -> bool:
            nonlocal steps
            if depth == len(order):
                return True
            item = order[depth]
            for group in shuffled[item.flag]:
                steps += 1
                if steps > SEARCH_BUDGET:
                    return False
                if group.flag in taken:
                    continue
                assignment[item.flag] = group
                taken.add(group.flag)
                if place(depth + 1):
                    return True
                del assignment[item.flag]
                taken.discard(group.flag)
            return False

        return assignment if place(0) else None

    def generate(self, snapshot: EntitySet, rng: Random) -> dict[str, Any] | None:
        if not self.groups:
            return {"key_sites": snapshot.key_sites}
        assignment = self._search(rng)
        if assignment is None:
            logger.debug("No key item matching within %d steps", SEARCH_BUDGET)
            return None

        new_flag = {
            site.key: item_flag
            for item_flag, group in assignment.items()
            for site in group.sites
        }
        sites = tuple(
            replace(site, flag=new_flag[site.key]) if site.key in new_flag else site
            for site in snapshot.key_sites
        )
        return {"key_sites": sites}

    def validate(self, snapshot: EntitySet, proposal: EntitySet) -> InvariantResult:
        validator = self.context.validator
        return validator.validate_counts(proposal).merge(
            validator.validate_key_items(proposal, self.context.config.full_logic_key_items)
        )

    def describe(self, snapshot: EntitySet, proposal: EntitySet) -> dict[str, Any]:
        known = key_item_by_flag()
        assignment = progression.assignment_of(self.context.original, proposal)
        return {
            known[flag].name: {"field": group.field, "replaces": known[group.flag].name}
            for flag, group in sorted(assignment.items(), key=lambda kv: kv[1].field_index)
            if flag in known
        }
