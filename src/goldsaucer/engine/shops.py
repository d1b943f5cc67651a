"""Shop stage: refill every non-empty shop from the post-randomization pool."""

from dataclasses import replace
from random import Random
from typing import Any

from goldsaucer.balance.constraints import InvariantResult
from goldsaucer.constants import MATERIA_PRICE_COUNT
from goldsaucer.data.entities import (
    INVENTORY_TABLES,
    ITEM,
    MATERIA,
    EntitySet,
    InventoryRef,
    Shop,
    ref_category,
)
from goldsaucer.engine.pools import ref_for_identity
from goldsaucer.engine.randomizer import Stage


def accepts(shop: Shop, ref: InventoryRef, loose: bool) -> bool:
    """Whether a shop may stock ``ref`` given its input category."""
    if loose or shop.category == "mixed":
        return True
    return ref_category(ref) == shop.category


class ShopStage(Stage):
    category = "shops"
    partitions = ("shops",)

    def _pool(self, snapshot: EntitySet) -> list[InventoryRef]:
        """Slots holding an input-obtainable, non-filler record a shop can list."""
        obtainable = self.context.obtainable
        pool = []
        for name, base in INVENTORY_TABLES:
            for record in snapshot.table(name):
                if not record.dummy and (name, record.origin) in obtainable:
                    pool.append(InventoryRef(ITEM, base + record.index))
        for record in snapshot.materia[:MATERIA_PRICE_COUNT]:
            if not record.dummy and (MATERIA, record.origin) in obtainable:
                pool.append(InventoryRef(MATERIA, record.index))
        return pool

    def generate(self, snapshot: EntitySet, rng: Random) -> dict[str, Any] | None:
        loose = self.context.config.loose_shop_categories
        originals = self.context.original.shops
        stocked = [shop.index for shop in originals if shop.refs]
        contents: dict[int, list[InventoryRef]] = {i: [] for i in stocked}

        holders = ref_for_identity(snapshot)
        required = [holders[i] for i in sorted(self.context.obligations(snapshot).shops) if i in holders]
        rng.shuffle(required)
        for ref in required:
            options = [
                i for i in stocked
                if len(contents[i]) < len(originals[i].refs)
                and ref not in contents[i]
                and accepts(originals[i], ref, loose)
            ]
            if not options:
                return None
            contents[rng.choice(options)].append(ref)

        pool = self._pool(snapshot)
        for i in stocked:
            shop = originals[i]
            candidates = [r for r in pool if r not in contents[i] and accepts(shop, r, loose)]
            missing = len(shop.refs) - len(contents[i])
            if missing > len(candidates):
                return None
            contents[i] += rng.sample(candidates, missing)
            # Shops list items before equipment before materia
            contents[i].sort()

        shops = tuple(
            replace(shop, refs=tuple(contents[shop.index])) if shop.index in contents else shop
            for shop in snapshot.shops
        )
        return {"shops": shops}

    def validate(self, snapshot: EntitySet, proposal: EntitySet) -> InvariantResult:
        validator = self.context.validator
        return (
            validator.validate_counts(proposal)
            .merge(validator.validate_shops(proposal, self.context.config.loose_shop_categories))
            .merge(validator.validate_obtainability(proposal, self.context.obligations(snapshot).shops))
        )

    def describe(self, snapshot: EntitySet, proposal: EntitySet) -> dict[str, Any]:
        return {
            str(after.index): [str(r) for r in after.refs]
            for before, after in zip(snapshot.shops, proposal.shops)
            if before.refs != after.refs
        }
