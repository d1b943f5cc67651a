"""Items stage: field pickups and equipment records."""

from collections import defaultdict
from collections.abc import Callable, Hashable
from dataclasses import replace
from random import Random
from typing import Any

from goldsaucer.balance.constraints import InvariantResult
from goldsaucer.binary.schema import ACCESSORY_SLOT_FIELDS, ARMOR_SLOT_FIELDS, WEAPON_SLOT_FIELDS
from goldsaucer.data.entities import INVENTORY_TABLES, ITEM, EntitySet, Equipment, InventoryRef
from goldsaucer.data.loader import weapon_classes
from goldsaucer.engine.pools import obtainable_refs
from goldsaucer.engine.randomizer import Stage, StageContext

SLOT_FIELDS = {
    "weapons": WEAPON_SLOT_FIELDS,
    "armor": ARMOR_SLOT_FIELDS,
    "accessories": ACCESSORY_SLOT_FIELDS,
}


def weapon_class(index: int) -> int | None:
    """Character whose weapon range contains a weapon index."""
    for char_index, (lo, hi) in enumerate(weapon_classes()):
        if lo <= index <= hi:
            return char_index
    return None


def shuffle_records(
    table: tuple[Equipment, ...],
    slot_fields: tuple[str, ...],
    group_of: Callable[[Equipment], Hashable],
    rng: Random,
) -> tuple[Equipment, ...]:
    """Permute record content within groups; slot-bound fields stay put.

    Dummy rows never move.
    """
    groups: dict[Hashable, list[int]] = defaultdict(list)
    for record in table:
        if not record.dummy:
            groups[group_of(record)].append(record.index)

    out = list(table)
    for indices in groups.values():
        donors = [table[i] for i in indices]
        rng.shuffle(donors)
        for slot_index, donor in zip(indices, donors):
            slot = table[slot_index]
            values = {**donor.values, **{f: slot.values[f] for f in slot_fields}}
            out[slot_index] = replace(slot, values=values, origin=donor.origin)
    return tuple(out)


class ItemStage(Stage):
    """Shuffle equipment across slots and item pickups across field sites."""

    category = "items"
    partitions = ("weapons", "armor", "accessories", "item_pickups")

    def __init__(self, context: StageContext):
        super().__init__(context)
        self._obtainable = obtainable_refs(context.original)

    def _slot_obtainable(self, table: str, record: Equipment) -> bool:
        base = dict(INVENTORY_TABLES)[table]
        return InventoryRef(ITEM, base + record.index) in self._obtainable

    def generate(self, snapshot: EntitySet, rng: Random) -> dict[str, Any] | None:
        out: dict[str, Any] = {}
        for table, slot_fields in SLOT_FIELDS.items():
            # Weapons only move within their owner's range
            def group_of(record: Equipment, table: str = table) -> Hashable:
                owner = weapon_class(record.index) if table == "weapons" else None
                return (owner, self._slot_obtainable(table, record))

            out[table] = shuffle_records(snapshot.table(table), slot_fields, group_of, rng)

        refs = [p.ref for p in snapshot.item_pickups]
        rng.shuffle(refs)
        out["item_pickups"] = tuple(
            replace(pickup, ref=ref) for pickup, ref in zip(snapshot.item_pickups, refs)
        )
        return out

    def validate(self, snapshot: EntitySet, proposal: EntitySet) -> InvariantResult:
        validator = self.context.validator
        return (
            validator.validate_counts(proposal)
            .merge(validator.validate_obtainability(proposal))
            .merge(validator.validate_slot_metadata(proposal))
            .merge(validator.validate_references(proposal))
        )

    def describe(self, snapshot: EntitySet, proposal: EntitySet) -> dict[str, Any]:
        equipment = {}
        for table in SLOT_FIELDS:
            moved = {
                str(record.index): record.origin
                for record in proposal.table(table)
                if record.origin != record.index
            }
            if moved:
                equipment[table] = moved
        pickups = {
            f"{after.field}@{after.offset:#x}": {"was": str(before.ref), "now": str(after.ref)}
            for before, after in zip(snapshot.item_pickups, proposal.item_pickups)
            if before.ref != after.ref
        }
        return {"equipment": equipment, "pickups": pickups}
