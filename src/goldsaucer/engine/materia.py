"""Materia stage: the materia table and every place a materia id is handed out."""

from dataclasses import replace
from random import Random
from typing import Any

from goldsaucer.balance.constraints import InvariantResult
from goldsaucer.binary.schema import MATERIA_LINK_MASK
from goldsaucer.constants import EMPTY_MATERIA
from goldsaucer.data.entities import MATERIA, EntitySet, InventoryRef, Materia
from goldsaucer.engine.pools import obtainable_refs
from goldsaucer.engine.randomizer import Stage, StageContext


def shuffle_materia(table: tuple[Materia, ...], slots: list[int], rng: Random) -> tuple[Materia, ...]:
    """Permute records across ``slots``; the link nibble of the type byte stays with the slot."""
    donors = [table[i] for i in slots]
    rng.shuffle(donors)
    out = list(table)
    for slot_index, donor in zip(slots, donors):
        slot = table[slot_index]
        link = slot["type"] & MATERIA_LINK_MASK
        values = {**donor.values, "type": link | (donor["type"] & ~MATERIA_LINK_MASK & 0xFF)}
        out[slot_index] = replace(slot, values=values, origin=donor.origin)
    return tuple(out)


class MateriaStage(Stage):
    """Shuffle materia records and the starting/pickup materia ids."""

    category = "materia"
    partitions = ("materia", "characters", "materia_stock", "materia_pickups")

    def __init__(self, context: StageContext):
        super().__init__(context)
        obtainable = obtainable_refs(context.original)
        self._slots = [
            m.index
            for m in context.original.materia
            if not m.dummy and InventoryRef(MATERIA, m.index) in obtainable
        ]

    def generate(self, snapshot: EntitySet, rng: Random) -> dict[str, Any] | None:
        materia = shuffle_materia(snapshot.materia, self._slots, rng)
        valid = len(snapshot.materia)

        # Every id handed out at the start or in the field goes into one bag
        ids: list[int] = []
        for character in snapshot.characters:
            ids += [m for m, _ in character.materia_slots() if m < valid]
        ids += [m for m, _ in snapshot.materia_stock if m < valid]
        ids += [p.ref.id for p in snapshot.materia_pickups]
        rng.shuffle(ids)
        bag = iter(ids)

        characters = []
        for character in snapshot.characters:
            new_ids = [
                next(bag) if m < valid else m for m, _ in character.materia_slots()
            ]
            characters.append(character.with_materia_ids(new_ids))
        stock = tuple(
            (next(bag), ap) if m < valid else (m, ap) for m, ap in snapshot.materia_stock
        )
        pickups = tuple(
            replace(p, ref=InventoryRef(MATERIA, next(bag))) for p in snapshot.materia_pickups
        )
        return {
            "materia": materia,
            "characters": tuple(characters),
            "materia_stock": stock,
            "materia_pickups": pickups,
        }

    def validate(self, snapshot: EntitySet, proposal: EntitySet) -> InvariantResult:
        validator = self.context.validator
        return (
            validator.validate_counts(proposal)
            .merge(validator.validate_obtainability(proposal))
            .merge(validator.validate_slot_metadata(proposal))
            .merge(validator.validate_references(proposal))
        )

    def describe(self, snapshot: EntitySet, proposal: EntitySet) -> dict[str, Any]:
        table = {
            str(m.index): m.origin for m in proposal.materia if m.origin != m.index
        }
        starting = {}
        for before, after in zip(snapshot.characters, proposal.characters):
            ids = [m for m, _ in after.materia_slots() if m != EMPTY_MATERIA]
            if ids != [m for m, _ in before.materia_slots() if m != EMPTY_MATERIA]:
                starting[after["name"] or str(after.index)] = ids
        pickups = {
            f"{after.field}@{after.offset:#x}": after.ref.id
            for before, after in zip(snapshot.materia_pickups, proposal.materia_pickups)
            if before.ref != after.ref
        }
        return {"table": table, "starting": starting, "pickups": pickups}
