"""Typed, immutable entity model produced by the extractor.

Each stage of a run receives an EntitySet snapshot and returns a new one
built with ``evolve``; nothing is modified in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from goldsaucer.binary.schema import MATERIA_SLOT
from goldsaucer.constants import (
    ACCESSORY_BASE,
    ARMOR_BASE,
    EMPTY_MATERIA,
    ITEM_BASE,
    NO_ITEM,
    WEAPON_BASE,
)

ITEM = "item"
MATERIA = "materia"

# Inventory tables in id order: (table name, first inventory id)
INVENTORY_TABLES = (
    ("items", ITEM_BASE),
    ("weapons", WEAPON_BASE),
    ("armor", ARMOR_BASE),
    ("accessories", ACCESSORY_BASE),
)


@dataclass(frozen=True, order=True)
class InventoryRef:
    """Reference to something a player can own: an inventory id or a materia id."""

    kind: str
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id:#05x}"


@dataclass(frozen=True)
class Record:
    """A decoded fixed-size record. ``values`` is keyed by schema field name."""

    index: int
    values: Mapping[str, Any]

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def evolve(self, **changes: Any):
        return replace(self, values={**self.values, **changes})


@dataclass(frozen=True)
class Enemy(Record):
    scene: int = 0
    slot: int = 0
    boss: bool = False

    @property
    def key(self) -> tuple[int, int]:
        return (self.scene, self.slot)

    @property
    def name(self) -> str:
        return self.values["name"]

    @property
    def level(self) -> int:
        return self.values["level"]

    @property
    def is_placeholder(self) -> bool:
        """Unused enemy slots carry zero HP."""
        return self.values["hp"] == 0

    def drops(self) -> list[tuple[int, int]]:
        """Used ``(rate, inventory id)`` slots; rate bit 7 marks a steal."""
        return [
            (rate, item)
            for rate, item in zip(self.values["item_rates"], self.values["item_ids"])
            if item != NO_ITEM
        ]

    def item_refs(self) -> list[int]:
        refs = [item for _, item in self.drops()]
        if self.values["morph"] != NO_ITEM:
            refs.append(self.values["morph"])
        return refs


@dataclass(frozen=True)
class Equipment(Record):
    """An inventory table record. ``origin`` is the index whose content it holds."""

    table: str = "items"
    origin: int = 0
    # Unused table rows are filled with 0xFF or 0x00
    dummy: bool = False


@dataclass(frozen=True)
class Materia(Record):
    origin: int = 0
    dummy: bool = False


@dataclass(frozen=True)
class Character(Record):
    def materia_slots(self) -> list[tuple[int, int]]:
        """The 16 equipped materia ``(id, ap)`` pairs, weapon slots first."""
        raw = self.values["weapon_materia"] + self.values["armor_materia"]
        return [
            (slot["id"], slot["ap"])
            for slot in (MATERIA_SLOT.read(raw, i) for i in range(0, len(raw), MATERIA_SLOT.size))
        ]

    def with_materia_ids(self, ids: list[int]) -> Character:
        slots = self.materia_slots()
        raw = bytearray(len(slots) * MATERIA_SLOT.size)
        for i, ((_, ap), new_id) in enumerate(zip(slots, ids)):
            MATERIA_SLOT.write(raw, i * MATERIA_SLOT.size, {"id": new_id, "ap": ap})
        half = len(raw) // 2
        return self.evolve(weapon_materia=bytes(raw[:half]), armor_materia=bytes(raw[half:]))


@dataclass(frozen=True)
class FieldPickup:
    """A constant STITM/SMTRA grant in a field script."""

    field: str
    field_index: int
    offset: int
    ref: InventoryRef
    quantity: int = 1

    @property
    def key(self) -> tuple[str, int]:
        return (self.field, self.offset)


@dataclass(frozen=True)
class KeySite:
    """A BITON that grants a key item."""

    field: str
    field_index: int
    offset: int
    flag: tuple[int, int, int]

    @property
    def key(self) -> tuple[str, int]:
        return (self.field, self.offset)


@dataclass(frozen=True)
class Shop:
    index: int
    name_index: int
    refs: tuple[InventoryRef, ...]

    @property
    def category(self) -> str:
        if not self.refs:
            return "empty"
        kinds = {ref_category(r) for r in self.refs}
        return kinds.pop() if len(kinds) == 1 else "mixed"


def ref_category(ref: InventoryRef) -> str:
    """Shop category a single reference belongs to."""
    if ref.kind == MATERIA:
        return "materia"
    return "items" if ref.id < WEAPON_BASE else "equipment"


@dataclass(frozen=True)
class EntitySet:
    """Everything a run can randomize, grouped into per-category partitions."""

    enemies: tuple[Enemy, ...] = ()
    items: tuple[Equipment, ...] = ()
    weapons: tuple[Equipment, ...] = ()
    armor: tuple[Equipment, ...] = ()
    accessories: tuple[Equipment, ...] = ()
    materia: tuple[Materia, ...] = ()
    characters: tuple[Character, ...] = ()
    materia_stock: tuple[tuple[int, int], ...] = ()
    item_pickups: tuple[FieldPickup, ...] = ()
    materia_pickups: tuple[FieldPickup, ...] = ()
    key_sites: tuple[KeySite, ...] = ()
    shops: tuple[Shop, ...] = ()
    item_prices: tuple[int, ...] = ()
    materia_prices: tuple[int, ...] = ()
    field_names: tuple[str, ...] = field(default=(), compare=False)

    def evolve(self, **partitions: Any) -> EntitySet:
        return replace(self, **partitions)

    def table(self, name: str) -> tuple[Equipment, ...]:
        return getattr(self, name)

    def equipment(self, inventory_id: int) -> Equipment | None:
        """Record behind an inventory id, or None when the id is out of range."""
        for name, base in reversed(INVENTORY_TABLES):
            if inventory_id >= base:
                table = self.table(name)
                local = inventory_id - base
                return table[local] if local < len(table) else None
        return None

    def identity(self, ref: InventoryRef) -> tuple[str, int] | None:
        """What a reference actually grants, following shuffled records."""
        if ref.kind == MATERIA:
            if ref.id >= len(self.materia):
                return None
            return (MATERIA, self.materia[ref.id].origin)
        record = self.equipment(ref.id)
        if record is None:
            return None
        return (record.table, record.origin)

    def is_valid_ref(self, ref: InventoryRef) -> bool:
        return self.identity(ref) is not None

    def starting_materia_ids(self) -> list[int]:
        ids = [m for c in self.characters for m, _ in c.materia_slots()]
        ids += [m for m, _ in self.materia_stock]
        return [m for m in ids if m != EMPTY_MATERIA]

    def counts(self) -> dict[str, int]:
        return {
            "enemies": len(self.enemies),
            "items": len(self.items),
            "weapons": len(self.weapons),
            "armor": len(self.armor),
            "accessories": len(self.accessories),
            "materia": len(self.materia),
            "characters": len(self.characters),
            "materia_stock": len(self.materia_stock),
            "item_pickups": len(self.item_pickups),
            "materia_pickups": len(self.materia_pickups),
            "key_sites": len(self.key_sites),
            "shops": len(self.shops),
            "item_prices": len(self.item_prices),
            "materia_prices": len(self.materia_prices),
        }
