"""Where things can be obtained, and how valuable they are.

Obtainability is tracked by identity (which record content a reference
grants), not by slot, because the items and materia stages move record
content between slots.
"""

from __future__ import annotations

from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass

from goldsaucer.constants import (
    ACCESSORY_BASE,
    ARMOR_BASE,
    FIELD_ITEM_MAX,
    INVENTORY_END,
    MATERIA_AP_TIER_BOUNDS,
    PRICE_TIER_BOUNDS,
    TIER_LEVEL_BOUNDS,
    WEAPON_BASE,
)
from goldsaucer.data.entities import (
    INVENTORY_TABLES,
    ITEM,
    MATERIA,
    EntitySet,
    InventoryRef,
)

Identity = tuple[str, int]

# Source kinds
FIELD = "field"
STARTING = "starting"
ENEMY = "enemy"
SHOP = "shop"
SOURCE_KINDS = (FIELD, STARTING, ENEMY, SHOP)

TIER_COUNT = len(TIER_LEVEL_BOUNDS) + 1


def level_tier(level: int) -> int:
    """Difficulty tier 0-4 of an enemy level."""
    return bisect_right(TIER_LEVEL_BOUNDS, level)


def starting_refs(entities: EntitySet) -> list[InventoryRef]:
    """Equipment worn and materia held by the initial party."""
    refs = []
    slots = (("weapon", "weapons", WEAPON_BASE), ("armor", "armor", ARMOR_BASE),
             ("accessory", "accessories", ACCESSORY_BASE))
    for character in entities.characters:
        for field_name, table, base in slots:
            local = character[field_name]
            if local < len(entities.table(table)):
                refs.append(InventoryRef(ITEM, base + local))
    refs += [InventoryRef(MATERIA, m) for m in entities.starting_materia_ids()]
    return refs


def source_refs(entities: EntitySet) -> dict[str, list[InventoryRef]]:
    """Every reference that grants something, grouped by source kind."""
    enemy = [
        InventoryRef(ITEM, item)
        for e in entities.enemies
        if not e.is_placeholder
        for item in e.item_refs()
        if item < INVENTORY_END
    ]
    return {
        FIELD: [p.ref for p in entities.item_pickups] + [p.ref for p in entities.materia_pickups],
        STARTING: starting_refs(entities),
        ENEMY: enemy,
        SHOP: [ref for shop in entities.shops for ref in shop.refs],
    }


def identity_sources(entities: EntitySet) -> dict[Identity, set[str]]:
    """Map each obtainable identity to the source kinds that grant it."""
    out: dict[Identity, set[str]] = defaultdict(set)
    for kind, refs in source_refs(entities).items():
        for ref in refs:
            identity = entities.identity(ref)
            if identity is not None:
                out[identity].add(kind)
    return dict(out)


def obtainable_identities(entities: EntitySet) -> set[Identity]:
    return set(identity_sources(entities))


def obtainable_refs(entities: EntitySet) -> set[InventoryRef]:
    """Slots referenced by any source."""
    return {
        ref
        for refs in source_refs(entities).values()
        for ref in refs
        if entities.is_valid_ref(ref)
    }


def ref_for_identity(entities: EntitySet) -> dict[Identity, InventoryRef]:
    """Slot currently holding each identity."""
    out: dict[Identity, InventoryRef] = {}
    for name, base in INVENTORY_TABLES:
        for record in entities.table(name):
            out[(name, record.origin)] = InventoryRef(ITEM, base + record.index)
    for record in entities.materia:
        out[(MATERIA, record.origin)] = InventoryRef(MATERIA, record.index)
    return out


def is_dummy(entities: EntitySet, ref: InventoryRef) -> bool:
    if ref.kind == MATERIA:
        return ref.id >= len(entities.materia) or entities.materia[ref.id].dummy
    record = entities.equipment(ref.id)
    return record is None or record.dummy


# --- Value tiers ---


class ValueTiers:
    """Value tier 0-4 of every identity, computed from the input data.

    Inventory tiers come from the input price table when it was read and is
    non-zero, otherwise from the record's position in its table (later
    entries are stronger). Materia tiers come from the first AP threshold.
    """

    def __init__(self, original: EntitySet):
        self._tiers: dict[Identity, int] = {}
        for name, base in INVENTORY_TABLES:
            table = original.table(name)
            for record in table:
                price = 0
                if base + record.index < len(original.item_prices):
                    price = original.item_prices[base + record.index]
                if price:
                    tier = bisect_right(PRICE_TIER_BOUNDS, price)
                else:
                    tier = record.index * TIER_COUNT // max(len(table), 1)
                self._tiers[(name, record.origin)] = tier
        for record in original.materia:
            first = record["ap_levels"][0]
            self._tiers[(MATERIA, record.origin)] = bisect_right(MATERIA_AP_TIER_BOUNDS, first)

    def __getitem__(self, identity: Identity) -> int:
        return self._tiers.get(identity, 0)


# --- Obligations ---


@dataclass(frozen=True)
class Obligations:
    """Identities a wave-2 stage must place because no fixed source keeps them.

    Field pickups and starting equipment are only permuted, never dropped, so
    whatever their slots hold stays obtainable; so do enemies and shops when
    their stage is off. Anything else must be re-placed by whichever of the
    enemy and shop stages now owns it.
    """

    enemy: frozenset[Identity]
    shops: frozenset[Identity]


def split_obligations(
    snapshot: EntitySet,
    required: frozenset[Identity],
    *,
    enemy_enabled: bool,
    shops_enabled: bool,
) -> Obligations:
    """Divide ``required`` between the enemy and shop stages.

    Computed on the snapshot entering wave 2: the items and materia stages
    move record content between slots, so which identity a fixed source
    grants is only known after they ran.
    """
    sources = identity_sources(snapshot)
    fixed_kinds = {FIELD, STARTING}
    if not enemy_enabled:
        fixed_kinds.add(ENEMY)
    if not shops_enabled:
        fixed_kinds.add(SHOP)

    loose = {i for i in required if not sources.get(i, set()) & fixed_kinds}
    # Enemies can only hand out inventory items
    shops = frozenset(i for i in loose if SHOP in sources.get(i, ()) or i[0] == MATERIA)
    return Obligations(enemy=frozenset(loose - shops), shops=shops)


def reward_pool(entities: EntitySet, obtainable: set[Identity]) -> list[InventoryRef]:
    """Inventory slots an enemy may drop, steal-yield or morph into.

    Slots must hold a real record whose identity was obtainable in the input;
    consumables past the last field-pickup id (battle-only and story items)
    are left out.
    """
    pool = []
    for name, base in INVENTORY_TABLES:
        for record in entities.table(name):
            if record.dummy or (name, record.origin) not in obtainable:
                continue
            if name == "items" and record.origin > FIELD_ITEM_MAX:
                continue
            pool.append(InventoryRef(ITEM, base + record.index))
    return pool
