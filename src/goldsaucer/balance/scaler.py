"""Balance scaling: pull randomized numbers back into the range of their slot.

Pure and deterministic. Given the input EntitySet and the Engine's output
it recomputes:

- stats of enemies that took a donor profile, rescaled from the donor's
  tier to the enemy's own tier and clamped to the field ranges, with an HP
  cap that grows with the scene index;
- EXP, AP and gil rewards of those enemies, by the same ratio;
- drop and steal rates, halved per tier an item's value exceeds the enemy;
- prices of shop references whose input price is zero.

Materia AP curves travel with their record and are left alone.
"""

from goldsaucer.binary.schema import ENEMY
from goldsaucer.config import RandomizerConfig
from goldsaucer.constants import (
    EARLY_END_SCENE,
    EARLY_HP_CAP,
    EARLY_SAFE_SCENES,
    ITEM_TIER_PRICES,
    MATERIA_TIER_PRICES,
    MID_END_SCENE,
    MID_HP_CAP,
    NO_ITEM,
    STEAL_FLAG,
    TIER_CURVE,
)
from goldsaucer.data.entities import ITEM, MATERIA, Enemy, EntitySet, InventoryRef
from goldsaucer.engine.pools import ValueTiers, level_tier

SCALED_STATS = (
    "speed", "luck", "evade", "strength", "defense", "magic", "magic_defense", "hp", "mp",
)
SCALED_REWARDS = ("exp", "ap", "gil")
# Percent-style stats stay below this
PERCENT_CAP = 100


def hp_cap(scene: int) -> int | None:
    """Largest HP an enemy in ``scene`` may get, or None past the mid game."""
    if scene < EARLY_SAFE_SCENES:
        return None
    if scene < EARLY_END_SCENE:
        lo, hi = EARLY_HP_CAP
        span = (scene - EARLY_SAFE_SCENES) / (EARLY_END_SCENE - EARLY_SAFE_SCENES)
    elif scene < MID_END_SCENE:
        lo, hi = MID_HP_CAP
        span = (scene - EARLY_END_SCENE) / (MID_END_SCENE - EARLY_END_SCENE)
    else:
        return None
    return int(lo + (hi - lo) * span)


def _field_max(name: str) -> int:
    return (1 << (8 * ENEMY.field(name).size)) - 1


def scale_value(value: int, ratio: float, name: str) -> int:
    """Scale one field, rounding and clamping to what the field can hold."""
    limit = _field_max(name)
    if name == "evade":
        limit = min(limit, PERCENT_CAP)
    return max(1 if value else 0, min(limit, round(value * ratio)))


def scale_enemy(original: Enemy, randomized: Enemy) -> Enemy:
    """Rescale a donor profile from the donor's tier to the enemy's own."""
    own = level_tier(original.level)
    donor = level_tier(randomized.level)
    ratio = TIER_CURVE[own] / TIER_CURVE[donor]

    changes = {name: scale_value(randomized[name], ratio, name) for name in SCALED_STATS}
    changes.update({name: scale_value(randomized[name], ratio, name) for name in SCALED_REWARDS})
    changes["level"] = original.level

    cap = hp_cap(original.scene)
    if cap is not None:
        changes["hp"] = min(changes["hp"], max(cap, original["hp"]))
    return randomized.evolve(**changes)


def scale_rates(enemy: Enemy, tiers: ValueTiers, entities: EntitySet) -> Enemy:
    """Halve drop/steal rates once per tier the item outclasses the enemy."""
    own = level_tier(enemy.level)
    rates = list(enemy["item_rates"])
    for slot, (rate, item) in enumerate(zip(enemy["item_rates"], enemy["item_ids"])):
        if item == NO_ITEM:
            continue
        identity = entities.identity(InventoryRef(ITEM, item))
        excess = tiers[identity] - own if identity is not None else 0
        if excess <= 0:
            continue
        chance = max(1, (rate & ~STEAL_FLAG) >> excess)
        rates[slot] = (rate & STEAL_FLAG) | chance
    return enemy.evolve(item_rates=tuple(rates))


def tier_price(ref: InventoryRef, tiers: ValueTiers, entities: EntitySet) -> int:
    identity = entities.identity(ref)
    tier = tiers[identity] if identity is not None else 0
    table = MATERIA_TIER_PRICES if ref.kind == MATERIA else ITEM_TIER_PRICES
    return table[min(tier, len(table) - 1)]


def scale(original: EntitySet, randomized: EntitySet, config: RandomizerConfig) -> EntitySet:
    """Apply the balance curves. The identity when ``statScaling`` is off."""
    if not config.stat_scaling:
        return randomized
    tiers = ValueTiers(original)

    enemies = []
    for before, after in zip(original.enemies, randomized.enemies):
        if after.values != before.values:
            stats_moved = any(after[n] != before[n] for n in ("level", *SCALED_STATS))
            if stats_moved:
                after = scale_enemy(before, after)
            if after["item_ids"] != before["item_ids"]:
                after = scale_rates(after, tiers, randomized)
        enemies.append(after)

    item_prices = list(randomized.item_prices)
    materia_prices = list(randomized.materia_prices)
    for before, after in zip(original.shops, randomized.shops):
        for ref in after.refs:
            if ref in before.refs:
                continue
            prices = materia_prices if ref.kind == MATERIA else item_prices
            if ref.id < len(prices) and prices[ref.id] == 0:
                prices[ref.id] = tier_price(ref, tiers, randomized)

    return randomized.evolve(
        enemies=tuple(enemies),
        item_prices=tuple(item_prices),
        materia_prices=tuple(materia_prices),
    )
