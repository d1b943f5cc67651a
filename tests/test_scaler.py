"""Tests for the balance scaler."""

from dataclasses import replace

import pytest

from goldsaucer.balance import scaler
from goldsaucer.config import RandomizerConfig
from goldsaucer.constants import NO_ITEM
from goldsaucer.data.entities import ITEM, MATERIA, InventoryRef
from goldsaucer.engine.enemies import STAT_FIELDS

SCALING = RandomizerConfig(enemy=True, shops=True, stat_scaling=True)


def enemy(entities, key):
    return {e.key: e for e in entities.enemies}[key]


def with_profile(entities, key, donor_key):
    donor = enemy(entities, donor_key)
    enemies = tuple(
        e.evolve(**{n: donor[n] for n in STAT_FIELDS}) if e.key == key else e
        for e in entities.enemies
    )
    return entities.evolve(enemies=enemies)


class TestHpCap:
    @pytest.mark.parametrize(
        "scene,cap",
        [(7, None), (8, 200), (36, 500), (64, 800), (159, 4956), (160, None)],
    )
    def test_cap_grows_with_scene(self, scene, cap):
        assert scaler.hp_cap(scene) == cap


class TestScaleValue:
    def test_evade_stays_a_percentage(self):
        assert scaler.scale_value(90, 7.0, "evade") == 100

    def test_byte_fields_saturate(self):
        assert scaler.scale_value(200, 7.0, "speed") == 255

    def test_wide_fields_saturate(self):
        assert scaler.scale_value(60000, 2.0, "mp") == 0xFFFF

    def test_nonzero_never_rounds_to_zero(self):
        assert scaler.scale_value(3, 0.01, "strength") == 1
        assert scaler.scale_value(0, 3.0, "strength") == 0


class TestScale:
    def test_off_is_identity(self, entities):
        randomized = with_profile(entities, (8, 0), (15, 0))
        assert scaler.scale(entities, randomized, RandomizerConfig(enemy=True)) is randomized

    def test_donor_profile_pulled_to_own_tier(self, entities):
        randomized = with_profile(entities, (8, 0), (15, 0))
        scaled = enemy(scaler.scale(entities, randomized, SCALING), (8, 0))
        assert scaled.level == 4
        # 88 strength from a level 39 donor, over a 4.5x tier gap
        assert scaled["strength"] == 20
        # 1590 / 4.5 is over the scene 8 cap of 200
        assert scaled["hp"] == 200
        assert scaled.name == "MONSTER80"

    def test_weaker_donor_scaled_up(self, entities):
        randomized = with_profile(entities, (15, 0), (8, 0))
        scaled = enemy(scaler.scale(entities, randomized, SCALING), (15, 0))
        assert scaled.level == 39
        assert scaled["strength"] == round(18 * 4.5)
        assert scaled["evade"] == round(4 * 4.5)

    def test_untouched_enemies_left_alone(self, entities):
        randomized = with_profile(entities, (8, 0), (15, 0))
        scaled = scaler.scale(entities, randomized, SCALING)
        for before, after in zip(entities.enemies, scaled.enemies):
            if before.key != (8, 0):
                assert after == before

    def test_input_not_modified(self, entities):
        randomized = with_profile(entities, (8, 0), (15, 0))
        snapshot = enemy(randomized, (8, 0))
        scaler.scale(entities, randomized, SCALING)
        assert enemy(randomized, (8, 0)) == snapshot
        assert enemy(entities, (8, 0)).level == 4

    def test_rates_halved_per_tier_of_excess(self, entities):
        enemies = tuple(
            e.evolve(item_ids=(0x080, 4, NO_ITEM, NO_ITEM)) if e.key == (8, 0) else e
            for e in entities.enemies
        )
        scaled = enemy(scaler.scale(entities, entities.evolve(enemies=enemies), SCALING), (8, 0))
        # Weapon 0 is tier 3 against a tier 0 enemy; item 4 is tier 1 and a steal
        assert scaled["item_rates"] == (4, 0x88, 0, 0)
        assert scaled["hp"] == enemy(entities, (8, 0))["hp"]

    def test_new_zero_priced_stock_gets_tier_price(self, entities):
        shops = list(entities.shops)
        shops[0] = replace(shops[0], refs=(InventoryRef(ITEM, 0), InventoryRef(ITEM, 1), InventoryRef(ITEM, 7)))
        shops[2] = replace(shops[2], refs=(InventoryRef(MATERIA, 4), InventoryRef(MATERIA, 10)))
        scaled = scaler.scale(entities, entities.evolve(shops=tuple(shops)), SCALING)
        assert scaled.item_prices[7] == 1500
        assert scaled.materia_prices[10] == 50000
        assert scaled.item_prices[0] == entities.item_prices[0]
        changed = [i for i, (a, b) in enumerate(zip(entities.item_prices, scaled.item_prices)) if a != b]
        assert changed == [7]
