"""Tests for the source extractor."""

import logging
from pathlib import Path

import pytest

from conftest import EXE_OVERRIDES, build_install
from goldsaucer.constants import NO_ITEM, STEAL_FLAG
from goldsaucer.data.entities import ITEM, MATERIA, InventoryRef
from goldsaucer.data.extractor import extract, is_probable_boss, locate
from goldsaucer.errors import FileIOError, FormatError


class TestCounts:
    def test_kernel_tables(self, entities):
        counts = entities.counts()
        assert counts["items"] == 16
        assert counts["weapons"] == 20
        assert counts["armor"] == 8
        assert counts["accessories"] == 6
        assert counts["materia"] == 12
        assert counts["characters"] == 9
        assert counts["materia_stock"] == 200

    def test_scene_enemies(self, entities):
        # Three slots in each of the 16 scenes
        assert len(entities.enemies) == 48
        assert entities.enemies[0].key == (0, 0)
        assert entities.enemies[-1].key == (15, 2)

    def test_shops_and_prices(self, entities):
        assert len(entities.shops) == 80
        assert entities.shops[1].refs == (
            InventoryRef(ITEM, 0x081),
            InventoryRef(ITEM, 0x101),
            InventoryRef(ITEM, 0x120),
        )
        assert entities.shops[2].category == "materia"
        assert entities.shops[3].category == "mixed"
        assert entities.shops[40].category == "empty"
        assert len(entities.item_prices) == 320
        assert len(entities.materia_prices) == 96


class TestRecords:
    def test_filler_rows_are_dummies(self, entities):
        assert entities.weapons[15].dummy
        assert entities.accessories[5].dummy
        assert entities.materia[11].dummy
        assert not entities.weapons[14].dummy

    def test_origins_start_at_own_index(self, entities):
        assert all(w.origin == w.index for w in entities.weapons)
        assert all(m.origin == m.index for m in entities.materia)

    def test_characters(self, entities):
        cloud = entities.characters[0]
        assert cloud["name"] == "Cloud"
        assert cloud["weapon"] == 0
        assert [m for m, _ in cloud.materia_slots()][:3] == [0, 1, 0xFF]
        assert entities.characters[8]["name"] == "Cid"

    def test_starting_materia(self, entities):
        assert entities.materia_stock[0] == (3, 0)
        assert sorted(entities.starting_materia_ids()) == [0, 1, 2, 3]

    def test_bosses_and_placeholders(self, entities):
        by_key = {e.key: e for e in entities.enemies}
        assert by_key[(9, 1)].boss
        assert by_key[(15, 1)].boss
        assert not by_key[(9, 0)].boss
        assert by_key[(8, 2)].is_placeholder
        assert by_key[(8, 2)].item_refs() == []

    def test_enemy_drops(self, entities):
        enemy = {e.key: e for e in entities.enemies}[(8, 0)]
        assert enemy.item_refs() == [1, 4, 9]
        assert [item for rate, item in enemy.drops() if rate & STEAL_FLAG] == [4]
        assert enemy["morph"] == 9
        assert enemy["item_ids"][2] == NO_ITEM


class TestFieldData:
    def test_item_pickups(self, entities):
        found = [(p.field, p.ref.id, p.quantity) for p in entities.item_pickups]
        assert found == [
            ("md1_1", 0x000, 1),
            ("md1_2", 0x005, 2),
            ("mkt_w", 0x082, 1),
            ("blin60_1", 0x102, 1),
        ]

    def test_materia_pickups(self, entities):
        assert [(p.field, p.ref) for p in entities.materia_pickups] == [
            ("md1_1", InventoryRef(MATERIA, 7)),
            ("blin1", InventoryRef(MATERIA, 8)),
        ]

    def test_key_sites(self, entities):
        sites = [(s.field, s.flag) for s in entities.key_sites]
        assert sites == [
            ("md1_1", (1, 67, 64)),
            ("md1_2", (1, 64, 8)),
            ("mkt_w", (1, 64, 1)),
            ("blin1", (1, 69, 1)),
            ("elm", (1, 69, 1)),
        ]

    def test_debug_and_corrupt_fields_skipped(self, layout, entities):
        assert "blackbg1" not in layout.fields
        assert "broken" not in layout.fields
        assert "md1_1" in layout.fields
        # Field order still counts every archive entry
        assert entities.field_names[-2:] == ("blackbg1", "broken")

    def test_fields_disabled(self, install):
        entities, layout = extract(install, fields=False, exe_overrides=EXE_OVERRIDES)
        assert entities.item_pickups == ()
        assert layout.lgp is None


class TestInputErrors:
    def test_missing_root(self, tmp_path):
        with pytest.raises(FileIOError, match="open input directory"):
            extract(tmp_path / "nope")

    def test_missing_kernel(self, install):
        (install / "kernel" / "KERNEL.BIN").unlink()
        with pytest.raises(FileIOError, match="KERNEL.BIN"):
            extract(install)

    def test_corrupt_scene_is_format_error(self, install):
        (install / "battle" / "scene.bin").write_bytes(b"\x00" * 10)
        with pytest.raises(FormatError):
            extract(install)

    def test_missing_flevel_warns(self, tmp_path, caplog):
        root = build_install(tmp_path / "nofield", lgp=False)
        with caplog.at_level(logging.WARNING):
            entities, layout = extract(root, exe_overrides=EXE_OVERRIDES)
        assert "flevel.lgp not found" in caplog.text
        assert entities.key_sites == ()

    def test_exe_without_offsets_is_skipped(self, install, caplog):
        with caplog.at_level(logging.WARNING):
            entities, layout = extract(install)
        assert entities.shops == ()
        assert layout.exe_file is None
        assert "No table offsets" in caplog.text

    def test_exe_without_offsets_required(self, install):
        with pytest.raises(FormatError, match="GOLDSAUCER_EXE_SHOP_OFFSET"):
            extract(install, require_exe=True)

    def test_missing_exe_required(self, tmp_path):
        root = build_install(tmp_path / "noexe", exe=False)
        with pytest.raises(FileIOError, match="ff7_en.exe"):
            extract(root, require_exe=True, exe_overrides=EXE_OVERRIDES)


class TestHelpers:
    def test_locate_ignores_case(self, install):
        (install / "kernel" / "KERNEL.BIN").rename(install / "kernel" / "kernel.bin")
        assert locate(install, ("kernel/KERNEL.BIN",)) == install / "kernel" / "kernel.bin"

    def test_locate_missing(self, tmp_path):
        assert locate(tmp_path, ("kernel/KERNEL.BIN",)) is None

    def test_locate_unreadable_directory(self, install, monkeypatch):
        (install / "kernel" / "KERNEL.BIN").rename(install / "kernel" / "kernel.bin")

        def denied(self):
            raise PermissionError(13, "Permission denied", str(self))

        monkeypatch.setattr(Path, "iterdir", denied)
        with pytest.raises(FileIOError, match="Permission denied") as exc:
            locate(install, ("kernel/KERNEL.BIN",))
        assert exc.value.path == install / "kernel"
        assert exc.value.exit_code == 4

    @pytest.mark.parametrize(
        "name,hp,level,expected",
        [
            ("GUARD SCORPION", 800, 12, True),
            ("JENOVA-LIFE", 500, 10, True),
            ("GRUNT", 20000, 10, True),
            ("GRUNT", 300, 50, True),
            ("GRUNT", 300, 10, False),
            ("", 0, 60, False),
        ],
    )
    def test_is_probable_boss(self, name, hp, level, expected):
        assert is_probable_boss({"name": name, "hp": hp, "level": level}) is expected
