"""End-to-end tests: extract, randomize, compile and write."""

import json
from collections import Counter
from pathlib import Path

import pytest
from pydantic import ValidationError

from conftest import EXE_OVERRIDES, build_install
from goldsaucer.binary.kernel import parse_kernel
from goldsaucer.binary.schema import MATERIA_LINK_MASK
from goldsaucer.config import RandomizerConfig, Settings
from goldsaucer.constants import (
    KERNEL_ACCESSORY_SECTION,
    KERNEL_ARMOR_SECTION,
    KERNEL_ITEM_SECTION,
    KERNEL_WEAPON_SECTION,
)
from goldsaucer.core.generator import RandomizerGenerator, output_name, read_config
from goldsaucer.core.spoiler import SPOILER_NAME
from goldsaucer.data.extractor import extract
from goldsaucer.errors import FileIOError, FormatError

SOURCES = [Path("battle/scene.bin"), Path("ff7_en.exe"), Path("field/flevel.lgp"), Path("kernel/KERNEL.BIN")]

SCENARIO = RandomizerConfig(enemy=True, materia=True, stat_scaling=True)
EVERYTHING = RandomizerConfig(
    enemy=True, items=True, materia=True, key_items=True, shops=True, stat_scaling=True
)


def tree(root):
    return {p.relative_to(root): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def curves(table):
    return Counter(tuple(m["ap_levels"]) for m in table)


class TestScenario:
    """Seed 12345 with enemies, materia and stat scaling."""

    @pytest.fixture
    def report(self, install, settings):
        return RandomizerGenerator(settings).generate(install, "12345", SCENARIO)

    def test_output_location(self, report, settings):
        assert report.output == settings.output_dir / "GoldSaucer_12345"
        assert report.files == sorted(SOURCES + [Path(SPOILER_NAME)])
        assert sorted(tree(report.output)) == report.files

    def test_untouched_tables_identical(self, report, install):
        assert (report.output / "ff7_en.exe").read_bytes() == (install / "ff7_en.exe").read_bytes()
        before = parse_kernel((install / "kernel/KERNEL.BIN").read_bytes(), Path("in"))
        after = parse_kernel((report.output / "kernel/KERNEL.BIN").read_bytes(), Path("out"))
        for index in (KERNEL_ITEM_SECTION, KERNEL_WEAPON_SECTION, KERNEL_ARMOR_SECTION, KERNEL_ACCESSORY_SECTION):
            assert after.sections[index].data == before.sections[index].data
        assert Path("ff7_en.exe") not in report.changed

    def test_materia_table_is_a_permutation(self, report, entities):
        out = extract(report.output, exe_overrides=EXE_OVERRIDES)[0]
        assert curves(out.materia[:9]) == curves(entities.materia[:9])
        assert out.materia[9:] == entities.materia[9:]
        for before, after in zip(entities.materia, out.materia):
            assert before["type"] & MATERIA_LINK_MASK == after["type"] & MATERIA_LINK_MASK

    def test_protected_enemies_unchanged(self, report, entities):
        out = extract(report.output, exe_overrides=EXE_OVERRIDES)[0]
        for before, after in zip(entities.enemies, out.enemies):
            if before.scene < 8 or before.boss or before.is_placeholder:
                assert after.values == before.values
        assert Path("battle/scene.bin") in report.changed

    def test_spoiler(self, report):
        spoiler = json.loads((report.output / SPOILER_NAME).read_text())
        assert spoiler["seed"] == "12345"
        assert spoiler["config"]["statScaling"] is True
        assert spoiler["config"]["keyItems"] is False
        assert sorted(spoiler["stages"]) == ["enemy", "materia"]
        assert spoiler["counts"]["enemies"] == 48
        # Nothing host- or clock-dependent
        assert set(spoiler) == {"generator", "seed", "config", "files", "stages", "counts"}

    def test_same_seed_same_bytes(self, report, install, settings, tmp_path):
        other = settings.model_copy(update={"output_dir": tmp_path / "again", "workers": 1})
        again = RandomizerGenerator(other).generate(install, 12345, SCENARIO)
        assert tree(again.output) == tree(report.output)

    def test_other_seed_differs(self, report, install, settings):
        other = RandomizerGenerator(settings).generate(install, "54321", SCENARIO)
        assert other.output.name == "GoldSaucer_54321"
        assert tree(other.output) != tree(report.output)


class TestGenerate:
    def test_nothing_enabled_copies_input(self, install, settings):
        report = RandomizerGenerator(settings).generate(install, "plain", RandomizerConfig())
        assert report.changed == []
        for relative in (Path("kernel/KERNEL.BIN"), Path("battle/scene.bin"), Path("ff7_en.exe")):
            assert (report.output / relative).read_bytes() == (install / relative).read_bytes()

    def test_everything_enabled(self, install, settings):
        report = RandomizerGenerator(settings).generate(install, "all", EVERYTHING)
        assert set(report.result.stages) == {"enemy", "items", "materia", "key_items", "shops"}
        assert report.result.validation.valid
        out = extract(report.output, exe_overrides=EXE_OVERRIDES)[0]
        assert out.counts() == report.result.original.counts()

    def test_spoiler_can_be_disabled(self, install, settings):
        quiet = settings.model_copy(update={"spoiler_log": False})
        report = RandomizerGenerator(quiet).generate(install, "quiet", SCENARIO)
        assert not (report.output / SPOILER_NAME).exists()

    def test_explicit_output_dir(self, install, settings, tmp_path):
        report = RandomizerGenerator(settings).generate(install, "x", RandomizerConfig(), tmp_path / "elsewhere")
        assert report.output == tmp_path / "elsewhere" / "GoldSaucer_x"

    def test_progress_callback(self, install, settings):
        events = []
        RandomizerGenerator(settings).generate(
            install, "p", SCENARIO, progress_callback=lambda step, state, **kw: events.append((step, state))
        )
        assert events == [
            ("extract", "started"), ("extract", "completed"),
            ("randomize", "started"), ("randomize", "completed"),
            ("compile", "started"), ("compile", "completed"),
        ]

    def test_key_items_need_field_archive(self, tmp_path, settings):
        root = build_install(tmp_path / "nolgp", lgp=False)
        with pytest.raises(FormatError, match="field archive"):
            RandomizerGenerator(settings).generate(root, "k", RandomizerConfig(key_items=True))

    def test_shops_need_exe_offsets(self, install, tmp_path):
        generator = RandomizerGenerator(Settings(output_dir=tmp_path / "out"))
        with pytest.raises(FormatError) as exc:
            generator.generate(install, "s", RandomizerConfig(shops=True))
        assert exc.value.exit_code == 2
        assert not (tmp_path / "out").exists()

    def test_missing_input(self, tmp_path, settings):
        with pytest.raises(FileIOError):
            RandomizerGenerator(settings).generate(tmp_path / "missing", "m", SCENARIO)


class TestVerify:
    def test_round_trip(self, install, settings):
        report = RandomizerGenerator(settings).verify(install)
        assert report.ok
        assert set(report.identical) == set(SOURCES)
        assert report.counts["shops"] == 80


class TestHelpers:
    @pytest.mark.parametrize(
        "seed,name",
        [("12345", "GoldSaucer_12345"), (42, "GoldSaucer_42"), ("a/b c", "GoldSaucer_a_b_c"), ("x.y-z", "GoldSaucer_x.y-z")],
    )
    def test_output_name(self, seed, name):
        assert output_name(seed) == name

    def test_read_config_default(self):
        assert read_config(None) == RandomizerConfig()

    def test_read_config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"enemy": True, "keyItems": True, "fullLogicKeyItems": True}))
        config = read_config(path)
        assert config.enemy and config.key_items and config.full_logic_key_items
        assert not config.shops

    def test_read_config_missing(self, tmp_path):
        with pytest.raises(FileIOError, match="read"):
            read_config(tmp_path / "nope.json")

    def test_read_config_unknown_key(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"enemies": True}))
        with pytest.raises(ValidationError):
            read_config(path)
