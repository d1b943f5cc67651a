"""Patch compiler: write a finished EntitySet back into the original layouts.

Every output file starts as a copy of its input bytes. Only fields whose
decoded value changed are re-encoded, through the same schemas the
extractor read them with, so everything else stays byte-for-byte intact.
"""

import logging
import shutil
import tempfile
from collections import defaultdict
from pathlib import Path

from goldsaucer.binary import field as field_script
from goldsaucer.binary import lzs
from goldsaucer.binary.exe import write_prices, write_shop
from goldsaucer.binary.kernel import build_kernel
from goldsaucer.binary.lgp import build_lgp
from goldsaucer.binary.scene import build_scene
from goldsaucer.binary.schema import (
    ACCESSORY,
    ARMOR,
    CHARACTER,
    ENEMY,
    ITEM,
    MATERIA,
    MATERIA_SLOT,
    WEAPON,
    RecordSchema,
)
from goldsaucer.constants import (
    KERNEL_ACCESSORY_SECTION,
    KERNEL_ARMOR_SECTION,
    KERNEL_INIT_SECTION,
    KERNEL_ITEM_SECTION,
    KERNEL_MATERIA_SECTION,
    KERNEL_WEAPON_SECTION,
    MATERIA_STOCK_OFFSET,
    SHOP_ENTRY_ITEM,
    SHOP_ENTRY_MATERIA,
)
from goldsaucer.data.entities import MATERIA as MATERIA_KIND
from goldsaucer.data.entities import EntitySet, Record
from goldsaucer.data.layout import LayoutMetadata
from goldsaucer.errors import FileIOError, FormatError

logger = logging.getLogger(__name__)

_TABLE_SECTIONS = (
    ("items", KERNEL_ITEM_SECTION, ITEM),
    ("weapons", KERNEL_WEAPON_SECTION, WEAPON),
    ("armor", KERNEL_ARMOR_SECTION, ARMOR),
    ("accessories", KERNEL_ACCESSORY_SECTION, ACCESSORY),
    ("materia", KERNEL_MATERIA_SECTION, MATERIA),
)


def patch_records(
    buf: bytearray,
    schema: RecordSchema,
    before: tuple[Record, ...],
    after: tuple[Record, ...],
    base: int = 0,
) -> int:
    """Write the changed fields of every changed record. Returns the record count touched."""
    touched = 0
    for old, new in zip(before, after):
        names = schema.changed(old.values, new.values)
        if names:
            schema.write(buf, base + old.index * schema.size, new.values, only=names)
            touched += 1
    return touched


class PatchCompiler:
    """Re-serializes entity sets and stages the output tree."""

    def __init__(self, layout: LayoutMetadata, original: EntitySet):
        self.layout = layout
        self.original = original

    # --- Per-file compilers ---

    def compile_kernel(self, final: EntitySet) -> bytes:
        layout = self.layout
        archive = layout.kernel
        replacements: dict[int, bytes] = {}

        for name, index, schema in _TABLE_SECTIONS:
            data = bytearray(archive.sections[index].data)
            if patch_records(data, schema, getattr(self.original, name), getattr(final, name)):
                replacements[index] = bytes(data)

        init = bytearray(archive.sections[KERNEL_INIT_SECTION].data)
        touched = patch_records(init, CHARACTER, self.original.characters, final.characters)
        for i, (old, new) in enumerate(zip(self.original.materia_stock, final.materia_stock)):
            if old != new:
                MATERIA_SLOT.write(
                    init, MATERIA_STOCK_OFFSET + i * MATERIA_SLOT.size, {"id": new[0], "ap": new[1]}
                )
                touched += 1
        if touched:
            replacements[KERNEL_INIT_SECTION] = bytes(init)

        return build_kernel(archive, replacements, layout.kernel_file.relative)

    def compile_scene(self, final: EntitySet) -> bytes:
        layout = self.layout
        scenes = {s.index: s for s in layout.scene.scenes}
        buffers: dict[int, bytearray] = {}
        for old, new in zip(self.original.enemies, final.enemies):
            names = ENEMY.changed(old.values, new.values)
            if not names:
                continue
            scene_index, offset = layout.enemy_offsets[old.index]
            if scene_index not in buffers:
                buffers[scene_index] = bytearray(scenes[scene_index].data)
            ENEMY.write(buffers[scene_index], offset, new.values, only=names)

        replacements = {i: bytes(buf) for i, buf in buffers.items()}
        return build_scene(
            layout.scene, layout.scene_file.raw, replacements, layout.scene_file.relative
        )

    def compile_fields(self, final: EntitySet) -> bytes | None:
        layout = self.layout
        if layout.lgp_file is None or layout.lgp is None:
            return None

        edits: dict[str, list] = defaultdict(list)
        for old, new in zip(self.original.item_pickups, final.item_pickups):
            if old.ref != new.ref:
                edits[new.field].append((field_script.set_item, new.offset, new.ref.id))
        for old, new in zip(self.original.materia_pickups, final.materia_pickups):
            if old.ref != new.ref:
                edits[new.field].append((field_script.set_materia, new.offset, new.ref.id))
        for old, new in zip(self.original.key_sites, final.key_sites):
            if old.flag != new.flag:
                edits[new.field].append((field_script.set_flag, new.offset, *new.flag))

        replacements: dict[str, bytes] = {}
        for name in sorted(edits):
            data = bytearray(layout.fields[name].data)
            try:
                for op, offset, *args in edits[name]:
                    op(data, offset, *args)
            except field_script.FieldScriptError as e:
                raise FormatError(layout.lgp_file.relative, f"{name}: {e}") from e
            replacements[name] = lzs.compress(bytes(data))

        if replacements:
            logger.info("Recompressed %d field scripts", len(replacements))
        return build_lgp(layout.lgp, layout.lgp_file.raw, replacements, layout.lgp_file.relative)

    def compile_exe(self, final: EntitySet) -> bytes | None:
        layout = self.layout
        if layout.exe_file is None or layout.exe_profile is None:
            return None
        profile = layout.exe_profile
        buf = bytearray(layout.exe_file.raw)

        for old, new in zip(self.original.shops, final.shops):
            if old.refs == new.refs:
                continue
            if len(new.refs) != len(old.refs):
                raise FormatError(layout.exe_file.relative, f"shop {new.index} changed size")
            entries = [
                (SHOP_ENTRY_MATERIA if ref.kind == MATERIA_KIND else SHOP_ENTRY_ITEM, ref.id)
                for ref in new.refs
            ]
            write_shop(buf, profile, new.index, entries)

        for offset, before, after in (
            (profile.item_prices, self.original.item_prices, final.item_prices),
            (profile.materia_prices, self.original.materia_prices, final.materia_prices),
        ):
            for i, (old, new) in enumerate(zip(before, after)):
                if old != new:
                    write_prices(buf, offset, i, new)
        return bytes(buf)

    def compile(self, final: EntitySet) -> dict[Path, bytes]:
        """Output bytes for every input file, keyed by path relative to the input root."""
        layout = self.layout
        files = {
            layout.kernel_file.relative: self.compile_kernel(final),
            layout.scene_file.relative: self.compile_scene(final),
        }
        fields = self.compile_fields(final)
        if fields is not None:
            files[layout.lgp_file.relative] = fields
        exe = self.compile_exe(final)
        if exe is not None:
            files[layout.exe_file.relative] = exe

        changed = sum(1 for src in layout.sources() if files[src.relative] != src.raw)
        logger.info("Compiled %d files (%d changed)", len(files), changed)
        return files

    # --- Output ---

    @staticmethod
    def write(files: dict[Path, bytes], output_dir: Path, name: str) -> Path:
        """Stage ``files`` next to ``output_dir/name`` and move them into place.

        The destination only ever holds a complete tree: a failure removes
        the staging directory and leaves any previous output untouched.
        """
        final = output_dir / name
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileIOError(output_dir, "create", e) from e

        try:
            staging = Path(tempfile.mkdtemp(prefix=f".{name}.", dir=output_dir))
        except OSError as e:
            raise FileIOError(output_dir, "create staging directory in", e) from e

        try:
            for relative, data in sorted(files.items()):
                path = staging / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
            _promote(staging, final)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise FileIOError(final, "write", e) from e
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("Wrote %d files to %s", len(files), final)
        return final


def _promote(staging: Path, final: Path) -> None:
    """Rename ``staging`` to ``final``, replacing an earlier output of the same name."""
    if not final.exists():
        staging.replace(final)
        return
    previous = final.with_name(f".{final.name}.previous")
    if previous.exists():
        shutil.rmtree(previous)
    final.replace(previous)
    try:
        staging.replace(final)
    except OSError:
        previous.replace(final)
        raise
    shutil.rmtree(previous, ignore_errors=True)
