"""Extract a typed EntitySet from an install's original data files.

Reads KERNEL.BIN, scene.bin and (when present) flevel.lgp and the game
executable, decodes every record through the shared schemas and returns
the entities together with the layout needed to write them back.
Source files are only ever read.
"""

import logging
from pathlib import Path

from goldsaucer.binary import field as field_script
from goldsaucer.binary import lzs
from goldsaucer.binary.exe import ExeProfile, read_tables
from goldsaucer.binary.kernel import KernelArchive, parse_kernel
from goldsaucer.binary.lgp import parse_lgp
from goldsaucer.binary.scene import SceneArchive, parse_scene
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
    BOSS_HP_THRESHOLD,
    BOSS_LEVEL_THRESHOLD,
    CHARACTER_COUNT,
    EXE_CANDIDATES,
    FLEVEL_CANDIDATES,
    INVENTORY_END,
    KERNEL_ACCESSORY_SECTION,
    KERNEL_ARMOR_SECTION,
    KERNEL_CANDIDATES,
    KERNEL_INIT_SECTION,
    KERNEL_ITEM_SECTION,
    KERNEL_MATERIA_SECTION,
    KERNEL_WEAPON_SECTION,
    MATERIA_STOCK_COUNT,
    MATERIA_STOCK_OFFSET,
    SCENE_CANDIDATES,
    SCENE_ENEMY_COUNT,
    SCENE_ENEMY_OFFSET,
)
from goldsaucer.data.entities import (
    ITEM as ITEM_KIND,
    MATERIA as MATERIA_KIND,
    Character,
    Enemy,
    EntitySet,
    Equipment,
    FieldPickup,
    InventoryRef,
    KeySite,
    Materia,
    Shop,
)
from goldsaucer.data.layout import FieldFile, LayoutMetadata, SourceFile
from goldsaucer.data.loader import debug_fields, exe_profile_offsets, is_named_boss, key_item_by_flag
from goldsaucer.errors import FileIOError, FormatError

logger = logging.getLogger(__name__)

# Kernel section -> (partition name, schema)
_EQUIPMENT_SECTIONS = (
    (KERNEL_ITEM_SECTION, "items", ITEM),
    (KERNEL_WEAPON_SECTION, "weapons", WEAPON),
    (KERNEL_ARMOR_SECTION, "armor", ARMOR),
    (KERNEL_ACCESSORY_SECTION, "accessories", ACCESSORY),
)


def locate(root: Path, candidates: tuple[str, ...]) -> Path | None:
    """First candidate path that exists under ``root`` (case-insensitive names)."""
    for candidate in candidates:
        path = root / candidate
        try:
            if path.is_file():
                return path
            # Installs copied from Windows often differ only in case
            parent = path.parent
            if parent.is_dir():
                for sibling in parent.iterdir():
                    if sibling.name.lower() == path.name.lower() and sibling.is_file():
                        return sibling
        except OSError as e:
            raise FileIOError(path.parent, "list", e) from e
    return None


def read_source(root: Path, path: Path) -> SourceFile:
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise FileIOError(path, "read", e) from e
    return SourceFile(relative=path.relative_to(root), raw=raw)


def _is_filler(raw: bytes) -> bool:
    return all(b == 0xFF for b in raw) or not any(raw)


def _read_table(archive: KernelArchive, index: int, schema: RecordSchema, path: Path) -> list[tuple[dict, bool]]:
    data = archive.sections[index].data
    if len(data) % schema.size:
        raise FormatError(
            path, f"section {index} ({len(data)} bytes) is not a {schema.name} table"
        )
    fillers = [_is_filler(data[off : off + schema.size]) for off in range(0, len(data), schema.size)]
    return list(zip(schema.read_table(data), fillers))


def _kernel_entities(archive: KernelArchive, path: Path) -> dict:
    tables: dict = {}
    for index, name, schema in _EQUIPMENT_SECTIONS:
        tables[name] = tuple(
            Equipment(index=i, values=values, table=name, origin=i, dummy=dummy)
            for i, (values, dummy) in enumerate(_read_table(archive, index, schema, path))
        )

    tables["materia"] = tuple(
        Materia(index=i, values=values, origin=i, dummy=dummy)
        for i, (values, dummy) in enumerate(
            _read_table(archive, KERNEL_MATERIA_SECTION, MATERIA, path)
        )
    )

    init = archive.sections[KERNEL_INIT_SECTION].data
    stock_end = MATERIA_STOCK_OFFSET + MATERIA_STOCK_COUNT * MATERIA_SLOT.size
    if len(init) < max(stock_end, CHARACTER_COUNT * CHARACTER.size):
        raise FormatError(path, f"init section is truncated ({len(init)} of {stock_end} bytes)")
    tables["characters"] = tuple(
        Character(index=i, values=CHARACTER.read(init, i * CHARACTER.size))
        for i in range(CHARACTER_COUNT)
    )
    tables["materia_stock"] = tuple(
        (slot["id"], slot["ap"])
        for slot in (
            MATERIA_SLOT.read(init, MATERIA_STOCK_OFFSET + i * MATERIA_SLOT.size)
            for i in range(MATERIA_STOCK_COUNT)
        )
    )
    return tables


def is_probable_boss(values: dict) -> bool:
    """Named bosses plus anything bulky or high level enough to be scripted."""
    if is_named_boss(values["name"]):
        return True
    if values["hp"] == 0:
        return False
    return values["hp"] >= BOSS_HP_THRESHOLD or values["level"] >= BOSS_LEVEL_THRESHOLD


def _scene_enemies(archive: SceneArchive) -> tuple[tuple[Enemy, ...], list[tuple[int, int]]]:
    enemies = []
    offsets = []
    for scene in archive.scenes:
        if not scene.is_current_format:
            continue
        for slot in range(SCENE_ENEMY_COUNT):
            base = SCENE_ENEMY_OFFSET + slot * ENEMY.size
            values = ENEMY.read(scene.data, base)
            enemies.append(Enemy(
                index=len(enemies),
                values=values,
                scene=scene.index,
                slot=slot,
                boss=is_probable_boss(values),
            ))
            offsets.append((scene.index, base))
    return tuple(enemies), offsets


def _field_entities(layout: LayoutMetadata, materia_count: int) -> dict:
    lgp, raw = layout.lgp, layout.lgp_file.raw
    skip = debug_fields()
    flags = key_item_by_flag()
    item_pickups: list[FieldPickup] = []
    materia_pickups: list[FieldPickup] = []
    key_sites: list[KeySite] = []

    for entry in lgp.entries:
        if entry.name in skip:
            continue
        try:
            data = lzs.decompress(lgp.body(raw, entry))
            scan = field_script.scan(data)
        except (lzs.LZSError, field_script.FieldScriptError) as e:
            logger.debug("Skipping %s: %s", entry.name, e)
            continue
        layout.fields[entry.name] = FieldFile(entry.name, entry.toc_index, data)

        for grant in scan.items:
            if grant.item_id < INVENTORY_END:
                item_pickups.append(FieldPickup(
                    field=entry.name,
                    field_index=entry.toc_index,
                    offset=grant.offset,
                    ref=InventoryRef(ITEM_KIND, grant.item_id),
                    quantity=grant.quantity,
                ))
        for grant in scan.materia:
            if grant.materia_id < materia_count:
                materia_pickups.append(FieldPickup(
                    field=entry.name,
                    field_index=entry.toc_index,
                    offset=grant.offset,
                    ref=InventoryRef(MATERIA_KIND, grant.materia_id),
                ))
        for flag in scan.flags:
            key = (flag.bank, flag.address, flag.mask)
            if key in flags:
                key_sites.append(KeySite(entry.name, entry.toc_index, flag.offset, key))

    logger.info(
        "Scanned %d field scripts: %d item pickups, %d materia pickups, %d key item sites",
        len(layout.fields), len(item_pickups), len(materia_pickups), len(key_sites),
    )
    return {
        "item_pickups": tuple(item_pickups),
        "materia_pickups": tuple(materia_pickups),
        "key_sites": tuple(key_sites),
        "field_names": tuple(e.name for e in sorted(lgp.entries, key=lambda e: e.toc_index)),
    }


def _exe_profile(path: Path, overrides: dict[str, int] | None) -> ExeProfile | None:
    offsets = {**exe_profile_offsets(path.name), **(overrides or {})}
    if not {"shop_table", "item_prices", "materia_prices"} <= set(offsets):
        return None
    return ExeProfile.from_dict(path.name.lower(), offsets)


def extract(
    root: Path,
    *,
    fields: bool = True,
    exe: bool = True,
    require_exe: bool = False,
    exe_overrides: dict[str, int] | None = None,
) -> tuple[EntitySet, LayoutMetadata]:
    """Extract all entities found under ``root``.

    Args:
        root: Install data directory holding the original files.
        fields: Parse flevel.lgp field scripts (slow; only needed for
            pickups and key items).
        exe: Read shops and prices from the executable when available.
        require_exe: Fail instead of skipping when the executable or its
            table offsets cannot be found.
        exe_overrides: Table offsets taking precedence over the bundled
            profiles.

    Returns:
        (entities, layout) for the compiler.
    """
    if not root.is_dir():
        raise FileIOError(root, "open input directory")

    kernel_path = locate(root, KERNEL_CANDIDATES)
    if kernel_path is None:
        raise FileIOError(root / KERNEL_CANDIDATES[0], "find")
    scene_path = locate(root, SCENE_CANDIDATES)
    if scene_path is None:
        raise FileIOError(root / SCENE_CANDIDATES[0], "find")

    kernel_file = read_source(root, kernel_path)
    scene_file = read_source(root, scene_path)
    kernel = parse_kernel(kernel_file.raw, kernel_path)
    scene = parse_scene(scene_file.raw, scene_path)
    enemies, enemy_offsets = _scene_enemies(scene)

    layout = LayoutMetadata(
        root=root,
        kernel_file=kernel_file,
        kernel=kernel,
        scene_file=scene_file,
        scene=scene,
        enemy_offsets=enemy_offsets,
    )
    partitions = _kernel_entities(kernel, kernel_path)
    partitions["enemies"] = enemies
    logger.info(
        "Kernel: %d items, %d weapons, %d armor, %d accessories, %d materia; scenes: %d enemies",
        len(partitions["items"]), len(partitions["weapons"]), len(partitions["armor"]),
        len(partitions["accessories"]), len(partitions["materia"]), len(enemies),
    )

    if fields:
        flevel_path = locate(root, FLEVEL_CANDIDATES)
        if flevel_path is None:
            logger.warning("flevel.lgp not found under %s; field data unavailable", root)
        else:
            layout.lgp_file = read_source(root, flevel_path)
            layout.lgp = parse_lgp(layout.lgp_file.raw, flevel_path)
            partitions.update(_field_entities(layout, len(partitions["materia"])))

    if exe or require_exe:
        exe_path = locate(root, EXE_CANDIDATES)
        profile = _exe_profile(exe_path, exe_overrides) if exe_path is not None else None
        if profile is None:
            if require_exe:
                if exe_path is None:
                    raise FileIOError(root / EXE_CANDIDATES[0], "find")
                raise FormatError(
                    exe_path,
                    "no shop/price table offsets known for this executable; set "
                    "GOLDSAUCER_EXE_SHOP_OFFSET, GOLDSAUCER_EXE_ITEM_PRICE_OFFSET and "
                    "GOLDSAUCER_EXE_MATERIA_PRICE_OFFSET",
                )
            if exe_path is not None:
                logger.warning("No table offsets for %s; shops unavailable", exe_path.name)
        else:
            layout.exe_file = read_source(root, exe_path)
            layout.exe_profile = profile
            tables = read_tables(layout.exe_file.raw, profile, exe_path)
            partitions["shops"] = tuple(
                Shop(
                    index=i,
                    name_index=shop.name_index,
                    refs=tuple(
                        InventoryRef(ITEM_KIND if kind == 0 else MATERIA_KIND, ident)
                        for kind, ident in shop.entries
                    ),
                )
                for i, shop in enumerate(tables.shops)
            )
            partitions["item_prices"] = tables.item_prices
            partitions["materia_prices"] = tables.materia_prices

    return EntitySet(**partitions), layout
