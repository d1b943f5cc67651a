"""Shared fixtures: a miniature install built from synthetic binary files.

The install mirrors the real layout (kernel/KERNEL.BIN, battle/scene.bin,
field/flevel.lgp, ff7_en.exe) with small tables:

- 16 items, 20 weapons (index 15 is a 0xFF filler row), 8 armor,
  6 accessories (index 5 is a zeroed filler row), 12 materia (index 11 is
  filler; 9 and 10 are never handed out);
- 16 scenes in two blocks; scenes 0-7 hold one early enemy each, scenes
  8-15 two regular enemies plus a placeholder slot, with a named boss at
  (9, 1) and an oversized one at (15, 1);
- eight field files including a debug field and a corrupt one;
- an executable with four stocked shops and both price tables.
"""

import gzip
import os
import struct
from pathlib import Path

import pytest

from goldsaucer import config as config_module
from goldsaucer.binary.schema import CHARACTER, ENEMY, MATERIA
from goldsaucer.config import Settings
from goldsaucer.constants import (
    MATERIA_STOCK_COUNT,
    MATERIA_STOCK_OFFSET,
    NO_ITEM,
    OP_BITON,
    OP_SMTRA,
    OP_STITM,
    SCENE_BLOCK_SIZE,
    SCENE_ENEMY_OFFSET,
    SCENE_SIZE,
    STEAL_FLAG,
)
from goldsaucer.data.extractor import extract

SHOP_OFFSET = 0x200
ITEM_PRICE_OFFSET = SHOP_OFFSET + 80 * 84
MATERIA_PRICE_OFFSET = ITEM_PRICE_OFFSET + 320 * 4
EXE_SIZE = MATERIA_PRICE_OFFSET + 96 * 4 + 0x100

EXE_OVERRIDES = {
    "shop_table": SHOP_OFFSET,
    "item_prices": ITEM_PRICE_OFFSET,
    "materia_prices": MATERIA_PRICE_OFFSET,
}

ITEM_COUNT = 16
WEAPON_COUNT = 20
ARMOR_COUNT = 8
ACCESSORY_COUNT = 6
MATERIA_COUNT = 12
SCENE_COUNT = 16
CHARACTER_NAMES = (
    "Cloud", "Barret", "Tifa", "Aeris", "Red XIII",
    "Yuffie", "Cait Sith", "Vincent", "Cid",
)

# (kind, id) per stocked shop; kind 0 = inventory item, 1 = materia
SHOPS = {
    0: [(0, 0x000), (0, 0x001), (0, 0x002)],
    1: [(0, 0x081), (0, 0x101), (0, 0x120)],
    2: [(1, 4), (1, 5)],
    3: [(0, 0x003), (1, 6), (0, 0x004)],
}

# Key item flags used by the field fixtures: (address, bit)
COTTON_DRESS = (64, 0)
WIG = (64, 3)
KEYCARD_60 = (67, 6)
PHS = (69, 0)

FIELD_ORDER = ("md1_1", "md1_2", "mkt_w", "blin1", "blin60_1", "elm", "blackbg1", "broken")


# --- Byte helpers ---


def pattern(size: int, seed: int) -> bytes:
    """Deterministic bytes that are never all 0x00 or all 0xFF."""
    return bytes((seed * 37 + k * 11 + 5) % 251 for k in range(size))


def lzs_literal(data: bytes) -> bytes:
    """LZS file made only of literal runs."""
    out = bytearray()
    for i in range(0, len(data), 8):
        out.append(0xFF)
        out += data[i : i + 8]
    return struct.pack("<I", len(out)) + bytes(out)


def stitm(item_id: int, quantity: int = 1, banks: int = 0) -> bytes:
    return struct.pack("<BBHB", OP_STITM, banks, item_id, quantity)


def smtra(materia_id: int, ap: int = 0) -> bytes:
    return bytes([OP_SMTRA, 0, 0, materia_id]) + ap.to_bytes(3, "little")


def biton(flag: tuple[int, int], bank: int = 1) -> bytes:
    address, bit = flag
    return bytes([OP_BITON, bank << 4, address, bit])


RET = b"\x00"


def field_file(ops: bytes) -> bytes:
    """Decompressed field file with one entity whose script is ``ops``."""
    header = bytearray(32)
    header[2] = 1
    struct.pack_into("<H", header, 4, 32 + 8 + 64 + len(ops))
    header[0x18:0x20] = b"fixture\x00"
    script = bytes(header) + b"entity\x00\x00" + bytes(64) + ops + b"\x00" * 8

    sections = [script] + [b"\x00" * 4] * 8
    positions = []
    body = bytearray()
    start = 2 + 4 + 9 * 4
    for section in sections:
        positions.append(start + len(body))
        body += struct.pack("<I", len(section)) + section
    return struct.pack("<HI9I", 0, 9, *positions) + bytes(body)


def lgp_bytes(files: list[tuple[str, bytes]]) -> bytes:
    lookup = b"\x00" * 64
    data_start = 16 + 27 * len(files) + len(lookup)
    toc = bytearray()
    body = bytearray()
    for name, content in files:
        raw_name = name.encode().ljust(20, b"\x00")
        toc += raw_name + struct.pack("<IBH", data_start + len(body), 14, 0)
        body += raw_name + struct.pack("<I", len(content)) + content
    header = b"SQUARESOFT\x00\x00" + struct.pack("<I", len(files))
    return header + bytes(toc) + lookup + bytes(body) + b"FINAL FANTASY7"


# --- KERNEL.BIN ---


def materia_record(index: int) -> bytes:
    if index == MATERIA_COUNT - 1:
        return b"\xff" * MATERIA.size
    buf = bytearray(pattern(MATERIA.size, 400 + index))
    first = (index + 1) * 8
    MATERIA.write(buf, 0, {
        "ap_levels": (first, first * 2, first * 4, first * 8),
        "type": ((index % 3) << 4) | (index % 5 + 1),
    })
    return bytes(buf)


def materia_slots(*ids: int, ap: int = 0) -> bytes:
    raw = b"".join(bytes([m]) + ap.to_bytes(3, "little") for m in ids)
    return raw + b"\xff" * (32 - len(raw))


def init_section() -> bytes:
    init = bytearray(pattern(MATERIA_STOCK_OFFSET + MATERIA_STOCK_COUNT * 4 + 16, 77))
    loadouts = {
        0: {"weapon": 0, "armor": 0, "weapon_materia": materia_slots(0, 1)},
        1: {"armor_materia": materia_slots(2, ap=50)},
        2: {"weapon": 16, "armor": 1},
    }
    for i, name in enumerate(CHARACTER_NAMES):
        values = {
            "char_id": i,
            "level": 1 + i,
            "name": name,
            "weapon": 0xFF,
            "armor": 0xFF,
            "accessory": 0xFF,
            "weapon_materia": materia_slots(),
            "armor_materia": materia_slots(),
        }
        values.update(loadouts.get(i, {}))
        CHARACTER.write(init, i * CHARACTER.size, values)

    stock = bytes([3, 0, 0, 0]) + b"\xff" * 4 * (MATERIA_STOCK_COUNT - 1)
    init[MATERIA_STOCK_OFFSET : MATERIA_STOCK_OFFSET + len(stock)] = stock
    return bytes(init)


def kernel_sections() -> list[bytes]:
    weapons = [
        b"\xff" * 44 if i == 15 else pattern(44, 100 + i) for i in range(WEAPON_COUNT)
    ]
    accessories = [
        bytes(16) if i == 5 else pattern(16, 300 + i) for i in range(ACCESSORY_COUNT)
    ]
    return [
        pattern(64, 900),
        pattern(48, 901),
        pattern(32, 902),
        init_section(),
        b"".join(pattern(28, i) for i in range(ITEM_COUNT)),
        b"".join(weapons),
        b"".join(pattern(36, 200 + i) for i in range(ARMOR_COUNT)),
        b"".join(accessories),
        b"".join(materia_record(i) for i in range(MATERIA_COUNT)),
    ]


def kernel_bytes(sections: list[bytes]) -> bytes:
    out = bytearray()
    for file_type, data in enumerate(sections):
        packed = gzip.compress(data, compresslevel=9, mtime=0)
        out += struct.pack("<HHH", len(packed), len(data), file_type) + packed
    return bytes(out) + b"\x00" * 6


# --- scene.bin ---


def enemy_values(
    name: str,
    level: int,
    drops: tuple[int, ...] = (),
    steals: tuple[int, ...] = (),
    morph: int = NO_ITEM,
    hp: int | None = None,
) -> dict:
    rates = [32] * len(drops) + [STEAL_FLAG | 16] * len(steals)
    ids = list(drops) + list(steals)
    rates += [0] * (4 - len(rates))
    ids += [NO_ITEM] * (4 - len(ids))
    return {
        "name": name,
        "level": level,
        "speed": 20 + level,
        "luck": 5 + level // 2,
        "evade": 3 + level // 4,
        "strength": 10 + 2 * level,
        "defense": 8 + 2 * level,
        "magic": 6 + level,
        "magic_defense": 4 + 2 * level,
        "hp": 30 + 40 * level if hp is None else hp,
        "mp": 5 * level,
        "exp": 12 * level,
        "ap": 1 + level // 3,
        "gil": 8 * level,
        "item_rates": tuple(rates),
        "item_ids": tuple(ids),
        "morph": morph,
    }


PLACEHOLDER = {"item_ids": (NO_ITEM,) * 4, "morph": NO_ITEM}


def scene_enemies(scene: int) -> list[dict]:
    if scene < 8:
        return [enemy_values(f"GRUNT{scene}", 2 + scene, drops=(1 + scene % 4,)), PLACEHOLDER, PLACEHOLDER]
    enemies = []
    for slot in range(2):
        if (scene, slot) == (9, 1):
            enemies.append(enemy_values("GUARD SCORPION", 12, drops=(10,), hp=800))
            continue
        if (scene, slot) == (15, 1):
            enemies.append(enemy_values("ELITE TROOPER", 30, drops=(10,), hp=20000))
            continue
        drops = (1 + (scene + slot) % 8,)
        if (scene, slot) == (11, 1):
            drops += (0x083,)
        enemies.append(enemy_values(
            f"MONSTER{scene}{slot}",
            4 + (scene - 8) * 5 + 2 * slot,
            drops=drops,
            steals=(1 + (scene + slot + 3) % 8,),
            morph=9 if slot == 0 and scene % 2 == 0 else NO_ITEM,
        ))
    return enemies + [PLACEHOLDER]


def scene_data(scene: int) -> bytes:
    data = bytearray(SCENE_SIZE)
    for slot, values in enumerate(scene_enemies(scene)):
        ENEMY.write(data, SCENE_ENEMY_OFFSET + slot * ENEMY.size, values)
    return bytes(data)


def scene_block(payloads: list[bytes]) -> bytes:
    pointers = []
    body = bytearray()
    for payload in payloads:
        pointers.append((64 + len(body)) >> 2)
        body += payload + b"\xff" * (-len(payload) % 4)
    pointers += [0xFFFFFFFF] * (16 - len(pointers))
    block = struct.pack("<16I", *pointers) + bytes(body)
    return block + b"\xff" * (SCENE_BLOCK_SIZE - len(block))


def scene_bytes() -> bytes:
    packed = [gzip.compress(scene_data(i), compresslevel=9, mtime=0) for i in range(SCENE_COUNT)]
    return scene_block(packed[:8]) + scene_block(packed[8:])


# --- flevel.lgp ---


def field_scripts() -> dict[str, bytes]:
    return {
        "md1_1": stitm(0x000) + smtra(7) + biton(KEYCARD_60) + RET,
        "md1_2": stitm(0x005, 2) + biton(WIG) + stitm(0x006, 1, banks=0x10) + RET,
        "mkt_w": stitm(0x082) + biton(COTTON_DRESS) + RET,
        "blin1": biton(PHS) + smtra(8, ap=100) + RET,
        "blin60_1": stitm(0x102) + RET,
        "elm": biton(PHS) + biton((80, 0)) + RET,
        "blackbg1": stitm(0x003) + RET,
    }


def flevel_bytes() -> bytes:
    scripts = field_scripts()
    broken = b"\x00\x00" + struct.pack("<I", 5) + bytes(40)
    files = []
    for name in FIELD_ORDER:
        data = broken if name == "broken" else field_file(scripts[name])
        files.append((name, lzs_literal(data)))
    return lgp_bytes(files)


# --- Executable ---


def exe_bytes() -> bytes:
    buf = bytearray(EXE_SIZE)
    buf[:SHOP_OFFSET] = b"MZ" + pattern(SHOP_OFFSET - 2, 500)
    for index in range(80):
        entries = SHOPS.get(index, [])
        base = SHOP_OFFSET + index * 84
        struct.pack_into("<HH", buf, base, index, len(entries))
        for slot, (kind, ident) in enumerate(entries):
            struct.pack_into("<IHH", buf, base + 4 + slot * 8, kind, ident, 0)

    inventory = (
        list(range(ITEM_COUNT))
        + [0x080 + i for i in range(WEAPON_COUNT)]
        + [0x100 + i for i in range(ARMOR_COUNT)]
        + [0x120 + i for i in range(ACCESSORY_COUNT)]
    )
    for ident in inventory:
        price = 0 if ident == 7 else 25 * (ident + 1)
        struct.pack_into("<I", buf, ITEM_PRICE_OFFSET + ident * 4, price)
    for ident in range(MATERIA_COUNT):
        price = 0 if ident == 10 else 150 * (ident + 1)
        struct.pack_into("<I", buf, MATERIA_PRICE_OFFSET + ident * 4, price)
    buf[MATERIA_PRICE_OFFSET + 96 * 4 :] = pattern(0x100, 501)
    return bytes(buf)


def build_install(root: Path, *, lgp: bool = True, exe: bool = True) -> Path:
    """Write a synthetic install under ``root`` and return ``root``."""
    files = {
        "kernel/KERNEL.BIN": kernel_bytes(kernel_sections()),
        "battle/scene.bin": scene_bytes(),
    }
    if lgp:
        files["field/flevel.lgp"] = flevel_bytes()
    if exe:
        files["ff7_en.exe"] = exe_bytes()
    for relative, data in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


# --- Fixtures ---


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """No cached settings and no GOLDSAUCER_* variables leak between tests."""
    for name in list(os.environ):
        if name.startswith("GOLDSAUCER_"):
            monkeypatch.delenv(name)
    monkeypatch.setattr(config_module, "_settings_instance", None)


@pytest.fixture
def install(tmp_path):
    return build_install(tmp_path / "install")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        output_dir=tmp_path / "out",
        exe_shop_offset=SHOP_OFFSET,
        exe_item_price_offset=ITEM_PRICE_OFFSET,
        exe_materia_price_offset=MATERIA_PRICE_OFFSET,
        workers=2,
    )


@pytest.fixture
def extracted(install):
    return extract(install, exe_overrides=EXE_OVERRIDES)


@pytest.fixture
def entities(extracted):
    return extracted[0]


@pytest.fixture
def layout(extracted):
    return extracted[1]
