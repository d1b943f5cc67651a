"""Shop and price tables inside the game executable.

The executable carries three fixed tables at release-specific offsets:

- 80 shops of 84 bytes: ``u16`` name index, ``u16`` entry count and ten
  ``[u32 kind][u16 id][u16 pad]`` entries (kind 0 = inventory item,
  kind 1 = materia);
- 320 ``u32`` inventory prices;
- 96 ``u32`` materia prices.

Offsets come from an ExeProfile. Because a wrong offset would silently
corrupt code, the shop table is sanity-checked before anything is read.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

from goldsaucer.binary.schema import SHOP, SHOP_ENTRY
from goldsaucer.constants import (
    INVENTORY_END,
    ITEM_PRICE_COUNT,
    MATERIA_PRICE_COUNT,
    SHOP_COUNT,
    SHOP_ENTRY_ITEM,
    SHOP_ENTRY_MATERIA,
    SHOP_SLOTS,
)
from goldsaucer.errors import FormatError


@dataclass(frozen=True)
class ExeProfile:
    name: str
    shop_table: int
    item_prices: int
    materia_prices: int

    @classmethod
    def from_dict(cls, name: str, d: dict) -> ExeProfile:
        return cls(
            name=name,
            shop_table=int(d["shop_table"]),
            item_prices=int(d["item_prices"]),
            materia_prices=int(d["materia_prices"]),
        )


@dataclass(frozen=True)
class RawShop:
    name_index: int
    entries: tuple[tuple[int, int], ...]


@dataclass(frozen=True)
class ExeTables:
    shops: tuple[RawShop, ...]
    item_prices: tuple[int, ...]
    materia_prices: tuple[int, ...]


def _check_bounds(raw: bytes, path: Path, offset: int, size: int, what: str) -> None:
    if offset < 0 or offset + size > len(raw):
        raise FormatError(path, f"{what} at 0x{offset:x} lies outside the {len(raw)}-byte file")


def read_tables(raw: bytes, profile: ExeProfile, path: Path) -> ExeTables:
    """Read and sanity-check the shop and price tables."""
    _check_bounds(raw, path, profile.shop_table, SHOP_COUNT * SHOP.size, "shop table")
    _check_bounds(raw, path, profile.item_prices, ITEM_PRICE_COUNT * 4, "item price table")
    _check_bounds(raw, path, profile.materia_prices, MATERIA_PRICE_COUNT * 4, "materia price table")

    shops = []
    for i in range(SHOP_COUNT):
        values = SHOP.read(raw, profile.shop_table + i * SHOP.size)
        count = values["count"]
        if count > SHOP_SLOTS:
            raise FormatError(
                path, f"shop {i} claims {count} entries; profile {profile.name!r} looks wrong"
            )
        entries = []
        for slot in range(count):
            entry = SHOP_ENTRY.read(values["entries"], slot * SHOP_ENTRY.size)
            kind, ident = entry["kind"], entry["id"]
            valid = (kind == SHOP_ENTRY_ITEM and ident < INVENTORY_END) or (
                kind == SHOP_ENTRY_MATERIA and ident < MATERIA_PRICE_COUNT
            )
            if not valid:
                raise FormatError(
                    path, f"shop {i} entry {slot} ({kind}, {ident}) is not an item or materia"
                )
            entries.append((kind, ident))
        shops.append(RawShop(values["name_index"], tuple(entries)))

    item_prices = struct.unpack_from(f"<{ITEM_PRICE_COUNT}I", raw, profile.item_prices)
    materia_prices = struct.unpack_from(f"<{MATERIA_PRICE_COUNT}I", raw, profile.materia_prices)
    return ExeTables(tuple(shops), item_prices, materia_prices)


def write_shop(buf: bytearray, profile: ExeProfile, index: int, entries: list[tuple[int, int]]) -> None:
    """Rewrite the used entries of one shop; the count word is left as is."""
    base = profile.shop_table + index * SHOP.size + SHOP.field("entries").offset
    for slot, (kind, ident) in enumerate(entries):
        SHOP_ENTRY.write(buf, base + slot * SHOP_ENTRY.size, {"kind": kind, "id": ident}, only=("kind", "id"))


def write_prices(buf: bytearray, offset: int, index: int, price: int) -> None:
    struct.pack_into("<I", buf, offset + index * 4, price)
