"""Field script scanning for PC field files.

A decompressed field file starts with ``u16`` padding, ``u32`` section count
(always 9) and nine ``u32`` section positions; each section is
``[u32 size][data]``. Section 1 holds the event scripts:

    0x00 u16 version      0x02 u8 entity count   0x03 u8 model count
    0x04 u16 text offset  0x06 u16 AKAO count    0x08 u16 scale
    0x0A u16[3] blank     0x10 char[8] creator   0x18 char[8] name

followed by 8-byte entity names, u32 AKAO offsets and a u16[32] script
table per entity. Script bytecode runs from there up to the text offset
and is walked opcode by opcode with the fixed PC length table.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass, field

from goldsaucer.constants import (
    FIELD_MATERIA_LIMIT,
    FIELD_SECTION_COUNT,
    MAX_PICKUP_QUANTITY,
    OP_BITON,
    OP_SMTRA,
    OP_STITM,
)

# fmt: off
OPCODE_LENGTH = (
    1, 3, 3, 3, 3, 3, 3, 2, 2, 15, 6, 6, 1, 1, 2, 2,
    2, 3, 2, 3, 6, 7, 8, 9, 8, 9, 10, 3, 6, 1, 1, 1,
    11, 2, 5, 3, 3, 9, 2, 2, 3, 1, 2, 2, 5, 7, 2, 10,
    4, 4, 4, 2, 2, 4, 5, 8, 6, 6, 6, 4, 1, 1, 1, 1,
    3, 5, 6, 2, 1, 5, 1, 5, 7, 4, 2, 2, 1, 5, 1, 5,
    10, 6, 4, 2, 2, 3, 7, 7, 5, 5, 5, 7, 8, 10, 8, 1,
    10, 2, 5, 6, 6, 1, 9, 1, 9, 2, 7, 9, 1, 4, 3, 6,
    4, 2, 3, 4, 4, 8, 4, 5, 4, 5, 3, 3, 3, 3, 2, 3,
    4, 5, 4, 4, 4, 4, 5, 4, 5, 4, 5, 4, 5, 4, 5, 4,
    5, 4, 5, 4, 5, 3, 3, 3, 3, 3, 4, 5, 6, 7, 7, 11,
    2, 2, 3, 3, 2, 11, 9, 9, 6, 6, 2, 4, 1, 6, 3, 3,
    5, 5, 4, 3, 6, 6, 2, 4, 5, 4, 3, 5, 5, 4, 1, 2,
    11, 8, 15, 12, 1, 3, 3, 2, 2, 2, 4, 3, 3, 3, 2, 2,
    13, 2, 2, 16, 10, 10, 4, 4, 3, 1, 15, 2, 4, 1, 1, 11,
    4, 4, 3, 3, 3, 5, 5, 5, 7, 10, 10, 5, 5, 8, 8, 11,
    2, 5, 14, 2, 2, 2, 2, 4, 2, 1, 3, 2, 2, 8, 3, 1,
    0,
)
# fmt: on

OP_VARIABLE_1C = 0x1C
OP_KAWAI = 0x28
SCRIPT_HEADER_SIZE = 32
SCRIPTS_PER_ENTITY = 32


class FieldScriptError(ValueError):
    """Raised when a field file's header cannot be parsed."""


@dataclass(frozen=True)
class ItemGrant:
    """Constant STITM: gives ``quantity`` of inventory item ``item_id``."""

    offset: int
    item_id: int
    quantity: int


@dataclass(frozen=True)
class MateriaGrant:
    """Constant SMTRA: gives materia ``materia_id`` with ``ap`` AP."""

    offset: int
    materia_id: int
    ap: int


@dataclass(frozen=True)
class FlagSet:
    """BITON on a savemap variable; ``mask`` is ``1 << bit index``."""

    offset: int
    bank: int
    address: int
    mask: int


@dataclass
class FieldScan:
    items: list[ItemGrant] = field(default_factory=list)
    materia: list[MateriaGrant] = field(default_factory=list)
    flags: list[FlagSet] = field(default_factory=list)


def script_range(buf: bytes) -> tuple[int, int]:
    """Absolute ``[start, end)`` of the script bytecode inside a field file."""
    if len(buf) < 6 + FIELD_SECTION_COUNT * 4:
        raise FieldScriptError("field file is shorter than its section table")
    (count,) = struct.unpack_from("<I", buf, 2)
    if count != FIELD_SECTION_COUNT:
        raise FieldScriptError(f"field file declares {count} sections, expected 9")
    positions = struct.unpack_from(f"<{FIELD_SECTION_COUNT}I", buf, 6)

    section_start = positions[0] + 4
    section_end = positions[1]
    if section_start + SCRIPT_HEADER_SIZE > section_end or section_end > len(buf):
        raise FieldScriptError("script section is truncated")

    n_entities = buf[section_start + 2]
    text_offset, n_akao = struct.unpack_from("<HH", buf, section_start + 4)
    scripts_start = (
        section_start
        + SCRIPT_HEADER_SIZE
        + n_entities * 8
        + n_akao * 4
        + n_entities * SCRIPTS_PER_ENTITY * 2
    )
    scripts_end = section_start + text_offset if text_offset else section_end
    if not scripts_start <= scripts_end <= section_end:
        raise FieldScriptError("script table overlaps the text section")
    return scripts_start, scripts_end


def opcode_size(buf: bytes, i: int, end: int) -> int:
    """Length of the opcode at ``i``, never running past ``end``."""
    op = buf[i]
    size = OPCODE_LENGTH[op]
    if op == OP_VARIABLE_1C and i + 6 <= end:
        size += min(buf[i + 5], 128)
    elif op == OP_KAWAI and i + 2 <= end and buf[i + 1]:
        size = min(buf[i + 1], end - i)
    if size == 0 or i + size > end:
        return min(1, end - i)
    return size


def walk(buf: bytes, start: int, end: int) -> Iterator[int]:
    """Yield the offset of every opcode in ``[start, end)``."""
    i = start
    while i < end:
        yield i
        size = opcode_size(buf, i, end)
        if size == 0:
            return
        i += size


def scan(buf: bytes) -> FieldScan:
    """Find constant item/materia grants and flag sets in a field's scripts."""
    start, end = script_range(buf)
    result = FieldScan()
    for i in walk(buf, start, end):
        op = buf[i]
        if op == OP_STITM and i + 5 <= end:
            banks, item_id, quantity = struct.unpack_from("<BHB", buf, i + 1)
            if banks == 0 and 1 <= quantity <= MAX_PICKUP_QUANTITY:
                result.items.append(ItemGrant(i, item_id, quantity))
        elif op == OP_SMTRA and i + 7 <= end:
            b1b2, b3b4, materia_id = buf[i + 1], buf[i + 2], buf[i + 3]
            if b1b2 == 0 and b3b4 == 0 and materia_id < FIELD_MATERIA_LIMIT:
                ap = int.from_bytes(buf[i + 4 : i + 7], "little")
                result.materia.append(MateriaGrant(i, materia_id, ap))
        elif op == OP_BITON and i + 4 <= end:
            banks, address, bit = buf[i + 1], buf[i + 2], buf[i + 3]
            if banks & 0x0F == 0:
                result.flags.append(FlagSet(i, banks >> 4, address, 1 << (bit & 7)))
    return result


def set_item(buf: bytearray, offset: int, item_id: int) -> None:
    if buf[offset] != OP_STITM:
        raise FieldScriptError(f"no STITM at 0x{offset:x}")
    struct.pack_into("<H", buf, offset + 2, item_id)


def set_materia(buf: bytearray, offset: int, materia_id: int) -> None:
    if buf[offset] != OP_SMTRA:
        raise FieldScriptError(f"no SMTRA at 0x{offset:x}")
    buf[offset + 3] = materia_id


def set_flag(buf: bytearray, offset: int, bank: int, address: int, mask: int) -> None:
    """Point an existing BITON at another flag; opcode length is unchanged."""
    if buf[offset] != OP_BITON:
        raise FieldScriptError(f"no BITON at 0x{offset:x}")
    buf[offset + 1] = (bank << 4) & 0xF0
    buf[offset + 2] = address
    buf[offset + 3] = mask.bit_length() - 1
