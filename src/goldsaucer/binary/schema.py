"""Record layouts shared by the extractor and the compiler.

Every fixed-size record the randomizer touches is described once here as a
``construct`` Struct wrapped in a RecordSchema. The extractor decodes records
with ``read`` and the compiler encodes the changed values back with
``write``, so the two paths cannot drift apart.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from construct import (
    Adapter,
    Array,
    Bytes,
    Construct,
    ConstructError,
    Int8ul,
    Int16ul,
    Int24ul,
    Int32ul,
    Padding,
    Struct,
)

TEXT_END = 0xFF


def decode_text(raw: bytes) -> str:
    """Decode a game string (ASCII shifted down by 0x20, 0xFF terminated)."""
    out = []
    for code in raw:
        if code == TEXT_END:
            break
        ch = code + 0x20
        if 0x20 <= ch <= 0x7E:
            out.append(chr(ch))
    return "".join(out)


def encode_text(text: str, size: int) -> bytes:
    """Encode a game string into a fixed-size, 0xFF padded field."""
    data = bytearray()
    for ch in text:
        code = ord(ch) - 0x20
        if not 0 <= code < TEXT_END:
            raise ValueError(f"Character {ch!r} cannot be encoded")
        data.append(code)
    if len(data) >= size:
        raise ValueError(f"Text {text!r} does not fit in {size} bytes")
    return bytes(data) + bytes([TEXT_END]) * (size - len(data))


class GameText(Adapter):
    """Fixed-size game string field."""

    def __init__(self, length: int):
        super().__init__(Bytes(length))
        self.length = length

    def _decode(self, obj, context, path):
        return decode_text(obj)

    def _encode(self, obj, context, path):
        return encode_text(obj, self.length)


@dataclass(frozen=True)
class Field:
    """Byte range of one named member of a record Struct."""

    name: str
    offset: int
    size: int
    subcon: Construct

    @property
    def end(self) -> int:
        return self.offset + self.size


def _plain(value: Any) -> Any:
    # Arrays parse to ListContainer; records hold hashable tuples
    return tuple(value) if isinstance(value, list) else value


class RecordSchema:
    """A fixed-size record described by a ``construct`` Struct.

    Unnamed members (``Padding``) are skipped on read and never written.
    """

    def __init__(self, name: str, size: int, struct: Struct):
        if struct.sizeof() != size:
            raise ValueError(f"{name}: struct is {struct.sizeof()} bytes, expected {size}")
        self.name = name
        self.size = size
        self.struct = struct
        fields = []
        offset = 0
        for sub in struct.subcons:
            width = sub.sizeof()
            if sub.name:
                fields.append(Field(sub.name, offset, width, sub))
            offset += width
        self.fields: tuple[Field, ...] = tuple(fields)
        self._by_name = {f.name: f for f in fields}

    def __repr__(self) -> str:
        return f"RecordSchema({self.name!r}, {self.size})"

    def field(self, name: str) -> Field:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"{self.name} has no field {name!r}") from None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def read(self, buf: bytes, base: int = 0) -> dict[str, Any]:
        """Decode one record starting at ``base``."""
        if base + self.size > len(buf):
            raise ValueError(
                f"{self.name} record at 0x{base:x} is truncated "
                f"({len(buf) - base} of {self.size} bytes)"
            )
        parsed = self.struct.parse(bytes(buf[base : base + self.size]))
        return {f.name: _plain(parsed[f.name]) for f in self.fields}

    def read_table(self, buf: bytes) -> list[dict[str, Any]]:
        """Decode a buffer that is an exact array of records."""
        if len(buf) % self.size:
            raise ValueError(
                f"{self.name} table of {len(buf)} bytes is not a multiple of {self.size}"
            )
        return [self.read(buf, i) for i in range(0, len(buf), self.size)]

    def write(
        self,
        buf: bytearray,
        base: int,
        values: Mapping[str, Any],
        only: Iterable[str] | None = None,
    ) -> None:
        """Encode ``values`` into ``buf`` at ``base``.

        Only the fields named in ``only`` (default: every key of ``values``)
        are built and spliced in; the bytes of all other fields stay as they
        are.
        """
        names = set(values) if only is None else set(only)
        for f in self.fields:
            if f.name not in names:
                continue
            value = values[f.name]
            try:
                data = f.subcon.build(value)
            except ConstructError as e:
                raise ValueError(f"{self.name} field {f.name} value {value!r} out of range: {e}") from e
            buf[base + f.offset : base + f.end] = data

    def changed(self, before: Mapping[str, Any], after: Mapping[str, Any]) -> list[str]:
        """Field names whose value differs between two decoded records."""
        return [f.name for f in self.fields if before.get(f.name) != after.get(f.name)]


ENEMY = RecordSchema("enemy", 0xB8, Struct(
    "name" / GameText(32),
    "level" / Int8ul,
    "speed" / Int8ul,
    "luck" / Int8ul,
    "evade" / Int8ul,
    "strength" / Int8ul,
    "defense" / Int8ul,
    "magic" / Int8ul,
    "magic_defense" / Int8ul,
    "element_types" / Array(8, Int8ul),
    "element_rates" / Array(8, Int8ul),
    "action_animations" / Bytes(16),
    "attack_ids" / Array(16, Int16ul),
    "camera_ids" / Array(16, Int16ul),
    "item_rates" / Array(4, Int8ul),
    "item_ids" / Array(4, Int16ul),
    "manipulate_attacks" / Array(3, Int16ul),
    "unknown_9a" / Bytes(2),
    "mp" / Int16ul,
    "ap" / Int16ul,
    "morph" / Int16ul,
    "back_attack" / Int8ul,
    "alignment" / Int8ul,
    "hp" / Int32ul,
    "exp" / Int32ul,
    "gil" / Int32ul,
    "immunities" / Int32ul,
    "unknown_b4" / Bytes(4),
))

ITEM = RecordSchema("item", 28, Struct(
    "unknown" / Bytes(8),
    "camera" / Int16ul,
    "restriction" / Int16ul,
    "targets" / Int8ul,
    "attack_effect" / Int8ul,
    "damage_calc" / Int8ul,
    "power" / Int8ul,
    "conditions" / Int8ul,
    "status_chance" / Int8ul,
    "additional_effect" / Int8ul,
    "effect_modifier" / Int8ul,
    "status" / Int32ul,
    "elements" / Int16ul,
    "special" / Int16ul,
))

WEAPON = RecordSchema("weapon", 44, Struct(
    "targets" / Int8ul,
    "unknown_01" / Int8ul,
    "damage_calc" / Int8ul,
    "unknown_03" / Int8ul,
    "power" / Int8ul,
    "status_attack" / Int8ul,
    "growth" / Int8ul,
    "critical" / Int8ul,
    "accuracy" / Int8ul,
    "model" / Int8ul,
    "alignment" / Int8ul,
    "sound_mask" / Int8ul,
    "camera" / Int16ul,
    "equip_mask" / Int16ul,
    "elements" / Int16ul,
    "unknown_12" / Int16ul,
    "stat_types" / Array(4, Int8ul),
    "stat_amounts" / Array(4, Int8ul),
    "materia_slots" / Array(8, Int8ul),
    "sounds" / Array(4, Int8ul),
    "special" / Int16ul,
    "restriction" / Int16ul,
))

ARMOR = RecordSchema("armor", 36, Struct(
    "unknown_00" / Int8ul,
    "element_modifier" / Int8ul,
    "defense" / Int8ul,
    "magic_defense" / Int8ul,
    "evade" / Int8ul,
    "magic_evade" / Int8ul,
    "status_defense" / Int8ul,
    "unknown_07" / Int16ul,
    "materia_slots" / Array(8, Int8ul),
    "growth" / Int8ul,
    "equip_mask" / Int16ul,
    "elements" / Int16ul,
    "unknown_16" / Int16ul,
    "stat_types" / Array(4, Int8ul),
    "stat_amounts" / Array(4, Int8ul),
    "restriction" / Int16ul,
    "unknown_22" / Int16ul,
))

ACCESSORY = RecordSchema("accessory", 16, Struct(
    "stat_types" / Array(2, Int8ul),
    "stat_amounts" / Array(2, Int8ul),
    "element_strength" / Int8ul,
    "special_effect" / Int8ul,
    "elements" / Int16ul,
    "status_defense" / Int32ul,
    "equip_mask" / Int16ul,
    "restriction" / Int16ul,
))

MATERIA = RecordSchema("materia", 20, Struct(
    "ap_levels" / Array(4, Int16ul),
    "equip_effect" / Int8ul,
    "status" / Int24ul,
    "element" / Int8ul,
    "type" / Int8ul,
    "attributes" / Array(6, Int8ul),
))

MATERIA_SLOT = RecordSchema("materia_slot", 4, Struct(
    "id" / Int8ul,
    "ap" / Int24ul,
))

CHARACTER = RecordSchema("character", 0x84, Struct(
    "char_id" / Int8ul,
    "level" / Int8ul,
    Padding(0x0E),
    "name" / GameText(12),
    "weapon" / Int8ul,
    "armor" / Int8ul,
    "accessory" / Int8ul,
    Padding(0x21),
    "weapon_materia" / Bytes(32),
    "armor_materia" / Bytes(32),
    Padding(4),
))

SHOP = RecordSchema("shop", 84, Struct(
    "name_index" / Int16ul,
    "count" / Int16ul,
    "entries" / Bytes(80),
))

SHOP_ENTRY = RecordSchema("shop_entry", 8, Struct(
    "kind" / Int32ul,
    "id" / Int16ul,
    "pad" / Int16ul,
))

# Fields that describe the slot a record sits in rather than the record itself
WEAPON_SLOT_FIELDS = ("model", "equip_mask", "materia_slots")
ARMOR_SLOT_FIELDS = ("equip_mask", "materia_slots")
ACCESSORY_SLOT_FIELDS = ("equip_mask",)

# Upper nibble of the materia type byte travels with the slot
MATERIA_LINK_MASK = 0xF0
