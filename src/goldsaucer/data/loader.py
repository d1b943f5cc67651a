"""Single cached loader for reference data and the lookups derived from it."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_REFERENCE_DATA: dict[str, Any] | None = None
_KEY_ITEMS: tuple[KeyItem, ...] | None = None
_DATA_PATH = Path(__file__).parent / "reference.json"


@dataclass(frozen=True)
class KeyItem:
    """A key item: a savemap bit plus the rules for where it may be granted."""

    name: str
    bank: int
    address: int
    mask: int
    role: str
    before: str | None = None
    zones: tuple[str, ...] | None = None

    @property
    def flag(self) -> tuple[int, int, int]:
        return (self.bank, self.address, self.mask)


def load_reference() -> dict[str, Any]:
    """Load reference data from JSON file (cached after first call)."""
    global _REFERENCE_DATA
    if _REFERENCE_DATA is None:
        with open(_DATA_PATH) as f:
            _REFERENCE_DATA = json.load(f)
    return _REFERENCE_DATA


def key_items() -> tuple[KeyItem, ...]:
    """All key items that live in the key item savemap bank. Cached."""
    global _KEY_ITEMS
    if _KEY_ITEMS is None:
        data = load_reference()
        bank = data["key_item_bank"]
        _KEY_ITEMS = tuple(
            KeyItem(
                name=k["name"],
                bank=bank,
                address=k["var"],
                mask=k["mask"],
                role=k["role"],
                before=k.get("before"),
                zones=tuple(k["zones"]) if "zones" in k else None,
            )
            for k in data["key_items"]
        )
    return _KEY_ITEMS


def key_item_by_flag() -> dict[tuple[int, int, int], KeyItem]:
    return {k.flag: k for k in key_items()}


def classify_zone(field_name: str) -> str:
    """Story zone a field belongs to, by exact name first and then by prefix."""
    zones = load_reference()["zones"]
    name = field_name.lower()
    for zone, names in zones["exact"].items():
        if name in names:
            return zone
    for zone, prefixes in zones["prefixes"]:
        if any(name.startswith(p) for p in prefixes):
            return zone
    return zones["default"]


def is_named_boss(name: str) -> bool:
    data = load_reference()
    upper = name.strip().upper()
    if any(fragment in upper for fragment in data["boss_name_fragments"]):
        return True
    return upper in data["boss_names"]


def debug_fields() -> frozenset[str]:
    return frozenset(load_reference()["debug_fields"])


def weapon_classes() -> list[tuple[int, int]]:
    """Inclusive weapon table ranges, one per playable character."""
    return [(lo, hi) for lo, hi in load_reference()["weapon_classes"]]


def exe_profile_offsets(exe_name: str) -> dict[str, int]:
    """Known table offsets for an executable name; missing values are dropped."""
    profile = load_reference()["exe_profiles"].get(exe_name.lower(), {})
    return {k: v for k, v in profile.items() if v is not None}


def wall_market_zones() -> tuple[str, ...]:
    """Zones the dress-up and Wall Market items are confined to."""
    return tuple(load_reference()["wall_market_zones"])
