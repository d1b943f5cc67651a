"""Key item placement rules and the reachability sweep.

A key item is granted by one or more BITON sites that set its savemap bit.
All sites of one key item form a location group; remapping assigns every
key item to exactly one group and rewrites the group's BITONs.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from goldsaucer.data.entities import EntitySet, KeySite
from goldsaucer.data.loader import KeyItem, classify_zone, key_item_by_flag, wall_market_zones

Flag = tuple[int, int, int]


@dataclass(frozen=True)
class LocationGroup:
    """Every site that originally granted one key item."""

    flag: Flag
    sites: tuple[KeySite, ...]

    @property
    def field_index(self) -> int:
        return min(s.field_index for s in self.sites)

    @property
    def field(self) -> str:
        return min(self.sites, key=lambda s: s.field_index).field

    @property
    def zone(self) -> str:
        return classify_zone(self.field)


def location_groups(entities: EntitySet) -> list[LocationGroup]:
    """Groups of sites per known key item, ordered by first appearance."""
    known = key_item_by_flag()
    grouped: dict[Flag, list[KeySite]] = defaultdict(list)
    for site in entities.key_sites:
        if site.flag in known:
            grouped[site.flag].append(site)
    groups = [LocationGroup(flag, tuple(sites)) for flag, sites in grouped.items()]
    return sorted(groups, key=lambda g: (g.field_index, g.flag))


def field_positions(entities: EntitySet) -> dict[str, int]:
    return {name: i for i, name in enumerate(entities.field_names)}


def allowed_zones(item: KeyItem) -> tuple[str, ...] | None:
    if item.zones is not None:
        return item.zones
    if item.role == "wall_market":
        return wall_market_zones()
    return None


def limit_index(item: KeyItem, positions: dict[str, int]) -> int | None:
    """Last field index the item may be found at, or None when unconstrained."""
    if item.before is None:
        return None
    return positions.get(item.before)


def can_place(
    item: KeyItem,
    group: LocationGroup,
    home: LocationGroup,
    positions: dict[str, int],
    *,
    full_logic: bool,
) -> bool:
    """Whether ``item`` (originally found at ``home``) may move to ``group``."""
    if group.flag == home.flag:
        return True
    limit = limit_index(item, positions)
    if limit is not None and group.field_index > limit:
        return False
    if full_logic:
        return True
    zones = allowed_zones(item)
    return zones is None or group.zone in zones


def assignment_of(original: EntitySet, result: EntitySet) -> dict[Flag, LocationGroup]:
    """Which original location group each key item ended up in."""
    current = {site.key: site.flag for site in result.key_sites}
    out: dict[Flag, LocationGroup] = {}
    for group in location_groups(original):
        flags = {current.get(site.key) for site in group.sites}
        if len(flags) == 1:
            (flag,) = flags
            out[flag] = group
    return out


def sweep(
    assignment: dict[Flag, LocationGroup],
    positions: dict[str, int],
    homes: dict[Flag, LocationGroup],
) -> list[str]:
    """Walk fields in story order and report every key item needed before it is found.

    An item is needed at its limit field, or at its original location when
    that comes later. An empty list means the game stays completable under
    the modelled dependencies.
    """
    items = key_item_by_flag()
    events: list[tuple[int, int, Flag]] = []
    for flag, group in assignment.items():
        if flag not in items:
            continue
        events.append((group.field_index, 0, flag))
        limit = limit_index(items[flag], positions)
        if limit is not None:
            if flag in homes:
                limit = max(limit, homes[flag].field_index)
            # Requirements sort after acquisitions at the same field
            events.append((limit, 1, flag))

    held: set[Flag] = set()
    failures = []
    for index, kind, flag in sorted(events):
        if kind == 0:
            held.add(flag)
        elif flag not in held:
            item = items[flag]
            failures.append(
                f"{item.name} is needed at {item.before} but placed at {assignment[flag].field}"
            )
    return failures
