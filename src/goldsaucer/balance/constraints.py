"""Invariant validation for randomized entity sets."""

from collections import Counter
from dataclasses import dataclass, field

from goldsaucer.binary.schema import (
    ACCESSORY_SLOT_FIELDS,
    ARMOR_SLOT_FIELDS,
    MATERIA_LINK_MASK,
    WEAPON_SLOT_FIELDS,
)
from goldsaucer.constants import INVENTORY_END
from goldsaucer.data.entities import ITEM, EntitySet, InventoryRef, ref_category
from goldsaucer.data.loader import key_item_by_flag
from goldsaucer.engine import progression
from goldsaucer.engine.pools import Identity, identity_sources, is_dummy, ref_for_identity

# Invariant names, as reported in ConstraintViolation
COUNTS = "record_counts"
OBTAINABILITY = "obtainability"
SHOP_NON_EMPTY = "shop_non_empty"
SHOP_CATEGORY = "shop_category"
VALID_REFERENCE = "valid_reference"
NO_DUPLICATES = "no_duplicate_drops"
SLOT_METADATA = "slot_metadata"
KEY_ITEM_BIJECTION = "key_item_bijection"
KEY_ITEM_PROGRESSION = "key_item_progression"


@dataclass
class InvariantIssue:
    """An invariant problem found during validation."""

    severity: str  # "warning" or "error"
    invariant: str
    message: str


@dataclass
class InvariantResult:
    """Result of invariant validation."""

    valid: bool
    issues: list[InvariantIssue] = field(default_factory=list)

    @property
    def warnings(self) -> list[InvariantIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def errors(self) -> list[InvariantIssue]:
        return [i for i in self.issues if i.severity == "error"]

    def merge(self, other: "InvariantResult") -> "InvariantResult":
        issues = self.issues + other.issues
        return InvariantResult(valid=not any(i.severity == "error" for i in issues), issues=issues)


def _result(issues: list[InvariantIssue]) -> InvariantResult:
    return InvariantResult(valid=not any(i.severity == "error" for i in issues), issues=issues)


def _error(invariant: str, message: str) -> InvariantIssue:
    return InvariantIssue(severity="error", invariant=invariant, message=message)


class InvariantValidator:
    """Checks a randomized EntitySet against the input it was derived from."""

    def __init__(self, original: EntitySet):
        self.original = original
        holders = ref_for_identity(original)
        # Filler rows are not worth keeping obtainable
        self.obtainable = {
            i for i in identity_sources(original) if not is_dummy(original, holders[i])
        }

    def validate_counts(self, result: EntitySet) -> InvariantResult:
        issues = []
        before, after = self.original.counts(), result.counts()
        for name, count in before.items():
            if after[name] != count:
                issues.append(_error(COUNTS, f"{name}: {count} records became {after[name]}"))
        return _result(issues)

    def validate_obtainability(
        self, result: EntitySet, required: frozenset[Identity] | None = None
    ) -> InvariantResult:
        """Every identity obtainable in the input (or just ``required``) is still obtainable."""
        wanted = self.obtainable if required is None else set(required)
        missing = sorted(wanted - set(identity_sources(result)))
        issues = [
            _error(OBTAINABILITY, f"{table}[{origin}] is no longer obtainable")
            for table, origin in missing
        ]
        return _result(issues)

    def validate_references(self, result: EntitySet) -> InvariantResult:
        """Drops, steals, morphs and pickups point at real records.

        Enemies left as they were in the input are not second-guessed.
        """
        issues = []
        originals = {e.key: e for e in self.original.enemies}
        for enemy in result.enemies:
            if enemy.values == originals[enemy.key].values:
                continue
            for item in enemy.item_refs():
                ref = InventoryRef(ITEM, item)
                if item >= INVENTORY_END or is_dummy(result, ref):
                    issues.append(_error(
                        VALID_REFERENCE, f"enemy {enemy.name!r} {enemy.key} grants invalid item {item:#x}"
                    ))
        for pickup in result.item_pickups + result.materia_pickups:
            if not result.is_valid_ref(pickup.ref):
                issues.append(_error(VALID_REFERENCE, f"{pickup.field}@{pickup.offset:#x} grants {pickup.ref}"))
        return _result(issues)

    def validate_drops(self, result: EntitySet, allow_duplicates: bool = False) -> InvariantResult:
        if allow_duplicates:
            return _result([])
        issues = []
        originals = {e.key: e for e in self.original.enemies}
        for enemy in result.enemies:
            if enemy.values == originals[enemy.key].values:
                continue
            refs = [item for _, item in enemy.drops()]
            repeated = [item for item, n in Counter(refs).items() if n > 1]
            if repeated:
                issues.append(_error(
                    NO_DUPLICATES, f"enemy {enemy.name!r} {enemy.key} repeats {repeated}"
                ))
        return _result(issues)

    def validate_shops(self, result: EntitySet, loose_categories: bool = False) -> InvariantResult:
        issues = []
        for before, after in zip(self.original.shops, result.shops):
            if before.refs and not after.refs:
                issues.append(_error(SHOP_NON_EMPTY, f"shop {before.index} became empty"))
                continue
            for ref in after.refs:
                if not result.is_valid_ref(ref):
                    issues.append(_error(VALID_REFERENCE, f"shop {after.index} sells {ref}"))
            if loose_categories or before.category in ("mixed", "empty") or after.refs == before.refs:
                continue
            wrong = [str(r) for r in after.refs if ref_category(r) != before.category]
            if wrong:
                issues.append(_error(
                    SHOP_CATEGORY,
                    f"shop {after.index} ({before.category}) sells {', '.join(wrong)}",
                ))
        return _result(issues)

    def validate_slot_metadata(self, result: EntitySet) -> InvariantResult:
        """Slot-bound fields (weapon models, equip masks, materia slots, link nibbles) never move."""
        issues = []
        checks = (
            ("weapons", WEAPON_SLOT_FIELDS),
            ("armor", ARMOR_SLOT_FIELDS),
            ("accessories", ACCESSORY_SLOT_FIELDS),
        )
        for table, fields in checks:
            for before, after in zip(self.original.table(table), result.table(table)):
                for name in fields:
                    if before[name] != after[name]:
                        issues.append(_error(SLOT_METADATA, f"{table}[{before.index}].{name} changed"))
        for before, after in zip(self.original.materia, result.materia):
            if (before["type"] ^ after["type"]) & MATERIA_LINK_MASK:
                issues.append(_error(SLOT_METADATA, f"materia[{before.index}] link flags changed"))
        return _result(issues)

    def validate_key_items(self, result: EntitySet, full_logic: bool = False) -> InvariantResult:
        """Key items form a bijection over location groups and keep the game completable."""
        issues = []
        groups = progression.location_groups(self.original)
        homes = {g.flag: g for g in groups}
        assignment = progression.assignment_of(self.original, result)
        # Two groups sharing a flag collapse into one dict entry
        if sorted(assignment) != sorted(homes):
            issues.append(_error(
                KEY_ITEM_BIJECTION,
                f"{len(assignment)} of {len(groups)} location groups hold a distinct key item",
            ))

        positions = progression.field_positions(self.original)
        for failure in progression.sweep(assignment, positions, homes):
            issues.append(_error(KEY_ITEM_PROGRESSION, failure))

        if not full_logic:
            items = key_item_by_flag()
            for flag, group in assignment.items():
                if flag not in homes:
                    continue
                if not progression.can_place(items[flag], group, homes[flag], positions, full_logic=False):
                    issues.append(_error(
                        KEY_ITEM_PROGRESSION,
                        f"{items[flag].name} may not be found at {group.field} ({group.zone})",
                    ))
        return _result(issues)

    def validate_all(
        self,
        result: EntitySet,
        *,
        allow_duplicates: bool = False,
        loose_categories: bool = False,
        full_logic: bool = False,
    ) -> InvariantResult:
        """Run every global check over a finished run."""
        combined = self.validate_counts(result)
        for partial in (
            self.validate_obtainability(result),
            self.validate_references(result),
            self.validate_drops(result, allow_duplicates),
            self.validate_shops(result, loose_categories),
            self.validate_slot_metadata(result),
            self.validate_key_items(result, full_logic),
        ):
            combined = combined.merge(partial)
        return combined


def first_error(result: InvariantResult) -> InvariantIssue | None:
    errors = result.errors
    return errors[0] if errors else None


def describe(result: InvariantResult) -> str:
    return "; ".join(f"{i.invariant}: {i.message}" for i in result.errors)
