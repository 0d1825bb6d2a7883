"""
Consistency Engine - location/group partition.

When an owner opts out of "same menu for all locations", every confirmed
location must belong to exactly one menu group and no group may be empty.

Everything here is a pure function of (locations, groups, same_menu_for_all).
The only repair performed automatically is dropping group members that no
longer name a confirmed location (renamed or un-confirmed); everything else
is reported as a violation for the owner to fix.
"""

from collections import Counter
from dataclasses import dataclass, replace
from typing import Iterable

from .models import Location, MenuGroup

IMPLICIT_GROUP_ID = "all"
IMPLICIT_GROUP_NAME = "All locations"
DEFAULT_MIN_GROUPS = 2


@dataclass(frozen=True)
class PartitionResult:
    """Outcome of a partition check."""
    ok: bool
    violations: tuple[str, ...] = ()
    groups: tuple[MenuGroup, ...] = ()  # repaired groups
    effective_groups: tuple[MenuGroup, ...] = ()  # what menu/tips steps consume


# =============================================================================
# Checks
# =============================================================================


def confirmed_location_names(locations: Iterable[Location]) -> tuple[str, ...]:
    """Names of confirmed locations, in order, without duplicates."""
    names = (loc.name for loc in locations if loc.confirmed and loc.name)
    return tuple(dict.fromkeys(names))


def repair_groups(
    locations: Iterable[Location],
    groups: Iterable[MenuGroup],
) -> tuple[MenuGroup, ...]:
    """Intersect every group's members with the confirmed location names."""
    confirmed = set(confirmed_location_names(locations))
    repaired = []
    for group in groups:
        kept = group.location_names & confirmed
        if kept != group.location_names:
            group = replace(group, location_names=frozenset(kept))
        repaired.append(group)
    return tuple(repaired)


def check_partition(
    locations: Iterable[Location],
    groups: Iterable[MenuGroup],
    same_menu_for_all: bool,
    min_groups: int = DEFAULT_MIN_GROUPS,
) -> PartitionResult:
    """
    Repair groups and report partition violations.

    Never raises. Running it on its own output yields the same result.

    Returns:
        PartitionResult with the repaired groups, the groups downstream
        steps should use, and human-readable violations.
    """
    locations = tuple(locations)
    names = confirmed_location_names(locations)
    repaired = repair_groups(locations, groups)
    violations: list[str] = []

    counts = Counter(loc.name for loc in locations if loc.confirmed and loc.name)
    for name in names:
        if counts[name] > 1:
            violations.append(f"Location name '{name}' is used by more than one location")

    if same_menu_for_all:
        implicit = MenuGroup(
            id=IMPLICIT_GROUP_ID,
            name=IMPLICIT_GROUP_NAME,
            location_names=frozenset(names),
            confirmed=True,
        )
        return PartitionResult(
            ok=not violations,
            violations=tuple(violations),
            groups=repaired,
            effective_groups=(implicit,),
        )

    if len(repaired) < min_groups:
        noun = "group" if min_groups == 1 else "groups"
        violations.append(
            f"Need at least {min_groups} {noun} when locations use different menus"
        )

    for group in repaired:
        if not group.location_names:
            violations.append(f"Group '{group.name or group.id}' has no locations assigned")

    for name in names:
        members = [g for g in repaired if name in g.location_names]
        if not members:
            violations.append(f"Location '{name}' is not assigned to any group")
        elif len(members) > 1:
            group_names = ", ".join(g.name or g.id for g in members)
            violations.append(
                f"Location '{name}' is assigned to more than one group ({group_names})"
            )

    return PartitionResult(
        ok=not violations,
        violations=tuple(violations),
        groups=repaired,
        effective_groups=repaired,
    )


# =============================================================================
# Group mutations (each returns a new tuple)
# =============================================================================


def _require_group(groups: tuple[MenuGroup, ...], group_id: str) -> None:
    if not any(g.id == group_id for g in groups):
        raise ValueError(f"Unknown group: {group_id}")


def assign_location_to_group(
    groups: Iterable[MenuGroup],
    group_id: str,
    location_name: str,
) -> tuple[MenuGroup, ...]:
    """Add a location to one group and remove it from every other group."""
    groups = tuple(groups)
    _require_group(groups, group_id)

    updated = []
    for group in groups:
        if group.id == group_id:
            group = replace(group, location_names=group.location_names | {location_name})
        elif location_name in group.location_names:
            group = replace(group, location_names=group.location_names - {location_name})
        updated.append(group)
    return tuple(updated)


def unassign_location(
    groups: Iterable[MenuGroup],
    group_id: str,
    location_name: str,
) -> tuple[MenuGroup, ...]:
    """Remove a location from one group."""
    groups = tuple(groups)
    _require_group(groups, group_id)
    return tuple(
        replace(g, location_names=g.location_names - {location_name}) if g.id == group_id else g
        for g in groups
    )


def _next_group_id(groups: tuple[MenuGroup, ...]) -> str:
    numeric = [int(g.id) for g in groups if g.id.isdigit()]
    candidate = max(numeric, default=0) + 1
    taken = {g.id for g in groups}
    while str(candidate) in taken:
        candidate += 1
    return str(candidate)


def add_group(groups: Iterable[MenuGroup], name: str | None = None) -> tuple[MenuGroup, ...]:
    """Append an empty group with the next free id."""
    groups = tuple(groups)
    group_id = _next_group_id(groups)
    return groups + (MenuGroup(id=group_id, name=name or f"Group {group_id}"),)


def rename_group(groups: Iterable[MenuGroup], group_id: str, name: str) -> tuple[MenuGroup, ...]:
    """Rename a group. The new name needs confirming again."""
    groups = tuple(groups)
    _require_group(groups, group_id)
    return tuple(
        replace(g, name=name.strip(), confirmed=False) if g.id == group_id else g
        for g in groups
    )


def confirm_group(groups: Iterable[MenuGroup], group_id: str) -> tuple[MenuGroup, ...]:
    """Lock in a group's name."""
    groups = tuple(groups)
    _require_group(groups, group_id)
    updated = []
    for g in groups:
        if g.id == group_id:
            if not g.name:
                raise ValueError("A group needs a name before it can be confirmed")
            g = replace(g, confirmed=True)
        updated.append(g)
    return tuple(updated)


def remove_group(groups: Iterable[MenuGroup], group_id: str) -> tuple[MenuGroup, ...]:
    groups = tuple(groups)
    _require_group(groups, group_id)
    return tuple(g for g in groups if g.id != group_id)


def default_groups(label: str = "Group") -> tuple[MenuGroup, ...]:
    """The two empty groups offered when per-group menus are switched on."""
    return (
        MenuGroup(id="1", name=f"{label} 1"),
        MenuGroup(id="2", name=f"{label} 2"),
    )


# =============================================================================
# Location mutations (each returns a new tuple)
# =============================================================================


def resize_locations(locations: Iterable[Location], count: int) -> tuple[Location, ...]:
    """Keep the first `count` locations, padding with unnamed ones."""
    if count < 1:
        raise ValueError("A business needs at least one location")
    locations = tuple(locations)[:count]
    return locations + tuple(Location() for _ in range(count - len(locations)))


def _require_index(locations: tuple[Location, ...], index: int) -> None:
    if not 0 <= index < len(locations):
        raise IndexError(f"No location at position {index}")


def rename_location(locations: Iterable[Location], index: int, name: str) -> tuple[Location, ...]:
    """Rename a location. Renaming always drops the confirmation."""
    locations = tuple(locations)
    _require_index(locations, index)
    return tuple(
        Location(name=name.strip(), confirmed=False) if i == index else loc
        for i, loc in enumerate(locations)
    )


def confirm_location(locations: Iterable[Location], index: int) -> tuple[Location, ...]:
    """Lock in a location's name so it can be grouped."""
    locations = tuple(locations)
    _require_index(locations, index)
    if not locations[index].name:
        raise ValueError("A location needs a name before it can be confirmed")
    return tuple(
        replace(loc, confirmed=True) if i == index else loc
        for i, loc in enumerate(locations)
    )
