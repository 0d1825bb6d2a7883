"""
Tests for the location/group partition check and group mutations.
"""

import pytest

from onboarding.consistency import (
    IMPLICIT_GROUP_ID,
    add_group,
    assign_location_to_group,
    check_partition,
    confirm_group,
    confirm_location,
    confirmed_location_names,
    default_groups,
    remove_group,
    rename_group,
    rename_location,
    repair_groups,
    resize_locations,
    unassign_location,
)
from onboarding.models import Draft, Location, MenuGroup, WizardStep
from onboarding.sections import validate_step


def _locations(*names: str) -> tuple[Location, ...]:
    return tuple(Location(name=n, confirmed=True) for n in names)


def _group(group_id: str, name: str, *members: str) -> MenuGroup:
    return MenuGroup(id=group_id, name=name, location_names=frozenset(members))


class TestCheckPartition:
    def test_repeat_run_is_stable(self):
        locations = _locations("North", "South") + (Location(name="East"),)
        groups = (
            _group("1", "A", "North", "East", "Gone"),
            _group("2", "B", "South"),
        )

        first = check_partition(locations, groups, same_menu_for_all=False)
        second = check_partition(locations, first.groups, same_menu_for_all=False)

        assert second == first
        assert first.groups[0].location_names == {"North"}

    def test_orphan_location_reported_once(self):
        locations = _locations("North", "South", "West")
        groups = (_group("1", "A", "North"), _group("2", "B", "South"))

        result = check_partition(locations, groups, same_menu_for_all=False)

        assert result.ok is False
        assert result.violations == ("Location 'West' is not assigned to any group",)

    def test_needs_minimum_groups(self):
        locations = _locations("North")
        groups = (_group("1", "A", "North"),)

        result = check_partition(locations, groups, same_menu_for_all=False)

        assert not result.ok
        assert "Need at least 2 groups when locations use different menus" in result.violations
        assert check_partition(locations, groups, False, min_groups=1).ok

    def test_empty_group_named(self):
        locations = _locations("North", "South")
        groups = (_group("1", "A", "North", "South"), _group("2", "Patio"))

        result = check_partition(locations, groups, same_menu_for_all=False)

        assert result.violations == ("Group 'Patio' has no locations assigned",)

    def test_location_in_two_groups_is_a_violation(self):
        locations = _locations("North", "South")
        groups = (_group("1", "A", "North", "South"), _group("2", "B", "South"))

        result = check_partition(locations, groups, same_menu_for_all=False)

        assert not result.ok
        assert any("'South' is assigned to more than one group" in v for v in result.violations)

    def test_duplicate_location_names(self):
        locations = _locations("North", "North")

        result = check_partition(locations, (), same_menu_for_all=True)

        assert result.violations == ("Location name 'North' is used by more than one location",)

    def test_same_menu_uses_one_implicit_group(self):
        locations = _locations("North", "South") + (Location(name="Draft"),)
        # Broken groups are ignored when every location shares one menu
        groups = (_group("1", "A"),)

        result = check_partition(locations, groups, same_menu_for_all=True)

        assert result.ok
        assert len(result.effective_groups) == 1
        implicit = result.effective_groups[0]
        assert implicit.id == IMPLICIT_GROUP_ID
        assert implicit.location_names == {"North", "South"}

    def test_unconfirmed_locations_are_not_grouped(self):
        locations = (Location(name="North", confirmed=True), Location(name="South"))
        groups = (_group("1", "A", "North", "South"),)

        repaired = repair_groups(locations, groups)

        assert repaired[0].location_names == {"North"}
        assert confirmed_location_names(locations) == ("North",)


class TestGroupMutations:
    def test_assign_keeps_locations_exclusive(self):
        groups = default_groups() + (_group("3", "Group 3"),)
        moves = [
            ("1", "North"), ("2", "North"), ("3", "South"),
            ("1", "South"), ("2", "East"), ("3", "East"), ("1", "North"),
        ]

        for group_id, name in moves:
            groups = assign_location_to_group(groups, group_id, name)
            for i, g1 in enumerate(groups):
                for g2 in groups[i + 1:]:
                    assert not (g1.location_names & g2.location_names)

        members = {g.id: g.location_names for g in groups}
        assert members == {"1": {"North", "South"}, "2": frozenset(), "3": {"East"}}

    def test_assign_to_unknown_group(self):
        with pytest.raises(ValueError, match="Unknown group"):
            assign_location_to_group(default_groups(), "9", "North")

    def test_unassign(self):
        groups = assign_location_to_group(default_groups(), "1", "North")
        groups = unassign_location(groups, "1", "North")
        assert groups[0].location_names == frozenset()

    def test_add_group_uses_next_id(self):
        groups = add_group(default_groups())
        assert [g.id for g in groups] == ["1", "2", "3"]
        assert groups[-1].name == "Group 3"

        groups = add_group(remove_group(groups, "2"), "Terrace")
        assert [g.id for g in groups] == ["1", "3", "4"]
        assert groups[-1].name == "Terrace"

    def test_rename_group_needs_new_confirmation(self):
        groups = confirm_group(confirm_group(default_groups(), "1"), "2")
        groups = rename_group(groups, "1", "  Downtown ")
        assert groups[0].name == "Downtown"
        assert groups[0].confirmed is False
        assert groups[1].confirmed is True

    def test_mutations_return_new_tuples(self):
        groups = default_groups()
        updated = assign_location_to_group(groups, "1", "North")
        assert groups[0].location_names == frozenset()
        assert updated is not groups


class TestLocationMutations:
    def test_resize_pads_and_truncates(self):
        locations = resize_locations(_locations("North"), 3)
        assert [loc.name for loc in locations] == ["North", "", ""]
        assert [loc.name for loc in resize_locations(locations, 1)] == ["North"]

    def test_resize_needs_one_location(self):
        with pytest.raises(ValueError):
            resize_locations((), 0)

    def test_rename_drops_confirmation(self):
        locations = rename_location(_locations("North", "South"), 1, "Southside")
        assert locations[1] == Location(name="Southside", confirmed=False)
        assert locations[0].confirmed

    def test_confirm_requires_name(self):
        with pytest.raises(ValueError):
            confirm_location((Location(),), 0)
        with pytest.raises(IndexError):
            confirm_location((Location(name="North"),), 4)


class TestGroupingScenarios:
    """Owner walks through the legal data page with per-group menus."""

    def _draft(self, locations, groups) -> Draft:
        return Draft(
            owner_id="owner-1",
            locations=locations,
            groups=groups,
            same_menu_for_all=False,
        )

    def test_one_group_missing_a_location(self):
        locations = _locations("North", "South")
        groups = (_group("1", "Grupo A", "North"),)

        result = check_partition(locations, groups, False, min_groups=1)

        assert not result.ok
        assert any("South" in v and "not assigned" in v for v in result.violations)

    def test_adding_the_missing_location(self):
        locations = _locations("North", "South")
        groups = assign_location_to_group((_group("1", "Grupo A", "North"),), "1", "South")

        assert check_partition(locations, groups, False, min_groups=1).ok
        # With the default two-group minimum the owner needs a second group
        assert not check_partition(locations, groups, False).ok

        groups = add_group(groups, "Grupo B")
        groups = assign_location_to_group(groups, groups[-1].id, "South")
        assert check_partition(locations, groups, False).ok

    def test_renaming_without_reconfirming(self):
        locations = _locations("North", "South")
        groups = (_group("1", "Grupo A", "North", "South"),)

        locations = rename_location(locations, 1, "Southside")
        result = check_partition(locations, groups, False, min_groups=1)

        assert result.groups[0].location_names == {"North"}

        ok, violations = validate_step(
            WizardStep.LEGAL_DATA,
            self._draft(locations, result.groups),
            min_groups=1,
        )
        assert not ok
        assert any("Southside" in v for v in violations)

        locations = confirm_location(locations, 1)
        result = check_partition(locations, result.groups, False, min_groups=1)
        assert result.violations == ("Location 'Southside' is not assigned to any group",)

        groups = assign_location_to_group(result.groups, "1", "Southside")
        assert check_partition(locations, groups, False, min_groups=1).ok
