"""
Tests for the Draft Repository.

Covers:
- Loading (fresh draft, failures, access checks)
- Debounced saves and their coalescing
- Critical fields saved immediately
- Save failures keeping the draft dirty
- Serialized saves and edits made while a save is in flight
- Switching drafts with unsaved changes
"""

import asyncio

import pytest

from onboarding.exceptions import (
    AccessDenied,
    LoadFailure,
    NotAuthenticatedError,
    SaveFailure,
    UnsavedChangesError,
)
from onboarding.models import Location, WizardStep
from onboarding.sections import validate_step
from onboarding.storage import LocalBlobStore


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoad:
    def test_missing_draft_starts_fresh(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            assert await repo.load()
            return repo

        repo = _run(_test())
        assert repo.draft.owner_id == "owner-1"
        assert repo.draft.owner_email == "owner@example.com"
        assert repo.draft.locations == (Location(),)
        assert repo.draft.get("location_count") == 1
        assert repo.dirty is False
        assert repo.is_shared is False

    def test_load_failure_keeps_current_draft(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.update_field("legal_business_name", "Taqueria Sol")
            await repo.save()

            store.fail_reads = True
            ok = await repo.load()
            return repo, ok

        repo, ok = _run(_test())
        assert ok is False
        assert isinstance(repo.last_error, LoadFailure)
        assert repo.draft.get("legal_business_name") == "Taqueria Sol"

    def test_requires_authenticated_user(self, make_repository):
        with pytest.raises(NotAuthenticatedError):
            _run(make_repository(None).load())

    def test_stranger_cannot_open_draft(self, make_repository, owner, stranger):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.update_field("tax_id", "12-3456789")
            await repo.save()

            await make_repository(stranger).load("owner-1")

        with pytest.raises(AccessDenied):
            _run(_test())

    def test_missing_foreign_draft_is_denied(self, make_repository, stranger):
        with pytest.raises(AccessDenied):
            _run(make_repository(stranger).load("owner-1"))

    def test_collaborator_opens_shared_draft(self, make_repository, owner, collaborator):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            await repo.write_sharing(["a@b.com"])

            shared = make_repository(collaborator)
            assert await shared.load("owner-1")
            return shared

        shared = _run(_test())
        assert shared.is_shared is True
        assert shared.draft.owner_id == "owner-1"


# ---------------------------------------------------------------------------
# Editing and debounced saves
# ---------------------------------------------------------------------------

class TestDebouncedSave:
    def test_rapid_edits_produce_one_write(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=0.05)
            await repo.load()
            for i in range(5):
                repo.update_field("legal_business_name", f"Name {i}")
                repo.update_field("tax_id", f"tax-{i}")
                await asyncio.sleep(0.005)
            assert store.writes == []
            await asyncio.sleep(0.15)
            await repo.wait_idle()
            return repo

        repo = _run(_test())
        writes = store.writes_to("form_progress")
        assert len(writes) == 1
        assert writes[0]["legal_business_name"] == "Name 4"
        assert writes[0]["tax_id"] == "tax-4"
        assert repo.dirty is False

    def test_each_edit_restarts_the_timer(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=0.08)
            await repo.load()
            repo.update_field("contact_name", "Ana")
            await asyncio.sleep(0.05)
            repo.update_field("contact_name", "Ana Ruiz")
            await asyncio.sleep(0.05)
            before = len(store.writes)
            await asyncio.sleep(0.1)
            await repo.wait_idle()
            return before

        before = _run(_test())
        assert before == 0
        assert len(store.writes) == 1

    def test_unchanged_value_is_not_an_edit(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            changed = repo.update_field("location_count", 1)
            return repo, changed

        repo, changed = _run(_test())
        assert changed is False
        assert repo.dirty is False

    def test_read_only_keys_rejected(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.update_field("shared_with", ["x@y.com"])

        with pytest.raises(ValueError, match="Read-only"):
            _run(_test())

    @pytest.mark.parametrize("values", [
        {"is_complete": True},
        {"current_step": "review"},
        {"city": "Austin", "current_step": "complete"},
    ])
    def test_progress_keys_are_read_only(self, make_repository, owner, values):
        repos = []

        async def _test():
            repo = make_repository(owner)
            repos.append(repo)
            await repo.load()
            repo.update_fields(values)

        with pytest.raises(ValueError, match="Read-only"):
            _run(_test())
        repo = repos[0]
        assert repo.draft.current_step is WizardStep.LANGUAGE
        assert repo.draft.is_complete is False
        assert repo.draft.get("city") is None
        assert repo.dirty is False

    def test_set_progress_records_step(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.set_progress(WizardStep.COMPLETE, is_complete=True)
            await repo.flush()
            return repo

        repo = _run(_test())
        stored = store.writes_to("form_progress")[-1]
        assert repo.draft.current_step is WizardStep.COMPLETE
        assert stored["current_step"] == "complete"
        assert stored["is_complete"] is True

    def test_location_count_resizes_locations(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.rename_location(0, "North")
            repo.update_field("location_count", 3)
            grown = repo.draft.locations
            repo.update_fields({"location_count": 1})
            return grown, repo.draft.locations

        grown, shrunk = _run(_test())
        assert [loc.name for loc in grown] == ["North", "", ""]
        assert [loc.name for loc in shrunk] == ["North"]

    @pytest.mark.parametrize("count", ["3", 2.5, True, 0])
    def test_location_count_must_be_positive_whole_number(self, make_repository, owner, count):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.update_field("location_count", count)

        with pytest.raises(ValueError):
            _run(_test())

    def test_critical_field_saved_immediately(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10, critical_fields={"tax_id"})
            await repo.load()
            repo.update_field("tax_id", "12-3456789")
            repo.update_field("contact_name", "Ana")
            await repo.wait_idle()
            return repo

        repo = _run(_test())
        writes = store.writes_to("form_progress")
        assert len(writes) == 1
        assert writes[0]["tax_id"] == "12-3456789"
        assert "contact_name" not in writes[0]
        # The full save is still pending
        assert repo.dirty is True

    def test_critical_structural_field_carries_groups(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10, critical_fields={"locations"})
            await repo.load()
            repo.set_location_count(2)
            await repo.wait_idle()

        _run(_test())
        write = store.writes_to("form_progress")[0]
        assert len(write["locations"]) == 2
        assert "groups" in write


# ---------------------------------------------------------------------------
# Explicit saves
# ---------------------------------------------------------------------------

class TestSave:
    def test_save_stamps_last_updated(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.update_field("city", "Austin")
            ok = await repo.save()
            stored = await store.get_document("form_progress", "owner-1")
            return repo, ok, stored

        repo, ok, stored = _run(_test())
        assert ok is True
        assert repo.draft.last_updated is not None
        assert stored["last_updated"] == repo.draft.last_updated
        assert stored["city"] == "Austin"

    def test_failed_save_stays_dirty_and_retries(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10)
            await repo.load()
            repo.update_field("city", "Austin")

            store.fail_writes = True
            failed = await repo.save()
            state = (failed, repo.dirty, repo.last_error)

            store.fail_writes = False
            retried = await repo.save()
            return state, retried, repo

        (failed, dirty, error), retried, repo = _run(_test())
        assert failed is False
        assert dirty is True
        assert isinstance(error, SaveFailure)
        assert retried is True
        assert repo.dirty is False
        assert repo.last_error is None

    def test_saves_never_overlap(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10)
            await repo.load()
            store.write_delay = 0.02
            tasks = []
            for i in range(3):
                repo.update_field("notes", f"v{i}")
                tasks.append(asyncio.create_task(repo.save()))
                await asyncio.sleep(0.005)
            results = await asyncio.gather(*tasks)
            stored = await store.get_document("form_progress", "owner-1")
            return results, stored

        results, stored = _run(_test())
        assert all(results)
        assert store.max_in_flight == 1
        assert stored["notes"] == "v2"

    def test_edit_during_save_stays_dirty(self, make_repository, owner, store):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10)
            await repo.load()
            repo.update_field("city", "Austin")
            store.write_delay = 0.03
            save = asyncio.create_task(repo.save())
            await asyncio.sleep(0.01)
            repo.update_field("city", "Dallas")
            await save
            return repo

        repo = _run(_test())
        assert repo.dirty is True
        assert repo.draft.get("city") == "Dallas"

    def test_save_does_not_touch_sharing_list(self, make_repository, owner, collaborator, store):
        async def _test():
            owner_repo = make_repository(owner)
            await owner_repo.load()
            await owner_repo.write_sharing(["a@b.com"])

            collab_repo = make_repository(collaborator)
            await collab_repo.load("owner-1")

            # Owner adds someone while the collaborator is editing
            await owner_repo.write_sharing(["a@b.com", "c@d.com"])
            collab_repo.update_field("city", "Austin")
            await collab_repo.save()
            return await store.get_document("form_progress", "owner-1")

        stored = _run(_test())
        assert stored["shared_with"] == ["a@b.com", "c@d.com"]
        assert stored["city"] == "Austin"

    def test_update_notice_skips_editor(self, make_repository, owner, collaborator, notifier):
        async def _test():
            owner_repo = make_repository(owner)
            await owner_repo.load()
            await owner_repo.write_sharing(["a@b.com", "c@d.com"])

            collab_repo = make_repository(collaborator)
            await collab_repo.load("owner-1")
            collab_repo.update_field("city", "Austin")
            return await collab_repo.save(notify_collaborators=True)

        assert _run(_test()) is True
        notifier.send_form_update_notice.assert_awaited_once_with(
            updated_by="a@b.com",
            shared_with=["owner@example.com", "c@d.com"],
            form_id="owner-1",
        )


# ---------------------------------------------------------------------------
# Switching drafts
# ---------------------------------------------------------------------------

class TestSwitch:
    def test_dirty_draft_refuses_to_switch(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10)
            await repo.load()
            repo.update_field("city", "Austin")
            await repo.switch_to("owner-1")

        with pytest.raises(UnsavedChangesError):
            _run(_test())

    def test_discard_reloads_persisted_values(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10)
            await repo.load()
            repo.update_field("city", "Austin")
            await repo.save()
            repo.update_field("city", "Dallas")
            assert await repo.discard_changes()
            return repo

        repo = _run(_test())
        assert repo.draft.get("city") == "Austin"
        assert repo.dirty is False

    def test_switch_to_shared_draft(self, make_repository, owner, collaborator):
        async def _test():
            owner_repo = make_repository(owner)
            await owner_repo.load()
            await owner_repo.write_sharing(["a@b.com"])

            repo = make_repository(collaborator)
            await repo.load()
            assert repo.is_shared is False
            await repo.switch_to("owner-1")
            return repo

        repo = _run(_test())
        assert repo.is_shared is True

    def test_refresh_skips_dirty_draft(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner, debounce_seconds=10)
            await repo.load()
            repo.update_field("city", "Austin")
            return await repo.refresh(), repo

        refreshed, repo = _run(_test())
        assert refreshed is False
        assert repo.draft.get("city") == "Austin"


# ---------------------------------------------------------------------------
# Locations and groups
# ---------------------------------------------------------------------------

class TestStructuralEdits:
    def test_grouping_walkthrough(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner, min_groups=1)
            await repo.load()
            repo.set_location_count(2)
            repo.rename_location(0, "North")
            repo.confirm_location(0)
            repo.rename_location(1, "South")
            repo.confirm_location(1)
            repo.set_same_menu_for_all(False)
            assert [g.name for g in repo.draft.groups] == ["Group 1", "Group 2"]

            repo.rename_group("1", "Grupo A")
            repo.remove_group("2")
            repo.assign_location_to_group("1", "North")
            missing_south = list(repo.partition.violations)

            repo.assign_location_to_group("1", "South")
            complete = repo.partition.ok

            repo.rename_location(1, "Southside")
            after_rename = repo.draft.groups[0].location_names
            ok, violations = validate_step(WizardStep.LEGAL_DATA, repo.draft, repo.min_groups)
            return missing_south, complete, after_rename, violations

        missing_south, complete, after_rename, violations = _run(_test())
        assert missing_south == ["Location 'South' is not assigned to any group"]
        assert complete is True
        assert after_rename == {"North"}
        assert any("Southside" in v for v in violations)

    def test_split_menus_with_default_groups(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.set_location_count(2)
            repo.rename_location(0, "North")
            repo.confirm_location(0)
            repo.rename_location(1, "South")
            repo.confirm_location(1)
            repo.set_same_menu_for_all(False)
            empty_groups = [g.location_names for g in repo.draft.groups]

            repo.rename_group("1", "Grupo A")
            repo.assign_location_to_group("1", "North")
            partial = list(repo.partition.violations)

            repo.assign_location_to_group("2", "South")
            return repo, empty_groups, partial

        repo, empty_groups, partial = _run(_test())
        assert empty_groups == [set(), set()]
        assert "Location 'South' is not assigned to any group" in partial
        assert "Group 'Group 2' has no locations assigned" in partial
        assert repo.partition.ok is True
        assert [(g.name, g.location_names) for g in repo.draft.groups] == [
            ("Grupo A", {"North"}),
            ("Group 2", {"South"}),
        ]

    def test_only_confirmed_locations_can_be_grouped(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.rename_location(0, "North")
            repo.set_same_menu_for_all(False)
            repo.assign_location_to_group("1", "North")

        with pytest.raises(ValueError, match="must be confirmed"):
            _run(_test())

    def test_turning_same_menu_back_on_keeps_groups(self, make_repository, owner):
        async def _test():
            repo = make_repository(owner)
            await repo.load()
            repo.set_same_menu_for_all(False)
            repo.set_same_menu_for_all(True)
            return repo

        repo = _run(_test())
        assert len(repo.draft.groups) == 2
        assert repo.partition.ok


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class TestUpload:
    def test_upload_stores_under_owner(self, make_repository, owner, tmp_path):
        async def _test():
            repo = make_repository(owner, blob_store=LocalBlobStore(tmp_path))
            await repo.load()
            return await repo.upload_file("legal", "irs-letter.pdf", b"%PDF-1.4", "application/pdf")

        url = _run(_test())
        assert url.startswith("file://")
        assert (tmp_path / "owner-1" / "legal" / "irs-letter.pdf").read_bytes() == b"%PDF-1.4"

    def test_upload_requires_user(self, make_repository, tmp_path):
        repo = make_repository(None, blob_store=LocalBlobStore(tmp_path))
        with pytest.raises(NotAuthenticatedError):
            _run(repo.upload_file("legal", "x.pdf", b"x"))
