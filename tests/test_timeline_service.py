"""
Timeline service tests: stage-6 activities, status derivation and locking.
"""

from datetime import date

import pytest

from opexhub.auth import AuthenticatedActor
from opexhub.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from opexhub.models.timeline import TimelineEntry
from opexhub.services import timeline_service, transaction_store, workflow_engine


def _actor(user):
    return AuthenticatedActor.from_user(user)


def _entry_data(**overrides):
    data = {
        "stage_name": "Install VFD on ID fan",
        "planned_start_date": "2099-01-01",
        "planned_end_date": "2099-03-01",
    }
    data.update(overrides)
    return data


@pytest.fixture()
def at_stage6(make_initiative, advance):
    initiative = make_initiative()
    return advance(initiative, 6)


# ── Status derivation ────────────────────────────────────────────────────────


class TestDeriveStatus:
    TODAY = date(2026, 5, 15)

    def _entry(self, **kwargs):
        fields = {"planned_start_date": date(2026, 5, 1), "planned_end_date": date(2026, 6, 1)}
        fields.update(kwargs)
        return TimelineEntry(**fields)

    def test_not_started(self):
        entry = self._entry(planned_start_date=date(2026, 6, 1), planned_end_date=date(2026, 7, 1))
        assert entry.derive_status(self.TODAY) == "PENDING"

    def test_in_progress_after_planned_start(self):
        assert self._entry().derive_status(self.TODAY) == "IN_PROGRESS"

    def test_in_progress_with_actual_start(self):
        entry = self._entry(planned_start_date=date(2026, 6, 1), planned_end_date=date(2026, 7, 1),
                            actual_start_date=date(2026, 6, 1))
        assert entry.derive_status(self.TODAY) == "IN_PROGRESS"

    def test_delayed_past_planned_end(self):
        entry = self._entry(planned_start_date=date(2026, 3, 1), planned_end_date=date(2026, 4, 1))
        assert entry.derive_status(self.TODAY) == "DELAYED"

    def test_completed_with_actual_end(self):
        entry = self._entry(actual_start_date=date(2026, 5, 2), actual_end_date=date(2026, 5, 10))
        assert entry.derive_status(self.TODAY) == "COMPLETED"

    def test_delayed_is_sticky(self):
        entry = self._entry(status="DELAYED", actual_start_date=date(2026, 5, 2), actual_end_date=date(2026, 5, 10))
        assert entry.derive_status(self.TODAY) == "DELAYED"


# ── Create / validate ────────────────────────────────────────────────────────


class TestCreate:
    def test_create_derives_status(self, at_stage6, users):
        entry = timeline_service.create_entry(at_stage6.id, _actor(users["IL"]), _entry_data())
        assert entry.id is not None
        assert entry.status == "PENDING"
        assert entry.created_by == users["IL"].email

    def test_create_with_actual_end_is_completed(self, at_stage6, users):
        entry = timeline_service.create_entry(at_stage6.id, _actor(users["IL"]), _entry_data(
            planned_start_date="2026-01-01", planned_end_date="2026-02-01",
            actual_start_date="2026-01-02", actual_end_date="2026-01-20",
        ))
        assert entry.status == "COMPLETED"

    def test_accepts_dotted_dates(self, at_stage6, users):
        entry = timeline_service.create_entry(at_stage6.id, _actor(users["IL"]), _entry_data(
            planned_start_date="01.01.2099", planned_end_date="01.02.2099",
        ))
        assert entry.planned_end_date == date(2099, 2, 1)

    @pytest.mark.parametrize("overrides", [
        {"planned_end_date": "2098-12-01"},
        {"planned_end_date": "2099-01-01"},
        {"actual_start_date": "2098-12-31"},
        {"actual_start_date": "2099-01-10", "actual_end_date": "2099-01-05"},
        {"actual_end_date": "2099-01-05"},
        {"planned_start_date": "not-a-date"},
        {"stage_name": "  "},
        {"status": "FINISHED"},
    ])
    def test_invalid_input(self, at_stage6, users, overrides):
        with pytest.raises(ValidationError):
            timeline_service.create_entry(at_stage6.id, _actor(users["IL"]), _entry_data(**overrides))

    def test_only_at_stage_six(self, make_initiative, advance, users):
        initiative = advance(make_initiative(), 5)
        with pytest.raises(ValidationError):
            timeline_service.create_entry(initiative.id, _actor(users["IL"]), _entry_data())

    def test_unknown_initiative(self, users):
        with pytest.raises(NotFoundError):
            timeline_service.create_entry(999, _actor(users["IL"]), _entry_data())

    def test_non_assignee_cannot_add(self, at_stage6, users):
        with pytest.raises(UnauthorizedError):
            timeline_service.create_entry(at_stage6.id, _actor(users["STLD"]), _entry_data())

    def test_other_site_cannot_add(self, at_stage6, make_user):
        outsider = make_user("lead@apl.example.com", "IL", site="APL")
        with pytest.raises(UnauthorizedError):
            timeline_service.create_entry(at_stage6.id, _actor(outsider), _entry_data())

    def test_admin_can_add(self, at_stage6, users):
        entry = timeline_service.create_entry(at_stage6.id, _actor(users["ADMIN"]), _entry_data())
        assert entry.created_by == users["ADMIN"].email


# ── Update / lock ────────────────────────────────────────────────────────────


class TestUpdate:
    def test_update_fields(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data())
        updated = timeline_service.update_entry(entry.id, actor, {"remarks": "Vendor confirmed", "responsible_person": "R. Shah"})
        assert updated.remarks == "Vendor confirmed"
        assert updated.responsible_person == "R. Shah"

    def test_set_completed(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data())
        assert timeline_service.set_completed(entry.id, actor).status == "COMPLETED"
        assert timeline_service.all_satisfy_gate(at_stage6.id) is True

    def test_completed_survives_later_edits(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data(
            planned_start_date="2026-01-01", planned_end_date="2026-02-01",
        ))
        assert entry.status == "DELAYED"
        timeline_service.set_completed(entry.id, actor)

        entry = timeline_service.update_entry(entry.id, actor, {"remarks": "Commissioned"})
        assert entry.status == "COMPLETED"
        entry = timeline_service.update_entry(entry.id, actor, {"actual_start_date": "2026-01-03"})
        assert entry.status == "COMPLETED"
        assert timeline_service.all_satisfy_gate(at_stage6.id) is True

    def test_date_change_rederives_status(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data())
        assert entry.status == "PENDING"
        entry = timeline_service.update_entry(entry.id, actor, {
            "planned_start_date": "2026-01-01", "planned_end_date": "2026-02-01",
        })
        assert entry.status == "DELAYED"

    def test_gate_needs_entries(self, at_stage6):
        assert timeline_service.all_satisfy_gate(at_stage6.id) is False

    def test_locked_after_stage_six_approved(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data(status="COMPLETED"))
        txn = transaction_store.get_pending(at_stage6.id)
        workflow_engine.process_stage_action(txn.id, actor, "approve", "All activities done")

        with pytest.raises(ValidationError):
            timeline_service.update_entry(entry.id, actor, {"remarks": "late edit"})
        with pytest.raises(ValidationError):
            timeline_service.update_status(entry.id, actor, "DELAYED")
        with pytest.raises(ValidationError):
            timeline_service.delete_entry(entry.id, actor)

    def test_delete(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data())
        timeline_service.delete_entry(entry.id, actor)
        assert timeline_service.list_entries(at_stage6.id) == []

    def test_list_ordered_by_planned_start(self, at_stage6, users):
        actor = _actor(users["IL"])
        later = timeline_service.create_entry(at_stage6.id, actor, _entry_data(
            planned_start_date="2099-05-01", planned_end_date="2099-06-01"))
        earlier = timeline_service.create_entry(at_stage6.id, actor, _entry_data())
        assert [e.id for e in timeline_service.list_entries(at_stage6.id)] == [earlier.id, later.id]


class TestApprovals:
    def test_site_lead_flag_requires_stld(self, at_stage6, users):
        entry = timeline_service.create_entry(at_stage6.id, _actor(users["IL"]), _entry_data())
        with pytest.raises(UnauthorizedError):
            timeline_service.update_approvals(entry.id, _actor(users["IL"]), site_lead_approval=True)

        entry = timeline_service.update_approvals(entry.id, _actor(users["STLD"]), site_lead_approval=True)
        assert entry.site_lead_approval is True

    def test_initiative_lead_flag(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data())
        entry = timeline_service.update_approvals(entry.id, actor, initiative_lead_approval=True)
        assert entry.initiative_lead_approval is True

    def test_flags_locked_after_stage_six_approved(self, at_stage6, users):
        actor = _actor(users["IL"])
        entry = timeline_service.create_entry(at_stage6.id, actor, _entry_data(status="COMPLETED"))
        txn = transaction_store.get_pending(at_stage6.id)
        workflow_engine.process_stage_action(txn.id, actor, "approve", "All activities done")

        with pytest.raises(ValidationError):
            timeline_service.update_approvals(entry.id, _actor(users["STLD"]), site_lead_approval=True)
        with pytest.raises(ValidationError):
            timeline_service.update_approvals(entry.id, actor, initiative_lead_approval=True)
