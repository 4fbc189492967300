"""
Workflow engine tests: the stage action processor end to end.

Covers:
    - single-pending invariant and strictly increasing stage creation
    - compare-and-set concurrency guard (one winner, one AlreadyProcessed)
    - authorization: explicit pending_with beats role fallback, site match
    - check ordering: comment, offered action, payload, gate
    - stage-specific effects (4 assignment, 5 MOC/CAPEX, 10 F&A, 11 closure)
    - reject / drop terminal behaviour and configurable reject stages
"""

import pytest
from sqlalchemy import select, update

from opexhub.auth import AuthenticatedActor
from opexhub.core.exceptions import (
    AlreadyProcessedError,
    CommentRequiredError,
    InvalidPayloadError,
    NotFoundError,
    UnauthorizedError,
    ValidationGateFailedError,
)
from opexhub.models import db
from opexhub.models.monitoring import MonthlyMonitoringEntry
from opexhub.models.workflow import WorkflowTransaction
from opexhub.services import (
    monitoring_service,
    timeline_service,
    transaction_store,
    workflow_engine,
)


def _actor(user):
    return AuthenticatedActor.from_user(user)


def _pending(initiative):
    return transaction_store.get_pending(initiative.id)


def _act(initiative, user, action="approve", payload=None, comment="Reviewed"):
    txn = _pending(initiative)
    return workflow_engine.process_stage_action(txn.id, _actor(user), action, comment, payload)


def _stage_rows(initiative):
    return db.session.execute(
        select(WorkflowTransaction)
        .where(WorkflowTransaction.initiative_id == initiative.id)
        .order_by(WorkflowTransaction.id)
    ).scalars().all()


def _timeline(initiative, user, status, name):
    return timeline_service.create_entry(initiative.id, _actor(user), {
        "stage_name": name,
        "planned_start_date": "2026-01-01",
        "planned_end_date": "2026-03-01",
        "actual_start_date": "2026-01-10",
        "status": status,
    })


def _monitoring(initiative, user, month, achieved=500, finalize=True):
    entry = monitoring_service.create_entry(initiative.id, _actor(user), {
        "monitoring_month": month,
        "kpi_description": "Steam saving (t)",
        "target_value": 400,
        "achieved_value": achieved,
    })
    if finalize:
        entry = monitoring_service.set_finalized(entry.id, _actor(user), True)
    return entry


# ═════════════════════════════════════════════════════════════════════════════
# Invariants
# ═════════════════════════════════════════════════════════════════════════════


class TestInvariants:
    def test_single_pending_transaction_tracks_current_stage(self, make_initiative, advance):
        initiative = make_initiative()
        for target in range(2, 12):
            advance(initiative, target)
            rows = _stage_rows(initiative)
            pending = [t for t in rows if t.approve_status == "pending"]
            assert len(pending) == 1
            assert pending[0].stage_number == initiative.current_stage == target

    def test_stages_created_in_strictly_increasing_order(self, make_initiative, advance):
        initiative = make_initiative()
        advance(initiative, 11)
        numbers = [t.stage_number for t in _stage_rows(initiative)]
        assert numbers == list(range(1, 12))

    def test_stages_before_current_are_terminal(self, make_initiative, advance):
        initiative = make_initiative()
        advance(initiative, 7)
        for txn in _stage_rows(initiative):
            if txn.stage_number < 7:
                assert txn.approve_status == "approved"
                assert txn.action_by and txn.action_date and txn.comment


# ═════════════════════════════════════════════════════════════════════════════
# Concurrency
# ═════════════════════════════════════════════════════════════════════════════


class TestConcurrency:
    def test_concurrent_approvals_yield_one_success(self, monkeypatch, make_initiative, users):
        """A writer that finalizes the row between our gate check and our
        conditional update must make us fail with AlreadyProcessed."""
        initiative = make_initiative()
        txn_id = _pending(initiative).id
        real_gate = workflow_engine.evaluate_gate

        def racing_gate(stage, init, payload):
            real_gate(stage, init, payload)
            db.session.execute(
                update(WorkflowTransaction)
                .where(WorkflowTransaction.id == txn_id)
                .values(approve_status="approved", action_by="other@nds.example.com", comment="first")
                .execution_options(synchronize_session=False)
            )
            db.session.commit()

        monkeypatch.setattr(workflow_engine, "evaluate_gate", racing_gate)

        with pytest.raises(AlreadyProcessedError) as exc:
            workflow_engine.process_stage_action(txn_id, _actor(users["HOD"]), "approve", "second")
        assert exc.value.approve_status == "approved"

        stage2 = db.session.execute(
            select(WorkflowTransaction).where(
                WorkflowTransaction.initiative_id == initiative.id,
                WorkflowTransaction.stage_number == 2,
            )
        ).scalars().all()
        assert len(stage2) == 1
        assert stage2[0].action_by == "other@nds.example.com"
        # the losing call must not have opened stage 3
        assert transaction_store.get_transaction_for_stage(initiative.id, 3) is None

    def test_second_approve_of_same_transaction_is_already_processed(self, make_initiative, users):
        initiative = make_initiative()
        txn_id = _pending(initiative).id
        workflow_engine.process_stage_action(txn_id, _actor(users["HOD"]), "approve", "ok")

        with pytest.raises(AlreadyProcessedError):
            workflow_engine.process_stage_action(txn_id, _actor(users["HOD"]), "approve", "again")
        assert initiative.current_stage == 3

    def test_unknown_transaction_is_not_found(self, users):
        with pytest.raises(NotFoundError):
            workflow_engine.process_stage_action(9999, _actor(users["HOD"]), "approve", "ok")


# ═════════════════════════════════════════════════════════════════════════════
# Authorization
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthorization:
    def test_stage4_explicit_assignee_beats_il_role_fallback(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 4)
        assert _pending(initiative).pending_with == users["SH"].email

        with pytest.raises(UnauthorizedError):
            _act(initiative, users["IL"], payload={"assigned_user_id": users["IL"].id})
        assert initiative.current_stage == 4

    def test_other_user_with_right_role_is_rejected_when_individual_assigned(
        self, make_initiative, users, make_user,
    ):
        second_hod = make_user("hod2@nds.example.com", "HOD")
        initiative = make_initiative()
        assert _pending(initiative).pending_with == users["HOD"].email

        with pytest.raises(UnauthorizedError):
            _act(initiative, second_hod)

    def test_role_fallback_when_no_individual_resolved(self, make_initiative, make_user):
        initiative = make_initiative(site="HSD1")
        assert _pending(initiative).pending_with == "HOD"

        hod = make_user("hod@hsd1.example.com", "HOD", site="HSD1")
        _act(initiative, hod)
        assert initiative.current_stage == 3

    def test_role_fallback_requires_matching_site(self, make_initiative, make_user):
        initiative = make_initiative(site="HSD2")
        assert _pending(initiative).pending_with == "HOD"
        other_site_hod = make_user("hod@dhj.example.com", "HOD", site="DHJ")

        with pytest.raises(UnauthorizedError):
            _act(initiative, other_site_hod)

    def test_role_fallback_requires_role_mapped_to_stage(self, make_initiative, make_user):
        initiative = make_initiative(site="HSD3")
        stld = make_user("tsd@hsd3.example.com", "STLD", site="HSD3")

        with pytest.raises(UnauthorizedError):
            _act(initiative, stld)

    def test_selected_hod_receives_stage_two(self, make_initiative, users, make_user):
        chosen = make_user("hod.chosen@nds.example.com", "HOD")
        initiative = make_initiative(selected_hod_id=chosen.id)
        assert _pending(initiative).pending_with == chosen.email


# ═════════════════════════════════════════════════════════════════════════════
# Check ordering
# ═════════════════════════════════════════════════════════════════════════════


class TestChecks:
    @pytest.mark.parametrize("comment", [None, "", "   "])
    def test_comment_required_for_every_action(self, make_initiative, users, comment):
        initiative = make_initiative()
        with pytest.raises(CommentRequiredError):
            _act(initiative, users["HOD"], comment=comment)
        assert _pending(initiative).stage_number == 2

    def test_unauthorized_reported_before_missing_comment(self, make_initiative, users):
        initiative = make_initiative()
        with pytest.raises(UnauthorizedError):
            _act(initiative, users["STLD"], comment="")

    def test_action_not_offered_by_stage(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 4)
        with pytest.raises(InvalidPayloadError):
            _act(initiative, users["SH"], action="reject")
        with pytest.raises(InvalidPayloadError):
            _act(initiative, users["SH"], action="drop")

    def test_unknown_action(self, make_initiative, users):
        initiative = make_initiative()
        with pytest.raises(InvalidPayloadError):
            _act(initiative, users["HOD"], action="escalate")

    def test_stage4_requires_assigned_user(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 4)
        with pytest.raises(InvalidPayloadError):
            _act(initiative, users["SH"], payload={})

    def test_stage4_assignee_must_be_active_il_at_site(self, make_initiative, advance, users, make_user):
        initiative = make_initiative()
        advance(initiative, 4)
        remote_il = make_user("il@apl.example.com", "IL", site="APL")

        with pytest.raises(ValidationGateFailedError) as exc:
            _act(initiative, users["SH"], payload={"assigned_user_id": remote_il.id})
        assert exc.value.gate == "assigned_il"

        with pytest.raises(ValidationGateFailedError):
            _act(initiative, users["SH"], payload={"assigned_user_id": users["STLD"].id})


# ═════════════════════════════════════════════════════════════════════════════
# Stage effects
# ═════════════════════════════════════════════════════════════════════════════


class TestStageEffects:
    def test_stage4_assignment_routes_il_stages(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 4)
        txn = _act(initiative, users["SH"], payload={"assigned_user_id": users["IL"].id})

        assert txn.assigned_user_id == users["IL"].id
        assert _pending(initiative).pending_with == users["IL"].email

    def test_stage5_moc_number_required_when_yes(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 5)

        with pytest.raises(InvalidPayloadError):
            _act(initiative, users["IL"], payload={
                "requires_moc": "yes", "moc_number": "", "requires_capex": "N",
            })
        assert initiative.current_stage == 5

        _act(initiative, users["IL"], payload={
            "requires_moc": "yes", "moc_number": "MOC-123", "requires_capex": "N",
        })
        assert initiative.moc_number == "MOC-123"
        assert initiative.requires_moc == "Y"
        assert initiative.requires_capex == "N"
        assert initiative.capex_number is None
        assert initiative.current_stage == 6

    def test_stage5_decision_recorded_on_transaction(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 5)
        txn = _act(initiative, users["IL"], payload={
            "requires_moc": "N", "requires_capex": "Y", "capex_number": "CPX-9",
        })
        assert txn.requires_capex == "Y"
        assert txn.capex_number == "CPX-9"
        assert txn.action_payload["capex_number"] == "CPX-9"

    def test_stage6_gate_blocks_until_all_completed(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 6)
        _timeline(initiative, users["IL"], "COMPLETED", "Procure VFD")
        pending_entry = _timeline(initiative, users["IL"], "IN_PROGRESS", "Commission VFD")

        with pytest.raises(ValidationGateFailedError) as exc:
            _act(initiative, users["IL"])
        assert exc.value.gate == "timeline_completed"
        assert "1 timeline entries not completed" in str(exc.value)

        timeline_service.update_status(pending_entry.id, _actor(users["IL"]), "COMPLETED")
        _act(initiative, users["IL"])
        assert initiative.current_stage == 7

    def test_stage6_gate_requires_at_least_one_entry(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 6)
        with pytest.raises(ValidationGateFailedError):
            _act(initiative, users["IL"])

    def test_stage9_gate_requires_finalized_entries(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 9)
        _monitoring(initiative, users["IL"], "2026-04")
        draft = _monitoring(initiative, users["IL"], "2026-05", finalize=False)

        with pytest.raises(ValidationGateFailedError) as exc:
            _act(initiative, users["IL"])
        assert exc.value.gate == "monitoring_finalized"

        monitoring_service.set_finalized(draft.id, _actor(users["IL"]), True)
        _act(initiative, users["IL"])
        assert initiative.current_stage == 10
        assert _pending(initiative).pending_with == users["F&A"].email

    def test_stage10_requires_selection_of_pending_entries(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 9)
        first = _monitoring(initiative, users["IL"], "2026-04", achieved=500)
        second = _monitoring(initiative, users["IL"], "2026-05", achieved=700)
        _act(initiative, users["IL"])

        with pytest.raises(ValidationGateFailedError) as exc:
            _act(initiative, users["F&A"], payload={})
        assert exc.value.gate == "fa_approval"

        _act(initiative, users["F&A"], payload={"approved_entry_ids": [first.id]})
        assert initiative.current_stage == 11
        assert db.session.get(MonthlyMonitoringEntry, first.id).fa_approval is True
        assert db.session.get(MonthlyMonitoringEntry, second.id).fa_approval is False
        assert float(initiative.actual_savings) == 500.0

    def test_stage10_passes_after_prior_batch_approval(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 9)
        entry = _monitoring(initiative, users["IL"], "2026-04", achieved=650)
        _act(initiative, users["IL"])

        monitoring_service.batch_approve([entry.id], _actor(users["F&A"]), "Verified against invoices")
        _act(initiative, users["F&A"])
        assert initiative.current_stage == 11
        assert float(initiative.actual_savings) == 650.0

    def test_stage10_rejects_ids_not_awaiting_approval(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 10)
        with pytest.raises(ValidationGateFailedError):
            _act(initiative, users["F&A"], payload={"approved_entry_ids": [424242]})

    def test_stage11_completes_without_stage12(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 11)
        _act(initiative, users["IL"], comment="Initiative closed; savings sustained")

        assert initiative.status == "Completed"
        assert initiative.current_stage == 12
        assert _pending(initiative) is None
        assert transaction_store.get_transaction_for_stage(initiative.id, 12) is None
        assert transaction_store.progress_percentage(initiative.id) == 100

    def test_failed_gate_leaves_state_untouched(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 6)
        before = _pending(initiative).id
        with pytest.raises(ValidationGateFailedError):
            _act(initiative, users["IL"])
        txn = _pending(initiative)
        assert txn.id == before
        assert txn.action_by is None


# ═════════════════════════════════════════════════════════════════════════════
# Reject / drop
# ═════════════════════════════════════════════════════════════════════════════


class TestTerminalActions:
    def test_reject_at_stage2_halts_workflow(self, make_initiative, users):
        initiative = make_initiative()
        txn = _act(initiative, users["HOD"], action="reject", comment="Not viable")

        assert txn.approve_status == "rejected"
        assert initiative.status == "Rejected"
        assert initiative.current_stage == 2
        assert _pending(initiative) is None

    def test_reject_at_stage3(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 3)
        _act(initiative, users["STLD"], action="reject", comment="Duplicate of existing initiative")
        assert initiative.status == "Rejected"
        assert initiative.current_stage == 3

    def test_drop_at_stage8_freezes_stage(self, make_initiative, advance, users):
        initiative = make_initiative()
        advance(initiative, 8)
        txn = _act(initiative, users["CTSD"], action="drop", comment="Return to pool for next FY")

        assert txn.approve_status == "dropped"
        assert initiative.status == "Dropped"
        assert initiative.current_stage == 8
        assert transaction_store.get_transaction_for_stage(initiative.id, 9) is None

    def test_terminal_initiative_rejects_further_actions(self, make_initiative, users):
        initiative = make_initiative()
        txn = _act(initiative, users["HOD"], action="reject", comment="No")
        with pytest.raises(AlreadyProcessedError):
            workflow_engine.process_stage_action(txn.id, _actor(users["HOD"]), "approve", "changed mind")

    def test_reject_stages_are_configurable(self, app, monkeypatch, make_initiative, advance, users):
        monkeypatch.setitem(app.config, "WORKFLOW_REJECT_STAGES", (2, 3, 4))
        initiative = make_initiative()
        advance(initiative, 4)
        _act(initiative, users["SH"], action="reject", comment="No owner available")
        assert initiative.status == "Rejected"


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


class TestQueries:
    def test_resolve_pending_transaction(self, make_initiative, users):
        initiative = make_initiative()
        txn = workflow_engine.resolve_pending_transaction(initiative.id, _actor(users["HOD"]))
        assert txn.stage_number == 2

    def test_resolve_pending_hidden_from_non_assignee(self, make_initiative, advance, users):
        initiative = advance(make_initiative(), 4)
        assert _pending(initiative).pending_with == users["SH"].email
        assert workflow_engine.resolve_pending_transaction(initiative.id, _actor(users["HOD"])) is None
        txn = workflow_engine.resolve_pending_transaction(initiative.id, _actor(users["SH"]))
        assert txn.stage_number == 4

    def test_resolve_pending_requires_matching_site(self, make_initiative, make_user):
        initiative = make_initiative()
        remote_hod = make_user("hod@pnq.example.com", "HOD", site="PNQ")
        assert workflow_engine.resolve_pending_transaction(initiative.id, _actor(remote_hod)) is None

    def test_resolve_pending_none_when_terminal(self, make_initiative, users):
        initiative = make_initiative()
        _act(initiative, users["HOD"], action="reject", comment="Out of scope")
        assert workflow_engine.resolve_pending_transaction(initiative.id, _actor(users["HOD"])) is None

    def test_resolve_pending_unknown_initiative(self, users):
        with pytest.raises(NotFoundError):
            workflow_engine.resolve_pending_transaction(12345, _actor(users["HOD"]))

    def test_pending_inbox_lists_assigned_and_role_work(self, make_initiative, users):
        nds = make_initiative()
        other = make_initiative(title="Boiler tuning")
        inbox = workflow_engine.pending_inbox(_actor(users["HOD"]))
        assert {t.initiative_id for t in inbox} == {nds.id, other.id}
        assert workflow_engine.pending_inbox(_actor(users["STLD"])) == []

    def test_visible_transactions_and_progress(self, make_initiative, advance):
        initiative = make_initiative()
        advance(initiative, 4)
        visible = transaction_store.get_visible_transactions(initiative.id)
        assert [t.stage_number for t in visible] == [1, 2, 3, 4]
        assert transaction_store.progress_percentage(initiative.id) == 75
