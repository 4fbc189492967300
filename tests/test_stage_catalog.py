"""
Stage catalog and stage payload parsing: pure, no database writes.
"""

import pytest

from opexhub.config import _parse_stage_list
from opexhub.core.exceptions import InvalidPayloadError, NotFoundError
from opexhub.models.workflow import stage_catalog, stage_definition
from opexhub.services import workflow_engine
from opexhub.services.stage_payloads import (
    NoPayload,
    Stage4Payload,
    Stage5Payload,
    Stage10Payload,
    parse_stage_payload,
)


class TestCatalog:
    def test_eleven_stages_in_order(self):
        catalog = stage_catalog()
        assert [s.number for s in catalog] == list(range(1, 12))
        assert catalog[0].name == "Register Initiative"
        assert catalog[-1].name == "Initiative Closure"

    def test_required_roles(self):
        roles = {s.number: s.required_role for s in stage_catalog()}
        assert roles == {
            1: None, 2: "HOD", 3: "STLD", 4: "SH", 5: "IL", 6: "IL",
            7: "STLD", 8: "CTSD", 9: "IL", 10: "F&A", 11: "IL",
        }

    def test_reject_offered_at_stages_two_and_three_by_default(self):
        rejectable = [s.number for s in stage_catalog() if "reject" in s.allowed_actions]
        assert rejectable == [2, 3]

    def test_drop_offered_only_at_stage_eight(self):
        droppable = [s.number for s in stage_catalog() if "drop" in s.allowed_actions]
        assert droppable == [8]

    def test_every_stage_offers_approve(self):
        assert all("approve" in s.allowed_actions for s in stage_catalog())

    def test_reject_stages_override(self):
        assert "reject" in stage_definition(4, (2, 3, 4)).allowed_actions
        assert "reject" not in stage_definition(2, (3,)).allowed_actions

    def test_gated_stages(self):
        gated = {s.number: s.gate for s in stage_catalog() if s.has_payload_gate}
        assert gated == {
            4: "assigned_il",
            5: "moc_capex_decision",
            6: "timeline_completed",
            9: "monitoring_finalized",
            10: "fa_approval",
        }

    @pytest.mark.parametrize("number", [0, 12, -1])
    def test_out_of_range_raises_key_error(self, number):
        with pytest.raises(KeyError):
            stage_definition(number)

    def test_engine_lookup_maps_to_not_found(self):
        with pytest.raises(NotFoundError):
            workflow_engine.get_stage_definition(12)

    def test_engine_catalog_uses_configured_reject_stages(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "WORKFLOW_REJECT_STAGES", (2,))
        catalog = workflow_engine.get_stage_catalog()
        assert "reject" not in catalog[2].allowed_actions

    def test_to_dict(self):
        data = stage_definition(8).to_dict()
        assert data["stage_number"] == 8
        assert data["required_role"] == "CTSD"
        assert data["allowed_actions"] == ["approve", "drop"]
        assert data["has_payload_gate"] is False


class TestStagePayloads:
    @pytest.mark.parametrize("stage", [1, 2, 3, 6, 7, 8, 9, 11])
    def test_plain_stages_parse_to_no_payload(self, stage):
        assert parse_stage_payload(stage, None) == NoPayload(stage_number=stage)

    def test_payload_must_be_object(self):
        with pytest.raises(InvalidPayloadError):
            parse_stage_payload(4, ["assigned_user_id", 3])

    def test_stage4(self):
        assert parse_stage_payload(4, {"assigned_user_id": 7}) == Stage4Payload(assigned_user_id=7)
        assert parse_stage_payload(4, {"assigned_user_id": "7"}).assigned_user_id == 7

    @pytest.mark.parametrize("raw", [{}, {"assigned_user_id": None}, {"assigned_user_id": "abc"}, {"assigned_user_id": True}])
    def test_stage4_invalid(self, raw):
        with pytest.raises(InvalidPayloadError):
            parse_stage_payload(4, raw)

    def test_stage5_normalizes_yes_no(self):
        payload = parse_stage_payload(5, {
            "requires_moc": "yes", "moc_number": " MOC-1 ", "requires_capex": "no", "capex_number": "CPX-1",
        })
        assert payload == Stage5Payload(requires_moc="Y", requires_capex="N", moc_number="MOC-1")

    @pytest.mark.parametrize("raw", [
        {"requires_moc": "Y", "requires_capex": "N"},
        {"requires_moc": "Y", "moc_number": "  ", "requires_capex": "N"},
        {"requires_moc": "N", "requires_capex": "Y"},
        {"requires_moc": "maybe", "requires_capex": "N"},
        {"requires_capex": "N"},
        {"requires_moc": "N", "requires_capex": "N", "moc_number": 42},
    ])
    def test_stage5_invalid(self, raw):
        with pytest.raises(InvalidPayloadError):
            parse_stage_payload(5, raw)

    def test_stage10_deduplicates_ids(self):
        payload = parse_stage_payload(10, {"approved_entry_ids": [3, "3", 5], "fa_comments": "ok"})
        assert payload == Stage10Payload(approved_entry_ids=(3, 5), fa_comments="ok")
        assert payload.to_dict() == {"approved_entry_ids": [3, 5], "fa_comments": "ok"}

    def test_stage10_empty_selection_is_valid_parse(self):
        assert parse_stage_payload(10, None).approved_entry_ids == ()

    def test_stage10_ids_must_be_list(self):
        with pytest.raises(InvalidPayloadError):
            parse_stage_payload(10, {"approved_entry_ids": "3,5"})


class TestRejectStageConfig:
    def test_parse(self):
        assert _parse_stage_list("3, 2,,3") == (2, 3)

    @pytest.mark.parametrize("raw", ["1,2", "2,12"])
    def test_rejects_out_of_range(self, raw):
        with pytest.raises(RuntimeError):
            _parse_stage_list(raw)
