"""
Stage payloads: the typed, per-stage data submitted with an approve action.

Raw JSON is parsed once at the boundary into one variant per stage:

    Stage4Payload   assigned_user_id
    Stage5Payload   requires_moc / moc_number / requires_capex / capex_number
    Stage10Payload  approved_entry_ids
    NoPayload       every other stage (comment only)

Malformed fields raise InvalidPayloadError. Checks that need the database
(e.g. "is this user an active IL at the site?") are gates, not parsing, and
live in workflow_gates.
"""

from dataclasses import asdict, dataclass

from opexhub.core.exceptions import InvalidPayloadError

_YES = {"Y", "YES"}
_NO = {"N", "NO"}


@dataclass(frozen=True)
class NoPayload:
    stage_number: int

    def to_dict(self) -> dict:
        return {}


@dataclass(frozen=True)
class Stage4Payload:
    assigned_user_id: int
    stage_number: int = 4

    def to_dict(self) -> dict:
        return {"assigned_user_id": self.assigned_user_id}


@dataclass(frozen=True)
class Stage5Payload:
    requires_moc: str
    requires_capex: str
    moc_number: str | None = None
    capex_number: str | None = None
    stage_number: int = 5

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("stage_number")
        return data


@dataclass(frozen=True)
class Stage10Payload:
    approved_entry_ids: tuple[int, ...] = ()
    fa_comments: str | None = None
    stage_number: int = 10

    def to_dict(self) -> dict:
        return {"approved_entry_ids": list(self.approved_entry_ids), "fa_comments": self.fa_comments}


StagePayload = NoPayload | Stage4Payload | Stage5Payload | Stage10Payload


def _yes_no(raw: dict, field: str) -> str:
    value = raw.get(field)
    if not isinstance(value, str) or value.strip().upper() not in _YES | _NO:
        raise InvalidPayloadError(
            f"{field} must be 'Y' or 'N'",
            {"field": field, "value": value},
        )
    return "Y" if value.strip().upper() in _YES else "N"


def _optional_text(raw: dict, field: str) -> str | None:
    value = raw.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidPayloadError(f"{field} must be a string", {"field": field})
    return value.strip() or None


def _int(value, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise InvalidPayloadError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidPayloadError(f"{field} must be an integer", {"field": field, "value": value})


def _parse_stage4(raw: dict) -> Stage4Payload:
    if raw.get("assigned_user_id") in (None, ""):
        raise InvalidPayloadError(
            "assigned_user_id is required to define responsibilities",
            {"field": "assigned_user_id"},
        )
    return Stage4Payload(assigned_user_id=_int(raw["assigned_user_id"], "assigned_user_id"))


def _parse_stage5(raw: dict) -> Stage5Payload:
    requires_moc = _yes_no(raw, "requires_moc")
    requires_capex = _yes_no(raw, "requires_capex")
    moc_number = _optional_text(raw, "moc_number")
    capex_number = _optional_text(raw, "capex_number")

    if requires_moc == "Y" and not moc_number:
        raise InvalidPayloadError("MOC number is required when requires_moc is Y", {"field": "moc_number"})
    if requires_capex == "Y" and not capex_number:
        raise InvalidPayloadError("CAPEX number is required when requires_capex is Y", {"field": "capex_number"})

    return Stage5Payload(
        requires_moc=requires_moc,
        requires_capex=requires_capex,
        # a number only makes sense alongside a Y decision
        moc_number=moc_number if requires_moc == "Y" else None,
        capex_number=capex_number if requires_capex == "Y" else None,
    )


def _parse_stage10(raw: dict) -> Stage10Payload:
    ids = raw.get("approved_entry_ids") or []
    if not isinstance(ids, (list, tuple)):
        raise InvalidPayloadError("approved_entry_ids must be a list", {"field": "approved_entry_ids"})
    parsed = tuple(dict.fromkeys(_int(i, "approved_entry_ids") for i in ids))
    return Stage10Payload(approved_entry_ids=parsed, fa_comments=_optional_text(raw, "fa_comments"))


_PARSERS = {
    4: _parse_stage4,
    5: _parse_stage5,
    10: _parse_stage10,
}


def parse_stage_payload(stage_number: int, raw) -> StagePayload:
    """Parse ``raw`` (JSON object or None) into the variant for ``stage_number``."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidPayloadError("payload must be a JSON object")
    parser = _PARSERS.get(stage_number)
    if parser is None:
        return NoPayload(stage_number=stage_number)
    return parser(raw)
