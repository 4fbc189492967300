"""
Workflow: the stage catalog and the per-stage WorkflowTransaction record.

One WorkflowTransaction row exists per (initiative, stage) that the workflow
has reached. Stages below the initiative's current_stage are terminal, the
current stage is pending, later stages have no row yet.

StageApprover is the per-site approver directory consulted when a stage opens.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from opexhub.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

APPROVE_PENDING = "pending"
APPROVE_APPROVED = "approved"
APPROVE_REJECTED = "rejected"
APPROVE_DROPPED = "dropped"

VALID_APPROVE_STATUSES = (APPROVE_PENDING, APPROVE_APPROVED, APPROVE_REJECTED, APPROVE_DROPPED)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_DROP = "drop"

VALID_ACTIONS = (ACTION_APPROVE, ACTION_REJECT, ACTION_DROP)

# action → resulting approve_status
ACTION_RESULT = {
    ACTION_APPROVE: APPROVE_APPROVED,
    ACTION_REJECT: APPROVE_REJECTED,
    ACTION_DROP: APPROVE_DROPPED,
}

FIRST_STAGE = 1
LAST_STAGE = 11
DROP_STAGES = frozenset({8})
DEFAULT_REJECT_STAGES = (2, 3)

# Stages whose assignee is the Initiative Lead picked at stage 4
IL_ASSIGNED_STAGES = frozenset({5, 6, 9, 11})

# Role-based fallback when pending_with is not an individual
ROLE_STAGE_MAP = {
    "HOD": frozenset({2}),
    "STLD": frozenset({3, 7}),
    "SH": frozenset({4}),
    "CTSD": frozenset({8}),
    "IL": frozenset({5, 6, 9, 11}),
    "F&A": frozenset({10}),
}

# Gate identifiers reported in ValidationGateFailedError.gate
GATE_ASSIGNED_IL = "assigned_il"
GATE_MOC_CAPEX = "moc_capex_decision"
GATE_TIMELINE_COMPLETED = "timeline_completed"
GATE_MONITORING_FINALIZED = "monitoring_finalized"
GATE_FA_APPROVAL = "fa_approval"

# (number, name, required role, gate)
_STAGES = (
    (1, "Register Initiative", None, None),
    (2, "Evaluation and Approval", "HOD", None),
    (3, "Initiative assessment and approval", "STLD", None),
    (4, "Define Responsibilities", "SH", GATE_ASSIGNED_IL),
    (5, "MOC-CAPEX Evaluation", "IL", GATE_MOC_CAPEX),
    (6, "Initiative Timeline Tracker", "IL", GATE_TIMELINE_COMPLETED),
    # TODO: confirm with product whether stage 7 needs its own progress payload
    (7, "Progress monitoring", "STLD", None),
    (8, "Periodic Status Review with CMO", "CTSD", None),
    (9, "Savings Monitoring (Monthly)", "IL", GATE_MONITORING_FINALIZED),
    (10, "F&A validation", "F&A", GATE_FA_APPROVAL),
    (11, "Initiative Closure", "IL", None),
)


@dataclass(frozen=True)
class StageDefinition:
    number: int
    name: str
    required_role: str | None
    gate: str | None
    allowed_actions: tuple[str, ...]

    @property
    def has_payload_gate(self) -> bool:
        return self.gate is not None

    def to_dict(self) -> dict:
        return {
            "stage_number": self.number,
            "stage_name": self.name,
            "required_role": self.required_role,
            "gate": self.gate,
            "has_payload_gate": self.has_payload_gate,
            "allowed_actions": list(self.allowed_actions),
        }


def stage_definition(number: int, reject_stages=DEFAULT_REJECT_STAGES) -> StageDefinition:
    """Return the catalog entry for ``number``.

    ``reject_stages`` is the configured set of stages that offer "reject"
    (``WORKFLOW_REJECT_STAGES``). Raises KeyError for numbers outside 1..11.
    """
    if not FIRST_STAGE <= number <= LAST_STAGE:
        raise KeyError(number)
    num, name, role, gate = _STAGES[number - 1]
    actions = [ACTION_APPROVE]
    if num in reject_stages:
        actions.append(ACTION_REJECT)
    if num in DROP_STAGES:
        actions.append(ACTION_DROP)
    return StageDefinition(num, name, role, gate, tuple(actions))


def stage_catalog(reject_stages=DEFAULT_REJECT_STAGES) -> list[StageDefinition]:
    return [stage_definition(n, reject_stages) for n in range(FIRST_STAGE, LAST_STAGE + 1)]


def _utcnow():
    return datetime.now(timezone.utc)


class WorkflowTransaction(db.Model):
    """
    One stage of one initiative's workflow.

    Business rules:
    - Unique per (initiative_id, stage_number); created exactly once.
    - Leaves ``pending`` only through the compare-and-set finalize in
      transaction_store; terminal rows are never changed again.
    - pending_with is either an e-mail (individual assignment) or a role
      code (role-derived assignment) or NULL.
    """

    __tablename__ = "workflow_transactions"

    id = db.Column(db.Integer, primary_key=True)
    initiative_id = db.Column(
        db.Integer,
        db.ForeignKey("initiatives.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_number = db.Column(db.Integer, nullable=False)
    stage_name = db.Column(db.String(100), nullable=False)
    site = db.Column(db.String(10), nullable=False)
    required_role = db.Column(db.String(10), nullable=True)

    approve_status = db.Column(
        db.String(10),
        nullable=False,
        default=APPROVE_PENDING,
        comment="pending | approved | rejected | dropped",
    )
    pending_with = db.Column(
        db.String(255),
        nullable=True,
        comment="Assignee e-mail, or a role code when no individual could be resolved",
    )

    action_by = db.Column(db.String(255), nullable=True, comment="E-mail of the actor who finalized the stage")
    action_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    action_date = db.Column(db.DateTime(timezone=True), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    action_payload = db.Column(db.JSON, nullable=True, comment="Echo of the stage payload accepted on approve")

    # Stage 4
    assigned_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Initiative Lead picked at stage 4",
    )

    # Stage 5
    requires_moc = db.Column(db.String(1), nullable=True)
    moc_number = db.Column(db.String(100), nullable=True)
    requires_capex = db.Column(db.String(1), nullable=True)
    capex_number = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    initiative = db.relationship("Initiative", back_populates="transactions")
    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])

    __table_args__ = (
        db.UniqueConstraint("initiative_id", "stage_number", name="uq_wf_txn_initiative_stage"),
        db.Index("ix_wf_txn_status_pending_with", "approve_status", "pending_with"),
        db.Index("ix_wf_txn_site_status", "site", "approve_status"),
    )

    @property
    def is_pending(self) -> bool:
        return self.approve_status == APPROVE_PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "initiative_id": self.initiative_id,
            "stage_number": self.stage_number,
            "stage_name": self.stage_name,
            "site": self.site,
            "required_role": self.required_role,
            "approve_status": self.approve_status,
            "pending_with": self.pending_with,
            "action_by": self.action_by,
            "action_by_id": self.action_by_id,
            "action_date": self.action_date.isoformat() if self.action_date else None,
            "comment": self.comment,
            "action_payload": self.action_payload,
            "assigned_user_id": self.assigned_user_id,
            "requires_moc": self.requires_moc,
            "moc_number": self.moc_number,
            "requires_capex": self.requires_capex,
            "capex_number": self.capex_number,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<WorkflowTransaction {self.id}: initiative={self.initiative_id} stage={self.stage_number} {self.approve_status}>"


class StageApprover(db.Model):
    """
    Configured approver for one stage at one site.

    When a stage opens, an active row here names who it is pending with,
    ahead of the "first active user with the role" lookup. Rows are never
    deleted; switching an approver off sets is_active = False.
    """

    __tablename__ = "stage_approvers"

    id = db.Column(db.Integer, primary_key=True)
    site = db.Column(db.String(10), nullable=False)
    stage_number = db.Column(db.Integer, nullable=False)
    role_code = db.Column(db.String(10), nullable=False, comment="Role the stage requires, e.g. HOD, STLD")
    user_email = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("site", "stage_number", name="uq_stage_approver_site_stage"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site": self.site,
            "stage_number": self.stage_number,
            "stage_name": stage_definition(self.stage_number).name,
            "role_code": self.role_code,
            "user_email": self.user_email,
            "is_active": self.is_active,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<StageApprover {self.site} stage={self.stage_number} {self.user_email}>"
