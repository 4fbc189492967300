"""
Initiative: the aggregate a workflow runs over.

current_stage mirrors the stage number of the single pending
WorkflowTransaction while the initiative is open. On completion it is set
to 12; on reject / drop it stays at the stage that halted the workflow.
"""

from datetime import datetime, timezone

from opexhub.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"
STATUS_REJECTED = "Rejected"
STATUS_DROPPED = "Dropped"

VALID_STATUSES = (
    STATUS_PENDING,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_REJECTED,
    STATUS_DROPPED,
)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_REJECTED, STATUS_DROPPED})

BUDGET_TYPES = ("BUDGETED", "NON-BUDGETED")

COMPLETED_STAGE = 12


def _utcnow():
    return datetime.now(timezone.utc)


class Initiative(db.Model):
    """
    An operational-excellence initiative.

    Business rules:
    - Created by the stage-1 submission with status Pending.
    - Workflow fields (current_stage, status, MOC/CAPEX decision) are written
      only by the workflow engine.
    - Never hard-deleted.
    """

    __tablename__ = "initiatives"

    id = db.Column(db.Integer, primary_key=True)
    initiative_number = db.Column(
        db.String(30),
        unique=True,
        nullable=False,
        comment="SITE/YY/CC/DD/NNN",
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(20), nullable=True)
    site = db.Column(db.String(10), nullable=False, index=True)
    discipline = db.Column(db.String(50), nullable=False)
    budget_type = db.Column(db.String(20), nullable=True, comment="BUDGETED | NON-BUDGETED")

    expected_savings = db.Column(db.Numeric(15, 2), nullable=True)
    actual_savings = db.Column(db.Numeric(15, 2), nullable=True)
    estimated_capex = db.Column(db.Numeric(15, 2), nullable=True)
    target_value = db.Column(db.Numeric(15, 2), nullable=True)
    confidence_level = db.Column(db.Integer, nullable=True, comment="0-100")

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    baseline_data = db.Column(db.Text, nullable=True)
    target_outcome = db.Column(db.Text, nullable=True)
    assumption_1 = db.Column(db.Text, nullable=True)
    assumption_2 = db.Column(db.Text, nullable=True)
    assumption_3 = db.Column(db.Text, nullable=True)

    current_stage = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)

    # Written at stage 5 (MOC-CAPEX Evaluation)
    requires_moc = db.Column(db.String(1), nullable=True, comment="Y | N")
    moc_number = db.Column(db.String(100), nullable=True)
    requires_capex = db.Column(db.String(1), nullable=True, comment="Y | N")
    capex_number = db.Column(db.String(100), nullable=True)

    selected_hod_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="HOD picked at creation; receives the stage-2 transaction",
    )
    created_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    initiator_name = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    created_by = db.relationship("User", foreign_keys=[created_by_id])
    selected_hod = db.relationship("User", foreign_keys=[selected_hod_id])
    transactions = db.relationship(
        "WorkflowTransaction",
        back_populates="initiative",
        order_by="WorkflowTransaction.stage_number",
        lazy="select",
    )

    __table_args__ = (
        db.Index("ix_initiatives_site_status", "site", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        def _num(value):
            return float(value) if value is not None else None

        return {
            "id": self.id,
            "initiative_number": self.initiative_number,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "site": self.site,
            "discipline": self.discipline,
            "budget_type": self.budget_type,
            "expected_savings": _num(self.expected_savings),
            "actual_savings": _num(self.actual_savings),
            "estimated_capex": _num(self.estimated_capex),
            "target_value": _num(self.target_value),
            "confidence_level": self.confidence_level,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "baseline_data": self.baseline_data,
            "target_outcome": self.target_outcome,
            "assumption_1": self.assumption_1,
            "assumption_2": self.assumption_2,
            "assumption_3": self.assumption_3,
            "current_stage": self.current_stage,
            "status": self.status,
            "requires_moc": self.requires_moc,
            "moc_number": self.moc_number,
            "requires_capex": self.requires_capex,
            "capex_number": self.capex_number,
            "selected_hod_id": self.selected_hod_id,
            "created_by_id": self.created_by_id,
            "initiator_name": self.initiator_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Initiative {self.id}: {self.initiative_number} stage={self.current_stage} {self.status}>"
