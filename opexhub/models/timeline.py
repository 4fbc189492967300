"""
TimelineEntry: implementation activities tracked at stage 6.

Stage 6 cannot be approved until every entry is COMPLETED. Entries are
editable until stage 6 itself is approved.
"""

from datetime import date, datetime, timezone

from opexhub.models import db

STATUS_PENDING = "PENDING"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
STATUS_DELAYED = "DELAYED"

VALID_TIMELINE_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_DELAYED)

TIMELINE_STAGE = 6


def _utcnow():
    return datetime.now(timezone.utc)


class TimelineEntry(db.Model):
    __tablename__ = "timeline_entries"

    id = db.Column(db.Integer, primary_key=True)
    initiative_id = db.Column(
        db.Integer,
        db.ForeignKey("initiatives.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_name = db.Column(db.String(255), nullable=False, comment="Activity name")
    planned_start_date = db.Column(db.Date, nullable=False)
    planned_end_date = db.Column(db.Date, nullable=False)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_PENDING,
        comment="PENDING | IN_PROGRESS | COMPLETED | DELAYED",
    )
    responsible_person = db.Column(db.String(200), nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    site_lead_approval = db.Column(db.Boolean, nullable=False, default=False)
    initiative_lead_approval = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(255), nullable=True, comment="E-mail of the creating actor")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def derive_status(self, today: date | None = None) -> str:
        """Status implied by the entry's dates.

        DELAYED is sticky once set; the caller decides whether to apply it.
        """
        if self.status == STATUS_DELAYED:
            return STATUS_DELAYED
        today = today or date.today()
        if self.actual_end_date is not None:
            return STATUS_COMPLETED
        started = self.actual_start_date is not None or (
            self.planned_start_date is not None and self.planned_start_date <= today
        )
        if started:
            if self.planned_end_date is not None and today > self.planned_end_date:
                return STATUS_DELAYED
            return STATUS_IN_PROGRESS
        return STATUS_PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "initiative_id": self.initiative_id,
            "stage_name": self.stage_name,
            "planned_start_date": self.planned_start_date.isoformat() if self.planned_start_date else None,
            "planned_end_date": self.planned_end_date.isoformat() if self.planned_end_date else None,
            "actual_start_date": self.actual_start_date.isoformat() if self.actual_start_date else None,
            "actual_end_date": self.actual_end_date.isoformat() if self.actual_end_date else None,
            "status": self.status,
            "responsible_person": self.responsible_person,
            "remarks": self.remarks,
            "site_lead_approval": self.site_lead_approval,
            "initiative_lead_approval": self.initiative_lead_approval,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TimelineEntry {self.id}: {self.stage_name} {self.status}>"
