"""
MonthlyMonitoringEntry: savings KPIs captured month by month at stage 9.

Lifecycle: draft → finalized (by the entry owner) → F&A approved (stage 10).
F&A may send a finalized entry back for edits, which clears both flags.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from opexhub.models import db

MONITORING_STAGE = 9
FA_STAGE = 10
DEFAULT_CATEGORY = "General"


def _utcnow():
    return datetime.now(timezone.utc)


class MonthlyMonitoringEntry(db.Model):
    __tablename__ = "monthly_monitoring_entries"

    id = db.Column(db.Integer, primary_key=True)
    initiative_id = db.Column(
        db.Integer,
        db.ForeignKey("initiatives.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    monitoring_month = db.Column(db.String(7), nullable=False, comment="YYYY-MM")
    kpi_description = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(50), nullable=False, default=DEFAULT_CATEGORY)
    target_value = db.Column(db.Numeric(15, 2), nullable=False)
    achieved_value = db.Column(db.Numeric(15, 2), nullable=True)
    deviation = db.Column(db.Numeric(15, 2), nullable=True, comment="achieved - target")
    deviation_percentage = db.Column(db.Numeric(7, 2), nullable=True, comment="deviation / target * 100")
    remarks = db.Column(db.Text, nullable=True)

    is_finalized = db.Column(db.Boolean, nullable=False, default=False)
    fa_approval = db.Column(db.Boolean, nullable=False, default=False)
    fa_comments = db.Column(db.Text, nullable=True)

    entered_by = db.Column(db.String(255), nullable=True, comment="E-mail of the owner")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_monitoring_initiative_month", "initiative_id", "monitoring_month"),
    )

    def recalculate_deviation(self) -> None:
        """Refresh deviation and deviation_percentage from target/achieved."""
        if self.achieved_value is None or self.target_value is None:
            self.deviation = None
            self.deviation_percentage = None
            return
        target = Decimal(self.target_value)
        deviation = Decimal(self.achieved_value) - target
        self.deviation = deviation
        if target != 0:
            self.deviation_percentage = (deviation / target * 100).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
        else:
            self.deviation_percentage = None

    def to_dict(self) -> dict:
        def _num(value):
            return float(value) if value is not None else None

        return {
            "id": self.id,
            "initiative_id": self.initiative_id,
            "monitoring_month": self.monitoring_month,
            "kpi_description": self.kpi_description,
            "category": self.category,
            "target_value": _num(self.target_value),
            "achieved_value": _num(self.achieved_value),
            "deviation": _num(self.deviation),
            "deviation_percentage": _num(self.deviation_percentage),
            "remarks": self.remarks,
            "is_finalized": self.is_finalized,
            "fa_approval": self.fa_approval,
            "fa_comments": self.fa_comments,
            "entered_by": self.entered_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<MonthlyMonitoringEntry {self.id}: {self.monitoring_month} finalized={self.is_finalized}>"
