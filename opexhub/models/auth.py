"""
Auth Models: the user directory consulted by the workflow engine.

Authentication itself (passwords, sessions, tokens) lives outside this
service; a row here only records who a user is, where they work and which
workflow role they hold.
"""

from datetime import datetime, timezone

from opexhub.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

SITES = ("NDS", "HSD1", "HSD2", "HSD3", "DHJ", "APL", "TCD")

DISCIPLINES = (
    "Operation",
    "Engineering & Utility",
    "Environment",
    "Safety",
    "Quality",
    "Others",
)

# Role code → display name
ROLES = {
    "IL": "Initiative Lead",
    "STLD": "Site TSD Lead",
    "HOD": "Head of Department",
    "EH": "Engineering Head",
    "SH": "Site Head",
    "CTSD": "Corporate TSD",
    "F&A": "Finance & Accounts",
    "VIEWER": "Viewer",
    "ADMIN": "Administrator",
}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(200), nullable=False)
    site = db.Column(db.String(10), nullable=False, comment="NDS | HSD1 | HSD2 | HSD3 | DHJ | APL | TCD")
    discipline = db.Column(db.String(50), nullable=True)
    role = db.Column(db.String(10), nullable=False, comment="IL | STLD | HOD | EH | SH | CTSD | F&A | VIEWER | ADMIN")
    role_name = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_site_role", "site", "role"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "site": self.site,
            "discipline": self.discipline,
            "role": self.role,
            "role_name": self.role_name or ROLES.get(self.role),
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role}@{self.site})>"
