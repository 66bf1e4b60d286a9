"""
Project Tracker
User model and role vocabulary.

A role string is both a user's permission class and the name of the
division a project can be assigned to.
"""

from enum import Enum

from tracker.models import db
from tracker.utils.helpers import new_id, to_iso, utcnow


class Role(str, Enum):
    OWNER = "Owner"
    GENERAL_ADMIN = "General Admin"
    ADMIN_PROYEK = "Admin Proyek"
    ARSITEK = "Arsitek"
    STRUKTUR = "Struktur"
    MEP = "MEP"
    ADMIN_DEVELOPER = "Admin Developer"


ROLES = frozenset(r.value for r in Role)

# Spellings found in older data files
ROLE_ALIASES = {
    "Admin/Akuntan": Role.GENERAL_ADMIN.value,
    "Akuntan": Role.GENERAL_ADMIN.value,
    "Admin": Role.GENERAL_ADMIN.value,
}


def normalize_role(role: str | None) -> str | None:
    """Map a legacy spelling to its canonical role; unknown values pass through."""
    if role is None:
        return None
    role = role.strip()
    return ROLE_ALIASES.get(role, role)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("usr"))
    username = db.Column(db.String(100), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(50), nullable=False, index=True)
    email = db.Column(db.String(200), unique=True, nullable=True)
    whatsapp_number = db.Column(db.String(50))
    profile_picture_url = db.Column(db.String(500))
    display_name = db.Column(db.String(200))

    # Google Calendar integration tokens (stored, not used server-side)
    google_access_token = db.Column(db.Text)
    google_refresh_token = db.Column(db.Text)
    google_token_expiry = db.Column(db.BigInteger)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Public shape; never includes the password hash or tokens."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "email": self.email,
            "whatsappNumber": self.whatsapp_number,
            "profilePictureUrl": self.profile_picture_url,
            "displayName": self.display_name or self.username,
            "createdAt": to_iso(self.created_at),
        }

    def to_record(self):
        """Full record for JSON export, including the password hash."""
        record = self.to_dict()
        record["displayName"] = self.display_name
        record["password"] = self.password_hash
        record["accessToken"] = self.google_access_token
        record["refreshToken"] = self.google_refresh_token
        record["accessTokenExpiresAt"] = self.google_token_expiry
        return record

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"
