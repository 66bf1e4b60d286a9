"""
User Service — accounts, credentials and profile changes.

Admin Developer accounts are created only through the CLI and can neither
be deleted nor have their role changed through the service.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from tracker.core.exceptions import ConflictError, NotFoundError, ValidationError
from tracker.models import db
from tracker.models.notification import Notification
from tracker.models.user import ROLES, Role, User, normalize_role
from tracker.services.notification import NotificationService
from tracker.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

# Roles told about profile and password changes
ACCOUNT_WATCHERS = (Role.OWNER.value, Role.GENERAL_ADMIN.value)

PROFILE_FIELDS = {
    "username": "username",
    "email": "email",
    "role": "role",
    "displayName": "display_name",
    "whatsappNumber": "whatsapp_number",
    "profilePictureUrl": "profile_picture_url",
}


def _normalize_email(email):
    if not email:
        return None
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", code="INVALID_EMAIL")


def _check_role(role, *, code="INVALID_ROLE"):
    role = normalize_role(role)
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role!r}", code=code)
    return role


def _ensure_unique(username=None, email=None, exclude_id=None):
    if username:
        q = User.query.filter(db.func.lower(User.username) == username.lower())
        if exclude_id:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise ConflictError("User", "username", username, code="USERNAME_EXISTS")
    if email:
        q = User.query.filter(db.func.lower(User.email) == email.lower())
        if exclude_id:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise ConflictError("User", "email", email, code="EMAIL_EXISTS")


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(
    username: str,
    password: str,
    role: str,
    email: str = None,
    display_name: str = None,
    whatsapp_number: str = None,
    allow_admin_developer: bool = False,
) -> User:
    """Create a user account with a bcrypt-hashed password."""
    username = (username or "").strip()
    if not username or not password:
        raise ValidationError("username and password are required", code="VALIDATION_REQUIRED")

    role = _check_role(role)
    if role == Role.ADMIN_DEVELOPER.value and not allow_admin_developer:
        raise ValidationError(
            "Admin Developer accounts cannot be created here",
            code="INVALID_ROLE_CREATION_ATTEMPT",
        )

    email = _normalize_email(email)
    _ensure_unique(username, email)

    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        email=email,
        display_name=display_name or username,
        whatsapp_number=whatsapp_number,
    )
    db.session.add(user)
    db.session.flush()
    logger.info("Created user %s (%s)", user.username, user.role)
    return user


def get_user(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def find_by_username(username: str) -> User | None:
    if not username:
        return None
    return User.query.filter(db.func.lower(User.username) == username.strip().lower()).first()


def verify_credentials(username: str, password: str) -> User | None:
    """Return the user if ``password`` matches, else None."""
    user = find_by_username(username)
    if user is None or not verify_password(password or "", user.password_hash):
        return None
    return user


def list_users_for_display() -> list[User]:
    """All users except Admin Developer accounts, by username."""
    return (
        User.query
        .filter(User.role != Role.ADMIN_DEVELOPER.value)
        .order_by(User.username.asc())
        .all()
    )


def update_profile(user_id: str, actor: dict | None = None, **fields) -> User:
    """
    Update profile fields (camelCase keys, as sent by clients).

    Role rules:
      - nobody can be promoted to Admin Developer here
      - an Admin Developer's role cannot be changed
    """
    user = get_user(user_id)
    changes = {}
    for key, attr in PROFILE_FIELDS.items():
        if key in fields:
            changes[attr] = fields[key]

    if "role" in changes:
        new_role = _check_role(changes["role"], code="INVALID_ROLE_UPDATE_ATTEMPT")
        if new_role != user.role:
            if user.role == Role.ADMIN_DEVELOPER.value:
                raise ValidationError(
                    "Admin Developer role cannot be changed",
                    code="CANNOT_CHANGE_ADMIN_DEVELOPER_ROLE",
                )
            if new_role == Role.ADMIN_DEVELOPER.value:
                raise ValidationError(
                    "Cannot assign the Admin Developer role",
                    code="INVALID_ROLE_UPDATE_ATTEMPT",
                )
        changes["role"] = new_role

    if "username" in changes:
        changes["username"] = (changes["username"] or "").strip()
        if not changes["username"]:
            raise ValidationError("username must not be empty", code="VALIDATION_REQUIRED")
    if "email" in changes:
        changes["email"] = _normalize_email(changes["email"])
    _ensure_unique(changes.get("username"), changes.get("email"), exclude_id=user.id)

    for attr, value in changes.items():
        setattr(user, attr, value)
    db.session.flush()

    actor_name = (actor or {}).get("username") or user.username
    NotificationService.notify_users_by_role(
        ACCOUNT_WATCHERS,
        f"Profil pengguna '{user.username}' telah diperbarui oleh {actor_name}.",
    )
    logger.info("Updated profile of %s: %s", user.username, sorted(changes))
    return user


def change_password(user_id: str, current_password: str | None, new_password: str,
                    *, skip_current_check: bool = False) -> User:
    """Change a password; the current one must match unless an admin resets it."""
    user = get_user(user_id)
    if not new_password:
        raise ValidationError("new password is required", code="VALIDATION_REQUIRED")
    if not skip_current_check and not verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect", code="PASSWORD_MISMATCH")
    user.password_hash = hash_password(new_password)
    db.session.flush()
    NotificationService.notify_users_by_role(
        ACCOUNT_WATCHERS,
        f"Kata sandi pengguna '{user.username}' telah diubah.",
    )
    logger.info("Password changed for %s", user.username)
    return user


def delete_user(user_id: str) -> None:
    user = get_user(user_id)
    if user.role == Role.ADMIN_DEVELOPER.value:
        raise ValidationError(
            "Admin Developer accounts cannot be deleted",
            code="CANNOT_DELETE_ADMIN_DEVELOPER",
        )
    Notification.query.filter_by(user_id=user.id).delete(synchronize_session="fetch")
    db.session.delete(user)
    db.session.flush()
    logger.info("Deleted user %s", user.username)


def update_google_tokens(user_id: str, tokens: dict) -> User:
    """Store Google OAuth tokens (``accessToken``, ``refreshToken``, ``accessTokenExpiresAt``)."""
    user = get_user(user_id)
    if "accessToken" in tokens:
        user.google_access_token = tokens["accessToken"]
    if "refreshToken" in tokens:
        user.google_refresh_token = tokens["refreshToken"]
    if "accessTokenExpiresAt" in tokens:
        user.google_token_expiry = tokens["accessTokenExpiresAt"]
    db.session.flush()
    return user
