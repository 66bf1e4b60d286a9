"""Shared helpers for blueprints and services.

new_id:              prefixed opaque ids (project_, usr_, wf_, notif_)
utcnow / to_iso / parse_timestamp:  timestamp handling shared by models and JSON export
db_commit_or_error:  one commit per request, mapped to api_error on failure
"""
import logging
import secrets
import time
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from tracker.models import db
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    """Return ``<prefix>_<epoch ms>_<random>``, e.g. ``project_1717000000000_a1b2c3``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value):
    """Serialise a datetime as ISO-8601 in UTC.

    SQLite hands back naive datetimes even for timezone-aware columns; those
    are treated as UTC so export → import → export is stable.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value):
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError  → 409 (duplicate / constraint violation)
    StaleDataError  → 409 (project changed by another request)
    OperationalError → 500 (connection / lock issues)
    Other → 500 (unexpected)

    Uploads written during the request are removed on any failure.
    """
    from tracker.services import file_storage

    try:
        db.session.commit()
        file_storage.forget_saved()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        file_storage.discard_saved()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except StaleDataError:
        db.session.rollback()
        file_storage.discard_saved()
        logger.warning("Stale write rejected on commit")
        return api_error(
            E.CONFLICT_STALE,
            "Record was modified by another request; reload and try again",
        )
    except OperationalError:
        db.session.rollback()
        file_storage.discard_saved()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")
    except Exception:
        db.session.rollback()
        file_storage.discard_saved()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")
