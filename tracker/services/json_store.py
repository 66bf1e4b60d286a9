"""
JSON record store — import/export of the four collections.

Each collection is one UTF-8 file holding a JSON array:

    projects.json       project records (history + files embedded)
    users.json          user records (``password`` is a bcrypt hash)
    notifications.json  notification records
    workflows.json      workflow definitions

A missing or empty file reads as ``[]``. A corrupt file is moved aside to
``<name>.corrupt-<timestamp>`` and replaced with ``[]`` so the caller can
keep going. Writes go to a temp file in the same directory and are swapped
in with ``os.replace``.

The database stays the system of record; these files are used for backups
and for loading data written by older deployments.
"""

import json
import logging
import os
import tempfile
import time

from tracker.models import db
from tracker.models.notification import Notification
from tracker.models.project import Project
from tracker.models.user import User, normalize_role
from tracker.models.workflow import DEFAULT_WORKFLOW_ID, Workflow
from tracker.services import workflow_service
from tracker.utils.crypto import hash_password, is_password_hash
from tracker.utils.helpers import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "projects": "projects.json",
    "users": "users.json",
    "notifications": "notifications.json",
    "workflows": "workflows.json",
}


# ═══════════════════════════════════════════════════════════════
# File level
# ═══════════════════════════════════════════════════════════════

def read_collection(path: str, default=None) -> list:
    """Read a JSON array from ``path``, healing missing, empty or corrupt files."""
    if default is None:
        default = []
    try:
        with open(path, encoding="utf-8") as fh:
            raw = fh.read()
    except FileNotFoundError:
        logger.info("%s does not exist; creating it", path)
        write_collection(path, default)
        return list(default)

    if not raw.strip():
        write_collection(path, default)
        return list(default)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return _quarantine(path, default, f"invalid JSON: {e}")
    if not isinstance(data, list):
        return _quarantine(path, default, f"expected a list, got {type(data).__name__}")
    return data


def _quarantine(path, default, reason):
    backup = f"{path}.corrupt-{int(time.time() * 1000)}"
    os.replace(path, backup)
    logger.warning("%s is corrupt (%s); moved to %s and reset", path, reason, backup)
    write_collection(path, default)
    return list(default)


def write_collection(path: str, records) -> None:
    """Atomically replace ``path`` with ``records`` as pretty-printed JSON."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(list(records), fh, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


# ═══════════════════════════════════════════════════════════════
# Database ⇄ files
# ═══════════════════════════════════════════════════════════════

def export_all(directory: str) -> dict:
    """Write every collection from the database. Returns record counts."""
    rows = {
        "workflows": [w.to_dict() for w in Workflow.query.order_by(Workflow.created_at).all()],
        "users": [u.to_record() for u in User.query.order_by(User.created_at).all()],
        "projects": [p.to_dict() for p in Project.query.order_by(Project.created_at).all()],
        "notifications": [
            n.to_dict() for n in Notification.query.order_by(Notification.created_at).all()
        ],
    }
    for name, records in rows.items():
        write_collection(os.path.join(directory, COLLECTIONS[name]), records)
    counts = {name: len(records) for name, records in rows.items()}
    logger.info("Exported %s to %s", counts, directory)
    return counts


def import_all(directory: str) -> dict:
    """
    Upsert every collection from ``directory`` into the database.

    Records are matched by id. Flushes but does not commit.
    """
    counts = {"workflows": _import_workflows(_read(directory, "workflows"))}
    # Legacy project records without workflowId point at the default workflow
    workflow_service.ensure_default_workflow()
    counts.update({
        "users": _import_users(_read(directory, "users")),
        "projects": _import_projects(_read(directory, "projects")),
        "notifications": _import_notifications(_read(directory, "notifications")),
    })
    db.session.flush()
    logger.info("Imported %s from %s", counts, directory)
    return counts


def _read(directory, name):
    return read_collection(os.path.join(directory, COLLECTIONS[name]))


def _import_workflows(records):
    count = 0
    for rec in records:
        if not rec.get("id") or not isinstance(rec.get("steps"), list):
            logger.warning("Skipping workflow record without id/steps: %r", rec.get("id"))
            continue
        wf = db.session.get(Workflow, rec["id"]) or Workflow(id=rec["id"])
        wf.name = rec.get("name") or rec["id"]
        wf.description = rec.get("description") or ""
        wf.steps = rec["steps"]
        wf.created_at = parse_timestamp(rec.get("createdAt")) or wf.created_at or utcnow()
        db.session.add(wf)
        count += 1
    return count


def _import_users(records):
    count = 0
    for rec in records:
        if not rec.get("id") or not rec.get("username"):
            logger.warning("Skipping user record without id/username")
            continue
        user = db.session.get(User, rec["id"]) or User(id=rec["id"])
        password = rec.get("password") or rec.get("passwordHash") or ""
        user.username = rec["username"]
        user.role = normalize_role(rec.get("role")) or ""
        user.password_hash = password if is_password_hash(password) else hash_password(password)
        user.email = rec.get("email") or None
        user.whatsapp_number = rec.get("whatsappNumber")
        user.profile_picture_url = rec.get("profilePictureUrl")
        user.display_name = rec.get("displayName")
        user.google_access_token = rec.get("accessToken")
        user.google_refresh_token = rec.get("refreshToken")
        user.google_token_expiry = rec.get("accessTokenExpiresAt")
        user.created_at = parse_timestamp(rec.get("createdAt")) or user.created_at or utcnow()
        db.session.add(user)
        count += 1
    return count


def _import_projects(records):
    count = 0
    for rec in records:
        if not rec.get("id") or not rec.get("title") or not rec.get("status"):
            logger.warning("Skipping project record without id/title/status: %r", rec.get("id"))
            continue
        rec = dict(rec, workflowId=rec.get("workflowId") or DEFAULT_WORKFLOW_ID)
        rec["assignedDivision"] = normalize_role(rec.get("assignedDivision")) or ""
        existing = db.session.get(Project, rec["id"])
        if existing is not None:
            db.session.delete(existing)
            db.session.flush()
        db.session.add(Project.from_record(rec))
        count += 1
    return count


def _import_notifications(records):
    count = 0
    for rec in records:
        if not rec.get("id") or not rec.get("userId") or db.session.get(User, rec["userId"]) is None:
            continue
        notif = db.session.get(Notification, rec["id"]) or Notification(id=rec["id"])
        notif.user_id = rec["userId"]
        notif.project_id = rec.get("projectId")
        notif.message = rec.get("message") or ""
        notif.is_read = bool(rec.get("isRead"))
        notif.created_at = parse_timestamp(rec.get("timestamp")) or utcnow()
        db.session.add(notif)
        count += 1
    return count
