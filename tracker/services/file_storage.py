"""
Project file storage on local disk.

Layout:
    {PROJECT_FILES_BASE_DIR}/{projectId}-{sanitizedTitle}/{sanitizedFileName}

Paths stored on ProjectFile rows are relative to PROJECT_FILES_BASE_DIR and
always use forward slashes.

Files and folders written while handling a request are remembered on
``g`` until the request commits; ``discard_saved`` removes them when the
request fails instead.
"""

import logging
import os
import re
import shutil

from flask import current_app, g, has_app_context
from werkzeug.utils import secure_filename

from tracker.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._ -]")
_SPACES = re.compile(r"\s+")
MAX_FOLDER_TITLE = 100


def base_dir() -> str:
    return current_app.config["PROJECT_FILES_BASE_DIR"]


def sanitize_for_path(text: str) -> str:
    """Make ``text`` safe as a single path segment."""
    cleaned = _UNSAFE.sub("_", text or "")
    cleaned = _SPACES.sub("_", cleaned.strip())
    cleaned = cleaned.strip(".")
    return cleaned[:MAX_FOLDER_TITLE] or "untitled"


def project_folder_name(project_id: str, title: str) -> str:
    return f"{project_id}-{sanitize_for_path(title)}"


def resolve(relpath: str) -> str:
    """Absolute path for ``relpath``; refuses anything outside the base dir."""
    root = os.path.realpath(base_dir())
    full = os.path.realpath(os.path.join(root, relpath))
    if full != root and not full.startswith(root + os.sep):
        raise ValidationError(f"Path escapes storage root: {relpath!r}", code="INVALID_PATH")
    return full


# ── Uncommitted writes ───────────────────────────────────────────────────────

def _remember(relpath: str) -> None:
    if has_app_context():
        g.setdefault("saved_paths", []).append(relpath)


def forget_saved() -> None:
    """Drop the list of pending writes; called once the request has committed."""
    if has_app_context():
        g.pop("saved_paths", None)


def discard_saved() -> int:
    """Remove files and folders written since the last commit. Returns the count removed."""
    if not has_app_context():
        return 0
    pending = g.pop("saved_paths", None) or []
    removed = 0
    for relpath in reversed(pending):
        full = resolve(relpath)
        if os.path.isdir(full):
            shutil.rmtree(full, ignore_errors=True)
            removed += 1
        elif os.path.exists(full):
            os.remove(full)
            removed += 1
    if removed:
        logger.warning("Removed %d uncommitted upload(s)", removed)
    return removed


# ── Writes ──────────────────────────────────────────────────────────────────

def ensure_project_folder(project_id: str, title: str) -> str:
    """Create the project's folder if needed; returns its relative name."""
    folder = project_folder_name(project_id, title)
    full = resolve(folder)
    if not os.path.isdir(full):
        os.makedirs(full, exist_ok=True)
        _remember(folder)
    return folder


def _free_name(folder: str, safe: str) -> str:
    """``safe`` or, when taken, ``stem_1.ext``, ``stem_2.ext``, ..."""
    stem, ext = os.path.splitext(safe)
    candidate, n = safe, 0
    while os.path.exists(resolve(f"{folder}/{candidate}")):
        n += 1
        candidate = f"{stem}_{n}{ext}"
    return candidate


def save_upload(project_id: str, title: str, storage) -> tuple[str, str]:
    """
    Write a werkzeug ``FileStorage`` into the project's folder.

    A name already present in the folder gets a numeric suffix on disk;
    the returned original name is unchanged.

    Returns:
        (original_name, relative_path)
    """
    original = storage.filename or ""
    safe = secure_filename(original)
    if not safe:
        raise ValidationError(f"Invalid file name: {original!r}", code="INVALID_FILE_NAME")
    folder = ensure_project_folder(project_id, title)
    relpath = f"{folder}/{_free_name(folder, safe)}"
    storage.save(resolve(relpath))
    _remember(relpath)
    logger.info("Saved %s for project %s", relpath, project_id)
    return original, relpath


def rename_project_folder(project_id: str, old_title: str, new_title: str) -> tuple[str, str]:
    """Move the project folder to match ``new_title``; returns (old, new) folder names."""
    old_folder = project_folder_name(project_id, old_title)
    new_folder = project_folder_name(project_id, new_title)
    if old_folder == new_folder:
        return old_folder, new_folder
    old_path, new_path = resolve(old_folder), resolve(new_folder)
    if os.path.isdir(old_path):
        os.replace(old_path, new_path)
    else:
        os.makedirs(new_path, exist_ok=True)
    logger.info("Renamed project folder %s -> %s", old_folder, new_folder)
    return old_folder, new_folder


def delete_file(relpath: str) -> bool:
    """Remove a stored file. Returns False if it was already gone."""
    full = resolve(relpath)
    try:
        os.remove(full)
        return True
    except FileNotFoundError:
        logger.warning("File already missing on disk: %s", relpath)
        return False


def delete_project_folder(project_id: str, title: str) -> None:
    folder = resolve(project_folder_name(project_id, title))
    shutil.rmtree(folder, ignore_errors=True)
