"""
Project Tracker
Project domain models.

Models:
    - Project: a client project moving through a workflow
    - ProjectHistoryEntry: append-only workflow history line
    - ProjectFile: an uploaded file, stored under the project's folder

``Project.version`` is SQLAlchemy's optimistic-lock counter: a flush that
updates a row another request has already changed raises ``StaleDataError``.
"""

from tracker.models import db
from tracker.utils.helpers import new_id, parse_timestamp, to_iso, utcnow


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("project"))
    title = db.Column(db.String(300), nullable=False)
    workflow_id = db.Column(db.String(64), db.ForeignKey("workflows.id"), nullable=False, index=True)

    status = db.Column(db.String(100), nullable=False, index=True)
    progress = db.Column(db.Integer, nullable=False, default=0)
    assigned_division = db.Column(db.String(50), default="", index=True)
    next_action = db.Column(db.String(300), nullable=True)

    schedule_details = db.Column(db.JSON, nullable=True)
    survey_details = db.Column(db.JSON, nullable=True)
    # Divisions that signed off during the parallel design stage.
    # Always reassign a new list; in-place mutation is not change-tracked.
    parallel_uploads_completed_by = db.Column(db.JSON, nullable=False, default=list)

    created_by = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    workflow = db.relationship("Workflow")
    history = db.relationship(
        "ProjectHistoryEntry", back_populates="project",
        order_by="ProjectHistoryEntry.position",
        cascade="all, delete-orphan",
    )
    files = db.relationship(
        "ProjectFile", back_populates="project",
        order_by="ProjectFile.position",
        cascade="all, delete-orphan",
    )

    # ── History / files ──────────────────────────────────────────────────

    def add_history(self, division, action, note=None, timestamp=None):
        entry = ProjectHistoryEntry(
            division=division or "",
            action=action,
            note=note or None,
            timestamp=timestamp or utcnow(),
            position=self.history[-1].position + 1 if self.history else 0,
        )
        self.history.append(entry)
        return entry

    def add_file(self, name, uploaded_by, path, uploader_role=None, timestamp=None):
        entry = ProjectFile(
            name=name,
            uploaded_by=uploaded_by,
            uploader_role=uploader_role,
            path=path,
            timestamp=timestamp or utcnow(),
            position=self.files[-1].position + 1 if self.files else 0,
        )
        self.files.append(entry)
        return entry

    # ── Serialisation ────────────────────────────────────────────────────

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "workflowId": self.workflow_id,
            "status": self.status,
            "progress": self.progress,
            "assignedDivision": self.assigned_division or "",
            "nextAction": self.next_action,
            "workflowHistory": [h.to_dict() for h in self.history],
            "files": [f.to_dict() for f in self.files],
            "scheduleDetails": self.schedule_details,
            "surveyDetails": self.survey_details,
            "parallelUploadsCompletedBy": list(self.parallel_uploads_completed_by or []),
            "createdAt": to_iso(self.created_at),
            "createdBy": self.created_by,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Project":
        """Build a Project (with history and files) from its JSON record shape."""
        project = cls(
            id=record["id"],
            title=record["title"],
            workflow_id=record.get("workflowId"),
            status=record["status"],
            progress=int(record.get("progress") or 0),
            assigned_division=record.get("assignedDivision") or "",
            next_action=record.get("nextAction"),
            schedule_details=record.get("scheduleDetails"),
            survey_details=record.get("surveyDetails"),
            parallel_uploads_completed_by=list(record.get("parallelUploadsCompletedBy") or []),
            created_by=record.get("createdBy") or "",
            created_at=parse_timestamp(record.get("createdAt")) or utcnow(),
        )
        for h in record.get("workflowHistory") or []:
            project.add_history(
                h.get("division"), h.get("action", ""), h.get("note"),
                timestamp=parse_timestamp(h.get("timestamp")),
            )
        for f in record.get("files") or []:
            project.add_file(
                f.get("name", ""), f.get("uploadedBy", ""), f.get("path", ""),
                uploader_role=f.get("uploaderRole"),
                timestamp=parse_timestamp(f.get("timestamp")),
            )
        return project

    def __repr__(self):
        return f"<Project {self.id}: {self.title[:40]} [{self.status}]>"


class ProjectHistoryEntry(db.Model):
    __tablename__ = "project_history"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.String(64), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False)
    division = db.Column(db.String(50), default="")
    action = db.Column(db.String(500), nullable=False)
    note = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow)

    project = db.relationship("Project", back_populates="history")

    def to_dict(self):
        d = {
            "division": self.division,
            "action": self.action,
            "timestamp": to_iso(self.timestamp),
        }
        if self.note:
            d["note"] = self.note
        return d


class ProjectFile(db.Model):
    __tablename__ = "project_files"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.String(64), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(300), nullable=False)
    uploaded_by = db.Column(db.String(100), default="")
    uploader_role = db.Column(db.String(50), nullable=True)
    path = db.Column(db.String(600), nullable=False, comment="Relative to PROJECT_FILES_BASE_DIR")
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow)

    project = db.relationship("Project", back_populates="files")

    def to_dict(self):
        return {
            "name": self.name,
            "uploadedBy": self.uploaded_by,
            "uploaderRole": self.uploader_role,
            "timestamp": to_iso(self.timestamp),
            "path": self.path,
        }
