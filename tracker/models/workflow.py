"""
Project Tracker
Workflow definitions — statuses, actions and the stored step tables.

A workflow is data, not code: an ordered list of steps, each naming the
status/division/progress a project sits at and the transitions leaving it.
Tables are checked by ``tracker.services.workflow_engine.validate_workflow``
at startup and on every write.

Step shape (camelCase, identical to the JSON export)::

    {
        "stepName": "Offer Approval",
        "status": "Pending Approval",
        "assignedDivision": "Owner",
        "progress": 20,
        "nextActionDescription": "...",
        "transitions": {"approved": {...}, "rejected": {...}} | None,
        "revision": {"action": "revise_offer", "targetStatus": ..., ...},  # optional
        "inStepActions": ["mark_division_complete"],                        # optional
    }
"""

import copy
from enum import Enum

from tracker.models import db
from tracker.models.user import Role
from tracker.utils.helpers import to_iso, utcnow


class ProjectStatus(str, Enum):
    PENDING_OFFER = "Pending Offer"
    PENDING_APPROVAL = "Pending Approval"
    PENDING_DP_INVOICE = "Pending DP Invoice"
    PENDING_ADMIN_FILES = "Pending Admin Files"
    PENDING_SURVEY_DETAILS = "Pending Survey Details"
    PENDING_PARALLEL_DESIGN_UPLOADS = "Pending Parallel Design Uploads"
    PENDING_SCHEDULING = "Pending Scheduling"
    SCHEDULED = "Scheduled"
    PENDING_POST_SIDANG_REVISION = "Pending Post-Sidang Revision"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


TERMINAL_STATUSES = frozenset({ProjectStatus.COMPLETED.value, ProjectStatus.CANCELED.value})


class WorkflowAction(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED_AFTER_SIDANG = "canceled_after_sidang"
    REVISE = "revise"
    REVISE_OFFER = "revise_offer"
    REVISE_DP = "revise_dp"
    REVISE_AFTER_SIDANG = "revise_after_sidang"
    ALL_FILES_CONFIRMED = "all_files_confirmed"
    REVISION_COMPLETED_AND_FINISH = "revision_completed_and_finish"
    ARCHITECT_UPLOADED_INITIAL_IMAGES_FOR_STRUKTUR = "architect_uploaded_initial_images_for_struktur"
    MARK_DIVISION_COMPLETE = "mark_division_complete"


ACTIONS = frozenset(a.value for a in WorkflowAction)
REVISION_ACTIONS = frozenset({
    WorkflowAction.REVISE.value,
    WorkflowAction.REVISE_OFFER.value,
    WorkflowAction.REVISE_DP.value,
    WorkflowAction.REVISE_AFTER_SIDANG.value,
})
IN_STEP_ACTIONS = frozenset({
    WorkflowAction.ARCHITECT_UPLOADED_INITIAL_IMAGES_FOR_STRUKTUR.value,
    WorkflowAction.MARK_DIVISION_COMPLETE.value,
})

# Divisions that upload concurrently during the parallel design stage
PARALLEL_DIVISIONS = (Role.ARSITEK.value, Role.STRUKTUR.value, Role.MEP.value)

DEFAULT_WORKFLOW_ID = "default_standard_workflow"


def _target(status, division, progress, next_action, notify=None, message=None):
    entry = {
        "targetStatus": status.value,
        "targetAssignedDivision": division.value if division else "",
        "targetNextActionDescription": next_action,
        "targetProgress": progress,
    }
    if message:
        entry["notification"] = {
            "division": notify if notify is not None else entry["targetAssignedDivision"],
            "message": message,
        }
    return entry


def _step(name, status, division, progress, next_action, transitions=None,
          revision=None, in_step_actions=None):
    step = {
        "stepName": name,
        "status": status.value,
        "assignedDivision": division.value if division else "",
        "progress": progress,
        "nextActionDescription": next_action,
        "transitions": transitions,
    }
    if revision:
        step["revision"] = revision
    if in_step_actions:
        step["inStepActions"] = list(in_step_actions)
    return step


S = ProjectStatus
A = WorkflowAction

DEFAULT_WORKFLOW_STEPS = [
    _step("Offer Submission", S.PENDING_OFFER, Role.ADMIN_PROYEK, 10,
          "Unggah Dokumen Penawaran", {
              A.SUBMITTED.value: _target(
                  S.PENDING_APPROVAL, Role.OWNER, 20, "Tinjau Dokumen Penawaran",
                  message="Penawaran untuk proyek '{projectName}' telah diajukan oleh "
                          "{actorUsername} dan menunggu persetujuan Anda."),
          }),
    _step("Offer Approval", S.PENDING_APPROVAL, Role.OWNER, 20,
          "Tinjau Dokumen Penawaran", {
              A.APPROVED.value: _target(
                  S.PENDING_DP_INVOICE, Role.GENERAL_ADMIN, 25, "Buat Faktur DP",
                  message="Penawaran untuk proyek '{projectName}' telah disetujui. Mohon buat faktur DP."),
              A.REJECTED.value: _target(S.CANCELED, None, 20, None),
          },
          revision={"action": A.REVISE_OFFER.value, **_target(
              S.PENDING_OFFER, Role.ADMIN_PROYEK, 15, "Revisi Dokumen Penawaran",
              message="Penawaran untuk proyek '{projectName}' perlu direvisi. {reasonNote}")}),
    _step("DP Invoice Submission", S.PENDING_DP_INVOICE, Role.GENERAL_ADMIN, 25,
          "Unggah Faktur DP", {
              A.SUBMITTED.value: _target(
                  S.PENDING_APPROVAL, Role.OWNER, 30, "Tinjau Faktur DP",
                  message="Faktur DP untuk proyek '{projectName}' telah diajukan dan menunggu persetujuan Anda."),
          }),
    _step("DP Invoice Approval", S.PENDING_APPROVAL, Role.OWNER, 30,
          "Tinjau Faktur DP", {
              A.APPROVED.value: _target(
                  S.PENDING_ADMIN_FILES, Role.ADMIN_PROYEK, 40, "Unggah Berkas Administrasi",
                  message="Faktur DP untuk proyek '{projectName}' telah disetujui. Mohon unggah berkas administrasi."),
              A.REJECTED.value: _target(
                  S.PENDING_DP_INVOICE, Role.GENERAL_ADMIN, 25, "Revisi Faktur DP",
                  message="Faktur DP untuk proyek '{projectName}' ditolak oleh Owner. Mohon direvisi."),
          },
          revision={"action": A.REVISE_DP.value, **_target(
              S.PENDING_DP_INVOICE, Role.GENERAL_ADMIN, 25, "Revisi Faktur DP",
              message="Faktur DP untuk proyek '{projectName}' perlu direvisi. {reasonNote}")}),
    _step("Admin Files Upload", S.PENDING_ADMIN_FILES, Role.ADMIN_PROYEK, 40,
          "Unggah Berkas Administrasi", {
              A.SUBMITTED.value: _target(
                  S.PENDING_SURVEY_DETAILS, Role.ADMIN_PROYEK, 45, "Isi Jadwal Survei",
                  message="Berkas administrasi untuk '{projectName}' lengkap. Mohon isi jadwal survei."),
          }),
    _step("Survey Details", S.PENDING_SURVEY_DETAILS, Role.ADMIN_PROYEK, 45,
          "Isi Jadwal Survei", {
              A.SUBMITTED.value: _target(
                  S.PENDING_PARALLEL_DESIGN_UPLOADS, Role.ADMIN_PROYEK, 50,
                  "Unggah Berkas Desain (Arsitek, Struktur, MEP)",
                  notify=list(PARALLEL_DIVISIONS),
                  message="Survei untuk proyek '{projectName}' telah dijadwalkan. "
                          "Mohon unggah berkas desain divisi Anda."),
          }),
    _step("Parallel Design Uploads", S.PENDING_PARALLEL_DESIGN_UPLOADS, Role.ADMIN_PROYEK, 50,
          "Unggah Berkas Desain (Arsitek, Struktur, MEP)", {
              A.ALL_FILES_CONFIRMED.value: _target(
                  S.PENDING_SCHEDULING, Role.ADMIN_PROYEK, 90, "Jadwalkan Sidang",
                  message="Semua berkas teknis untuk '{projectName}' lengkap. Mohon jadwalkan sidang."),
          },
          in_step_actions=[A.ARCHITECT_UPLOADED_INITIAL_IMAGES_FOR_STRUKTUR.value,
                           A.MARK_DIVISION_COMPLETE.value]),
    _step("Sidang Scheduling", S.PENDING_SCHEDULING, Role.ADMIN_PROYEK, 90,
          "Jadwalkan Sidang", {
              A.SCHEDULED.value: _target(
                  S.SCHEDULED, Role.OWNER, 95, "Nyatakan Hasil Sidang",
                  message="Sidang untuk proyek '{projectName}' telah dijadwalkan. "
                          "Mohon nyatakan hasilnya setelah selesai."),
          }),
    _step("Sidang Outcome", S.SCHEDULED, Role.OWNER, 95,
          "Nyatakan Hasil Sidang", {
              A.COMPLETED.value: _target(S.COMPLETED, None, 100, None),
              A.CANCELED_AFTER_SIDANG.value: _target(S.CANCELED, None, 95, None),
          },
          revision={"action": A.REVISE_AFTER_SIDANG.value, **_target(
              S.PENDING_POST_SIDANG_REVISION, Role.ADMIN_PROYEK, 85, "Selesaikan Revisi Pasca Sidang",
              notify=[Role.ADMIN_PROYEK.value, *PARALLEL_DIVISIONS],
              message="Proyek '{projectName}' memerlukan revisi setelah sidang. "
                      "Mohon perbarui berkas yang diperlukan. {reasonNote}")}),
    _step("Post-Sidang Revision", S.PENDING_POST_SIDANG_REVISION, Role.ADMIN_PROYEK, 85,
          "Selesaikan Revisi Pasca Sidang", {
              A.REVISION_COMPLETED_AND_FINISH.value: _target(S.COMPLETED, None, 100, None),
          }),
    _step("Completed", S.COMPLETED, None, 100, "Proyek Selesai"),
    _step("Canceled", S.CANCELED, None, 0, "Proyek Dibatalkan"),
]

del S, A

DEFAULT_WORKFLOW = {
    "id": DEFAULT_WORKFLOW_ID,
    "name": "Standard Project Workflow",
    "description": "Alur kerja standar untuk proyek arsitektur dan konstruksi.",
    "steps": DEFAULT_WORKFLOW_STEPS,
}


def default_steps():
    """Deep copy of the default step table, safe to mutate."""
    return copy.deepcopy(DEFAULT_WORKFLOW_STEPS)


class Workflow(db.Model):
    """Stored workflow definition."""

    __tablename__ = "workflows"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    steps = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def is_default(self):
        return self.id == DEFAULT_WORKFLOW_ID

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "steps": self.steps or [],
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name}>"
