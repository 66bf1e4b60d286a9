"""
Project service tests — lifecycle on top of the workflow engine.

Tests cover:
  - project creation (first step, folder, history, notification)
  - forward actions, revisions and their guards
  - parallel design stage sign-off
  - double submission behaviour (regression)
  - title change, manual status override, file and project deletion
  - same-name re-uploads and stale concurrent writes
  - role-filtered listing
"""

import io
import os

import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.datastructures import FileStorage

from tracker.core.exceptions import (
    NotFoundError,
    PermissionDenied,
    TransitionError,
    ValidationError,
)
from tracker.models import db
from tracker.models.notification import Notification
from tracker.services import file_storage, project_service
from tracker.services.parallel_uploads import REQUIRED_PARALLEL_DOCUMENTS

SURVEY = {"date": "2024-07-01", "time": "09:00", "description": "Lokasi proyek"}
SIDANG = {"date": "2024-08-01", "time": "10:00", "location": "Kantor Pusat"}


def _upload(filename, content=b"%PDF-1.4 test"):
    return FileStorage(stream=io.BytesIO(content), filename=filename)


def _create(actor, title="Rumah Tinggal A", uploads=()):
    project = project_service.create_project(title, actor("Admin Proyek"), uploads=list(uploads))
    db.session.commit()
    return project


def _act(project, actor, role, action, **kwargs):
    result = project_service.apply_action(project.id, actor(role), action, **kwargs)
    db.session.commit()
    return result


def _to_parallel(actor):
    project = _create(actor)
    _act(project, actor, "Admin Proyek", "submitted", uploads=[_upload("Penawaran.pdf")])
    _act(project, actor, "Owner", "approved")
    _act(project, actor, "General Admin", "submitted", uploads=[_upload("Faktur DP.pdf")])
    _act(project, actor, "Owner", "approved")
    _act(project, actor, "Admin Proyek", "submitted", uploads=[_upload("Berkas Admin.pdf")])
    _act(project, actor, "Admin Proyek", "submitted", survey_details=SURVEY)
    assert project.status == "Pending Parallel Design Uploads"
    return project


def _jump(project, actor, status, progress, division, next_action=None):
    project_service.manual_status_update(
        project.id, actor("Owner"), status=status, assigned_division=division,
        next_action=next_action, progress=progress, reason="test setup",
    )
    db.session.commit()
    return project


def _upload_required(project, actor, division):
    uploads = [_upload(f"{doc}.pdf") for doc in REQUIRED_PARALLEL_DOCUMENTS[division]]
    project_service.add_files(project.id, actor(division), uploads)
    db.session.commit()


def _notifications(project_id):
    return Notification.query.filter_by(project_id=project_id).count()


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════

class TestCreateProject:
    def test_starts_at_first_step(self, actor):
        project = _create(actor, uploads=[_upload("Brief.pdf")])
        assert project.id.startswith("project_")
        assert (project.status, project.progress, project.assigned_division) == (
            "Pending Offer", 10, "Admin Proyek",
        )
        assert project.workflow_id == "default_standard_workflow"
        assert project.created_by == "admin_proyek"

    def test_history_and_files(self, actor):
        project = _create(actor, uploads=[_upload("Brief.pdf")])
        actions = [h.action for h in project.history]
        assert actions == [
            "Created Project with workflow: Standard Project Workflow",
            "Uploaded initial file: Brief.pdf",
            "Assigned to Admin Proyek",
        ]
        assert project.history[-1].division == "System"
        assert len(project.files) == 1
        entry = project.files[0]
        assert entry.uploaded_by == "admin_proyek"
        assert entry.uploader_role == "Admin Proyek"
        assert entry.path == f"{project.id}-Rumah_Tinggal_A/Brief.pdf"
        assert os.path.isfile(file_storage.resolve(entry.path))

    def test_notifies_first_division(self, actor, users):
        project = _create(actor)
        notes = Notification.query.filter_by(project_id=project.id).all()
        assert [n.user_id for n in notes] == [users["Admin Proyek"].id]

    def test_title_required(self, actor):
        with pytest.raises(ValidationError):
            project_service.create_project("  ", actor("Admin Proyek"))

    def test_unknown_workflow(self, actor):
        with pytest.raises(NotFoundError) as exc:
            project_service.create_project("X", actor("Admin Proyek"), workflow_id="wf_missing")
        assert exc.value.code == "WORKFLOW_NOT_FOUND"

    def test_too_many_files(self, actor, app):
        limit = app.config["MAX_FILES_PER_UPLOAD"]
        uploads = [_upload(f"f{i}.pdf") for i in range(limit + 1)]
        with pytest.raises(ValidationError) as exc:
            project_service.create_project("X", actor("Admin Proyek"), uploads=uploads)
        assert exc.value.code == "TOO_MANY_FILES"


# ═══════════════════════════════════════════════════════════════
# Workflow actions
# ═══════════════════════════════════════════════════════════════

class TestApplyAction:
    def test_offer_submission_scenario(self, actor, users):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted", uploads=[_upload("Penawaran.pdf")])
        assert (project.status, project.progress, project.assigned_division) == (
            "Pending Approval", 20, "Owner",
        )
        assert project.history[-1].action == "Submitted: Penawaran.pdf"
        owner_notes = Notification.query.filter_by(
            project_id=project.id, user_id=users["Owner"].id,
        ).count()
        assert owner_notes == 1

    def test_offer_revision_scenario(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted")
        _act(project, actor, "Owner", "revise_offer", note="Harga terlalu tinggi")
        assert (project.status, project.progress, project.assigned_division) == (
            "Pending Offer", 15, "Admin Proyek",
        )
        last = project.history[-1]
        assert last.action == "Requested Revision"
        assert last.note == "Harga terlalu tinggi (Pending Approval to Pending Offer)"

    def test_wrong_role_denied(self, actor):
        project = _create(actor)
        with pytest.raises(PermissionDenied):
            project_service.apply_action(project.id, actor("Arsitek"), "submitted")
        assert project.status == "Pending Offer"

    def test_invalid_action_leaves_project_untouched(self, actor):
        project = _create(actor)
        history = len(project.history)
        with pytest.raises(TransitionError) as exc:
            project_service.apply_action(project.id, actor("Admin Proyek"), "approved")
        assert exc.value.code == "INVALID_TRANSITION"
        assert project.status == "Pending Offer"
        assert len(project.history) == history

    def test_expected_status_guard(self, actor):
        project = _create(actor)
        with pytest.raises(TransitionError) as exc:
            project_service.apply_action(
                project.id, actor("Admin Proyek"), "submitted", expected_status="Pending Approval",
            )
        assert exc.value.code == "STATUS_CHANGED"

    def test_survey_requires_details(self, actor):
        project = _create(actor)
        _jump(project, actor, "Pending Survey Details", 45, "Admin Proyek")
        with pytest.raises(ValidationError) as exc:
            project_service.apply_action(project.id, actor("Admin Proyek"), "submitted")
        assert exc.value.code == "SURVEY_DETAILS_REQUIRED"

    def test_scheduling_requires_details(self, actor):
        project = _create(actor)
        _jump(project, actor, "Pending Scheduling", 90, "Admin Proyek")
        with pytest.raises(ValidationError) as exc:
            project_service.apply_action(project.id, actor("Admin Proyek"), "scheduled")
        assert exc.value.code == "SCHEDULE_DETAILS_REQUIRED"

        _act(project, actor, "Admin Proyek", "scheduled", schedule_details=SIDANG)
        assert project.status == "Scheduled"
        assert project.schedule_details == SIDANG
        assert "Kantor Pusat" in project.history[-1].action

    def test_terminal_transition_sends_no_notification(self, actor):
        project = _create(actor)
        _jump(project, actor, "Scheduled", 95, "Owner")
        before = _notifications(project.id)
        _act(project, actor, "Owner", "completed")
        assert project.status == "Completed"
        assert project.progress == 100
        assert _notifications(project.id) == before

    def test_terminal_project_accepts_nothing(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted")
        _act(project, actor, "Owner", "rejected")
        assert project.status == "Canceled"
        with pytest.raises(PermissionDenied):
            project_service.apply_action(project.id, actor("Admin Developer"), "submitted")


class TestRevise:
    def test_not_supported_on_offer_step(self, actor):
        project = _create(actor)
        with pytest.raises(TransitionError) as exc:
            project_service.revise_project(project.id, actor("Owner"), "please")
        assert exc.value.code == "REVISION_NOT_SUPPORTED_FOR_CURRENT_STEP"

    def test_generic_revise_on_dp_approval(self, actor):
        project = _create(actor)
        _jump(project, actor, "Pending Approval", 30, "Owner")
        project_service.revise_project(project.id, actor("Owner"), "Nominal salah")
        db.session.commit()
        assert (project.status, project.progress) == ("Pending DP Invoice", 25)
        assert project.history[-1].note == "Nominal salah (Pending Approval to Pending DP Invoice)"

    def test_after_sidang(self, actor):
        project = _create(actor)
        _jump(project, actor, "Scheduled", 95, "Owner")
        project_service.revise_project(project.id, actor("Owner"), None, action="revise_after_sidang")
        db.session.commit()
        assert (project.status, project.progress) == ("Pending Post-Sidang Revision", 85)
        assert project.history[-1].action == "Requested Revision"
        assert project.history[-1].note == "From Scheduled to Pending Post-Sidang Revision"
        _act(project, actor, "Admin Proyek", "revision_completed_and_finish")
        assert project.status == "Completed"
        assert project.history[-1].action == "Completed Post-Sidang Revisions"

    def test_supervisor_only(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted")
        with pytest.raises(PermissionDenied):
            project_service.revise_project(project.id, actor("Admin Proyek"), "x")


# ═══════════════════════════════════════════════════════════════
# Parallel design stage
# ═══════════════════════════════════════════════════════════════

class TestParallelStage:
    def test_full_flow(self, actor, users):
        project = _to_parallel(actor)
        assert project.survey_details == SURVEY
        assert project.parallel_uploads_completed_by == []

        for division in ("Arsitek", "Struktur", "MEP"):
            _upload_required(project, actor, division)
            _act(project, actor, division, "mark_division_complete")
        assert project.parallel_uploads_completed_by == ["Arsitek", "Struktur", "MEP"]
        assert project.status == "Pending Parallel Design Uploads"

        _act(project, actor, "Admin Proyek", "all_files_confirmed")
        assert (project.status, project.progress) == ("Pending Scheduling", 90)
        assert project.history[-1].action == "Confirmed All Design Files"

    def test_confirm_requires_every_division(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "Arsitek")
        _act(project, actor, "Arsitek", "mark_division_complete")
        with pytest.raises(ValidationError) as exc:
            project_service.apply_action(project.id, actor("Admin Proyek"), "all_files_confirmed")
        assert exc.value.code == "PARALLEL_UPLOADS_INCOMPLETE"
        assert exc.value.details["pendingDivisions"] == ["Struktur", "MEP"]

    def test_sign_off_requires_documents(self, actor):
        project = _to_parallel(actor)
        with pytest.raises(ValidationError) as exc:
            project_service.mark_division_complete(project.id, actor("Struktur"))
        assert exc.value.code == "PARALLEL_UPLOADS_INCOMPLETE"
        assert exc.value.details["missing"] == ["Perhitungan Struktur", "Gambar Struktur"]

    def test_sign_off_is_idempotent(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "MEP")
        project_service.mark_division_complete(project.id, actor("MEP"))
        history = len(project.history)
        project_service.mark_division_complete(project.id, actor("MEP"))
        assert project.parallel_uploads_completed_by == ["MEP"]
        assert len(project.history) == history

    def test_sign_off_outside_parallel_stage(self, actor):
        project = _create(actor)
        with pytest.raises(ValidationError) as exc:
            project_service.mark_division_complete(project.id, actor("Arsitek"))
        assert exc.value.code == "DIVISION_NOT_IN_PARALLEL_STAGE"

    def test_admin_developer_signs_off_through_actions(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "Struktur")
        _act(project, actor, "Admin Developer", "mark_division_complete", division="Struktur")
        assert project.parallel_uploads_completed_by == ["Struktur"]
        assert project.history[-1].action == "Marked Struktur uploads as complete"

    def test_admin_proyek_cannot_sign_off_either_way(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "MEP")
        with pytest.raises(PermissionDenied):
            project_service.apply_action(
                project.id, actor("Admin Proyek"), "mark_division_complete", division="MEP",
            )
        with pytest.raises(PermissionDenied):
            project_service.mark_division_complete(project.id, actor("Admin Proyek"), "MEP")

    def test_sign_off_for_another_division_denied(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "MEP")
        with pytest.raises(PermissionDenied):
            project_service.mark_division_complete(project.id, actor("Arsitek"), "MEP")

    def test_architect_initial_images_notify_struktur_and_mep(self, actor, users):
        project = _to_parallel(actor)
        before = {
            role: Notification.query.filter_by(user_id=users[role].id, project_id=project.id).count()
            for role in ("Struktur", "MEP")
        }
        _act(project, actor, "Arsitek", "architect_uploaded_initial_images_for_struktur",
             uploads=[_upload("Sketsa Awal.jpg")])
        assert project.status == "Pending Parallel Design Uploads"
        assert project.history[-1].action == "Uploaded initial images for Struktur: Sketsa Awal.jpg"
        for role in ("Struktur", "MEP"):
            after = Notification.query.filter_by(user_id=users[role].id, project_id=project.id).count()
            assert after == before[role] + 1

    def test_reentering_stage_resets_sign_offs(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "MEP")
        _act(project, actor, "MEP", "mark_division_complete")
        _jump(project, actor, "Pending Scheduling", 90, "Admin Proyek")
        _jump(project, actor, "Pending Parallel Design Uploads", 50, "Admin Proyek")
        assert project.parallel_uploads_completed_by == []

    def test_checklist(self, actor):
        project = _to_parallel(actor)
        _upload_required(project, actor, "Struktur")
        result = project_service.parallel_checklist(project.id)
        assert result["checklist"]["Struktur"] == {
            "Perhitungan Struktur": True, "Gambar Struktur": True,
        }
        assert result["missing"]["Struktur"] == []
        assert result["allComplete"] is False


class TestDoubleSubmission:
    """Submissions are not idempotent; these pin down what a repeat does."""

    def test_repeated_submit_is_refused_after_handover(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted")
        with pytest.raises(PermissionDenied):
            project_service.apply_action(project.id, actor("Admin Proyek"), "submitted")
        assert (project.status, project.progress) == ("Pending Approval", 20)

    def test_repeated_approval_is_an_invalid_transition(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted")
        _act(project, actor, "Owner", "approved")
        with pytest.raises(TransitionError):
            project_service.apply_action(project.id, actor("Owner"), "approved")
        assert project.status == "Pending DP Invoice"

    def test_stale_status_refused_with_expected_status(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted", expected_status="Pending Offer")
        with pytest.raises(TransitionError) as exc:
            project_service.apply_action(
                project.id, actor("Owner"), "approved", expected_status="Pending Offer",
            )
        assert exc.value.code == "STATUS_CHANGED"

    def test_concurrent_commit_is_detected_on_flush(self, actor):
        project = _create(actor)
        loaded_version = project.version
        db.session.execute(
            text("UPDATE projects SET version = version + 1 WHERE id = :id"), {"id": project.id},
        )
        with pytest.raises(StaleDataError):
            project_service.apply_action(project.id, actor("Admin Proyek"), "submitted")
        db.session.rollback()
        assert (project.status, project.version) == ("Pending Offer", loaded_version)

    def test_repeated_in_step_action_duplicates_history(self, actor):
        project = _to_parallel(actor)
        _act(project, actor, "Arsitek", "architect_uploaded_initial_images_for_struktur")
        _act(project, actor, "Arsitek", "architect_uploaded_initial_images_for_struktur")
        actions = [h.action for h in project.history[-2:]]
        assert actions == ["Uploaded initial images for Struktur"] * 2


# ═══════════════════════════════════════════════════════════════
# Administrative changes
# ═══════════════════════════════════════════════════════════════

class TestUpdateTitle:
    def test_renames_folder_and_paths(self, actor):
        project = _create(actor, title="Old Name", uploads=[_upload("Brief.pdf")])
        old_path = project.files[0].path
        project_service.update_title(project.id, actor("Owner"), "New Name")
        db.session.commit()
        new_path = project.files[0].path
        assert new_path == f"{project.id}-New_Name/Brief.pdf"
        assert os.path.isfile(file_storage.resolve(new_path))
        assert not os.path.exists(file_storage.resolve(old_path))
        assert project.history[-1].action == "Changed title from 'Old Name' to 'New Name'"

    def test_same_title_is_noop(self, actor):
        project = _create(actor)
        history = len(project.history)
        project_service.update_title(project.id, actor("Owner"), project.title)
        assert len(project.history) == history

    def test_design_roles_denied(self, actor):
        project = _create(actor)
        with pytest.raises(PermissionDenied):
            project_service.update_title(project.id, actor("MEP"), "x")


class TestManualStatusUpdate:
    def test_override(self, actor, users):
        project = _create(actor)
        project_service.manual_status_update(
            project.id, actor("General Admin"), status="Pending Admin Files",
            assigned_division="Admin Proyek", next_action="Unggah Berkas Administrasi",
            progress=40, reason="Data lama",
        )
        db.session.commit()
        assert (project.status, project.progress) == ("Pending Admin Files", 40)
        last = project.history[-1]
        assert last.action == "Manually changed status to Pending Admin Files"
        assert last.note == "Reason: Data lama"

    def test_reason_required(self, actor):
        project = _create(actor)
        with pytest.raises(ValidationError) as exc:
            project_service.manual_status_update(
                project.id, actor("Owner"), status="Pending Admin Files",
                assigned_division="Admin Proyek", next_action=None, progress=40, reason=" ",
            )
        assert exc.value.code == "REASON_REQUIRED"

    def test_only_admins(self, actor):
        project = _create(actor)
        with pytest.raises(PermissionDenied):
            project_service.manual_status_update(
                project.id, actor("Admin Proyek"), status="Pending Admin Files",
                assigned_division="Admin Proyek", next_action=None, progress=40, reason="x",
            )

    def test_unknown_status(self, actor):
        project = _create(actor)
        with pytest.raises(ValidationError) as exc:
            project_service.manual_status_update(
                project.id, actor("Owner"), status="Somewhere",
                assigned_division="Admin Proyek", next_action=None, progress=40, reason="x",
            )
        assert exc.value.code == "UNKNOWN_STATUS"

    def test_status_and_progress_must_name_one_step(self, actor):
        project = _create(actor)
        with pytest.raises(ValidationError) as exc:
            project_service.manual_status_update(
                project.id, actor("Owner"), status="Pending Approval",
                assigned_division="Owner", next_action=None, progress=22, reason="x",
            )
        assert exc.value.code == "UNRESOLVABLE_STEP"
        assert exc.value.details["progress"] == [20, 30]
        assert project.status == "Pending Offer"

    def test_override_leaves_actions_available(self, actor):
        project = _create(actor)
        _jump(project, actor, "Pending Approval", 30, "Owner")
        assert project_service.available_actions(project, "Owner") == [
            "approved", "rejected", "revise_dp",
        ]

    def test_legacy_division_alias(self, actor):
        project = _create(actor)
        _jump(project, actor, "Pending DP Invoice", 25, "Admin/Akuntan")
        assert project.assigned_division == "General Admin"


class TestFilesAndDeletion:
    def test_delete_file(self, actor):
        project = _create(actor, uploads=[_upload("Brief.pdf")])
        path = project.files[0].path
        project_service.delete_project_file(project.id, actor("Owner"), path)
        db.session.commit()
        assert project.files == []
        assert not os.path.exists(file_storage.resolve(path))
        assert project.history[-1].action == "Deleted file Brief.pdf"

    def test_reupload_with_same_name_keeps_both_files(self, actor):
        project = _create(actor, title="Rumah Ulang")
        _act(project, actor, "Admin Proyek", "submitted", uploads=[_upload("Penawaran.pdf", b"v1")])
        _act(project, actor, "Owner", "revise_offer", note="Revisi harga")
        _act(project, actor, "Admin Proyek", "submitted", uploads=[_upload("Penawaran.pdf", b"v2")])

        first, second = project.files
        assert first.name == second.name == "Penawaran.pdf"
        assert first.path != second.path
        with open(file_storage.resolve(first.path), "rb") as fh:
            assert fh.read() == b"v1"

        project_service.delete_project_file(project.id, actor("Owner"), first.path)
        db.session.commit()
        with open(file_storage.resolve(second.path), "rb") as fh:
            assert fh.read() == b"v2"

    def test_delete_missing_file(self, actor):
        project = _create(actor)
        with pytest.raises(NotFoundError) as exc:
            project_service.delete_project_file(project.id, actor("Owner"), "nope/x.pdf")
        assert exc.value.code == "FILE_NOT_FOUND"

    def test_uploader_may_delete_own_file(self, actor):
        project = _create(actor, uploads=[_upload("Brief.pdf")])
        project_service.delete_project_file(project.id, actor("Admin Proyek"), project.files[0].path)
        assert project.files == []

    def test_add_files_requires_files(self, actor):
        project = _create(actor)
        with pytest.raises(ValidationError) as exc:
            project_service.add_files(project.id, actor("Admin Proyek"), [])
        assert exc.value.code == "FILES_REQUIRED"

    def test_delete_project(self, actor):
        project = _create(actor, uploads=[_upload("Brief.pdf")])
        project_id = project.id
        folder = file_storage.resolve(file_storage.project_folder_name(project.id, project.title))
        assert _notifications(project_id) > 0

        project_service.delete_project(project_id, actor("Owner"))
        db.session.commit()
        assert not os.path.exists(folder)
        assert _notifications(project_id) == 0
        with pytest.raises(NotFoundError):
            project_service.get_project(project_id)

    def test_delete_unknown_project(self, actor):
        with pytest.raises(NotFoundError) as exc:
            project_service.delete_project("project_missing", actor("Owner"))
        assert exc.value.code == "PROJECT_NOT_FOUND_FOR_DELETION"

    def test_delete_project_requires_admin(self, actor):
        project = _create(actor)
        with pytest.raises(PermissionDenied):
            project_service.delete_project(project.id, actor("Admin Proyek"))


class TestListing:
    def test_role_filter(self, actor):
        offer = _create(actor, title="Offer Stage")
        parallel = _to_parallel(actor)
        owner_ids = {p.id for p in project_service.list_projects_for_role("Owner")}
        assert owner_ids == {offer.id, parallel.id}
        arsitek_ids = {p.id for p in project_service.list_projects_for_role("Arsitek")}
        assert arsitek_ids == {parallel.id}
        assert project_service.list_projects_for_role(None) == []

    def test_status_and_search_filters(self, actor):
        _create(actor, title="Gudang Timur")
        villa = _create(actor, title="Villa Barat")
        found = project_service.list_projects_for_role("Owner", search="villa")
        assert [p.id for p in found] == [villa.id]
        none = project_service.list_projects_for_role("Owner", statuses=["Scheduled"])
        assert none == []

    def test_available_actions_per_role(self, actor):
        project = _create(actor)
        _act(project, actor, "Admin Proyek", "submitted")
        assert project_service.available_actions(project, "Owner") == [
            "approved", "rejected", "revise_offer",
        ]
        assert project_service.available_actions(project, "Arsitek") == []

    def test_list_projects_newest_first(self, actor):
        first = _create(actor, title="Pertama")
        second = _create(actor, title="Kedua")
        ids = [p.id for p in project_service.list_projects()]
        assert set(ids) == {first.id, second.id}
        assert len(ids) == 2
