"""
Monthly report tests.

Tests cover:
  - bucketing by finish time (completed / canceled / in progress / excluded)
  - finish time ignores housekeeping history written afterwards
  - month boundaries and parameter validation
  - the Excel export layout
"""

import io
from datetime import datetime, timezone

import pytest
from openpyxl import load_workbook
from werkzeug.datastructures import FileStorage

from tracker.core.exceptions import ValidationError
from tracker.models import db
from tracker.services import project_service, report_service


def _at(month, day):
    return datetime(2024, month, day, 12, 0, tzinfo=timezone.utc)


def _stamp(project, when, count=1):
    for entry in project.history[-count:]:
        entry.timestamp = when
    db.session.commit()


def _create(actor, title, created):
    project = project_service.create_project(title, actor("Admin Proyek"))
    project.created_at = created
    db.session.commit()
    _stamp(project, created, len(project.history))
    return project


def _act(project, actor, role, action, when):
    project_service.apply_action(project.id, actor(role), action)
    db.session.commit()
    _stamp(project, when)


def _override(project, actor, status, progress, when):
    project_service.manual_status_update(
        project.id, actor("Owner"), status=status, assigned_division=None,
        next_action=None, progress=progress, reason="arsip",
    )
    db.session.commit()
    _stamp(project, when)


@pytest.fixture
def july(actor):
    """July 2024 report over projects created and finished around that month."""
    sidang = _create(actor, "Sidang Juli", _at(6, 3))
    _override(sidang, actor, "Scheduled", 95, _at(6, 10))
    _act(sidang, actor, "Owner", "completed", _at(7, 10))
    project_service.update_title(sidang.id, actor("Owner"), "Sidang Juli Selesai")
    db.session.commit()
    _stamp(sidang, _at(8, 2))

    canceled_june = _create(actor, "Batal Juni", _at(6, 5))
    _override(canceled_june, actor, "Canceled", 0, _at(6, 20))

    _create(actor, "Masih Berjalan", _at(5, 1))
    _create(actor, "Mulai Agustus", _at(8, 1))

    rejected_later = _create(actor, "Ditolak Agustus", _at(7, 2))
    _act(rejected_later, actor, "Admin Proyek", "submitted", _at(7, 3))
    _act(rejected_later, actor, "Owner", "rejected", _at(8, 5))

    rejected_july = _create(actor, "Ditolak Juli", _at(7, 20))
    _act(rejected_july, actor, "Admin Proyek", "submitted", _at(7, 21))
    _act(rejected_july, actor, "Owner", "rejected", _at(7, 25))

    return report_service.monthly_report(2024, 7)


class TestMonthlyReport:
    def test_buckets(self, july):
        assert [r["title"] for r in july["completed"]] == ["Sidang Juli Selesai"]
        assert [r["title"] for r in july["canceled"]] == ["Ditolak Juli"]
        assert sorted(r["title"] for r in july["inProgress"]) == ["Ditolak Agustus", "Masih Berjalan"]
        assert july["summary"] == {"completed": 1, "canceled": 1, "inProgress": 2, "total": 4}
        assert (july["period"], july["monthName"]) == ("2024-07", "July")

    def test_finish_time_ignores_later_title_change(self, july):
        row = july["completed"][0]
        assert row["finishedAt"].startswith("2024-07-10")
        assert row["lastActivity"].startswith("2024-08-02")

    def test_finished_after_period_is_flagged(self, july):
        rows = {r["title"]: r for r in july["inProgress"]}
        assert rows["Ditolak Agustus"]["finalizedAfterPeriod"] is True
        assert rows["Ditolak Agustus"]["status"] == "Canceled"
        assert rows["Masih Berjalan"]["finalizedAfterPeriod"] is False
        assert rows["Masih Berjalan"]["finishedAt"] is None

    def test_contributors_are_uploaders(self, actor):
        project = _create(actor, "Berkas", _at(7, 1))
        project_service.add_files(
            project.id, actor("Admin Proyek"),
            [FileStorage(stream=io.BytesIO(b"x"), filename="a.pdf"),
             FileStorage(stream=io.BytesIO(b"y"), filename="b.pdf")],
        )
        db.session.commit()
        row = report_service.monthly_report(2024, 7)["inProgress"][0]
        assert row["contributors"] == ["admin_proyek"]


class TestMonthBounds:
    def test_december_rolls_over(self):
        start, end = report_service.month_bounds(2024, 12)
        assert (start.year, start.month) == (2024, 12)
        assert (end.year, end.month, end.day) == (2025, 1, 1)

    @pytest.mark.parametrize("year, month", [(2024, 0), (2024, 13), (1999, 5)])
    def test_invalid(self, year, month):
        with pytest.raises(ValidationError) as exc:
            report_service.month_bounds(year, month)
        assert exc.value.code == "VALIDATION_INVALID"


def test_excel_export(july):
    wb = load_workbook(report_service.export_monthly_report_xlsx(july))
    assert wb.sheetnames == ["Summary", "Completed", "Canceled", "In Progress"]

    summary = wb["Summary"]
    assert summary["A1"].value == "Monthly Project Status Report: July 2024"
    assert [summary.cell(row=r, column=2).value for r in range(5, 9)] == [1, 1, 2, 4]

    completed = wb["Completed"]
    assert completed["A1"].value == "Project Title"
    assert completed["A2"].value == "Sidang Juli Selesai"
    assert completed["C2"].value == "2024-07-10"

    in_progress = {row[0]: row[1] for row in wb["In Progress"].iter_rows(min_row=2, values_only=True)}
    assert in_progress["Ditolak Agustus"] == "Canceled (Finalized After Report Period)"
    assert in_progress["Masih Berjalan"] == "Pending Offer"


def test_empty_category_sheet():
    wb = load_workbook(report_service.export_monthly_report_xlsx(report_service.monthly_report(2024, 7)))
    assert wb["Completed"]["A2"].value == "(No projects in this category for the selected period)"
