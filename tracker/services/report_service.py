"""
Monthly project report.

Every project lands in at most one bucket for a given month:
  - completed:   status Completed, finished inside the month
  - canceled:    status Canceled, finished inside the month
  - in_progress: created before the month ended and not finished before it
                 began; projects finished after the month are flagged
                 ``finalizedAfterPeriod``

A project's finish time is the newest history entry that moved it into its
terminal status, falling back to its newest history entry. Month boundaries
are UTC.

Usage:
    from tracker.services import report_service

    report = report_service.monthly_report(2024, 7)
    buf = report_service.export_monthly_report_xlsx(report)
"""

import calendar
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from tracker.core.exceptions import ValidationError
from tracker.models.workflow import ProjectStatus, WorkflowAction
from tracker.services.project_service import HISTORY_TEXT, list_projects
from tracker.utils.helpers import parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)

_COMPLETED = ProjectStatus.COMPLETED.value
_CANCELED = ProjectStatus.CANCELED.value

_FINISHING_TEXT = {
    _COMPLETED: (
        HISTORY_TEXT[WorkflowAction.COMPLETED.value],
        HISTORY_TEXT[WorkflowAction.REVISION_COMPLETED_AND_FINISH.value],
        f"Manually changed status to {_COMPLETED}",
    ),
    _CANCELED: (
        HISTORY_TEXT[WorkflowAction.REJECTED.value],
        HISTORY_TEXT[WorkflowAction.CANCELED_AFTER_SIDANG.value],
        f"Manually changed status to {_CANCELED}",
    ),
}

FINALIZED_AFTER_SUFFIX = " (Finalized After Report Period)"

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_COLUMNS = (
    "Project Title",
    "Status",
    "Last Activity / End Date",
    "Contributors",
    "Progress (%)",
    "Created At",
    "Created By",
)


# ═══════════════════════════════════════════════════════════════
# Report data
# ═══════════════════════════════════════════════════════════════

def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """``[start, end)`` of the month in UTC."""
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12", code="VALIDATION_INVALID")
    if not 2000 <= year <= 9999:
        raise ValidationError("year must be between 2000 and 9999", code="VALIDATION_INVALID")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + (month == 12), month % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


def finished_at(project):
    """When ``project`` reached Completed/Canceled, or None while it is open."""
    texts = _FINISHING_TEXT.get(project.status)
    if texts is None:
        return None
    for entry in reversed(project.history):
        if entry.action.startswith(texts):
            return parse_timestamp(entry.timestamp)
    if project.history:
        return parse_timestamp(project.history[-1].timestamp)
    return parse_timestamp(project.created_at)


def _contributors(project) -> list[str]:
    seen = []
    for f in project.files:
        if f.uploaded_by and f.uploaded_by not in seen:
            seen.append(f.uploaded_by)
    return seen


def _row(project, finished, *, finalized_after=False) -> dict:
    last = project.history[-1].timestamp if project.history else project.created_at
    return {
        "id": project.id,
        "title": project.title,
        "status": project.status,
        "progress": project.progress,
        "lastActivity": to_iso(parse_timestamp(last)),
        "finishedAt": to_iso(finished),
        "finalizedAfterPeriod": finalized_after,
        "contributors": _contributors(project),
        "createdAt": to_iso(project.created_at),
        "createdBy": project.created_by,
    }


def monthly_report(year: int, month: int) -> dict:
    start, end = month_bounds(year, month)
    completed, canceled, in_progress = [], [], []

    for project in list_projects():
        finished = finished_at(project)
        if finished is not None and start <= finished < end:
            bucket = completed if project.status == _COMPLETED else canceled
            bucket.append(_row(project, finished))
            continue
        created = parse_timestamp(project.created_at)
        if created is not None and created >= end:
            continue
        if finished is not None and finished < start:
            continue
        in_progress.append(_row(project, finished, finalized_after=finished is not None))

    logger.info(
        "Monthly report %04d-%02d: %d completed, %d canceled, %d in progress",
        year, month, len(completed), len(canceled), len(in_progress),
    )
    return {
        "period": f"{year:04d}-{month:02d}",
        "year": year,
        "month": month,
        "monthName": calendar.month_name[month],
        "generatedAt": to_iso(utcnow()),
        "summary": {
            "completed": len(completed),
            "canceled": len(canceled),
            "inProgress": len(in_progress),
            "total": len(completed) + len(canceled) + len(in_progress),
        },
        "completed": completed,
        "canceled": canceled,
        "inProgress": in_progress,
    }


# ═══════════════════════════════════════════════════════════════
# Excel export
# ═══════════════════════════════════════════════════════════════

def _apply_header_style(ws, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    for col in ws.columns:
        longest = max((min(len(str(c.value)), 60) for c in col if c.value is not None), default=0)
        ws.column_dimensions[get_column_letter(col[0].column)].width = max(longest + 4, 12)


def _date_cell(value: str | None) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%Y-%m-%d") if parsed else ""


def _project_sheet(wb, title: str, rows: list[dict]) -> None:
    ws = wb.create_sheet(title)
    ws.append(list(_COLUMNS))
    _apply_header_style(ws, 1, len(_COLUMNS))
    if not rows:
        ws.append(["(No projects in this category for the selected period)"])
    for r in rows:
        status = r["status"] + (FINALIZED_AFTER_SUFFIX if r["finalizedAfterPeriod"] else "")
        ws.append([
            r["title"],
            status,
            _date_cell(r["finishedAt"] or r["lastActivity"]),
            ", ".join(r["contributors"]) or "N/A",
            r["progress"],
            _date_cell(r["createdAt"]),
            r["createdBy"],
        ])
    _auto_width(ws)


def export_monthly_report_xlsx(report: dict) -> io.BytesIO:
    """
    Styled workbook: a summary sheet plus one sheet per bucket.
    Returns a BytesIO buffer ready for Flask send_file.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"

    ws.merge_cells("A1:D1")
    ws["A1"] = f"Monthly Project Status Report: {report['monthName']} {report['year']}"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = f"Generated: {_date_cell(report['generatedAt'])}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    ws.append([])
    ws.append(["Category", "Projects"])
    _apply_header_style(ws, 4, 2)
    summary = report["summary"]
    for label, key in (
        ("Completed this month", "completed"),
        ("Canceled this month", "canceled"),
        ("In progress during month", "inProgress"),
        ("Total reviewed", "total"),
    ):
        ws.append([label, summary[key]])
    ws.column_dimensions["A"].width = 30
    ws.column_dimensions["B"].width = 12

    _project_sheet(wb, "Completed", report["completed"])
    _project_sheet(wb, "Canceled", report["canceled"])
    _project_sheet(wb, "In Progress", report["inProgress"])

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf
