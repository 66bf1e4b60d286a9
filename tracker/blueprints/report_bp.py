"""
Report Blueprint — monthly project status report.

Endpoints (under /api/v1/reports; Owner, General Admin, Admin Developer):
    GET /monthly?year=2024&month=7             — JSON report
    GET /monthly?year=2024&month=7&format=xlsx — Excel download
"""

from flask import Blueprint, jsonify, request, send_file

from tracker.blueprints import _int_arg
from tracker.middleware.permission_required import login_required, roles_required
from tracker.models.user import Role
from tracker.services import report_service
from tracker.utils.errors import E, api_error
from tracker.utils.helpers import utcnow

report_bp = Blueprint("report_bp", __name__, url_prefix="/api/v1/reports")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@report_bp.route("/monthly", methods=["GET"])
@login_required
@roles_required(Role.OWNER, Role.GENERAL_ADMIN, Role.ADMIN_DEVELOPER)
def monthly_report():
    now = utcnow()
    year = _int_arg("year", now.year)
    month = _int_arg("month", now.month)
    fmt = request.args.get("format", "json").lower()
    if fmt not in ("json", "xlsx"):
        return api_error(E.VALIDATION_INVALID, "format must be 'json' or 'xlsx'")

    report = report_service.monthly_report(year, month)
    if fmt == "json":
        return jsonify(report), 200

    buf = report_service.export_monthly_report_xlsx(report)
    return send_file(
        buf,
        as_attachment=True,
        download_name=f"monthly_report_{report['period']}.xlsx",
        mimetype=XLSX_MIMETYPE,
    )
