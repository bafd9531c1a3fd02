"""Department console API: queue, lifecycle actions, redirects, reports, profile."""
from datetime import datetime, timedelta, timezone

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, FileField
from wtforms import StringField
from wtforms.validators import Length, Optional

from extensions import csrf, db
from models import DEPARTMENT_LABELS, DEPARTMENTS
from utils.decorators import official_required
from utils.lifecycle import (
    ComplaintNotFound,
    LifecycleValidationError,
    accept_complaint,
    advance_stage,
    can_redirect,
    complaint_visible_to,
    complete_complaint,
    department_queue_query,
    get_complaint,
    redirects_for,
)
from utils.redirection import redirect_with_ai
from utils.reports import REPORT_PERIODS, ReportRangeError, generate_report, period_range
from utils.security import clean_text
from utils.storage import ALLOWED_IMAGE_EXTENSIONS

department_bp = Blueprint("department", __name__, url_prefix="/dept")

# Console tab -> stored status
QUEUE_FILTERS = {
    "recent": "new",
    "progress": "in_progress",
    "solved": "completed",
}


class CompletionForm(FlaskForm):
    solution_image = FileField(
        "Solution photo",
        validators=[FileAllowed(list(ALLOWED_IMAGE_EXTENSIONS), "Images only")],
    )


class ProfileForm(FlaskForm):
    full_name = StringField("Full Name", validators=[Optional(), Length(max=150)])
    location = StringField("Location", validators=[Optional(), Length(max=255)])


def _official():
    return current_user._get_current_object()


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _complaint_for_official(complaint_id: str):
    complaint = get_complaint(complaint_id)
    if not complaint_visible_to(complaint, _official()):
        # Other departments' complaints are reported as missing, not forbidden.
        raise ComplaintNotFound("Complaint not found", complaint_id=complaint_id)
    return complaint


def _scoped_department() -> str:
    official = _official()
    requested = request.args.get("department")
    if requested and official.is_admin:
        if requested not in DEPARTMENTS:
            raise LifecycleValidationError(f"Unknown department: {requested}")
        return requested
    return official.department


@department_bp.route("/complaints", methods=["GET"])
@official_required
def list_complaints():
    department = _scoped_department()
    status_filter = (request.args.get("status") or "").strip().lower()
    status = QUEUE_FILTERS.get(status_filter, status_filter) or None
    per_page = int(current_app.config.get("COMPLAINTS_PER_PAGE", 20))
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    pagination = department_queue_query(department, status=status).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify(
        {
            "department": department,
            "department_label": DEPARTMENT_LABELS.get(department, department),
            "status": status,
            "page": page,
            "per_page": per_page,
            "total": pagination.total,
            "complaints": [c.to_dict() for c in pagination.items],
        }
    )


@department_bp.route("/complaints/<string:complaint_id>", methods=["GET"])
@official_required
def complaint_detail(complaint_id):
    complaint = _complaint_for_official(complaint_id)
    payload = complaint.to_dict(include_profile=True)
    payload["can_redirect"] = can_redirect(_official())
    payload["redirect_count"] = complaint.redirects.count()
    return jsonify(payload)


@department_bp.route("/complaints/<string:complaint_id>/accept", methods=["POST"])
@csrf.exempt
@official_required
def accept(complaint_id):
    _complaint_for_official(complaint_id)
    complaint = accept_complaint(complaint_id, _official())
    return jsonify({"message": "Complaint accepted", "complaint": complaint.to_dict()})


@department_bp.route("/complaints/<string:complaint_id>/redirect", methods=["POST"])
@csrf.exempt
@official_required
def redirect_to_department(complaint_id):
    _complaint_for_official(complaint_id)
    reason = clean_text(_payload().get("reason"), max_length=500)
    complaint, record, decision = redirect_with_ai(complaint_id, _official(), reason=reason or None)
    return jsonify(
        {
            "message": f"Complaint redirected to {DEPARTMENT_LABELS.get(decision.target, decision.target)}",
            "complaint": complaint.to_dict(),
            "redirect": record.to_dict(),
            "decision": {"target": decision.target, "source": decision.source, "category": decision.category},
        }
    )


@department_bp.route("/complaints/<string:complaint_id>/stage", methods=["POST"])
@csrf.exempt
@official_required
def change_stage(complaint_id):
    _complaint_for_official(complaint_id)
    stage = clean_text(_payload().get("stage")) or "progress"
    complaint = advance_stage(complaint_id, _official(), stage=stage)
    return jsonify({"message": "Progress stage updated", "complaint": complaint.to_dict()})


@department_bp.route("/complaints/<string:complaint_id>/complete", methods=["POST"])
@official_required
def complete(complaint_id):
    _complaint_for_official(complaint_id)
    form = CompletionForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid solution image", "fields": form.errors}), 400
    complaint = complete_complaint(complaint_id, _official(), form.solution_image.data)
    return jsonify({"message": "Complaint marked as completed", "complaint": complaint.to_dict()})


@department_bp.route("/complaints/<string:complaint_id>/redirects", methods=["GET"])
@official_required
def complaint_redirects(complaint_id):
    complaint = _complaint_for_official(complaint_id)
    return jsonify({"complaint_id": complaint.id, "redirects": [r.to_dict() for r in redirects_for(complaint.id)]})


def _parse_bound(value: str, name: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ReportRangeError(f"Invalid {name} date: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@department_bp.route("/reports", methods=["GET"])
@official_required
def reports():
    department = _scoped_department()
    start_arg = request.args.get("start")
    end_arg = request.args.get("end")
    if start_arg or end_arg:
        if not (start_arg and end_arg):
            raise ReportRangeError("Both start and end are required for a custom range")
        start = _parse_bound(start_arg, "start")
        end = _parse_bound(end_arg, "end")
        if len(end_arg) == 10:
            # A bare end date covers that whole day.
            end += timedelta(days=1)
        period = "custom"
    else:
        period = (request.args.get("period") or "monthly").lower()
        if period not in REPORT_PERIODS:
            raise ReportRangeError(f"Unknown report period: {period}")
        start, end = period_range(period)

    report = generate_report(start, end, department=department)
    report["period"] = period
    return jsonify(report)


@department_bp.route("/profile", methods=["GET"])
@official_required
def profile():
    official = _official()
    payload = official.to_dict()
    payload["department_label"] = DEPARTMENT_LABELS.get(official.department, official.department)
    payload["can_redirect"] = can_redirect(official)
    return jsonify(payload)


@department_bp.route("/profile", methods=["POST"])
@official_required
def update_profile():
    form = ProfileForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid profile details", "fields": form.errors}), 400
    submitted = _payload()
    official = _official()
    if "full_name" in submitted and (form.full_name.data or "").strip():
        official.full_name = form.full_name.data.strip()
    if "location" in submitted:
        official.location = (form.location.data or "").strip() or None
    db.session.add(official)
    db.session.commit()
    current_app.logger.info("Official profile updated", extra={"official": official.id})
    return jsonify(official.to_dict())
