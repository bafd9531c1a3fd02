"""Citizen API: filing issues, AI prefill, tracking, notifications."""
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user
from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, FileField, FileRequired
from sqlalchemy.exc import SQLAlchemyError
from wtforms import FloatField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional

from extensions import csrf, db
from models import DEPARTMENT_LABELS, GOVERNING_BODIES, ISSUE_CATEGORIES, ISSUE_STATUSES, Complaint, Notification
from utils.ai_vision import AIVisionError, analyze_issue_image
from utils.change_feed import publish_change
from utils.decorators import citizen_required
from utils.projection import issues_for_citizen, project_issue, status_tracker, to_complaint_category
from utils.storage import ALLOWED_IMAGE_EXTENSIONS, discard_upload, mime_type_for, store_image, validate_image_file

citizen_bp = Blueprint("citizen", __name__, url_prefix="/citizen")

_IMAGE_VALIDATORS = [FileRequired(), FileAllowed(list(ALLOWED_IMAGE_EXTENSIONS), "Images only")]


class IssueForm(FlaskForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    description = TextAreaField("Description", validators=[DataRequired(), Length(max=3000)])
    category = SelectField("Category", choices=[(c, c) for c in ISSUE_CATEGORIES], validators=[DataRequired()])
    location = StringField("Location", validators=[DataRequired(), Length(max=500)])
    city = StringField("City", validators=[Optional(), Length(max=120)])
    latitude = FloatField("Latitude", validators=[Optional(), NumberRange(min=-90, max=90)])
    longitude = FloatField("Longitude", validators=[Optional(), NumberRange(min=-180, max=180)])
    department = SelectField(
        "Governing body",
        choices=[("", "Not specified")] + [(d, DEPARTMENT_LABELS[d]) for d in GOVERNING_BODIES],
        default="",
    )
    image = FileField("Photo of the issue", validators=_IMAGE_VALIDATORS)


class AnalyzeImageForm(FlaskForm):
    description = TextAreaField("Description", validators=[Optional(), Length(max=3000)])
    image = FileField("Photo of the issue", validators=_IMAGE_VALIDATORS)


def _citizen():
    return current_user._get_current_object()


def _own_complaint_or_404(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, str(complaint_id))
    if complaint is None or complaint.citizen_id != current_user.id:
        abort(404)
    return complaint


@citizen_bp.route("/issues", methods=["POST"])
@citizen_required
def submit_issue():
    form = IssueForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Please check the issue details", "fields": form.errors}), 400

    citizen = _citizen()
    stored = store_image(form.image.data, prefix="issue_")
    complaint = Complaint(
        title=form.title.data.strip(),
        description=form.description.data.strip(),
        category=to_complaint_category(form.category.data),
        status="new",
        progress_stage=None,
        citizen_id=citizen.id,
        citizen_name=citizen.full_name,
        citizen_phone=citizen.phone or "0000000000",
        citizen_email=citizen.email,
        location=form.location.data.strip(),
        city=(form.city.data or "").strip() or citizen.city,
        latitude=form.latitude.data,
        longitude=form.longitude.data,
        complaint_images=[stored["url"]],
        assigned_department=form.department.data or None,
    )
    try:
        db.session.add(complaint)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Issue submission failed", extra={"citizen": citizen.id})
        discard_upload(stored["url"])
        return jsonify({"error": "Could not save your issue. Please retry."}), 500

    current_app.logger.info(
        "Issue submitted",
        extra={"complaint_id": complaint.id, "citizen": citizen.id, "category": complaint.category},
    )
    publish_change(complaint.id, "created")
    return jsonify(project_issue(complaint)), 201


@citizen_bp.route("/analyze-image", methods=["POST"])
@citizen_required
def analyze_image():
    form = AnalyzeImageForm()
    if not form.validate_on_submit():
        return jsonify({"error": "A photo is required", "fields": form.errors}), 400

    max_bytes = int(current_app.config.get("MAX_IMAGE_UPLOAD_BYTES", 8 * 1024 * 1024))
    image_bytes, ext = validate_image_file(form.image.data, max_bytes=max_bytes)
    try:
        suggestion = analyze_issue_image(image_bytes, mime_type_for(ext), form.description.data or "")
    except AIVisionError as exc:
        current_app.logger.warning("Issue prefill unavailable", extra={"error": str(exc)})
        return jsonify({"error": "Image analysis is unavailable right now. Please fill the form manually."}), 503
    return jsonify(suggestion)


@citizen_bp.route("/issues", methods=["GET"])
@citizen_required
def list_issues():
    raw = request.args.get("status") or ""
    statuses = [s.strip().lower() for s in raw.split(",") if s.strip()]
    unknown = [s for s in statuses if s not in ISSUE_STATUSES]
    if unknown:
        return jsonify({"error": f"Unknown status: {', '.join(unknown)}"}), 400
    issues = issues_for_citizen(current_user.id, statuses or None)
    return jsonify({"issues": issues, "total": len(issues)})


@citizen_bp.route("/issues/solved", methods=["GET"])
@citizen_required
def solved_issues():
    issues = issues_for_citizen(current_user.id, ["completed"])
    return jsonify({"issues": issues, "total": len(issues)})


@citizen_bp.route("/issues/<string:complaint_id>", methods=["GET"])
@citizen_required
def issue_detail(complaint_id):
    issue = project_issue(_own_complaint_or_404(complaint_id))
    issue["tracker"] = status_tracker(issue["status"])
    return jsonify(issue)


@citizen_bp.route("/notifications", methods=["GET"])
@citizen_required
def notifications():
    citizen = _citizen()
    items = citizen.notifications.limit(50).all()
    unread = citizen.notifications.filter(Notification.is_read.is_(False)).count()
    return jsonify({"notifications": [n.to_dict() for n in items], "unread": unread})


@citizen_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@csrf.exempt
@citizen_required
def mark_notification_read(notification_id):
    notification = Notification.query.filter_by(id=notification_id, user_id=current_user.id).first()
    if notification is None:
        abort(404)
    if not notification.is_read:
        notification.is_read = True
        db.session.commit()
    return jsonify(notification.to_dict())
