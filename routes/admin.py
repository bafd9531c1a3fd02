"""Administrator endpoints for managing department officials."""
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user

from extensions import csrf, db
from models import DEPARTMENTS, USER_ROLES, Profile
from utils.audit import log_action
from utils.decorators import admin_required

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/profiles", methods=["GET"])
@admin_required
def list_profiles():
    query = Profile.query
    department = request.args.get("department")
    if department:
        if department not in DEPARTMENTS:
            return jsonify({"error": f"Unknown department: {department}"}), 400
        query = query.filter(Profile.department == department)
    profiles = query.order_by(Profile.department.asc(), Profile.email.asc()).all()
    return jsonify({"profiles": [p.to_dict() for p in profiles], "total": len(profiles)})


@admin_bp.route("/profiles/<string:profile_id>/role", methods=["POST"])
@csrf.exempt
@admin_required
def change_role(profile_id):
    payload = request.get_json(silent=True) or request.form.to_dict()
    role = (payload.get("role") or "").strip().lower()
    if role not in USER_ROLES:
        return jsonify({"error": f"Role must be one of: {', '.join(USER_ROLES)}"}), 400

    profile = db.session.get(Profile, str(profile_id))
    if profile is None:
        abort(404)
    if profile.id == current_user.id and role != "admin":
        return jsonify({"error": "Administrators cannot remove their own admin role"}), 400

    previous = profile.role
    if previous != role:
        profile.role = role
        log_action("ROLE_CHANGED", current_user._get_current_object(), context=f"profile:{profile.id}:{previous}->{role}")
        db.session.commit()
        current_app.logger.info(
            "Official role changed",
            extra={"profile": profile.id, "previous": previous, "role": role, "by": current_user.id},
        )
    return jsonify(profile.to_dict())
