"""Blueprint registration, health check, and uploaded image serving."""
from flask import Blueprint, abort, current_app, jsonify, send_from_directory
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from extensions import db
from .admin import admin_bp
from .auth import auth_bp
from .citizen import citizen_bp
from .department import department_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Health check could not reach the database")
        database = "unavailable"
    status = 200 if database == "ok" else 503
    return jsonify({"status": "ok" if status == 200 else "degraded", "database": database}), status


@main_bp.route("/uploads/<path:file_name>", methods=["GET"])
def uploaded_file(file_name):
    safe_name = secure_filename(file_name)
    if not safe_name or safe_name != file_name:
        abort(404)
    return send_from_directory(current_app.config["COMPLAINT_UPLOAD_FOLDER"], safe_name)


__all__ = ["main_bp", "auth_bp", "citizen_bp", "department_bp", "admin_bp"]
