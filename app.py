"""Flask application factory for the civic complaint tracker."""
import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_wtf.csrf import CSRFError
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError

from extensions import csrf, db, migrate, login_manager
from utils.change_feed import feed_for
from utils.logger import init_logging
from utils.security import apply_security_headers


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def register_error_handlers(app: Flask) -> None:
    from utils.lifecycle import LifecycleError
    from utils.reports import ReportRangeError
    from utils.storage import StorageError

    @app.errorhandler(LifecycleError)
    def lifecycle_error(error):
        log = app.logger.error if error.status_code >= 500 else app.logger.warning
        log(
            "Lifecycle request rejected",
            extra={
                "path": request.path,
                "complaint_id": error.complaint_id,
                "error_type": type(error).__name__,
                "status": error.status_code,
            },
        )
        return _error(error.message, error.status_code)

    @app.errorhandler(StorageError)
    def storage_error(error):
        app.logger.warning("Image rejected", extra={"path": request.path, "error": str(error)})
        return _error(str(error), 400)

    @app.errorhandler(ReportRangeError)
    def report_range_error(error):
        return _error(str(error), 400)

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        app.logger.warning("CSRF validation failed", extra={"path": request.path})
        return _error(error.description, 400)

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return _error("You do not have access to this resource", 403)

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return _error("Not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error("Method not allowed", 405)

    @app.errorhandler(413)
    def too_large(error):
        return _error("Upload exceeds the allowed size", 413)

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        db.session.rollback()
        return _error("Internal server error", 500)


def ensure_default_admin(app: Flask) -> None:
    """Ensure an admin official can sign in on a fresh database."""
    from models import DEPARTMENTS, Profile  # Local import to avoid circular dependency

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    admin_password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        return

    department = app.config.get("DEFAULT_ADMIN_DEPARTMENT") or "municipal"
    if department not in DEPARTMENTS:
        app.logger.warning("Default admin department is not recognised", extra={"department": department})
        department = "municipal"

    admin = Profile.query.filter_by(email=admin_email).first()
    if admin:
        updates = False
        if admin.role != "admin":
            admin.role = "admin"
            updates = True
        if not admin.is_active:
            admin.is_active = True
            updates = True
        if updates:
            db.session.add(admin)
            db.session.commit()
        return

    admin = Profile(
        full_name="System Administrator",
        email=admin_email,
        department=department,
        role="admin",
        is_active=True,
    )
    admin.set_password(admin_password)
    db.session.add(admin)
    db.session.commit()
    app.logger.info("Default admin created", extra={"email": admin_email, "department": department})


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For SQLite just make sure the parent directory exists.
        if url.database:
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # If we cannot connect/create, let the normal app startup fail loudly later.
            pass
        finally:
            engine.dispose()


def load_principal(user_id: str):
    """Resolve a Flask-Login id of the form ``official:<id>`` or ``citizen:<id>``."""
    from models import CitizenProfile, Profile  # Local import to avoid circular dependency

    if not user_id or ":" not in user_id:
        return None
    kind, _, raw_id = user_id.partition(":")
    model = {"official": Profile, "citizen": CitizenProfile}.get(kind)
    if model is None:
        return None
    return db.session.get(model, raw_id)


def create_app(config_name: Optional[str] = None, test_config: Optional[dict] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())
    if test_config:
        app.config.update(test_config)

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    if not app.config.get("TESTING"):
        app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)
    os.makedirs(app.config["COMPLAINT_UPLOAD_FOLDER"], exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    # Initialize extensions
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.session_protection = "strong"
    login_manager.user_loader(load_principal)

    @login_manager.unauthorized_handler
    def unauthorized():
        return _error("Authentication required", 401)

    feed_for(app)

    # Blueprints
    from routes import admin_bp, auth_bp, citizen_bp, department_bp, main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(department_bp)
    app.register_blueprint(citizen_bp)
    app.register_blueprint(admin_bp)

    # Error handlers
    register_error_handlers(app)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        db.create_all()
        ensure_default_admin(app)

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, use_reloader=False)
