"""Authorization decorators separating officials, admins, and citizens."""
from functools import wraps

from flask import abort, current_app, request
from flask_login import current_user, login_required

from extensions import db
from models import CitizenProfile, Profile
from utils.audit import log_action


def _deny(kind: str):
    current_app.logger.warning(
        "Unauthorized access attempt",
        extra={"user_id": getattr(current_user, "id", None), "required": kind, "path": request.path},
    )
    log_action("UNAUTHORIZED_ACCESS", current_user._get_current_object(), context=request.path)
    db.session.commit()
    abort(403)


def _kind_required(kind: str, check):
    def decorator(view_func):
        @wraps(view_func)
        @login_required
        def wrapped(*args, **kwargs):
            if check(current_user):
                return view_func(*args, **kwargs)
            return _deny(kind)

        return wrapped

    return decorator


def official_required(view_func):
    return _kind_required("official", lambda user: isinstance(user, Profile))(view_func)


def admin_required(view_func):
    return _kind_required("admin", lambda user: isinstance(user, Profile) and user.is_admin)(view_func)


def citizen_required(view_func):
    return _kind_required("citizen", lambda user: isinstance(user, CitizenProfile))(view_func)
