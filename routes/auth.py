"""Sign-in for department officials and citizens, and citizen sign-up."""
from flask import Blueprint, current_app, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf import FlaskForm
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import IntegrityError
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional, ValidationError

from extensions import csrf, db
from models import CitizenProfile, Profile, utcnow
from utils.audit import log_action
from utils.security import is_safe_redirect_url, password_meets_policy

auth_bp = Blueprint("auth", __name__)


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired()])
    remember_me = BooleanField("Remember me")


class CitizenRegistrationForm(FlaskForm):
    full_name = StringField("Full Name", validators=[DataRequired(), Length(max=150)])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    phone = StringField("Phone", validators=[Optional(), Length(max=20)])
    city = StringField("City", validators=[Optional(), Length(max=120)])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=12)])

    def validate_email(self, field):
        if CitizenProfile.query.filter_by(email=field.data.lower().strip()).first():
            raise ValidationError("An account with this email already exists.")


def _principal_payload(user) -> dict:
    kind = "citizen" if isinstance(user, CitizenProfile) else "official"
    return {"kind": kind, "user": user.to_dict()}


def _sign_in(model, kind: str):
    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid sign-in request", "fields": form.errors}), 400

    user = model.query.filter_by(email=form.email.data.lower().strip()).first()
    if not user or not user.check_password(form.password.data):
        log_action("LOGIN_FAILED", user, context=kind)
        db.session.commit()
        current_app.logger.warning("Failed sign-in", extra={"kind": kind, "ip": request.remote_addr})
        return jsonify({"error": "Invalid credentials provided."}), 401

    if not user.is_active:
        return jsonify({"error": "Your account is inactive. Please contact support."}), 403

    login_user(user, remember=bool(form.remember_me.data))
    session.permanent = True
    if isinstance(user, Profile):
        user.last_login_at = utcnow()
        db.session.add(user)
    log_action("LOGIN", user, context=kind)
    db.session.commit()

    payload = _principal_payload(user)
    next_page = request.args.get("next")
    if next_page and is_safe_redirect_url(next_page):
        payload["next"] = next_page
    return jsonify(payload)


@auth_bp.route("/official/login", methods=["POST"])
def official_login():
    return _sign_in(Profile, "official")


@auth_bp.route("/citizen/login", methods=["POST"])
def citizen_login():
    return _sign_in(CitizenProfile, "citizen")


@auth_bp.route("/citizen/register", methods=["POST"])
def citizen_register():
    form = CitizenRegistrationForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid registration", "fields": form.errors}), 400

    password_ok, reason = password_meets_policy(form.password.data)
    if not password_ok:
        return jsonify({"error": reason, "fields": {"password": [reason]}}), 400

    citizen = CitizenProfile(
        full_name=form.full_name.data.strip(),
        email=form.email.data.lower().strip(),
        phone=(form.phone.data or "").strip() or None,
        city=(form.city.data or "").strip() or None,
        is_active=True,
    )
    citizen.set_password(form.password.data)
    try:
        db.session.add(citizen)
        db.session.flush()
        log_action("REGISTER", citizen)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "Unable to register with the provided details."}), 409

    login_user(citizen)
    return jsonify(_principal_payload(citizen)), 201


@auth_bp.route("/logout", methods=["POST"])
@csrf.exempt
@login_required
def logout():
    user = current_user._get_current_object()
    logout_user()
    session.clear()
    log_action("LOGOUT", user)
    db.session.commit()
    return jsonify({"message": "Signed out"})


@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    """Issue a token for the session; send it back in the X-CSRFToken header on every POST."""
    return jsonify({"csrf_token": generate_csrf(), "header": "X-CSRFToken"})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(_principal_payload(current_user))
