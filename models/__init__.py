"""Core data models for officials, citizens, complaints, redirects, and audit trails."""
import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import event
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def utcnow() -> datetime:
	"""Naive UTC timestamp, matching how every DateTime column is stored."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


DEPARTMENTS: tuple[str, ...] = (
	"municipal",
	"panchayat",
	"town_panchayat",
	"corporation",
	"water",
	"energy",
	"pwd",
)

# Departments that may only accept complaints, never pass them on.
RESTRICTED_DEPARTMENTS: frozenset[str] = frozenset({"water", "energy", "pwd"})

# Governing bodies a citizen can file with directly.
GOVERNING_BODIES: tuple[str, ...] = (
	"municipal",
	"panchayat",
	"town_panchayat",
	"corporation",
)

DEPARTMENT_LABELS: dict[str, str] = {
	"municipal": "Municipality",
	"panchayat": "Panchayat",
	"town_panchayat": "Town Panchayat",
	"corporation": "Corporation",
	"water": "Water Department",
	"energy": "Energy Department",
	"pwd": "PWD",
}

COMPLAINT_CATEGORIES: tuple[str, ...] = (
	"water",
	"electricity",
	"pwd",
	"other",
)

COMPLAINT_STATUSES: tuple[str, ...] = (
	"new",
	"in_progress",
	"completed",
	"redirected",
)

PROGRESS_STAGES: tuple[str, ...] = (
	"notified",
	"progress",
	"completed",
)

USER_ROLES: tuple[str, ...] = (
	"official",
	"admin",
)

# Citizen-facing vocabularies, derived from the department-side ones at read time.
ISSUE_STATUSES: tuple[str, ...] = (
	"pending",
	"seen",
	"progress",
	"completed",
)

ISSUE_CATEGORIES: tuple[str, ...] = (
	"road_damage",
	"streetlight",
	"drainage",
	"garbage",
	"water_supply",
	"electricity",
	"public_property",
	"other",
)


def _quoted(values) -> str:
	return ",".join(f"'{v}'" for v in values)


class Profile(UserMixin, db.Model):
	"""A department official."""

	__tablename__ = "dept_profiles"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	full_name = db.Column(db.String(150), nullable=True)
	department = db.Column(db.String(30), nullable=False, index=True)
	role = db.Column(db.String(20), nullable=False, default="official", index=True)
	location = db.Column(db.String(255), nullable=True)
	password_hash = db.Column(db.String(255), nullable=False)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
	last_login_at = db.Column(db.DateTime, nullable=True)

	__table_args__ = (
		db.CheckConstraint(f"department IN ({_quoted(DEPARTMENTS)})", name="ck_profile_department"),
		db.CheckConstraint(f"role IN ({_quoted(USER_ROLES)})", name="ck_profile_role"),
	)

	assigned_complaints = db.relationship("Complaint", back_populates="assigned_profile", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	def get_id(self) -> str:
		return f"official:{self.id}"

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	@property
	def is_restricted(self) -> bool:
		return self.department in RESTRICTED_DEPARTMENTS

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"email": self.email,
			"full_name": self.full_name,
			"department": self.department,
			"role": self.role,
			"location": self.location,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class CitizenProfile(UserMixin, db.Model):
	__tablename__ = "citizen_profiles"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	full_name = db.Column(db.String(150), nullable=False)
	phone = db.Column(db.String(20), nullable=True)
	city = db.Column(db.String(120), nullable=True)
	password_hash = db.Column(db.String(255), nullable=False)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	complaints = db.relationship("Complaint", back_populates="citizen", lazy="dynamic")
	notifications = db.relationship(
		"Notification",
		back_populates="user",
		lazy="dynamic",
		order_by="Notification.created_at.desc()",
	)

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	def get_id(self) -> str:
		return f"citizen:{self.id}"

	@property
	def active(self) -> bool:
		return self.is_active

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"email": self.email,
			"full_name": self.full_name,
			"phone": self.phone,
			"city": self.city,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(20), nullable=True, index=True)
	status = db.Column(db.String(20), nullable=False, default="new", index=True)
	progress_stage = db.Column(db.String(20), nullable=True, index=True)
	citizen_id = db.Column(db.String(36), db.ForeignKey("citizen_profiles.id"), nullable=True, index=True)
	citizen_name = db.Column(db.String(150), nullable=False)
	citizen_phone = db.Column(db.String(20), nullable=False, default="0000000000")
	citizen_email = db.Column(db.String(255), nullable=True, index=True)
	location = db.Column(db.String(500), nullable=False)
	city = db.Column(db.String(120), nullable=True)
	latitude = db.Column(db.Float, nullable=True)
	longitude = db.Column(db.Float, nullable=True)
	complaint_images = db.Column(db.JSON, nullable=False, default=list)
	solution_image = db.Column(db.String(1024), nullable=True)
	assigned_department = db.Column(db.String(30), nullable=True, index=True)
	assigned_to = db.Column(db.String(36), db.ForeignKey("dept_profiles.id"), nullable=True, index=True)
	resolved_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(f"status IN ({_quoted(COMPLAINT_STATUSES)})", name="ck_complaint_status"),
		db.CheckConstraint(
			f"progress_stage IS NULL OR progress_stage IN ({_quoted(PROGRESS_STAGES)})",
			name="ck_complaint_stage",
		),
		db.CheckConstraint(
			"progress_stage IS NULL OR status IN ('in_progress','completed')",
			name="ck_complaint_stage_requires_active",
		),
		db.CheckConstraint(
			"status <> 'completed' OR progress_stage = 'completed'",
			name="ck_complaint_completed_stage",
		),
		db.CheckConstraint(
			f"category IS NULL OR category IN ({_quoted(COMPLAINT_CATEGORIES)})",
			name="ck_complaint_category",
		),
		db.CheckConstraint(
			f"assigned_department IS NULL OR assigned_department IN ({_quoted(DEPARTMENTS)})",
			name="ck_complaint_department",
		),
	)

	citizen = db.relationship("CitizenProfile", back_populates="complaints")
	assigned_profile = db.relationship("Profile", back_populates="assigned_complaints")
	redirects = db.relationship(
		"ComplaintRedirect",
		back_populates="complaint",
		order_by="ComplaintRedirect.created_at.desc()",
		lazy="dynamic",
	)

	@staticmethod
	def visible_to(department: str):
		"""Base query for a department's queue: its own complaints plus unassigned ones."""
		return Complaint.query.filter(
			db.or_(
				Complaint.assigned_department == department,
				Complaint.assigned_department.is_(None),
			)
		)

	@property
	def first_image(self) -> str | None:
		images = self.complaint_images or []
		return images[0] if images else None

	def to_dict(self, include_profile: bool = False) -> dict:
		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"status": self.status,
			"progress_stage": self.progress_stage,
			"citizen_name": self.citizen_name,
			"citizen_phone": self.citizen_phone,
			"citizen_email": self.citizen_email,
			"location": self.location,
			"city": self.city,
			"latitude": self.latitude,
			"longitude": self.longitude,
			"complaint_images": list(self.complaint_images or []),
			"solution_image": self.solution_image,
			"assigned_department": self.assigned_department,
			"assigned_to": self.assigned_to,
			"resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
			"created_at": self.created_at.isoformat() if self.created_at else None,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
		}
		if include_profile:
			payload["assigned_profile"] = self.assigned_profile.to_dict() if self.assigned_profile else None
		return payload


class ComplaintRedirect(db.Model):
	"""Append-only record of a complaint moving between departments."""

	__tablename__ = "complaint_redirects"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	from_department = db.Column(db.String(30), nullable=False)
	to_department = db.Column(db.String(30), nullable=False)
	redirected_by = db.Column(db.String(36), db.ForeignKey("dept_profiles.id"), nullable=False)
	reason = db.Column(db.String(500), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(f"from_department IN ({_quoted(DEPARTMENTS)})", name="ck_redirect_from"),
		db.CheckConstraint(f"to_department IN ({_quoted(DEPARTMENTS)})", name="ck_redirect_to"),
	)

	complaint = db.relationship("Complaint", back_populates="redirects")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"complaint_id": self.complaint_id,
			"from_department": self.from_department,
			"to_department": self.to_department,
			"redirected_by": self.redirected_by,
			"reason": self.reason,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class ImmutableRecordError(RuntimeError):
	"""Raised when code tries to change an append-only record."""


@event.listens_for(ComplaintRedirect, "before_update")
def _redirect_is_append_only(mapper, connection, target):
	raise ImmutableRecordError(f"Complaint redirect {target.id} cannot be modified")


@event.listens_for(ComplaintRedirect, "before_delete")
def _redirect_is_never_deleted(mapper, connection, target):
	raise ImmutableRecordError(f"Complaint redirect {target.id} cannot be deleted")


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("citizen_profiles.id"), nullable=False, index=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=True, index=True)
	title = db.Column(db.String(255), nullable=False)
	message = db.Column(db.String(1000), nullable=False)
	is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	user = db.relationship("CitizenProfile", back_populates="notifications")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"complaint_id": self.complaint_id,
			"title": self.title,
			"message": self.message,
			"is_read": self.is_read,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	actor_id = db.Column(db.String(36), nullable=True, index=True)
	actor_kind = db.Column(db.String(20), nullable=True)
	action_type = db.Column(db.String(50), nullable=False, index=True)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	context_entity = db.Column(db.String(120), nullable=True)
	timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
