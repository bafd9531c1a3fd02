"""Complaint lifecycle: the only code that writes status, stage, and assignment.

States and the transitions between them::

    new ──Accept──────────────▶ in_progress/notified ──Advance──▶ in_progress/progress
     │                              ▲                                   │
     └──Redirect (audit row)────────┘                                   └─Complete─▶ completed/completed

Every write is a single conditional UPDATE guarded on the state it expects to
find, so two officials racing for the same complaint cannot both win: the loser
matches zero rows and gets ``LifecycleConflict``.
"""
from typing import Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    COMPLAINT_STATUSES,
    DEPARTMENTS,
    PROGRESS_STAGES,
    RESTRICTED_DEPARTMENTS,
    Complaint,
    ComplaintRedirect,
    Profile,
    utcnow,
)
from utils.audit import log_action
from utils.change_feed import publish_change
from utils.notifications import notify_accepted, notify_completed
from utils.storage import StorageError, discard_upload, store_image

# (status, progress_stage) pairs a complaint may be written into.
WRITABLE_STATES: frozenset[Tuple[str, Optional[str]]] = frozenset(
    {
        ("new", None),
        ("in_progress", "notified"),
        ("in_progress", "progress"),
        ("completed", "completed"),
    }
)


class LifecycleError(Exception):
    status_code = 400

    def __init__(self, message: str, complaint_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.complaint_id = complaint_id


class LifecycleValidationError(LifecycleError):
    """Request rejected before anything was written."""

    status_code = 400


class RedirectNotAllowed(LifecycleError):
    status_code = 403


class ComplaintNotFound(LifecycleError):
    status_code = 404


class TransitionNotAllowed(LifecycleError):
    status_code = 409


class LifecycleConflict(LifecycleError):
    """The complaint changed under us; nothing was written."""

    status_code = 409


class PersistenceError(LifecycleError):
    status_code = 500


def state_is_valid(status: Optional[str], progress_stage: Optional[str]) -> bool:
    """Check the stage/status invariant for any stored pair, including legacy ``redirected`` rows."""
    if status not in COMPLAINT_STATUSES:
        return False
    if progress_stage is not None and progress_stage not in PROGRESS_STAGES:
        return False
    if progress_stage is not None and status not in ("in_progress", "completed"):
        return False
    if status == "completed" and progress_stage != "completed":
        return False
    return True


def can_redirect(profile: Optional[Profile]) -> bool:
    return bool(profile) and profile.department not in RESTRICTED_DEPARTMENTS


def get_complaint(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, str(complaint_id))
    if complaint is None:
        raise ComplaintNotFound("Complaint not found", complaint_id=complaint_id)
    return complaint


def complaint_visible_to(complaint: Complaint, profile: Profile) -> bool:
    if profile.is_admin:
        return True
    return complaint.assigned_department in (None, profile.department)


def department_queue_query(department: str, status: Optional[str] = None):
    """Query for the complaints a department sees: its own plus unassigned ones, newest first."""
    if department not in DEPARTMENTS:
        raise LifecycleValidationError(f"Unknown department: {department}")
    query = Complaint.visible_to(department)
    if status:
        if status not in COMPLAINT_STATUSES:
            raise LifecycleValidationError(f"Unknown status: {status}")
        query = query.filter(Complaint.status == status)
    return query.order_by(Complaint.created_at.desc())


def department_queue(department: str, status: Optional[str] = None) -> List[Complaint]:
    return department_queue_query(department, status=status).all()


def redirects_for(complaint_id: str) -> List[ComplaintRedirect]:
    return (
        ComplaintRedirect.query.filter_by(complaint_id=str(complaint_id))
        .order_by(ComplaintRedirect.created_at.desc())
        .all()
    )


def _write_status(
    complaint_id: str,
    new_status: str,
    new_stage: Optional[str],
    *,
    solution_image: Optional[str] = None,
    values: Optional[dict] = None,
    conditions: Iterable = (),
) -> None:
    """Stage a guarded status write in the current transaction without committing."""
    if (new_status, new_stage) not in WRITABLE_STATES:
        raise LifecycleValidationError(
            f"Invalid status/stage combination: {new_status}/{new_stage}",
            complaint_id=complaint_id,
        )
    now = utcnow()
    payload = {"status": new_status, "progress_stage": new_stage, "updated_at": now}
    if new_status == "completed":
        payload["resolved_at"] = now
    if solution_image:
        payload["solution_image"] = solution_image
    payload.update(values or {})

    statement = (
        update(Complaint)
        .where(Complaint.id == str(complaint_id), *conditions)
        .values(**payload)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(statement)
    if result.rowcount != 1:
        raise LifecycleConflict(
            "Complaint is no longer in the expected state",
            complaint_id=complaint_id,
        )


def _commit(action: str, complaint_id: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Lifecycle write failed",
            extra={"complaint_id": complaint_id, "action": action},
        )
        raise PersistenceError(f"Could not {action} complaint", complaint_id=complaint_id) from exc


def update_complaint_status(
    complaint_id: str,
    new_status: str,
    new_stage: Optional[str],
    solution_image: Optional[str] = None,
) -> Complaint:
    """Atomically set status, stage and (on completion) resolved_at; the generic write path."""
    get_complaint(complaint_id)
    try:
        _write_status(complaint_id, new_status, new_stage, solution_image=solution_image)
        log_action("STATUS_UPDATED", context=f"complaint:{complaint_id}:{new_status}/{new_stage}")
    except LifecycleError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Could not update complaint status", complaint_id=complaint_id) from exc
    _commit("update", complaint_id)
    publish_change(complaint_id, "updated")
    return get_complaint(complaint_id)


def accept_complaint(complaint_id: str, official: Profile) -> Complaint:
    if not official or not official.department:
        raise LifecycleValidationError("An official with a department is required to accept")
    department = official.department
    complaint = get_complaint(complaint_id)
    if complaint.status != "new":
        raise TransitionNotAllowed(
            f"Only new complaints can be accepted (current status: {complaint.status})",
            complaint_id=complaint_id,
        )
    if complaint.assigned_department not in (None, department):
        raise TransitionNotAllowed(
            "Complaint belongs to another department",
            complaint_id=complaint_id,
        )

    try:
        _write_status(
            complaint_id,
            "in_progress",
            "notified",
            values={"assigned_to": official.id, "assigned_department": department},
            conditions=(
                Complaint.status == "new",
                Complaint.assigned_to.is_(None),
                or_(Complaint.assigned_department.is_(None), Complaint.assigned_department == department),
            ),
        )
        log_action("COMPLAINT_ACCEPTED", official, context=f"complaint:{complaint_id}")
    except LifecycleError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Could not accept complaint", complaint_id=complaint_id) from exc
    _commit("accept", complaint_id)

    complaint = get_complaint(complaint_id)
    current_app.logger.info(
        "Complaint accepted",
        extra={"complaint_id": complaint_id, "department": department, "official": official.id},
    )
    notify_accepted(complaint)
    publish_change(complaint_id, "accepted")
    return complaint


def ensure_redirectable(complaint: Complaint, from_department: str) -> None:
    """Guard shared by the decision engine and the persistence call."""
    if from_department in RESTRICTED_DEPARTMENTS:
        raise RedirectNotAllowed(
            f"The {from_department} department can only accept complaints",
            complaint_id=complaint.id,
        )
    if complaint.assigned_department not in (None, from_department):
        raise TransitionNotAllowed("Complaint belongs to another department", complaint_id=complaint.id)
    if (complaint.status, complaint.progress_stage) not in (("new", None), ("in_progress", "notified")):
        raise TransitionNotAllowed(
            "Only complaints that have not been worked on can be redirected",
            complaint_id=complaint.id,
        )


def redirect_complaint(
    complaint_id: str,
    from_department: str,
    to_department: str,
    redirected_by: str,
    reason: Optional[str] = None,
) -> Tuple[Complaint, ComplaintRedirect]:
    """Retarget a complaint and append its audit row in one transaction."""
    if from_department not in DEPARTMENTS or to_department not in DEPARTMENTS:
        raise LifecycleValidationError("Unknown department", complaint_id=complaint_id)
    if not redirected_by:
        raise LifecycleValidationError("Redirecting official is required", complaint_id=complaint_id)
    complaint = get_complaint(complaint_id)
    ensure_redirectable(complaint, from_department)
    expected_status, expected_stage = complaint.status, complaint.progress_stage
    actor = db.session.get(Profile, str(redirected_by))

    record = ComplaintRedirect(
        complaint_id=complaint.id,
        from_department=from_department,
        to_department=to_department,
        redirected_by=redirected_by,
        reason=(reason or "").strip() or None,
    )
    try:
        _write_status(
            complaint_id,
            "in_progress",
            "notified",
            values={"assigned_department": to_department, "assigned_to": None},
            conditions=(
                Complaint.status == expected_status,
                Complaint.progress_stage.is_(None)
                if expected_stage is None
                else Complaint.progress_stage == expected_stage,
                or_(Complaint.assigned_department.is_(None), Complaint.assigned_department == from_department),
            ),
        )
        db.session.add(record)
        log_action(
            "COMPLAINT_REDIRECTED",
            actor,
            context=f"complaint:{complaint_id}:{from_department}->{to_department}",
        )
        db.session.flush()
    except LifecycleError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Could not redirect complaint", complaint_id=complaint_id) from exc
    _commit("redirect", complaint_id)

    current_app.logger.info(
        "Complaint redirected",
        extra={
            "complaint_id": complaint_id,
            "from": from_department,
            "to": to_department,
            "by": redirected_by,
        },
    )
    publish_change(complaint_id, "redirected")
    return get_complaint(complaint_id), record


def _ensure_owned(complaint: Complaint, official: Profile) -> None:
    if complaint.assigned_department != official.department:
        raise TransitionNotAllowed("Complaint is not assigned to your department", complaint_id=complaint.id)


def advance_stage(complaint_id: str, official: Profile, stage: str = "progress") -> Complaint:
    if stage == "completed":
        raise LifecycleValidationError(
            "Completing a complaint requires a solution image",
            complaint_id=complaint_id,
        )
    if stage != "progress":
        raise LifecycleValidationError(f"Cannot move a complaint to stage {stage!r}", complaint_id=complaint_id)

    complaint = get_complaint(complaint_id)
    if (complaint.status, complaint.progress_stage) != ("in_progress", "notified"):
        raise TransitionNotAllowed(
            "Only notified complaints can move into progress",
            complaint_id=complaint_id,
        )
    _ensure_owned(complaint, official)

    values = {}
    if complaint.assigned_to is None:
        # Redirected complaints arrive without an assignee; whoever starts work claims them.
        values["assigned_to"] = official.id
    try:
        _write_status(
            complaint_id,
            "in_progress",
            "progress",
            values=values,
            conditions=(
                Complaint.status == "in_progress",
                Complaint.progress_stage == "notified",
                Complaint.assigned_department == official.department,
            ),
        )
        log_action("STAGE_CHANGED", official, context=f"complaint:{complaint_id}:progress")
    except LifecycleError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Could not update progress stage", complaint_id=complaint_id) from exc
    _commit("advance", complaint_id)
    publish_change(complaint_id, "stage_changed")
    return get_complaint(complaint_id)


def complete_complaint(complaint_id: str, official: Profile, solution_file) -> Complaint:
    """Store the solution image, then close the complaint; nothing is written if either step fails."""
    if solution_file is None or not getattr(solution_file, "filename", None):
        raise LifecycleValidationError("A solution image is required to complete a complaint", complaint_id=complaint_id)

    complaint = get_complaint(complaint_id)
    if (complaint.status, complaint.progress_stage) != ("in_progress", "progress"):
        raise TransitionNotAllowed(
            "Only complaints in progress can be completed",
            complaint_id=complaint_id,
        )
    _ensure_owned(complaint, official)

    try:
        stored = store_image(solution_file, prefix=f"solution_{complaint.id}_")
    except StorageError as exc:
        raise LifecycleValidationError(str(exc), complaint_id=complaint_id) from exc
    except OSError as exc:
        current_app.logger.exception("Solution image upload failed", extra={"complaint_id": complaint_id})
        raise PersistenceError("Could not store solution image", complaint_id=complaint_id) from exc

    try:
        _write_status(
            complaint_id,
            "completed",
            "completed",
            solution_image=stored["url"],
            conditions=(
                Complaint.status == "in_progress",
                Complaint.progress_stage == "progress",
                Complaint.assigned_department == official.department,
            ),
        )
        log_action("COMPLAINT_COMPLETED", official, context=f"complaint:{complaint_id}")
        _commit("complete", complaint_id)
    except LifecycleError:
        db.session.rollback()
        discard_upload(stored["url"])
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        discard_upload(stored["url"])
        raise PersistenceError("Could not complete complaint", complaint_id=complaint_id) from exc

    complaint = get_complaint(complaint_id)
    current_app.logger.info(
        "Complaint completed",
        extra={"complaint_id": complaint_id, "official": official.id},
    )
    notify_completed(complaint)
    publish_change(complaint_id, "completed")
    return complaint
