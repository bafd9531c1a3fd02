"""Best-effort citizen notifications for lifecycle events."""
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import CitizenProfile, Complaint, Notification


def _recipient_for(complaint: Complaint) -> CitizenProfile | None:
    if complaint.citizen_id:
        return db.session.get(CitizenProfile, complaint.citizen_id)
    if complaint.citizen_email:
        return CitizenProfile.query.filter_by(email=complaint.citizen_email.lower()).first()
    return None


def notify_citizen(complaint: Complaint, title: str, message: str) -> Notification | None:
    """Write a notification for the complaint's citizen; failures are logged, never raised."""
    try:
        recipient = _recipient_for(complaint)
        if not recipient:
            return None
        notification = Notification(
            user_id=recipient.id,
            complaint_id=complaint.id,
            title=title,
            message=message,
            is_read=False,
        )
        db.session.add(notification)
        db.session.commit()
        return notification
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Citizen notification failed",
            extra={"complaint_id": complaint.id},
        )
    except Exception:  # pragma: no cover - safety net
        db.session.rollback()
        current_app.logger.exception(
            "Unexpected error while notifying citizen",
            extra={"complaint_id": complaint.id},
        )
    return None


def notify_accepted(complaint: Complaint) -> Notification | None:
    return notify_citizen(
        complaint,
        "Complaint Accepted",
        f'Your complaint "{complaint.title}" has been accepted.',
    )


def notify_completed(complaint: Complaint) -> Notification | None:
    return notify_citizen(
        complaint,
        "Complaint Resolved",
        f'Your complaint "{complaint.title}" has been marked as completed.',
    )
