"""Audit trail rows for sign-ins, denials, and administrative actions."""
from flask import has_request_context, request

from extensions import db
from models import AuditLog, CitizenProfile, Profile


def actor_kind(actor) -> str | None:
    if isinstance(actor, Profile):
        return "admin" if actor.is_admin else "official"
    if isinstance(actor, CitizenProfile):
        return "citizen"
    return None


def log_action(action: str, actor=None, context: str | None = None) -> AuditLog:
    """Stage an audit row in the current session; the caller commits."""
    entry = AuditLog(
        actor_id=getattr(actor, "id", None),
        actor_kind=actor_kind(actor),
        action_type=action,
        ip_address=request.remote_addr if has_request_context() else None,
        user_agent=request.headers.get("User-Agent", "unknown")[:255] if has_request_context() else None,
        context_entity=context,
    )
    db.session.add(entry)
    return entry
