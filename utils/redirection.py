"""Redirection decision engine.

Picks the department a complaint should be sent to: the first complaint image
goes to the vision classifier, and when that is unavailable, fails, or answers
with something unrecognisable, a keyword categorizer over the text decides
instead. Classifier trouble never blocks a redirect; only the final write can
fail the request.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from flask import current_app

from models import Complaint, Profile
from utils.ai_vision import AIVisionError, classify_redirect_department
from utils.categorizer import categorize_text
from utils.lifecycle import (
    RedirectNotAllowed,
    can_redirect,
    ensure_redirectable,
    get_complaint,
    redirect_complaint,
)
from utils.storage import StorageError, load_image

REDIRECT_TARGETS: tuple[str, ...] = ("water", "energy", "pwd")

# Keyword outcome -> department. Anything missing here goes to FALLBACK_DEPARTMENT.
CATEGORY_DEPARTMENTS = {
    "water": "water",
    "electricity": "energy",
    "pwd": "pwd",
}

# Not one of REDIRECT_TARGETS; kept as the historical routing for "other".
FALLBACK_DEPARTMENT = "municipal"

ImageClassifier = Callable[[bytes, str, str], Optional[str]]
TextCategorizer = Callable[[str], str]
ImageLoader = Callable[[str], Tuple[bytes, str]]


@dataclass(frozen=True)
class RedirectDecision:
    target: str
    source: str  # "ai" or "fallback"
    category: Optional[str] = None

    @property
    def default_reason(self) -> str:
        return f"AI-categorized as {self.target}"


def complaint_text(complaint: Complaint) -> str:
    return f"{complaint.title or ''} {complaint.description or ''}".strip()


def _classify_image(
    complaint: Complaint,
    classifier: ImageClassifier,
    image_loader: ImageLoader,
) -> Optional[str]:
    image_url = complaint.first_image
    if not image_url:
        return None
    try:
        image_bytes, mime_type = image_loader(image_url)
        department = classifier(image_bytes, mime_type, complaint.description or "")
    except (AIVisionError, StorageError) as exc:
        current_app.logger.warning(
            "Image classification unavailable, using text fallback",
            extra={"complaint_id": complaint.id, "error": str(exc)},
        )
        return None
    except Exception:  # pragma: no cover - third-party client surprises
        current_app.logger.exception(
            "Unexpected classifier failure, using text fallback",
            extra={"complaint_id": complaint.id},
        )
        return None
    if department not in REDIRECT_TARGETS:
        current_app.logger.info(
            "Classifier answer not recognised, using text fallback",
            extra={"complaint_id": complaint.id, "answer": department},
        )
        return None
    return department


def decide_target(
    complaint: Complaint,
    classifier: Optional[ImageClassifier] = None,
    categorizer: Optional[TextCategorizer] = None,
    image_loader: Optional[ImageLoader] = None,
) -> RedirectDecision:
    classifier = classifier or classify_redirect_department
    categorizer = categorizer or categorize_text
    image_loader = image_loader or load_image
    department = _classify_image(complaint, classifier, image_loader)
    if department:
        return RedirectDecision(target=department, source="ai")

    category = categorizer(complaint_text(complaint))
    target = CATEGORY_DEPARTMENTS.get(category, FALLBACK_DEPARTMENT)
    return RedirectDecision(target=target, source="fallback", category=category)


def redirect_with_ai(
    complaint_id: str,
    official: Profile,
    reason: Optional[str] = None,
    classifier: Optional[ImageClassifier] = None,
    categorizer: Optional[TextCategorizer] = None,
    image_loader: Optional[ImageLoader] = None,
):
    """Decide where a complaint goes and persist the move.

    Returns ``(complaint, redirect_record, decision)``.
    """
    if not can_redirect(official):
        raise RedirectNotAllowed(
            f"The {official.department} department can only accept complaints",
            complaint_id=complaint_id,
        )
    complaint = get_complaint(complaint_id)
    ensure_redirectable(complaint, official.department)

    decision = decide_target(complaint, classifier=classifier, categorizer=categorizer, image_loader=image_loader)
    current_app.logger.info(
        "Redirect target decided",
        extra={
            "complaint_id": complaint.id,
            "target": decision.target,
            "source": decision.source,
            "category": decision.category,
        },
    )
    updated, record = redirect_complaint(
        complaint.id,
        official.department,
        decision.target,
        official.id,
        reason=(reason or "").strip() or decision.default_reason,
    )
    return updated, record, decision
