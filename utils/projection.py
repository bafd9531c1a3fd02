"""Citizen-side read model derived from department-side complaint records."""
from typing import Dict, List, Optional, Tuple

from models import Complaint, ISSUE_STATUSES
from utils.change_feed import ChangeFeed, ComplaintChange

_CATEGORY_TO_ISSUE = {
    "water": "water_supply",
    "electricity": "electricity",
    "pwd": "road_damage",
    "other": "other",
}

# Many-to-one: drainage and water_supply both land on "water", and so on.
_ISSUE_TO_CATEGORY = {
    "road_damage": "pwd",
    "streetlight": "electricity",
    "drainage": "water",
    "garbage": "other",
    "water_supply": "water",
    "electricity": "electricity",
    "public_property": "pwd",
    "other": "other",
}

_ISSUE_TO_STATUS = {
    "pending": "new",
    "seen": "in_progress",
    "progress": "in_progress",
    "completed": "completed",
}

TRACKER_STEPS: Tuple[Tuple[str, str], ...] = (
    ("pending", "Pending"),
    ("seen", "Seen"),
    ("progress", "In Progress"),
    ("completed", "Completed"),
)


def to_issue_status(status: Optional[str], progress_stage: Optional[str] = None) -> str:
    if status == "in_progress":
        return "progress" if progress_stage == "progress" else "seen"
    if status == "completed":
        return "completed"
    # new, redirected and anything unrecognised read as not yet actioned
    return "pending"


def to_issue_category(category: Optional[str]) -> str:
    return _CATEGORY_TO_ISSUE.get(category or "", "other")


def to_complaint_category(issue_category: Optional[str]) -> str:
    return _ISSUE_TO_CATEGORY.get(issue_category or "", "other")


def to_complaint_status(issue_status: Optional[str]) -> str:
    return _ISSUE_TO_STATUS.get(issue_status or "", "new")


def status_tracker(issue_status: str) -> List[Dict]:
    """The four-step tracker shown to citizens, with each step's state."""
    current_index = ISSUE_STATUSES.index(issue_status) if issue_status in ISSUE_STATUSES else 0
    steps = []
    for index, (key, label) in enumerate(TRACKER_STEPS):
        if index < current_index or (index == current_index and key == "completed"):
            state = "done"
        elif index == current_index:
            state = "current"
        else:
            state = "upcoming"
        steps.append({"key": key, "label": label, "state": state})
    return steps


def project_issue(complaint: Complaint) -> Dict:
    images = complaint.complaint_images or []
    issue_status = to_issue_status(complaint.status, complaint.progress_stage)
    return {
        "id": complaint.id,
        "title": complaint.title,
        "description": complaint.description,
        "category": to_issue_category(complaint.category),
        "department": complaint.assigned_department or "municipal",
        "status": issue_status,
        "location": complaint.location,
        "latitude": complaint.latitude,
        "longitude": complaint.longitude,
        "image_url": images[0] if images else "",
        "solved_image_url": complaint.solution_image or "",
        "user_name": complaint.citizen_name,
        "citizen_email": complaint.citizen_email,
        "city": complaint.city or "",
        "created_at": complaint.created_at.isoformat() if complaint.created_at else None,
        "updated_at": complaint.updated_at.isoformat() if complaint.updated_at else None,
        "resolved_at": complaint.resolved_at.isoformat() if complaint.resolved_at else None,
    }


def issues_for_citizen(citizen_id: str, statuses: Optional[List[str]] = None) -> List[Dict]:
    """Fresh projection of a citizen's complaints, newest first, optionally filtered by citizen status."""
    complaints = (
        Complaint.query.filter(Complaint.citizen_id == citizen_id)
        .order_by(Complaint.created_at.desc())
        .all()
    )
    issues = [project_issue(c) for c in complaints]
    if statuses:
        wanted = set(statuses)
        issues = [issue for issue in issues if issue["status"] in wanted]
    return issues


class CitizenIssueBoard:
    """A citizen's issue list that re-derives itself whenever the store changes.

    ``snapshot`` always returns a new tuple; callers never share mutable state
    with the board.
    """

    def __init__(self, citizen_id: str, feed: ChangeFeed) -> None:
        self.citizen_id = citizen_id
        self._issues: Tuple[Dict, ...] = ()
        self._unsubscribe = feed.subscribe(self._on_change)
        self.refresh()

    def _on_change(self, change: ComplaintChange) -> None:
        self.refresh()

    def refresh(self) -> None:
        self._issues = tuple(issues_for_citizen(self.citizen_id))

    def snapshot(self) -> Tuple[Dict, ...]:
        return tuple(dict(issue) for issue in self._issues)

    def close(self) -> None:
        self._unsubscribe()
