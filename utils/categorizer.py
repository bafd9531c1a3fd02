"""Deterministic keyword categorizer for complaint text."""
import re
from typing import Dict, Tuple

# Order doubles as the tie-break when two categories score the same.
CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "water": (
        "water",
        "pipe",
        "pipeline",
        "leak",
        "leakage",
        "drain",
        "drainage",
        "sewage",
        "sewer",
        "tap",
        "water supply",
        "flood",
        "waterlogging",
        "overflow",
        "manhole",
        "borewell",
        "tank",
    ),
    "electricity": (
        "electricity",
        "electric",
        "power",
        "power supply",
        "current",
        "transformer",
        "streetlight",
        "street light",
        "lamp",
        "wire",
        "wires",
        "cable",
        "pole",
        "voltage",
        "outage",
        "blackout",
        "meter",
        "shock",
    ),
    "pwd": (
        "road",
        "roads",
        "pothole",
        "potholes",
        "bridge",
        "footpath",
        "pavement",
        "culvert",
        "highway",
        "street",
        "crack",
        "building",
        "wall",
        "construction",
        "divider",
        "speed breaker",
    ),
}

FALLBACK_CATEGORY = "other"


def _compile(keywords: Tuple[str, ...]) -> re.Pattern:
    alternatives = "|".join(
        r"\s+".join(re.escape(word) for word in k.split()) for k in sorted(keywords, key=len, reverse=True)
    )
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_PATTERNS = {category: _compile(words) for category, words in CATEGORY_KEYWORDS.items()}


def score_text(text: str) -> Dict[str, int]:
    return {category: len(pattern.findall(text or "")) for category, pattern in _PATTERNS.items()}


def categorize_text(text: str) -> str:
    """Return one of water, electricity, pwd or other for free complaint text."""
    scores = score_text(text)
    best_category, best_score = FALLBACK_CATEGORY, 0
    for category in CATEGORY_KEYWORDS:
        if scores[category] > best_score:
            best_category, best_score = category, scores[category]
    return best_category
