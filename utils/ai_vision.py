"""Gemini Vision integration for complaint routing and citizen form prefill."""
import json
import re
from typing import Any, Dict, List

import bleach
from flask import current_app
from google import genai
from google.genai import types

from models import GOVERNING_BODIES, ISSUE_CATEGORIES

# Free-text governing body names the model tends to answer with.
_GOVERNING_BODY_ALIASES = {
    "municipality": "municipal",
    "municipal": "municipal",
    "corporation": "corporation",
    "town panchayat": "town_panchayat",
    "town_panchayat": "town_panchayat",
    "panchayat": "panchayat",
}


class AIVisionError(Exception):
    """Raised when Gemini Vision cannot return a usable result."""


def _first_json_block(text: str) -> str:
    """Extract the first JSON object block from free-form text."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def _safe_json_loads(raw_text: str) -> Dict[str, Any]:
    """Parse JSON robustly, tolerating leading/trailing noise or code fences."""
    cleaned = raw_text.strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        block = _first_json_block(cleaned)
        return json.loads(block)


def _plain_text(value: Any) -> str:
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], attributes={}, strip=True).strip()


def _models_to_try() -> List[str]:
    primary = current_app.config.get("GEMINI_VISION_MODEL", "gemini-2.5-flash")
    fallback = current_app.config.get("GEMINI_FALLBACK_MODEL") or primary
    attempts = max(1, int(current_app.config.get("AI_MAX_ATTEMPTS", 2)))
    models = [primary] + [fallback] * (attempts - 1)
    return models[:attempts]


def _response_text(response) -> str:
    raw_text = (getattr(response, "text", None) or "").strip()
    if not raw_text and getattr(response, "candidates", None):
        parts = response.candidates[0].content.parts if response.candidates[0].content else []
        raw_text = "".join(getattr(p, "text", "") or "" for p in parts).strip()
    return raw_text


def generate_with_image(image_bytes: bytes, mime_type: str, prompt: str, json_output: bool = False) -> str:
    """Run one multimodal prompt, retrying once on a second model before giving up.

    Every attempt is bounded by ``AI_TIMEOUT_SECONDS``.
    """
    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        raise AIVisionError("GEMINI_API_KEY is not configured")

    timeout_ms = int(float(current_app.config.get("AI_TIMEOUT_SECONDS", 20)) * 1000)
    client = genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=timeout_ms))
    config = types.GenerateContentConfig(response_mime_type="application/json") if json_output else None

    last_error: Exception | None = None
    for attempt, model_name in enumerate(_models_to_try(), start=1):
        current_app.logger.info(
            "Dispatching Gemini Vision request",
            extra={"model": model_name, "attempt": attempt},
        )
        try:
            response = client.models.generate_content(
                model=model_name,
                contents=[
                    types.Part.from_text(text=prompt),
                    types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                ],
                config=config,
            )
        except Exception as exc:  # pragma: no cover - relies on remote service
            current_app.logger.warning(
                "Gemini Vision request failed",
                extra={"model": model_name, "attempt": attempt, "error": str(exc)},
            )
            last_error = exc
            continue

        raw_text = _response_text(response)
        if raw_text:
            return raw_text
        last_error = AIVisionError("Gemini Vision returned empty response")

    raise AIVisionError("Gemini Vision request failed") from last_error


def build_redirect_prompt(user_description: str) -> str:
    return (
        "You are a civic issue classification assistant.\n\n"
        f'A user has reported the following issue:\n"{user_description}"\n\n'
        "Analyze the IMAGE carefully and choose ONLY ONE department "
        "based strictly on the issue visible in the image.\n\n"
        "Allowed departments:\n- PWD\n- Water\n- Energy\n\n"
        "OUTPUT RULES:\n"
        "- Return ONLY ONE word\n- No explanation\n- No JSON\n- No extra text\n\n"
        "Output must be exactly one of:\nPWD\nWater\nEnergy\n"
    )


def parse_department_response(text: str | None) -> str | None:
    """Map a free-text classifier answer to water, energy or pwd; None when it names none."""
    normalized = (text or "").strip().upper()
    if "WATER" in normalized:
        return "water"
    if "ENERGY" in normalized or "ELECTRICITY" in normalized:
        return "energy"
    if "PWD" in normalized:
        return "pwd"
    return None


def classify_redirect_department(image_bytes: bytes, mime_type: str, user_description: str) -> str | None:
    raw_text = generate_with_image(image_bytes, mime_type, build_redirect_prompt(user_description))
    department = parse_department_response(raw_text)
    current_app.logger.info(
        "Gemini redirect classification",
        extra={"raw": raw_text[:40], "department": department},
    )
    return department


def build_issue_prompt(user_description: str = "") -> str:
    categories = "|".join(ISSUE_CATEGORIES)
    return (
        "You are a civic issue classification assistant. "
        f'A user has reported the following problem: "{user_description}". '
        "Analyze the uploaded image and decide: "
        "1. a concise problem title based on the image (e.g. Transformer issue, Drainage issue, "
        "Garbage accumulation, Water leakage, Road damage, Streetlight not working); "
        "2. the local governing body, only one of Municipality, Corporation, Town Panchayat, Panchayat; "
        f"3. the category, only one of {categories}; "
        "4. the location in geo-tag name format (street / area / city or town / district) if inferable; "
        "5. a reason explaining what the issue is, why it is a public issue, potential risks "
        "and which authority should act. "
        "Return strict JSON only, no markdown: "
        '{"problem": "", "governing_body": "", "category": "", "location": "", "reason": ""}'
    )


def normalize_governing_body(value: Any) -> str | None:
    text = _plain_text(value).lower()
    if not text:
        return None
    if text in GOVERNING_BODIES:
        return text
    # Longest alias first so "town panchayat" is not read as "panchayat".
    for alias in sorted(_GOVERNING_BODY_ALIASES, key=len, reverse=True):
        if alias in text:
            return _GOVERNING_BODY_ALIASES[alias]
    return None


def normalize_citizen_category(value: Any) -> str:
    text = _plain_text(value).lower().replace(" ", "_")
    return text if text in ISSUE_CATEGORIES else "other"


def analyze_issue_image(image_bytes: bytes, mime_type: str, user_description: str = "") -> Dict[str, Any]:
    """Suggest form fields for a citizen submission from its photo."""
    raw_text = generate_with_image(image_bytes, mime_type, build_issue_prompt(user_description), json_output=True)
    try:
        payload = _safe_json_loads(raw_text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise AIVisionError("Gemini Vision returned non-JSON output") from exc
    if not isinstance(payload, dict):
        raise AIVisionError("Gemini Vision returned an unexpected payload")

    problem = _plain_text(payload.get("problem"))
    reason = _plain_text(payload.get("reason"))
    if not problem and not reason:
        raise AIVisionError("Gemini Vision did not describe the issue")

    return {
        "problem": problem,
        "governing_body": normalize_governing_body(payload.get("governing_body")),
        "category": normalize_citizen_category(payload.get("category")),
        "location": _plain_text(payload.get("location")),
        "reason": reason,
    }
