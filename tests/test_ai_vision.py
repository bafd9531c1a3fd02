"""Gemini response parsing and prefill normalisation tests (no network)."""

import json

import pytest

import utils.ai_vision as ai_vision
from utils.ai_vision import (
    AIVisionError,
    _safe_json_loads,
    analyze_issue_image,
    generate_with_image,
    normalize_citizen_category,
    normalize_governing_body,
    parse_department_response,
)


@pytest.mark.parametrize(
    "answer, expected",
    [
        ("Water", "water"),
        ("  water department\n", "water"),
        ("ENERGY", "energy"),
        ("Electricity board", "energy"),
        ("PWD", "pwd"),
        ("Fire brigade", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_department_response(answer, expected):
    assert parse_department_response(answer) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Municipality", "municipal"),
        ("Town Panchayat", "town_panchayat"),
        ("panchayat", "panchayat"),
        ("Kochi Municipal Corporation", "corporation"),
        ("<b>Corporation</b>", "corporation"),
        ("State Government", None),
        (None, None),
    ],
)
def test_normalize_governing_body(value, expected):
    assert normalize_governing_body(value) == expected


def test_normalize_citizen_category():
    assert normalize_citizen_category("Road Damage") == "road_damage"
    assert normalize_citizen_category("streetlight") == "streetlight"
    assert normalize_citizen_category("potholes") == "other"


def test_safe_json_loads_tolerates_fences_and_noise():
    assert _safe_json_loads('```json\n{"problem": "Leak"}\n```') == {"problem": "Leak"}
    assert _safe_json_loads('Sure! {"problem": "Leak"} hope this helps') == {"problem": "Leak"}


def test_generate_requires_api_key(app):
    with app.app_context():
        with pytest.raises(AIVisionError):
            generate_with_image(b"img", "image/png", "prompt")


def test_analyze_issue_image_normalises_payload(app, monkeypatch):
    payload = {
        "problem": "<script>x</script>Water leakage",
        "governing_body": "Municipality",
        "category": "Water Supply",
        "location": "MG Road, Kochi",
        "reason": "Leaking pipe wastes water",
    }
    monkeypatch.setattr(ai_vision, "generate_with_image", lambda *a, **k: json.dumps(payload))

    with app.app_context():
        result = analyze_issue_image(b"img", "image/png", "leak")

    assert "<script>" not in result["problem"]
    assert result["problem"].endswith("Water leakage")
    assert result["governing_body"] == "municipal"
    assert result["category"] == "water_supply"
    assert result["location"] == "MG Road, Kochi"


def test_analyze_issue_image_rejects_non_json(app, monkeypatch):
    monkeypatch.setattr(ai_vision, "generate_with_image", lambda *a, **k: "I cannot help with that")
    with app.app_context():
        with pytest.raises(AIVisionError):
            analyze_issue_image(b"img", "image/png")
