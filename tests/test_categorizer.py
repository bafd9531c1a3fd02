"""Keyword categorizer tests."""

import pytest

from utils.categorizer import categorize_text, score_text


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Water leaking from the main pipe", "water"),
        ("Sewage overflow near the bus stand", "water"),
        ("Power outage in our street since morning", "electricity"),
        ("Transformer sparking, wires hanging low", "electricity"),
        ("Huge pothole on the road near the bridge", "pwd"),
        ("Garbage has not been collected", "other"),
        ("", "other"),
    ],
)
def test_categorize_text(text, expected):
    assert categorize_text(text) == expected


def test_matching_ignores_case():
    assert categorize_text("WATER SUPPLY CUT") == "water"


@pytest.mark.parametrize(
    "text",
    ["No power supply in our street since morning", "Power supply cut for two days"],
)
def test_power_supply_is_electricity(text):
    assert categorize_text(text) == "electricity"
    assert score_text(text)["water"] == 0


def test_matches_whole_words_only():
    # "powerful" and "roadside" are not keyword hits
    assert categorize_text("A powerful storm hit the roadside stall") == "other"


def test_multi_word_keyword_tolerates_spacing():
    assert score_text("street   light broken")["electricity"] == 1


def test_ties_resolve_in_keyword_order():
    # one water hit, one electricity hit
    assert categorize_text("tap near the pole") == "water"
