# WORKFLOW: Unit tests for code normalization and candidate scoring.
# Used by: CI/CD pipelines, development testing
# Test scenarios:
# 1. Digit stripping, truncation and level thresholds
# 2. Too-short input reported as a structured error
# 3. Normalization is stable under repetition
# 4. Weighted prefix score and candidate ranking

import pytest

from api.schemas.response import ClassificationLevel
from services.candidate_matcher import rank_candidates, score
from services.code_normalizer import level_for_length, normalize, pad_to


@pytest.mark.parametrize("raw, digits, level", [
    ("84", "84", ClassificationLevel.CHAPTER),
    ("8471", "8471", ClassificationLevel.HEADING),
    ("847", "847", ClassificationLevel.HEADING),
    ("8471.30", "847130", ClassificationLevel.SUBHEADING),
    ("8471 30 00", "84713000", ClassificationLevel.CN),
    ("8471300010", "8471300010", ClassificationLevel.TARIC),
    ("847130001099", "8471300010", ClassificationLevel.TARIC),
])
def test_normalize_levels(raw, digits, level):
    normalized = normalize(raw)
    assert normalized.is_valid
    assert normalized.digits == digits
    assert normalized.length == len(digits)
    assert normalized.level == level


@pytest.mark.parametrize("raw", ["", "8", "abc", None, "-"])
def test_normalize_rejects_short_input(raw):
    normalized = normalize(raw)
    assert not normalized.is_valid
    assert normalized.level is None
    assert "at least 2 digits" in normalized.error


def test_level_for_length_below_minimum():
    assert level_for_length(1) is None
    assert level_for_length(9) == ClassificationLevel.TARIC


@pytest.mark.parametrize("raw", [
    "84", "8471.30", "HS 8471-30-00", "8471300010", "847130001099", "12 34 56 78 90 12", "8", "", "abc",
])
def test_normalize_is_a_projection(raw):
    once = normalize(raw)
    assert normalize(once.digits) == once


def test_padding():
    assert normalize("847130").normalized10 == "8471300000"
    assert pad_to("8471300010", 8) == "84713000"


def test_score_weights_leading_digits():
    assert score("8471300010", "8471300010") == sum(10 - i for i in range(10))
    assert score("8471300010", "8471300020") == sum(10 - i for i in range(8))
    assert score("8471300010", "9471300010") == 0
    assert score("", "8471") == 0


def test_rank_candidates_prefers_shared_subheading():
    declarables = [
        ("8471410010", "CPU and input unit"),
        ("8471300090", "Other"),
        ("8471300010", "Laptops"),
    ]
    ranked = rank_candidates("8471309900", declarables)
    assert [c.code for c in ranked] == ["8471300090", "8471300010"]
    assert ranked[0].match_score >= ranked[1].match_score


def test_rank_candidates_falls_back_to_heading_and_caps():
    declarables = [(f"84719{i:05d}", f"Item {i}") for i in range(15)]
    ranked = rank_candidates("8471120000", declarables)
    assert len(ranked) == 10
    assert all(c.code.startswith("8471") for c in ranked)


def test_six_shared_digits_outrank_four():
    assert score("8471309999", "8471300000") > score("8471309999", "8471801000")

    ranked = rank_candidates("8471309999", [("8471801000", "Other units"), ("8471300000", "Portable")])
    assert [c.code for c in ranked][0] == "8471300000"


def test_rank_candidates_sorts_heading_pool_by_score():
    # nothing shares 6 digits, so the 4-digit pool is ranked
    ranked = rank_candidates("8471309999", [("8471801000", "Other units"), ("8471390000", "Other portable")])
    assert [c.code for c in ranked] == ["8471390000", "8471801000"]
    assert ranked[0].match_score == 40
    assert ranked[1].match_score == 34
