"""
Tests for the response salvager.

Run with: pytest tests/
"""

import json
import random

from code_roast.salvage import (
    FALLBACK_MESSAGE,
    fallback_review,
    from_braced_span,
    from_fenced_block,
    salvage_review,
)


def _assert_fallback(outcome):
    result = outcome.result
    assert outcome.degraded
    assert 50 <= result.score <= 89
    metrics = result.metrics
    for value in (metrics.readability, metrics.maintainability, metrics.efficiency,
                  metrics.best_practices, metrics.security):
        assert 50 <= value <= 89
    assert len(result.feedback) == 1
    assert result.feedback[0].type == "issue"
    assert result.feedback[0].message == FALLBACK_MESSAGE


def test_json_fence_round_trip(valid_review):
    """A ```json fence with all fields should come back field-for-field."""
    raw = "```json\n" + json.dumps(valid_review) + "\n```"
    outcome = salvage_review(raw)
    assert not outcome.degraded
    assert outcome.result.model_dump(by_alias=True) == valid_review


def test_plain_fence(valid_review):
    """Should accept a fence without the json tag."""
    raw = "Here you go:\n```\n" + json.dumps(valid_review, indent=2) + "\n```\nEnjoy."
    outcome = salvage_review(raw)
    assert not outcome.degraded
    assert outcome.result.score == valid_review["score"]


def test_object_surrounded_by_prose(valid_review):
    """Should find the braced span when there is no fence."""
    raw = "Sure! " + json.dumps(valid_review) + " Hope that stings."
    outcome = salvage_review(raw)
    assert not outcome.degraded
    assert outcome.result.metrics.best_practices == 60


def test_whole_text_json(valid_review):
    """Bare JSON should parse as-is."""
    outcome = salvage_review(json.dumps(valid_review))
    assert not outcome.degraded
    assert outcome.result.summary == valid_review["summary"]


def test_not_json_falls_back():
    """Garbage output should produce the fallback review, not an error."""
    _assert_fallback(salvage_review("not json at all"))


def test_none_falls_back():
    """A missing payload is treated like garbage."""
    _assert_fallback(salvage_review(None))


def test_missing_field_falls_back(valid_review):
    """Each required key must be present."""
    del valid_review["metrics"]
    _assert_fallback(salvage_review(json.dumps(valid_review)))


def test_zero_score_falls_back(valid_review):
    """A score of 0 counts as missing."""
    valid_review["score"] = 0
    _assert_fallback(salvage_review(json.dumps(valid_review)))


def test_empty_feedback_list_is_accepted(valid_review):
    """The model may return any number of feedback items."""
    valid_review["feedback"] = []
    outcome = salvage_review(json.dumps(valid_review))
    assert not outcome.degraded
    assert outcome.result.feedback == []


def test_invalid_feedback_items_are_skipped(valid_review):
    """One bad item is dropped; the rest of the review is kept."""
    valid_review["feedback"][0]["type"] = "praise"
    valid_review["feedback"].append({"message": "no type at all"})
    outcome = salvage_review(json.dumps(valid_review))
    assert not outcome.degraded
    assert [item.type for item in outcome.result.feedback] == ["issue", "suggestion", "positive"]
    assert outcome.result.score == valid_review["score"]


def test_feedback_that_is_not_a_list_falls_back(valid_review):
    valid_review["feedback"] = "looks fine"
    _assert_fallback(salvage_review(json.dumps(valid_review)))


def test_float_scores_are_rounded(valid_review):
    """Fractional scores keep the review instead of discarding it."""
    valid_review["score"] = 72.6
    valid_review["metrics"]["security"] = 74.2
    outcome = salvage_review(json.dumps(valid_review))
    assert not outcome.degraded
    assert outcome.result.score == 73
    assert outcome.result.metrics.security == 74


def test_out_of_range_metric_falls_back(valid_review):
    """Scores must stay within 0-100."""
    valid_review["metrics"]["security"] = 140
    _assert_fallback(salvage_review(json.dumps(valid_review)))


def test_first_fence_wins_even_if_invalid(valid_review):
    """A non-JSON fence is not skipped in favour of a later object."""
    raw = "```python\nprint('hi')\n```\n" + json.dumps(valid_review)
    outcome = salvage_review(raw)
    assert outcome.degraded
    assert "invalid JSON" in outcome.reason


def test_locators():
    """Locators return None when they find nothing."""
    assert from_fenced_block("no fence here") is None
    assert from_braced_span("no braces here") is None
    assert from_braced_span('a {"x": 1} b {"y": 2} c') == '{"x": 1} b {"y": 2}'


def test_fallback_is_reproducible_with_seed():
    """Same seed, same fallback scores."""
    first = fallback_review(random.Random(7))
    second = fallback_review(random.Random(7))
    assert first == second
