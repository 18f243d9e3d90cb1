"""
Response salvager.

Model output is supposed to contain a JSON review, but it may arrive inside
a markdown fence, surrounded by prose, or not at all. Locators are tried in
order; the first one that finds a candidate decides what gets parsed. If the
candidate does not parse or does not look like a review, a fallback review
is produced instead of an error. Callers treat both outcomes the same way.
"""

import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from pydantic import ValidationError as SchemaError

from code_roast.models import FeedbackItem, ReviewMetrics, ReviewResult

logger = logging.getLogger(__name__)

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
BRACED_SPAN = re.compile(r"\{[\s\S]*\}")

REQUIRED_KEYS = ("score", "summary", "feedback", "metrics")

FALLBACK_SUMMARY = (
    "This code could use some improvement, but the AI had trouble providing specific feedback."
)
FALLBACK_MESSAGE = (
    "The AI couldn't properly analyze your code. Please try again or submit a simpler code sample."
)

# Fallback scores are uniform in [FALLBACK_LOW, FALLBACK_LOW + FALLBACK_WIDTH)
FALLBACK_LOW = 50
FALLBACK_WIDTH = 40


def from_fenced_block(text: str) -> Optional[str]:
    """Interior of the first ``` or ```json fence."""
    match = FENCED_BLOCK.search(text)
    if not match:
        return None
    # An empty fence falls back to the whole match, which will not parse
    return match.group(1) or match.group(0)


def from_braced_span(text: str) -> Optional[str]:
    """Greedy span from the first '{' to the last '}'."""
    match = BRACED_SPAN.search(text)
    return match.group(0) if match else None


def from_whole_text(text: str) -> Optional[str]:
    return text


LOCATORS: Sequence[Callable[[str], Optional[str]]] = (
    from_fenced_block,
    from_braced_span,
    from_whole_text,
)


@dataclass(frozen=True)
class SalvageOutcome:
    """A review plus whether it had to be synthesized."""

    result: ReviewResult
    degraded: bool = False
    reason: Optional[str] = None


def fallback_review(rng: Optional[random.Random] = None) -> ReviewResult:
    """Synthetic review used when model output is unusable."""
    rng = rng or random.Random()

    def roll() -> int:
        return rng.randrange(FALLBACK_LOW, FALLBACK_LOW + FALLBACK_WIDTH)

    return ReviewResult(
        score=roll(),
        summary=FALLBACK_SUMMARY,
        feedback=[FeedbackItem(type="issue", message=FALLBACK_MESSAGE)],
        metrics=ReviewMetrics(
            readability=roll(),
            maintainability=roll(),
            efficiency=roll(),
            best_practices=roll(),
            security=roll(),
        ),
    )


def _present(value) -> bool:
    # Empty lists and objects count as present; null, "", 0 and false do not
    if value is None or value is False:
        return False
    if isinstance(value, (str, int, float)):
        return bool(value)
    return True


def _usable_feedback(items: list) -> list:
    """Keep the feedback items that validate; skip the rest."""
    kept = []
    for item in items:
        try:
            kept.append(FeedbackItem.model_validate(item))
        except SchemaError as e:
            logger.warning("Skipping invalid feedback item: %s error(s)", e.error_count())
    return kept


def _round_scores(data: dict) -> None:
    # Models sometimes answer 72.5; scores are whole numbers
    if isinstance(data.get("score"), float):
        data["score"] = round(data["score"])
    metrics = data.get("metrics")
    if isinstance(metrics, dict):
        for key, value in metrics.items():
            if isinstance(value, float):
                metrics[key] = round(value)


def locate_candidate(text: str) -> Optional[str]:
    for locate in LOCATORS:
        candidate = locate(text)
        if candidate is not None:
            return candidate
    return None


def parse_review(text: str) -> ReviewResult:
    """
    Extract and validate a review from raw model text.

    Raises ValueError when the text holds no usable review.
    """
    candidate = locate_candidate(text)
    if candidate is None:
        raise ValueError("no JSON candidate found")

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise ValueError("JSON is not an object")

    missing = [key for key in REQUIRED_KEYS if not _present(data.get(key))]
    if missing:
        raise ValueError(f"missing or empty fields: {', '.join(missing)}")

    if isinstance(data["feedback"], list):
        data["feedback"] = _usable_feedback(data["feedback"])
    _round_scores(data)

    try:
        return ReviewResult.model_validate(data)
    except SchemaError as e:
        raise ValueError(f"schema mismatch: {e.error_count()} error(s)") from e


def salvage_review(raw: Optional[str], rng: Optional[random.Random] = None) -> SalvageOutcome:
    """Never raises: unusable output becomes a fallback review."""
    text = raw if isinstance(raw, str) else ""
    try:
        return SalvageOutcome(result=parse_review(text))
    except ValueError as e:
        logger.warning("Unusable model output, using fallback review: %s", e)
        logger.debug("Raw model output: %r", text[:2000])
        return SalvageOutcome(result=fallback_review(rng), degraded=True, reason=str(e))
