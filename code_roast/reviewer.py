"""
Core reviewer module.

Orchestrates entitlement/quota checks, the LLM call, response salvage and
persistence. Unusable model output never fails a review: it degrades to a
fallback result that is stored and returned like any other.
"""

import logging
import random
import time
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from code_roast.api_keys import authenticate_api_key
from code_roast.billing import resolve_entitlement
from code_roast.client import ReviewClient
from code_roast.entities import CodeReview
from code_roast.errors import NotFound, PersistenceError, Unauthenticated, ValidationError
from code_roast.models import ReviewResult, StoredReview, SubmittedReview
from code_roast.prompts import MAX_OUTPUT_TOKENS, PROMPT_VERSION, build_messages
from code_roast.quota import FREE_MONTHLY_REVIEW_LIMIT, enforce_free_quota
from code_roast.salvage import salvage_review

logger = logging.getLogger(__name__)

# Language assumed by the public API when the body omits it
DEFAULT_API_LANGUAGE = "javascript"


def validate_review_request(code: Optional[str], language: Optional[str]) -> None:
    """Raise ValidationError listing every empty field."""
    errors: Dict[str, List[str]] = {}
    if not code:
        errors["code"] = ["Code is required"]
    if not language:
        errors["language"] = ["Language is required"]
    if errors:
        raise ValidationError(errors)


def to_stored_review(row: CodeReview) -> StoredReview:
    return StoredReview(
        id=row.id,
        user_id=row.user_id,
        code=row.code,
        language=row.language,
        created_at=row.created_at,
        score=row.score,
        summary=row.summary,
        feedback=row.feedback,
        metrics=row.metrics,
    )


class ReviewPipeline:
    """
    Review a code submission end to end.

    Workflow:
    1. Identify the caller (session user or API key)
    2. Validate the submission
    3. Free plan only: enforce the monthly quota
    4. Call the review service (TransportError aborts, nothing stored)
    5. Salvage the output (never fails)
    6. Store the review and return it with its id
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        client: ReviewClient,
        free_monthly_limit: int = FREE_MONTHLY_REVIEW_LIMIT,
        rng: Optional[random.Random] = None,
    ):
        self.session_factory = session_factory
        self.client = client
        self.free_monthly_limit = free_monthly_limit
        self.rng = rng

    def submit(self, user_id: Optional[str], code: Optional[str], language: Optional[str]) -> SubmittedReview:
        """Interactive submission by a signed-in user."""
        if not user_id:
            raise Unauthenticated("You must be logged in to review code")

        validate_review_request(code, language)

        db = self.session_factory()
        try:
            entitlement = resolve_entitlement(db, user_id)
            enforce_free_quota(db, user_id, entitlement, limit=self.free_monthly_limit)
        finally:
            db.close()

        result = self.generate(code, language)
        review_id = self._persist(user_id, code, language, result)
        return SubmittedReview(id=review_id, **result.model_dump())

    def submit_with_api_key(
        self,
        authorization: Optional[str],
        code: Optional[str],
        language: Optional[str] = None,
    ) -> ReviewResult:
        """Programmatic submission. No monthly quota on this path."""
        user_id = self.authenticate_api_caller(authorization)
        return self.submit_for_api_caller(user_id, code, language)

    def authenticate_api_caller(self, authorization: Optional[str]) -> str:
        """Run the API-key gateway and return the key owner's id."""
        db = self.session_factory()
        try:
            return authenticate_api_key(db, authorization).user_id
        finally:
            db.close()

    def submit_for_api_caller(
        self,
        user_id: str,
        code: Optional[str],
        language: Optional[str] = None,
    ) -> ReviewResult:
        """Review for a caller the gateway has already let through."""
        if not code:
            raise ValidationError({"code": ["Code is required"]})
        language = language or DEFAULT_API_LANGUAGE

        result = self.generate(code, language)
        self._persist(user_id, code, language, result)
        return result

    def generate(self, code: str, language: str) -> ReviewResult:
        """Prompt, call and salvage. Only TransportError can escape."""
        start_time = time.time()
        raw = self.client.complete(build_messages(code, language), max_tokens=MAX_OUTPUT_TOKENS)
        outcome = salvage_review(raw, rng=self.rng)

        logger.info(
            "Review generated in %.2fs (prompt %s, provider %s, fallback=%s)",
            time.time() - start_time, PROMPT_VERSION, self.client.provider, outcome.degraded,
        )
        return outcome.result

    def _persist(self, user_id: str, code: str, language: str, result: ReviewResult) -> str:
        db = self.session_factory()
        try:
            dumped = result.model_dump(by_alias=True)
            row = CodeReview(
                user_id=user_id,
                code=code,
                language=language,
                score=result.score,
                summary=result.summary,
                feedback=dumped["feedback"],
                metrics=dumped["metrics"],
            )
            db.add(row)
            db.commit()
            return row.id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store review for user %s: %s", user_id, e.__class__.__name__)
            raise PersistenceError("Failed to save the review. Please try again.") from e
        finally:
            db.close()

    def recent_reviews(self, user_id: str, limit: int = 5) -> List[StoredReview]:
        db = self.session_factory()
        try:
            rows = (
                db.query(CodeReview)
                .filter(CodeReview.user_id == user_id)
                .order_by(CodeReview.created_at.desc())
                .limit(limit)
                .all()
            )
            return [to_stored_review(row) for row in rows]
        finally:
            db.close()

    def get_review(self, user_id: str, review_id: str) -> StoredReview:
        db = self.session_factory()
        try:
            row = (
                db.query(CodeReview)
                .filter(CodeReview.id == review_id, CodeReview.user_id == user_id)
                .one_or_none()
            )
            if row is None:
                raise NotFound("Review not found")
            return to_stored_review(row)
        finally:
            db.close()
