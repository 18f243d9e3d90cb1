"""
Free-tier monthly review quota.

The window is the current calendar month on the local server clock,
starting at midnight on the 1st. Counting and the later insert are not
wrapped in a lock or transaction, so two concurrent submissions at the
limit can both pass; an overrun of one is tolerated.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from code_roast.billing import PLAN_FREE
from code_roast.entities import CodeReview
from code_roast.errors import QuotaExceeded
from code_roast.models import Entitlement, MonthlyUsage

FREE_MONTHLY_REVIEW_LIMIT = 10


def quota_window_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def count_reviews_since(db: Session, user_id: str, since: datetime) -> int:
    return (
        db.query(func.count(CodeReview.id))
        .filter(CodeReview.user_id == user_id, CodeReview.created_at >= since)
        .scalar()
    ) or 0


def enforce_free_quota(
    db: Session,
    user_id: str,
    entitlement: Entitlement,
    limit: int = FREE_MONTHLY_REVIEW_LIMIT,
    now: Optional[datetime] = None,
) -> None:
    """Raise QuotaExceeded when a free user has used up this month's reviews.

    Only the plan name is checked: any non-free plan skips counting,
    whatever its status.
    """
    if entitlement.plan != PLAN_FREE:
        return

    used = count_reviews_since(db, user_id, quota_window_start(now))
    if used >= limit:
        raise QuotaExceeded(
            f"You've reached your monthly limit of {limit} free reviews. Please upgrade to continue."
        )


def monthly_usage(
    db: Session,
    user_id: str,
    entitlement: Entitlement,
    limit: int = FREE_MONTHLY_REVIEW_LIMIT,
    now: Optional[datetime] = None,
) -> MonthlyUsage:
    start = quota_window_start(now)
    used = count_reviews_since(db, user_id, start)
    if entitlement.plan != PLAN_FREE:
        return MonthlyUsage(used=used, window_start=start)
    return MonthlyUsage(used=used, limit=limit, remaining=max(limit - used, 0), window_start=start)
