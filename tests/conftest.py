"""
Shared fixtures: an in-memory database and a scripted review client.
"""

import copy
import json
from datetime import datetime

import pytest

from code_roast.db import create_session_factory, init_db
from code_roast.entities import CodeReview, Subscription, User

VALID_REVIEW = {
    "score": 72,
    "summary": "It runs. That's the nicest thing I can say.",
    "feedback": [
        {"type": "roast", "message": "Variable names straight out of a ransom note."},
        {"type": "issue", "message": "No error handling around the network call."},
        {"type": "suggestion", "message": "Extract the parsing into its own function."},
        {"type": "positive", "message": "Consistent indentation, at least."},
    ],
    "metrics": {
        "readability": 65,
        "maintainability": 70,
        "efficiency": 80,
        "bestPractices": 60,
        "security": 75,
    },
}


class FakeClient:
    """Stands in for ReviewClient; replays canned replies or raises."""

    provider = "fake"

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, messages, max_tokens=2000):
        self.calls.append({"messages": messages, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def valid_review():
    return copy.deepcopy(VALID_REVIEW)


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite://")
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Create a user with a subscription row; returns the user id."""
    counter = {"n": 0}

    def _make(plan="free", status=None, subscription_id=None, email=None, name="Dev",
              cancel_at_period_end=False):
        counter["n"] += 1
        user = User(
            name=name,
            email=email or f"dev{counter['n']}@example.com",
            password_hash="not-a-real-hash",
        )
        db.add(user)
        db.flush()
        db.add(Subscription(
            user_id=user.id,
            stripe_customer_id=f"cus_{user.id}",
            stripe_subscription_id=subscription_id,
            plan=plan,
            status=status,
            cancel_at_period_end=cancel_at_period_end,
        ))
        db.commit()
        return user.id

    return _make


@pytest.fixture
def add_reviews(db):
    """Insert n stored reviews for a user at a given time."""

    def _add(user_id, n, created_at=None):
        for _ in range(n):
            db.add(CodeReview(
                user_id=user_id,
                code="print('hi')",
                language="python",
                score=70,
                summary="ok",
                feedback=[{"type": "issue", "message": "meh"}],
                metrics=dict(VALID_REVIEW["metrics"]),
                created_at=created_at or datetime.now(),
            ))
        db.commit()

    return _add


@pytest.fixture
def fake_client():
    """A client that answers with a well-formed review."""
    return FakeClient(reply="```json\n" + json.dumps(VALID_REVIEW) + "\n```")
