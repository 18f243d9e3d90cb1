"""
Tests for API key lifecycle and the bearer-token gateway.

Run with: pytest tests/
"""

import re
from datetime import datetime, timedelta

import pytest

from code_roast.api_keys import (
    authenticate_api_key,
    create_api_key,
    delete_api_key,
    generate_api_key,
    hash_api_key,
    list_api_keys,
)
from code_roast.billing import resolve_entitlement
from code_roast.entities import ApiKey, Subscription
from code_roast.errors import Forbidden, NotFound, Unauthenticated, ValidationError
from code_roast.models import Entitlement

PRO = Entitlement(plan="pro", status="active", is_subscribed=True)


def test_generated_key_format():
    """acr_ followed by 32 url-safe characters."""
    key = generate_api_key()
    assert re.fullmatch(r"acr_[A-Za-z0-9_-]{32}", key)
    assert generate_api_key() != key


def test_create_requires_subscription(db, make_user):
    user_id = make_user()
    with pytest.raises(Forbidden) as exc:
        create_api_key(db, user_id, "ci", resolve_entitlement(db, user_id))
    assert exc.value.upgrade_required


def test_create_requires_active_subscription(db, make_user):
    """A canceled pro subscription is not enough."""
    user_id = make_user(plan="pro", status="canceled")
    with pytest.raises(Forbidden):
        create_api_key(db, user_id, "ci", resolve_entitlement(db, user_id))


def test_create_requires_name(db, make_user):
    user_id = make_user(plan="pro", status="active")
    with pytest.raises(ValidationError) as exc:
        create_api_key(db, user_id, "  ", PRO)
    assert exc.value.message == "API key name is required"


def test_only_digest_is_stored(db, make_user):
    user_id = make_user(plan="pro", status="active")
    row, key = create_api_key(db, user_id, "ci", PRO)

    assert row.key_hash == hash_api_key(key)
    assert row.key_hash != key
    assert key.startswith(row.key_prefix)
    assert len(row.key_prefix) == 8


def test_delete_twice(db, make_user):
    """The second delete of the same key is NotFound."""
    user_id = make_user(plan="pro", status="active")
    row, _ = create_api_key(db, user_id, "ci", PRO)

    delete_api_key(db, user_id, row.id)
    with pytest.raises(NotFound):
        delete_api_key(db, user_id, row.id)


def test_delete_other_users_key(db, make_user):
    owner = make_user(plan="pro", status="active")
    other = make_user(plan="pro", status="active")
    row, _ = create_api_key(db, owner, "ci", PRO)

    with pytest.raises(NotFound):
        delete_api_key(db, other, row.id)
    assert db.query(ApiKey).count() == 1


def test_list_newest_first(db, make_user):
    user_id = make_user(plan="pro", status="active")
    old, _ = create_api_key(db, user_id, "old", PRO)
    old.created_at = datetime.now() - timedelta(days=3)
    db.commit()
    create_api_key(db, user_id, "new", PRO)

    assert [k.name for k in list_api_keys(db, user_id)] == ["new", "old"]


@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer ", "bearer acr_x"])
def test_missing_or_malformed_header(db, header):
    with pytest.raises(Unauthenticated) as exc:
        authenticate_api_key(db, header)
    assert exc.value.message == "Missing or invalid API key"


def test_unknown_key(db):
    with pytest.raises(Unauthenticated) as exc:
        authenticate_api_key(db, "Bearer acr_not-a-real-key")
    assert exc.value.message == "Invalid API key"


def test_free_owner_is_forbidden(db, make_user):
    """Keys outlive the subscription that allowed them."""
    user_id = make_user()
    key = "acr_left-over-key"
    db.add(ApiKey(key_hash=hash_api_key(key), key_prefix=key[:8], name="old", user_id=user_id))
    db.commit()

    with pytest.raises(Forbidden):
        authenticate_api_key(db, f"Bearer {key}")


def test_past_due_owner_is_forbidden(db, make_user):
    user_id = make_user(plan="pro", status="active")
    _, key = create_api_key(db, user_id, "ci", PRO)
    sub = db.query(Subscription).filter(Subscription.user_id == user_id).one()
    sub.status = "past_due"
    db.commit()

    with pytest.raises(Forbidden):
        authenticate_api_key(db, f"Bearer {key}")


def test_valid_key_updates_last_used(db, make_user):
    user_id = make_user(plan="team", status="active")
    row, key = create_api_key(db, user_id, "ci", PRO)
    now = datetime(2026, 10, 18, 9, 0)

    found = authenticate_api_key(db, f"Bearer {key}", now=now)

    assert found.id == row.id
    assert found.user_id == user_id
    assert found.last_used_at == now
