"""
API key lifecycle and the bearer-token gateway for the public API.

Keys look like `acr_<32 url-safe chars>`. Only a SHA-256 digest and a short
display prefix are stored; the plaintext is handed out once, at creation.
"""

import hashlib
import logging
import secrets
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from code_roast.billing import resolve_entitlement
from code_roast.entities import ApiKey
from code_roast.errors import Forbidden, NotFound, Unauthenticated, ValidationError
from code_roast.models import Entitlement

logger = logging.getLogger(__name__)

KEY_PREFIX = "acr_"
# token_urlsafe(24) -> 32 characters, 192 bits
KEY_ENTROPY_BYTES = 24
DISPLAY_PREFIX_CHARS = 8


def generate_api_key(prefix: str = KEY_PREFIX) -> str:
    return f"{prefix}{secrets.token_urlsafe(KEY_ENTROPY_BYTES)}"


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def create_api_key(
    db: Session,
    user_id: str,
    name: Optional[str],
    entitlement: Entitlement,
    prefix: str = KEY_PREFIX,
) -> Tuple[ApiKey, str]:
    """Create a key for an active paid subscriber. Returns (row, plaintext)."""
    name = (name or "").strip()
    if not name:
        raise ValidationError({"name": ["API key name is required"]})

    if not entitlement.is_subscribed:
        raise Forbidden("You need a Pro or Team subscription to create API keys",
                        upgrade_required=True)

    key = generate_api_key(prefix)
    row = ApiKey(
        key_hash=hash_api_key(key),
        key_prefix=key[:DISPLAY_PREFIX_CHARS],
        name=name,
        user_id=user_id,
    )
    db.add(row)
    db.commit()
    logger.info("API key %s created for user %s", row.id, user_id)
    return row, key


def delete_api_key(db: Session, user_id: str, key_id: str) -> None:
    row = (
        db.query(ApiKey)
        .filter(ApiKey.id == key_id, ApiKey.user_id == user_id)
        .one_or_none()
    )
    if row is None:
        raise NotFound("API key not found")
    db.delete(row)
    db.commit()
    logger.info("API key %s deleted", key_id)


def list_api_keys(db: Session, user_id: str) -> List[ApiKey]:
    return (
        db.query(ApiKey)
        .filter(ApiKey.user_id == user_id)
        .order_by(ApiKey.created_at.desc())
        .all()
    )


def parse_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Missing or invalid API key")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthenticated("Missing or invalid API key")
    return token


def authenticate_api_key(
    db: Session,
    authorization: Optional[str],
    now: Optional[datetime] = None,
) -> ApiKey:
    """
    Validate an Authorization header and return the matching key.

    The owner needs an active, non-free subscription. On success the key's
    last-used time is updated.
    """
    token = parse_bearer(authorization)

    row = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(token)).one_or_none()
    if row is None:
        raise Unauthenticated("Invalid API key")

    entitlement = resolve_entitlement(db, row.user_id)
    if entitlement.status != "active" or entitlement.plan == "free":
        raise Forbidden("API access requires an active Pro or Team subscription")

    row.last_used_at = now or datetime.now()
    db.commit()
    return row
