"""
Accounts and server-side login sessions.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from code_roast.billing import create_free_subscription
from code_roast.entities import User, UserSession
from code_roast.errors import Unauthenticated, ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def signup(db: Session, name: Optional[str], email: Optional[str], password: Optional[str]) -> User:
    """Create an account on the free plan."""
    name = (name or "").strip()
    email = (email or "").strip().lower()
    password = password or ""

    errors = {}
    if len(name) < 2:
        errors["name"] = ["Name must be at least 2 characters"]
    if not EMAIL_PATTERN.fullmatch(email):
        errors["email"] = ["Please enter a valid email"]
    if len(password) < 8:
        errors["password"] = ["Password must be at least 8 characters"]
    if errors:
        raise ValidationError(errors)

    if db.query(User).filter(User.email == email).one_or_none() is not None:
        raise ValidationError({"email": ["User with this email already exists"]})

    user = User(name=name, email=email, password_hash=hash_password(password))
    db.add(user)
    db.flush()
    create_free_subscription(db, user.id)
    db.commit()

    logger.info("User created: %s", user.id)
    return user


def login(db: Session, email: Optional[str], password: Optional[str], session_days: int = 7) -> str:
    """Check credentials and open a session. Returns the session token."""
    email = (email or "").strip().lower()
    user = db.query(User).filter(User.email == email).one_or_none()
    if user is None or not check_password(password or "", user.password_hash):
        raise Unauthenticated("Invalid email or password")

    token = secrets.token_urlsafe(32)
    db.add(UserSession(
        session_id=token,
        user_id=user.id,
        expires_at=datetime.now() + timedelta(days=session_days),
    ))
    db.commit()

    logger.info("User authenticated: %s", user.id)
    return token


def get_user_by_session(db: Session, token: Optional[str], now: Optional[datetime] = None) -> Optional[User]:
    if not token:
        return None
    now = now or datetime.now()
    return (
        db.query(User)
        .join(UserSession, UserSession.user_id == User.id)
        .filter(
            UserSession.session_id == token,
            UserSession.is_active.is_(True),
            UserSession.expires_at > now,
        )
        .one_or_none()
    )


def logout(db: Session, token: Optional[str]) -> None:
    if not token:
        return
    db.query(UserSession).filter(UserSession.session_id == token).update(
        {UserSession.is_active: False}, synchronize_session=False
    )
    db.commit()
