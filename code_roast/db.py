import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from code_roast.entities import Base

logger = logging.getLogger(__name__)


def get_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live as long as their single connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        logger.info("[DB] Using SQLite URL: %s", database_url)
        return create_engine(database_url, **kwargs)

    logger.info("[DB] Connecting to %s", database_url.split("@")[-1])
    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(database_url: str) -> sessionmaker:
    engine = get_db_engine(database_url)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(session_factory: sessionmaker) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(session_factory.kw["bind"])
