import os
from typing import Optional

from sqlalchemy import func, text
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select
import logging

logger = logging.getLogger(__name__)

from .models import BLOB_MODELS, DeathCertificate, Star, User


def init_db(database_url: str = "sqlite:////data/starkeeper.db"):
    """Create and return SQLAlchemy engine. Creates all tables on startup."""
    is_sqlite = database_url.startswith("sqlite")
    in_memory = database_url in ("sqlite://", "sqlite:///:memory:")

    if is_sqlite and not in_memory and database_url.startswith("sqlite:///"):
        try:
            file_path = database_url[len("sqlite:///"):]
            dirpath = os.path.dirname(file_path)
            if dirpath and not os.path.exists(dirpath):
                os.makedirs(dirpath, exist_ok=True)
        except OSError as e:
            logger.warning("Unable to create database directory for %s: %s", database_url, e)

    kwargs = {"echo": False}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    if in_memory:
        # Every session must see the same in-memory database.
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)

    if is_sqlite and not in_memory:
        try:
            with engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
        except Exception as e:
            logger.debug("Unable to set SQLite pragmas: %s", e)

    SQLModel.metadata.create_all(engine)
    return engine


def get_star_count(session: Session) -> int:
    """Total number of stars; used to pick the spawn shell."""
    return session.exec(select(func.count(Star.id))).one()


def find_star_at(session: Session, x: float, y: float, z: float) -> Optional[Star]:
    """Return a star placed exactly at (x, y, z), if any."""
    return session.exec(select(Star).where(Star.x == x, Star.y == y, Star.z == z)).first()


def count_key_references(session: Session, key: str) -> int:
    """Count database rows, across every blob-bearing table, that point at `key`."""
    total = 0
    for model in BLOB_MODELS:
        total += session.exec(select(func.count(model.id)).where(model.key == key)).one()
    total += session.exec(
        select(func.count(DeathCertificate.id)).where(DeathCertificate.file_key == key)
    ).one()
    return total


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    return session.exec(select(User).where(User.username == username.strip().lower())).first()
