"""Database session helper utilities.

`session_scope(engine)` centralizes creation/cleanup of `sqlmodel.Session`
instances, and `persist()` wraps the add/commit/refresh sequence every
handler needs so a failed commit is rolled back and surfaced as a
`ServerError` instead of leaking driver exceptions to the caller.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
import logging

from .errors import ServerError

logger = logging.getLogger(__name__)


@contextmanager
def session_scope(engine) -> Iterator[Session]:
    """Yield a short-lived SQLModel `Session` bound to `engine`.

    Caller is responsible for committing when appropriate. Uncommitted work
    is rolled back if the block raises; the session is always closed.
    """
    sess = Session(engine)
    logger.debug("Opening DB session %s", sess)
    try:
        yield sess
    except Exception:
        try:
            sess.rollback()
        except Exception as e:
            logger.exception("Failed to roll back DB session: %s", e)
        raise
    finally:
        try:
            sess.close()
            logger.debug("Closed DB session %s", sess)
        except Exception as e:
            logger.exception("Failed to close DB session: %s", e)


def persist(session: Session, *objs, deleted=()):
    """Add `objs`, delete `deleted` and commit once.

    All-or-nothing: on failure the transaction is rolled back and a
    `ServerError` is raised. Added objects are refreshed after the commit.
    """
    try:
        for obj in objs:
            session.add(obj)
        for obj in deleted:
            session.delete(obj)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Database commit failed: %s", exc)
        raise ServerError("Database error") from exc
    for obj in objs:
        session.refresh(obj)
    return objs[0] if len(objs) == 1 else objs
