"""Session helpers shared by the HTTP layer and the queue worker."""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy.orm import Session

from prima.db.session import SessionLocal


@contextmanager
def session_scope() -> Iterator[Session]:
    """Open a session, roll back whatever is left uncommitted on error, close."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    with session_scope() as db:
        yield db
