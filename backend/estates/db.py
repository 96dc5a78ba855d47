from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from estates.config import database_url


def _connect_args(url: str) -> dict:
    # Background media tasks touch the DB from worker threads.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


ENGINE = create_engine(database_url(), pool_pre_ping=True, future=True, connect_args=_connect_args(database_url()))
SessionLocal = sessionmaker(bind=ENGINE, class_=Session, expire_on_commit=False, autoflush=False, autocommit=False)


@contextmanager
def session_scope():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Used for the sqlite dev fallback and tests; prod runs Alembic."""
    from estates.models import Base

    Base.metadata.create_all(bind=ENGINE)
