"""Database session management with connection pooling"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from rentwatch.config import settings


def make_engine(url: str) -> Engine:
    """Engine for the ledger store; SQLite gets a thread-shareable connection"""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Unit of work: commit on success, roll back on any error"""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
