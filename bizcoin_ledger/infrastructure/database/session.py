"""Database session management with connection pooling and unit-of-work scoping"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from bizcoin_ledger.config import settings
from bizcoin_ledger.domain.exceptions import StorageFailure

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block, or nothing.

    Any exception rolls the session back before propagating. Database errors
    are re-raised as StorageFailure; StaleDataError is left alone so callers
    can retry the whole unit on a concurrent wallet update.
    """
    try:
        yield db
        db.commit()
    except StaleDataError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure(f"Storage operation failed: {e}") from e
    except BaseException:
        db.rollback()
        raise
