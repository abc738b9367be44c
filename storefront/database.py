"""
Database configuration and session management for the Storefront service.

This module sets up the database connection using SQLAlchemy and provides
a session factory for database operations, plus the unit-of-work helper every
state-changing engine operation runs inside.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL
from .exceptions import InternalError, StorefrontError

logger = logging.getLogger(__name__)

# SQLite needs cross-thread access for FastAPI's threadpool
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependency function that provides a database session.

    Yields:
        Session: SQLAlchemy database session

    Usage:
        Use as a FastAPI dependency to inject database sessions into route handlers.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session, action: str) -> Iterator[Session]:
    """
    Run a block of storage operations as one atomic unit.

    Commits when the block finishes. On any failure the whole session
    transaction is rolled back, so nothing from the block is persisted.
    Typed business failures propagate unchanged; database faults are logged
    with their traceback and re-raised as InternalError.

    Args:
        db: Database session
        action: Short description used in log lines and the generic error message
    """
    try:
        yield db
        db.commit()
    except StorefrontError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"Database error while {action}")
        raise InternalError(f"An error occurred while {action}") from exc
    except Exception:
        db.rollback()
        raise
