"""Transaction utilities for explicit transaction boundaries.

This module provides context managers for managing database transactions
with automatic commit/rollback semantics to prevent partial state updates.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def transaction(session: Session) -> Generator[Session]:
    """Context manager for explicit transaction boundaries.

    Commits on successful completion, rolls back on any exception.
    Use this when several conditional writes must succeed or fail together.

    Example:
        with transaction(session):
            if not driver_repo.claim("d1", "trip_1", now):
                raise ConflictError("driver taken")
            trip_repo.create(trip)
        # Automatic commit if no exception, rollback otherwise

    Args:
        session: SQLAlchemy session to manage

    Yields:
        The same session for use within the context

    Raises:
        Any exception raised within the context (after rollback)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise

