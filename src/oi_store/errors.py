"""
Persistence errors for the option-chain store.

psycopg exceptions are mapped onto a small hierarchy rooted at the pipeline's
``PersistenceError`` so callers can log them uniformly.
"""

from nsedata.errors import PersistenceError


class RetryableError(PersistenceError):
    """Temporary errors (serialization, deadlock, dropped connection)."""

    pass


class ConstraintViolation(PersistenceError):
    """Database constraint violations (unique, check, not-null)."""

    pass


class TimeoutExceeded(PersistenceError):
    """Statement or pool checkout timeout."""

    pass


def map_db_error(e: Exception) -> PersistenceError:
    import psycopg
    import psycopg.errors as E
    from psycopg_pool import PoolTimeout

    if isinstance(e, (E.QueryCanceled, PoolTimeout)):
        return TimeoutExceeded(str(e))
    if isinstance(e, (E.SerializationFailure, E.DeadlockDetected, psycopg.OperationalError)):
        return RetryableError(str(e))
    if isinstance(e, (E.UniqueViolation, E.CheckViolation, E.NotNullViolation)):
        return ConstraintViolation(str(e))
    return PersistenceError(str(e))
