# concurrency.py
import logging
import time

from sqlalchemy.exc import OperationalError

from models import db

logger = logging.getLogger(__name__)


def lock_for_update(statement):
    """
    Row-level lock for the rows a check-then-write depends on.

    SQLite ignores SELECT ... FOR UPDATE and serialises writers instead;
    PostgreSQL and MySQL hold the lock until commit.
    """
    return statement.with_for_update()


def run_with_retry(func, attempts=3, backoff_base=0.1):
    """Run a unit of work, retrying when the database reports lock contention."""
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning('Database busy, retrying (attempt %d of %d)', attempt + 2, attempts)
            time.sleep(backoff_base * (2 ** attempt))
