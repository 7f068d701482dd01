"""Transaction helper for units of work that must commit atomically."""
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from congregation import db
from congregation.utils.errors import ConcurrentUpdate

logger = logging.getLogger(__name__)

T = TypeVar('T')


def run_atomic(work: Callable[[], T], retries: int = 3,
               retry_on_integrity: bool = False, label: str = 'unit of work') -> T:
    """Run ``work`` and commit, rolling back everything on failure.

    ``work`` must load every record it touches, because a retry starts from a
    fresh session. ``StaleDataError`` (a lost compare-and-swap on a versioned
    row) is always retried. ``IntegrityError`` is retried only when
    ``retry_on_integrity`` is set, otherwise it propagates after rollback.
    """
    attempts = max(1, retries)
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.session.commit()
            return result
        except StaleDataError:
            db.session.rollback()
            logger.warning("%s lost a concurrent update (attempt %d/%d)", label, attempt, attempts)
        except IntegrityError:
            db.session.rollback()
            if not retry_on_integrity:
                raise
            logger.warning("%s hit a uniqueness conflict (attempt %d/%d)", label, attempt, attempts)
        except Exception:
            db.session.rollback()
            raise

    raise ConcurrentUpdate()
