import time
import random
import logging

from sqlalchemy.exc import DatabaseError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

TRANSIENT_DB_ERRORS = (OperationalError, DatabaseError)


def jitter_sleep(min_seconds: float, max_seconds: float, reason: str = "jitter"):
    """
    Sleep for a random duration in [min_seconds, max_seconds] and log why.
    """
    sleep_time = random.uniform(min_seconds, max_seconds)
    logger.info(f"Sleeping for {sleep_time:.1f}s ({reason})")
    time.sleep(sleep_time)

def commit_with_retry(session, stage, description, max_retries=3, min_sleep=1, max_sleep=3):
    """
    Stage changes on a session and commit them, retrying transient database errors.

    A failed commit discards the staged changes, so `stage` runs again on
    every attempt. Anything `stage` raises, and any non-transient database
    error, rolls the session back and propagates without a retry.

    Parameters:
        session: SQLAlchemy session to commit.
        stage (callable): Adds or updates rows on `session`; its return value
            is returned after a successful commit.
        description (str): What is being written, for logs.
        max_retries (int): Retries before the last transient error is re-raised.
        min_sleep (float): Lower bound of the pause between attempts.
        max_sleep (float): Upper bound of the pause between attempts.
    """
    attempt = 0
    while True:
        try:
            staged = stage()
            session.commit()
            return staged
        except IntegrityError:
            session.rollback()
            raise
        except TRANSIENT_DB_ERRORS as e:
            session.rollback()
            attempt += 1
            if attempt > max_retries:
                logger.error(f"Giving up writing {description} after {max_retries} retries: {e}")
                raise
            logger.warning(f"Transient DB error writing {description}: {e} (attempt {attempt}/{max_retries})")
            jitter_sleep(min_sleep, max_sleep, reason=f"retrying {description}")
        except Exception:
            session.rollback()
            raise
