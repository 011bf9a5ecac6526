"""
Store access helpers: bounded retries for reads, error translation for writes.

Reads are safe to repeat, so transient failures (timeouts, dropped
connections, pool exhaustion) are retried with linear backoff. Writes run in
a single transaction; a failure rolls the whole unit back and surfaces as
TransientStoreError for the caller to decide.
"""
import functools
import logging
import time
from contextlib import contextmanager

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from leadhub.config import STORE_READ_RETRIES, STORE_RETRY_BACKOFF
from leadhub.errors import TransientStoreError

logger = logging.getLogger('services.store')

TRANSIENT_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.TimeoutError,
    sa_exc.DisconnectionError,
    sa_exc.InterfaceError,
)


def read_with_retry(fn, *args, attempts=None, backoff=None, **kwargs):
    """
    Call a read function, retrying on transient database errors.

    When the first argument is a Session it is rolled back before each retry;
    a failed statement leaves its connection unusable until then.
    """
    attempts = attempts or STORE_READ_RETRIES
    backoff = STORE_RETRY_BACKOFF if backoff is None else backoff
    session = args[0] if args and isinstance(args[0], Session) else None

    for attempt in range(attempts):
        try:
            if attempt and session is not None:
                session.rollback()
            return fn(*args, **kwargs)
        except TRANSIENT_ERRORS as e:
            if attempt == attempts - 1:
                logger.error("Read %s failed after %d attempts: %s",
                             getattr(fn, '__name__', fn), attempts, e)
                raise TransientStoreError(f'store read failed: {e.__class__.__name__}') from e
            wait = backoff * (attempt + 1)
            logger.warning("Transient store error on %s, retrying in %.2fs (attempt %d/%d)",
                           getattr(fn, '__name__', fn), wait, attempt + 1, attempts)
            time.sleep(wait)


def retrying_read(fn):
    """Decorator for service reads that take the session as first argument."""
    @functools.wraps(fn)
    def wrapper(session, *args, **kwargs):
        return read_with_retry(fn, session, *args, **kwargs)
    return wrapper


@contextmanager
def translate_errors(session=None):
    """
    Turn transient driver errors raised inside a write into TransientStoreError.

    When a session is given it is rolled back before re-raising, leaving no
    partial write behind.
    """
    try:
        yield
    except TRANSIENT_ERRORS as e:
        if session is not None:
            session.rollback()
        logger.error("Store write failed: %s", e)
        raise TransientStoreError(f'store write failed: {e.__class__.__name__}') from e
