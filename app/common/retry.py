"""
Retry helpers for transient database failures.

Only read paths are wrapped: a dropped connection or a serialization hiccup
is retried with exponential backoff before the error reaches the client.
"""
import logging
from functools import wraps
from typing import Callable

from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings

logger = logging.getLogger(__name__)


def is_transient_db_error(exc: BaseException) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def retry_on_transient(func: Callable) -> Callable:
    """
    Decorator for service methods (``self.db`` must be a Session).

    The session is rolled back between attempts so the next try starts on
    a clean transaction. The last error is re-raised unchanged.
    """

    log_retry = before_sleep_log(logger, logging.WARNING)

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        def _before_sleep(retry_state):
            self.db.rollback()
            log_retry(retry_state)

        retrying = Retrying(
            stop=stop_after_attempt(max(1, settings.DB_RETRY_ATTEMPTS)),
            wait=wait_exponential(multiplier=settings.DB_RETRY_BASE_DELAY, max=10),
            retry=retry_if_exception(is_transient_db_error),
            before_sleep=_before_sleep,
            reraise=True,
        )
        return retrying(func, self, *args, **kwargs)

    return wrapper
