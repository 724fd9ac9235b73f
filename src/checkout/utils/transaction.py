"""Retryable unit-of-work execution.

Every public cart mutation runs through :func:`run_transactionally`. The work
callable receives the active :class:`protean.UnitOfWork` and must load the
aggregates it touches itself, because a conflicting attempt is discarded and
the callable is run again from scratch.

Calls made while a unit of work is already in progress join it instead of
opening a nested one, so components compose into a single atomic change and
only the outermost caller commits or retries.
"""

import time
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from protean import UnitOfWork
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_uow

from checkout.config import get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Optimistic version conflicts raised by protean when two units of work
# write the same aggregate.
CONFLICT_ERRORS = (ExpectedVersionError,)


def _handle_error(exc: Exception, on_error: Callable[[Exception], Any] | None) -> None:
    """Give ``on_error`` a chance to raise a translated error.

    When the handler returns normally the caller re-raises the original.
    """
    if on_error is not None:
        on_error(exc)


def run_transactionally(
    work: Callable[[UnitOfWork], T],
    *,
    isolation_level: str | None = None,
    on_error: Callable[[Exception], Any] | None = None,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Run ``work`` inside a unit of work, retrying on version conflicts.

    Args:
        work: Callable receiving the active unit of work.
        isolation_level: Isolation requested by the caller. Providers that
            support it pick it up from their own configuration; it is
            recorded with conflict logs.
        on_error: Called with the final error before it propagates.
        max_attempts: Upper bound on attempts (defaults to settings).
        backoff_seconds: Base delay for exponential backoff between attempts.
    """
    if current_uow and current_uow.in_progress:
        try:
            return work(current_uow._get_current_object())
        except Exception as exc:
            _handle_error(exc, on_error)
            raise

    settings = get_settings()
    attempts = max_attempts or settings.transaction_max_attempts
    delay = settings.transaction_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            with UnitOfWork() as uow:
                return work(uow)
        except CONFLICT_ERRORS as exc:
            if attempt >= attempts:
                logger.error(
                    "Transaction conflict retries exhausted",
                    attempts=attempts,
                    isolation_level=isolation_level,
                    error=str(exc),
                )
                _handle_error(exc, on_error)
                raise
            logger.warning(
                "Transaction conflict, retrying",
                attempt=attempt,
                max_attempts=attempts,
                isolation_level=isolation_level,
            )
            if delay:
                time.sleep(delay * 2 ** (attempt - 1))
        except Exception as exc:
            _handle_error(exc, on_error)
            raise

    # Unreachable: the loop either returns or raises.
    raise RuntimeError("run_transactionally exited without a result")
