"""Unit-of-work retry for optimistic version conflicts.

Balance-bearing rows (tokenized_assets, token_holders, token_orders) carry a
``version_id`` column.  When two sessions update the same row from the same
stale read, the loser's flush matches zero rows and SQLAlchemy raises
``StaleDataError``.  ``retry_on_conflict`` rolls the session back and replays
the whole service call once against fresh rows, so the loser observes the
winner's effects (typically surfacing as ``InsufficientBalance`` or an
idempotent no-op).  A conflict that survives the replay surfaces as
``ConcurrentModification`` (409) whichever error caused it.

Nested decorated calls share the outermost unit: only the outermost frame
rolls back and retries, inner frames let the conflict propagate.
"""

import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from tokenledger.core.exceptions import ConcurrentModification

logger = structlog.get_logger()

T = TypeVar("T")

MAX_ATTEMPTS = 2
_UNIT_KEY = "ledger_unit_of_work"


def retry_on_conflict(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Decorate a service method whose instance exposes ``self.db``.

    Decorated methods must take ids (not ORM instances) as arguments because
    a rollback expires every instance loaded by the session.
    """

    @functools.wraps(method)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
        session = self.db
        if session.info.get(_UNIT_KEY):
            return await method(self, *args, **kwargs)

        session.info[_UNIT_KEY] = True
        try:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                try:
                    result = await method(self, *args, **kwargs)
                    await session.flush()
                    return result
                except (StaleDataError, IntegrityError) as exc:
                    # A unique violation here means a concurrent writer created
                    # the same holder/certificate row first.
                    await session.rollback()
                    logger.warning(
                        "ledger.concurrent_modification",
                        operation=method.__qualname__,
                        attempt=attempt,
                        error_type=type(exc).__name__,
                    )
                    if attempt == MAX_ATTEMPTS:
                        raise ConcurrentModification(
                            "The record was modified concurrently; retry the operation"
                        ) from exc
            raise AssertionError("unreachable")
        finally:
            session.info.pop(_UNIT_KEY, None)

    return wrapper
