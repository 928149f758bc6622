#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Final

from ..exceptions import SessionTimeoutError
from ..interfaces.identity import Identity

logger: Final = logging.getLogger(__name__)


class CacheState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    EXPIRED = "expired"


class SessionCache[T: Identity]:
    """A single-flight cache around an expiring value such as an auth session.

    Reads of a valid value never wait. When the value is missing or expired, the
    first caller starts one refresh task and every concurrent caller awaits that same
    task. A failed refresh is raised to every waiter and nothing is stored, so the
    next :py:meth:`get` starts over.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = None,
        refresh_window: timedelta = timedelta(0),
        name: str = "session",
    ) -> None:
        """
        :param loader: Coroutine function producing a fresh value.
        :param timeout: Seconds a caller is willing to wait on a refresh. The refresh
            itself keeps running when a caller gives up.
        :param refresh_window: Treat values as expired this long before their real
            expiration.
        :param name: Used in log messages.
        """
        self._loader = loader
        self._timeout = timeout
        self._refresh_window = refresh_window
        self._name = name
        self._value: T | None = None
        self._inflight: asyncio.Task[T] | None = None
        self._generation = 0

    @property
    def state(self) -> CacheState:
        if self._value is None:
            return CacheState.UNAUTHENTICATED
        if self._needs_refresh(self._value):
            return CacheState.EXPIRED
        return CacheState.VALID

    def peek(self) -> T | None:
        """Return the stored value if it is still valid, without refreshing."""
        if self._value is None or self._needs_refresh(self._value):
            return None
        return self._value

    async def get(self) -> T:
        """Return a valid value, refreshing it first if needed.

        :raises SessionTimeoutError: If the wait exceeded the configured timeout.
        """
        if (value := self.peek()) is not None:
            return value

        task = self._inflight
        if task is None:
            logger.debug("Refreshing %s (state: %s).", self._name, self.state.value)
            task = asyncio.create_task(self._refresh(self._generation))
            task.add_done_callback(self._on_refresh_done)
            self._inflight = task

        try:
            async with asyncio.timeout(self._timeout) as scope:
                return await asyncio.shield(task)
        except TimeoutError as e:
            if scope.expired():
                raise SessionTimeoutError(
                    f"Timed out after {self._timeout}s waiting on {self._name}."
                ) from e
            raise

    def invalidate(self) -> None:
        """Drop the stored value so the next :py:meth:`get` refreshes.

        A refresh already in flight still completes for its waiters, but its result
        is not stored.
        """
        logger.info("Invalidating %s.", self._name)
        self._value = None
        self._generation += 1
        self._inflight = None

    async def _refresh(self, generation: int) -> T:
        value = await self._loader()
        if generation == self._generation:
            self._value = value
            logger.debug("Refreshed %s; expires %s.", self._name, value.expiration)
        return value

    def _on_refresh_done(self, task: asyncio.Task[T]) -> None:
        if self._inflight is task:
            self._inflight = None
        # Retrieve the exception so an unawaited failure is not reported on GC.
        if not task.cancelled() and (error := task.exception()) is not None:
            logger.debug("Refreshing %s failed: %s", self._name, type(error).__name__)

    def _needs_refresh(self, value: T) -> bool:
        if value.expiration is None:
            return False
        return datetime.now(tz=UTC) >= value.expiration - self._refresh_window
