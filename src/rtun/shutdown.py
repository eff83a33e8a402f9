"""One-shot shutdown broadcast observed by every tunnel task."""

import asyncio
import itertools

from .logging import get_logger

logger = get_logger(__name__)


class Subscription:
    """A single subscriber's view of the shutdown signal."""

    def __init__(self, broadcaster: "ShutdownBroadcaster", subscriber_id: int):
        self._broadcaster = broadcaster
        self.subscriber_id = subscriber_id
        self._observed = False

    @property
    def fired(self) -> bool:
        """Whether shutdown has been fired."""
        return self._broadcaster.fired

    @property
    def observed(self) -> bool:
        """Whether this subscriber has already seen the shutdown event."""
        return self._observed

    async def wait(self) -> bool:
        """Suspend until shutdown fires.

        Returns:
            True the first time this subscription observes the event,
            False on every later call
        """
        await self._broadcaster._event.wait()
        if self._observed:
            return False
        self._observed = True
        self._broadcaster._observed_count += 1
        return True


class ShutdownBroadcaster:
    """Monotonic flag plus an event every subscriber waits on.

    Firing releases all current waiters and makes every later ``wait()``
    return immediately, so subscribers added at any time see the event.
    """

    def __init__(self) -> None:
        self._fired = False
        self._event = asyncio.Event()
        self._ids = itertools.count(1)
        self._subscriber_count = 0
        self._observed_count = 0

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def subscriber_count(self) -> int:
        return self._subscriber_count

    @property
    def observed_count(self) -> int:
        return self._observed_count

    def subscribe(self) -> Subscription:
        """Register a new subscriber.

        Returns:
            Subscription that yields the shutdown event exactly once
        """
        self._subscriber_count += 1
        return Subscription(self, next(self._ids))

    def fire(self) -> bool:
        """Fire the shutdown signal.

        Returns:
            True if this call fired the signal, False if it was already fired
        """
        if self._fired:
            logger.debug("Shutdown already fired")
            return False

        self._fired = True
        self._event.set()
        logger.info("Shutdown fired", subscribers=self._subscriber_count)
        return True
