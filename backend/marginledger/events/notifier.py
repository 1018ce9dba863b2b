import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceChanged:
    """Signal that one of a user's balances changed."""

    user_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BalanceSubscription:
    """
    Async queue of balance-changed events for one subscriber.

    Optionally restricted to a single user.
    """

    def __init__(self, user_id: Optional[str] = None, maxsize: int = 100) -> None:
        self.user_id = user_id
        self._queue: asyncio.Queue[BalanceChanged] = asyncio.Queue(maxsize=maxsize)

    def wants(self, event: BalanceChanged) -> bool:
        return self.user_id is None or self.user_id == event.user_id

    def offer(self, event: BalanceChanged) -> bool:
        """Enqueue without blocking. Returns False if the subscriber is full."""
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    async def get(self, timeout: Optional[float] = None) -> Optional[BalanceChanged]:
        """
        Get the next event.

        Args:
            timeout: Maximum time to wait in seconds. None for no timeout.

        Returns:
            The event, or None if timeout expired.
        """
        try:
            if timeout is None:
                return await self._queue.get()
            else:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    @property
    def qsize(self) -> int:
        """Approximate queue size."""
        return self._queue.qsize()


class BalanceNotifier:
    """
    Fire-and-forget fan-out of balance-changed signals.

    Delivery is best effort: a subscriber that falls behind loses events
    rather than slowing down the ledger.
    """

    def __init__(self) -> None:
        self._subscriptions: list[BalanceSubscription] = []

    def subscribe(self, user_id: Optional[str] = None, maxsize: int = 100) -> BalanceSubscription:
        subscription = BalanceSubscription(user_id=user_id, maxsize=maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: BalanceSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def notify_balance_changed(self, user_id: str) -> None:
        """Signal every interested subscriber that user_id's balances changed."""
        event = BalanceChanged(user_id=user_id)
        for subscription in list(self._subscriptions):
            if subscription.wants(event) and not subscription.offer(event):
                logger.debug(f"Dropped balance event for {user_id}: subscriber full")
