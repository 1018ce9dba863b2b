import pytest

from marginledger.events.notifier import BalanceNotifier


@pytest.fixture
def notifier() -> BalanceNotifier:
    return BalanceNotifier()


class TestBalanceNotifier:
    """Tests for balance-changed fan-out."""

    @pytest.mark.asyncio
    async def test_all_subscribers_receive(self, notifier: BalanceNotifier) -> None:
        first = notifier.subscribe()
        second = notifier.subscribe()

        notifier.notify_balance_changed("user1")

        assert (await first.get(timeout=1)).user_id == "user1"
        assert (await second.get(timeout=1)).user_id == "user1"

    @pytest.mark.asyncio
    async def test_user_filter(self, notifier: BalanceNotifier) -> None:
        subscription = notifier.subscribe(user_id="user2")

        notifier.notify_balance_changed("user1")
        notifier.notify_balance_changed("user2")

        assert subscription.qsize == 1
        assert (await subscription.get(timeout=1)).user_id == "user2"

    @pytest.mark.asyncio
    async def test_get_times_out(self, notifier: BalanceNotifier) -> None:
        subscription = notifier.subscribe()

        assert await subscription.get(timeout=0.01) is None

    def test_full_subscriber_drops_events(self, notifier: BalanceNotifier) -> None:
        subscription = notifier.subscribe(maxsize=2)

        for _ in range(5):
            notifier.notify_balance_changed("user1")

        assert subscription.qsize == 2

    def test_unsubscribe(self, notifier: BalanceNotifier) -> None:
        subscription = notifier.subscribe()
        assert notifier.subscriber_count == 1

        notifier.unsubscribe(subscription)
        notifier.unsubscribe(subscription)
        notifier.notify_balance_changed("user1")

        assert notifier.subscriber_count == 0
        assert subscription.qsize == 0
