from marginledger.events.notifier import BalanceChanged, BalanceNotifier, BalanceSubscription

__all__ = [
    "BalanceChanged",
    "BalanceNotifier",
    "BalanceSubscription",
]
