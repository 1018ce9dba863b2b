from marginledger.ledger.balances import BalanceManager, NotificationSink
from marginledger.ledger.locks import MarginLockRegistry

__all__ = [
    "BalanceManager",
    "NotificationSink",
    "MarginLockRegistry",
]
