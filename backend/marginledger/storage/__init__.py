from marginledger.storage.ledger_store import (
    DEPOSITS,
    MARGIN_BALANCES,
    MARGIN_LOCKS,
    WITHDRAWAL_REQUESTS,
    LedgerStore,
    MemoryLedgerStore,
)

__all__ = [
    "LedgerStore",
    "MemoryLedgerStore",
    "MARGIN_BALANCES",
    "MARGIN_LOCKS",
    "WITHDRAWAL_REQUESTS",
    "DEPOSITS",
]
