import copy
from threading import RLock
from typing import Any, Callable, Optional, Protocol

from marginledger.errors import StoreConflict

Record = dict[str, Any]
Filter = dict[str, Any]

MARGIN_BALANCES = "margin_balances"
MARGIN_LOCKS = "margin_locks"
WITHDRAWAL_REQUESTS = "withdrawal_requests"
DEPOSITS = "deposits"

# Unique key per table; a second record with the same key is a StoreConflict
TABLE_KEYS: dict[str, tuple[str, ...]] = {
    MARGIN_BALANCES: ("user_id", "asset"),
    MARGIN_LOCKS: ("user_id", "asset", "trade_id"),
    WITHDRAWAL_REQUESTS: ("id",),
    DEPOSITS: ("tx_hash",),
}

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "gt": lambda value, operand: value is not None and value > operand,
    "gte": lambda value, operand: value is not None and value >= operand,
    "lt": lambda value, operand: value is not None and value < operand,
    "lte": lambda value, operand: value is not None and value <= operand,
    "ne": lambda value, operand: value != operand,
    "in": lambda value, operand: value in operand,
}


class LedgerStore(Protocol):
    """
    Record store used by the ledger.

    Filters map field names to values for equality, or `field__op` to an
    operand for range queries (gt, gte, lt, lte, ne, in). Each call is atomic
    for the records it touches; there are no multi-call transactions.
    """

    def find(self, table: str, filter: Optional[Filter] = None) -> list[Record]:
        ...

    def insert(self, table: str, record: Record) -> Record:
        ...

    def update(self, table: str, patch: Record, filter: Filter) -> list[Record]:
        ...

    def delete(self, table: str, filter: Filter) -> list[Record]:
        ...


def matches(record: Record, filter: Optional[Filter]) -> bool:
    """Check whether a record satisfies a filter."""
    if not filter:
        return True

    for key, operand in filter.items():
        name, _, op = key.partition("__")
        value = record.get(name)
        if not op:
            if value != operand:
                return False
            continue

        check = _OPERATORS.get(op)
        if check is None:
            raise ValueError(f"Unsupported filter operator: {op}")
        if not check(value, operand):
            return False

    return True


class MemoryLedgerStore:
    """
    Thread-safe in-memory ledger store.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, table_keys: Optional[dict[str, tuple[str, ...]]] = None) -> None:
        self._table_keys = dict(TABLE_KEYS if table_keys is None else table_keys)
        self._tables: dict[str, list[Record]] = {}
        self._lock = RLock()

    def _rows(self, table: str) -> list[Record]:
        return self._tables.setdefault(table, [])

    def _key_of(self, table: str, record: Record) -> Optional[tuple]:
        fields = self._table_keys.get(table)
        if not fields:
            return None
        return tuple(record.get(name) for name in fields)

    def _check_unique(self, table: str, record: Record, ignore: Optional[Record] = None) -> None:
        key = self._key_of(table, record)
        if key is None:
            return
        for row in self._rows(table):
            if row is ignore:
                continue
            if self._key_of(table, row) == key:
                raise StoreConflict(f"Duplicate key {key} in {table}")

    def find(self, table: str, filter: Optional[Filter] = None) -> list[Record]:
        """Return copies of all records matching the filter."""
        with self._lock:
            return [copy.copy(row) for row in self._rows(table) if matches(row, filter)]

    def insert(self, table: str, record: Record) -> Record:
        """Insert a record. Raises StoreConflict if its key already exists."""
        with self._lock:
            self._check_unique(table, record)
            row = copy.copy(record)
            self._rows(table).append(row)
            return copy.copy(row)

    def update(self, table: str, patch: Record, filter: Filter) -> list[Record]:
        """
        Apply a patch to every record matching the filter.

        Returns the updated records. Raises StoreConflict (and changes
        nothing) if the patch would give two records the same key.
        """
        with self._lock:
            targets = [row for row in self._rows(table) if matches(row, filter)]
            for row in targets:
                self._check_unique(table, {**row, **patch}, ignore=row)
            for row in targets:
                row.update(patch)
            return [copy.copy(row) for row in targets]

    def delete(self, table: str, filter: Filter) -> list[Record]:
        """Delete every record matching the filter and return them."""
        with self._lock:
            rows = self._rows(table)
            removed = [row for row in rows if matches(row, filter)]
            self._tables[table] = [row for row in rows if not matches(row, filter)]
            return removed
