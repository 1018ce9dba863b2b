from decimal import Decimal

import pytest

from marginledger.amounts import format_amount, parse_amount, to_decimal
from marginledger.errors import InvalidAmount, StoreConflict
from marginledger.storage.ledger_store import (
    MARGIN_BALANCES,
    MARGIN_LOCKS,
    MemoryLedgerStore,
    matches,
)


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


class TestAmounts:
    """Tests for decimal amount parsing."""

    def test_parses_decimal_strings_exactly(self) -> None:
        assert to_decimal("0.1") + to_decimal("0.2") == Decimal("0.3")

    def test_rejects_floats(self) -> None:
        with pytest.raises(InvalidAmount):
            to_decimal(0.1)

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity"])
    def test_rejects_malformed(self, value: str) -> None:
        with pytest.raises(InvalidAmount):
            to_decimal(value)

    def test_rejects_more_than_18_fractional_digits(self) -> None:
        assert to_decimal("0.000000000000000001") == Decimal("1E-18")
        with pytest.raises(InvalidAmount):
            to_decimal("0.0000000000000000001")

    @pytest.mark.parametrize("value", ["0", "-5"])
    def test_parse_amount_requires_positive(self, value: str) -> None:
        with pytest.raises(InvalidAmount):
            parse_amount(value)

    def test_format_amount_has_no_exponent(self) -> None:
        assert format_amount(Decimal("1E+2")) == "100"
        assert format_amount(Decimal("1.500")) == "1.5"
        assert format_amount(Decimal("0.00")) == "0"
        assert format_amount(Decimal("1E-18")) == "0.000000000000000001"


class TestMatches:
    """Tests for record filters."""

    def test_equality(self) -> None:
        assert matches({"a": 1, "b": 2}, {"a": 1})
        assert not matches({"a": 1}, {"a": 2})

    def test_empty_filter_matches_everything(self) -> None:
        assert matches({"a": 1}, None)
        assert matches({"a": 1}, {})

    def test_range_operators(self) -> None:
        record = {"n": 5}
        assert matches(record, {"n__gt": 4, "n__lte": 5})
        assert not matches(record, {"n__lt": 5})
        assert matches(record, {"n__in": [1, 5]})
        assert matches(record, {"n__ne": 3})

    def test_unknown_operator_raises(self) -> None:
        with pytest.raises(ValueError):
            matches({"n": 1}, {"n__like": 1})


class TestMemoryLedgerStore:
    """Tests for the in-memory store."""

    def test_insert_and_find(self, store: MemoryLedgerStore) -> None:
        store.insert(MARGIN_BALANCES, {"user_id": "u1", "asset": "usdc", "available": "1"})

        records = store.find(MARGIN_BALANCES, {"user_id": "u1"})

        assert len(records) == 1
        assert records[0]["available"] == "1"

    def test_find_returns_copies(self, store: MemoryLedgerStore) -> None:
        store.insert(MARGIN_BALANCES, {"user_id": "u1", "asset": "usdc", "available": "1"})

        store.find(MARGIN_BALANCES)[0]["available"] = "999"

        assert store.find(MARGIN_BALANCES)[0]["available"] == "1"

    def test_duplicate_key_conflicts(self, store: MemoryLedgerStore) -> None:
        store.insert(MARGIN_BALANCES, {"user_id": "u1", "asset": "usdc"})

        with pytest.raises(StoreConflict):
            store.insert(MARGIN_BALANCES, {"user_id": "u1", "asset": "usdc"})

        # Same user, other asset is a different key
        store.insert(MARGIN_BALANCES, {"user_id": "u1", "asset": "xlm"})
        assert len(store.find(MARGIN_BALANCES)) == 2

    def test_update_returns_updated_rows(self, store: MemoryLedgerStore) -> None:
        store.insert(MARGIN_LOCKS, {"user_id": "u1", "asset": "usdc", "trade_id": "t1", "amount": "5"})

        rows = store.update(MARGIN_LOCKS, {"amount": "3"}, {"trade_id": "t1"})

        assert [r["amount"] for r in rows] == ["3"]
        assert store.find(MARGIN_LOCKS)[0]["amount"] == "3"

    def test_update_without_match_returns_empty(self, store: MemoryLedgerStore) -> None:
        assert store.update(MARGIN_LOCKS, {"amount": "3"}, {"trade_id": "missing"}) == []

    def test_update_into_duplicate_key_changes_nothing(self, store: MemoryLedgerStore) -> None:
        store.insert(MARGIN_LOCKS, {"user_id": "u1", "asset": "usdc", "trade_id": "t1"})
        store.insert(MARGIN_LOCKS, {"user_id": "u1", "asset": "usdc", "trade_id": "t2"})

        with pytest.raises(StoreConflict):
            store.update(MARGIN_LOCKS, {"trade_id": "t1"}, {"trade_id": "t2"})

        assert sorted(r["trade_id"] for r in store.find(MARGIN_LOCKS)) == ["t1", "t2"]

    def test_delete_returns_removed_rows(self, store: MemoryLedgerStore) -> None:
        store.insert(MARGIN_LOCKS, {"user_id": "u1", "asset": "usdc", "trade_id": "t1"})
        store.insert(MARGIN_LOCKS, {"user_id": "u1", "asset": "usdc", "trade_id": "t2"})

        removed = store.delete(MARGIN_LOCKS, {"trade_id": "t1"})

        assert [r["trade_id"] for r in removed] == ["t1"]
        assert [r["trade_id"] for r in store.find(MARGIN_LOCKS)] == ["t2"]
