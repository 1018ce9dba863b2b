import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional, Protocol
from weakref import WeakValueDictionary

from marginledger.amounts import ZERO, AmountLike, add, subtract, to_decimal
from marginledger.errors import (
    InsufficientMargin,
    LedgerUnavailable,
    StoreConflict,
    UnsupportedAsset,
)
from marginledger.models.asset import AssetType
from marginledger.models.balance import MarginBalance
from marginledger.storage.ledger_store import MARGIN_BALANCES, LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_WRITE_ATTEMPTS = 3


class NotificationSink(Protocol):
    """Receiver of fire-and-forget balance-changed signals."""

    def notify_balance_changed(self, user_id: str) -> None:
        ...


class BalanceManager:
    """
    Sole owner of MarginBalance records.

    Every read-modify-write of a balance runs inside the account scope for
    its (user, asset) pair, so concurrent requests against one account are
    serialized while different accounts proceed independently.
    """

    def __init__(
        self,
        store: LedgerStore,
        notifier: Optional[NotificationSink] = None,
        supported_assets: Optional[Iterable[AssetType]] = None,
        max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        if max_write_attempts < 1:
            raise ValueError("max_write_attempts must be at least 1")
        self._store = store
        self._notifier = notifier
        self._supported = frozenset(AssetType if supported_assets is None else supported_assets)
        self._max_write_attempts = max_write_attempts
        self._scopes: WeakValueDictionary[tuple[str, AssetType], asyncio.Lock] = WeakValueDictionary()

    @property
    def supported_assets(self) -> frozenset[AssetType]:
        return self._supported

    def check_asset(self, asset, operation: str = "margin") -> AssetType:
        """Parse an asset and make sure it is enabled on this ledger."""
        parsed = AssetType.parse(asset)
        if parsed not in self._supported:
            raise UnsupportedAsset(f"Token {parsed.value} is not supported for {operation}")
        return parsed

    def account(self, user_id: str, asset: AssetType) -> asyncio.Lock:
        """
        Update scope for one (user, asset) account.

        Usage: `async with balances.account(user_id, asset): ...`
        """
        key = (user_id, asset)
        scope = self._scopes.get(key)
        if scope is None:
            scope = asyncio.Lock()
            self._scopes[key] = scope
        return scope

    def get_balance(self, user_id: str, asset: AssetType) -> MarginBalance:
        """Get a user's balance, or a zero balance if none was ever written."""
        records = self._store.find(
            MARGIN_BALANCES,
            {"user_id": user_id, "asset": asset.value},
        )
        if not records:
            return MarginBalance(user_id=user_id, asset=asset)
        return MarginBalance.from_record(records[0])

    async def set_balance(
        self,
        user_id: str,
        asset: AssetType,
        available: AmountLike,
        locked: AmountLike,
        unrealized_pnl: AmountLike,
    ) -> MarginBalance:
        """
        Overwrite all three balance fields, creating the record if absent.

        Notifies subscribers once the write is stored.
        """
        new_available = to_decimal(available)
        new_locked = to_decimal(locked)
        new_pnl = to_decimal(unrealized_pnl)

        async with self.account(user_id, asset):
            balance = self.apply(
                user_id,
                asset,
                lambda current: current.with_values(
                    available=new_available,
                    locked=new_locked,
                    unrealized_pnl=new_pnl,
                ),
            )

        self.notify_changed(user_id)
        return balance

    async def mark_unrealized_pnl(
        self,
        user_id: str,
        asset: AssetType,
        unrealized_pnl: AmountLike,
    ) -> MarginBalance:
        """Record the mark-to-market P&L of a user's open trades."""
        pnl = to_decimal(unrealized_pnl)

        async with self.account(user_id, asset):
            balance = self.apply(
                user_id,
                asset,
                lambda current: current.with_values(unrealized_pnl=pnl),
            )

        self.notify_changed(user_id)
        return balance

    def apply(
        self,
        user_id: str,
        asset: AssetType,
        compute: Callable[[MarginBalance], MarginBalance],
    ) -> MarginBalance:
        """
        Read the current balance, compute its replacement and store it.

        Must be called inside the account scope. compute may raise to abort
        without any change. A StoreConflict from the store restarts from a
        fresh read, up to max_write_attempts times.
        """
        if not self.account(user_id, asset).locked():
            raise RuntimeError(f"Balance update for {user_id}/{asset.value} outside its account scope")

        for attempt in range(1, self._max_write_attempts + 1):
            current = self.get_balance(user_id, asset)
            updated = compute(current)
            try:
                return self._write(current, updated)
            except StoreConflict as e:
                logger.warning(
                    f"Balance write conflict for {user_id}/{asset.value} "
                    f"(attempt {attempt}/{self._max_write_attempts}): {e}"
                )

        raise LedgerUnavailable(
            f"Could not update balance for {user_id}/{asset.value} "
            f"after {self._max_write_attempts} attempts"
        )

    def credit_available(self, user_id: str, asset: AssetType, amount: Decimal) -> MarginBalance:
        """Add to available balance. Must be called inside the account scope."""
        return self.apply(
            user_id,
            asset,
            lambda current: current.with_values(available=add(current.available, amount)),
        )

    def debit_available(self, user_id: str, asset: AssetType, amount: Decimal) -> MarginBalance:
        """
        Remove from available balance. Must be called inside the account scope.

        Raises InsufficientMargin if available balance is too low.
        """

        def debit(current: MarginBalance) -> MarginBalance:
            if current.available < amount:
                raise InsufficientMargin(
                    "Insufficient available margin",
                    have=current.available,
                    need=amount,
                )
            return current.with_values(available=subtract(current.available, amount))

        return self.apply(user_id, asset, debit)

    def notify_changed(self, user_id: str) -> None:
        """Signal that user_id's balances changed. Never raises."""
        if self._notifier is None:
            return
        try:
            self._notifier.notify_balance_changed(user_id)
        except Exception as e:
            logger.warning(f"Balance notification failed for {user_id}: {e}")

    def _write(self, current: MarginBalance, updated: MarginBalance) -> MarginBalance:
        if updated.available < ZERO or updated.locked < ZERO:
            raise ValueError(
                f"Negative balance for {updated.user_id}/{updated.asset.value}: "
                f"available={updated.available}, locked={updated.locked}"
            )

        now = datetime.now(timezone.utc)
        key = {"user_id": updated.user_id, "asset": updated.asset.value}

        if not current.exists:
            record = updated.to_record()
            record["created_at"] = now
            record["updated_at"] = now
            return MarginBalance.from_record(self._store.insert(MARGIN_BALANCES, record))

        record = updated.to_record()
        patch = {
            "available": record["available"],
            "locked": record["locked"],
            "unrealized_pnl": record["unrealized_pnl"],
            "updated_at": now,
        }
        rows = self._store.update(MARGIN_BALANCES, patch, key)
        if not rows:
            raise StoreConflict(f"Balance record for {key} disappeared during update")
        return MarginBalance.from_record(rows[0])
