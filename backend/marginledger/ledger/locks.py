import logging
from decimal import Decimal
from typing import Optional

from marginledger.amounts import ZERO, AmountLike, add, format_amount, parse_amount, subtract, to_decimal
from marginledger.errors import InsufficientMargin, LockExists, LockNotFound, StoreConflict
from marginledger.ledger.balances import BalanceManager
from marginledger.models.asset import AssetType
from marginledger.models.balance import MarginBalance, MarginLock
from marginledger.storage.ledger_store import MARGIN_LOCKS, LedgerStore

logger = logging.getLogger(__name__)


class MarginLockRegistry:
    """
    Open margin locks, one per (user, asset, trade).

    Each lock row and the matching shift between available and locked
    balance are written together inside the account scope, so the sum of
    open locks for an account tracks its locked balance.
    """

    def __init__(self, store: LedgerStore, balances: BalanceManager) -> None:
        self._store = store
        self._balances = balances

    def get_lock(self, user_id: str, asset, trade_id: str) -> Optional[MarginLock]:
        """Get the open lock for a trade, or None."""
        asset = AssetType.parse(asset)
        records = self._store.find(
            MARGIN_LOCKS,
            {"user_id": user_id, "asset": asset.value, "trade_id": trade_id},
        )
        if not records:
            return None
        return MarginLock.from_record(records[0])

    def list_locks(self, user_id: str, asset=None) -> list[MarginLock]:
        """List a user's open locks, oldest first."""
        filter = {"user_id": user_id}
        if asset is not None:
            filter["asset"] = AssetType.parse(asset).value
        locks = [MarginLock.from_record(r) for r in self._store.find(MARGIN_LOCKS, filter)]
        return sorted(locks, key=lambda lock: lock.created_at)

    def total_locked(self, user_id: str, asset) -> Decimal:
        """Sum of a user's open locks in one asset."""
        total = ZERO
        for lock in self.list_locks(user_id, asset):
            total = add(total, lock.amount)
        return total

    async def lock(
        self,
        user_id: str,
        asset,
        amount: AmountLike,
        trade_id: str,
    ) -> MarginLock:
        """
        Reserve margin for a trade: move amount from available to locked.

        Raises InsufficientMargin if amount exceeds available balance and
        LockExists if the trade already holds a lock. Nothing changes on
        failure.
        """
        asset = self._balances.check_asset(asset, "margin locks")
        amount = parse_amount(amount)
        margin_lock = MarginLock(user_id=user_id, asset=asset, trade_id=trade_id, amount=amount)

        async with self._balances.account(user_id, asset):
            if self.get_lock(user_id, asset, trade_id) is not None:
                raise LockExists(f"Margin lock already open for trade {trade_id}")

            def reserve(current: MarginBalance) -> MarginBalance:
                if current.available < amount:
                    raise InsufficientMargin(
                        "Insufficient available margin",
                        have=current.available,
                        need=amount,
                    )
                return current.with_values(
                    available=subtract(current.available, amount),
                    locked=add(current.locked, amount),
                )

            self._balances.apply(user_id, asset, reserve)

            try:
                self._store.insert(MARGIN_LOCKS, margin_lock.to_record())
            except StoreConflict:
                # Another writer opened the same lock; hand the reservation back
                self._balances.apply(
                    user_id,
                    asset,
                    lambda current: current.with_values(
                        available=add(current.available, amount),
                        locked=subtract(current.locked, amount),
                    ),
                )
                raise LockExists(f"Margin lock already open for trade {trade_id}") from None

        logger.info(f"Margin locked: {user_id} {amount} {asset.value} for trade {trade_id}")
        self._balances.notify_changed(user_id)
        return margin_lock

    async def release(
        self,
        user_id: str,
        asset,
        trade_id: str,
        pnl: AmountLike = "0",
    ) -> MarginBalance:
        """
        Close a trade's lock and settle its realized P&L.

        locked decreases by the lock's principal; available increases by
        principal + pnl, so a loss is charged against the returned margin and
        a profit is added to it. A release that would leave either balance
        negative raises InsufficientMargin and changes nothing.
        """
        asset = self._balances.check_asset(asset, "margin releases")
        pnl = to_decimal(pnl)

        async with self._balances.account(user_id, asset):
            margin_lock = self.get_lock(user_id, asset, trade_id)
            if margin_lock is None:
                raise LockNotFound(f"Margin lock not found for trade {trade_id}")

            return_amount = add(margin_lock.amount, pnl)

            def settle(current: MarginBalance) -> MarginBalance:
                new_locked = subtract(current.locked, margin_lock.amount)
                new_available = add(current.available, return_amount)
                if new_locked < ZERO:
                    raise InsufficientMargin(
                        "Locked margin below lock principal",
                        have=current.locked,
                        need=margin_lock.amount,
                    )
                if new_available < ZERO:
                    raise InsufficientMargin(
                        "Loss exceeds available margin",
                        have=add(current.available, margin_lock.amount),
                        need=-pnl,
                    )
                return current.with_values(available=new_available, locked=new_locked)

            balance = self._balances.apply(user_id, asset, settle)
            self._store.delete(MARGIN_LOCKS, margin_lock.key)

        logger.info(
            f"Margin released: {user_id} {margin_lock.amount} {asset.value} "
            f"for trade {trade_id}, pnl={pnl}"
        )
        self._balances.notify_changed(user_id)
        return balance

    async def reduce_locked(
        self,
        user_id: str,
        asset,
        amount: AmountLike,
        trade_id: Optional[str] = None,
    ) -> MarginBalance:
        """
        Charge a fee (funding, borrowing) against locked margin.

        When trade_id is given the named lock shrinks by the same amount and
        is closed once nothing is left in it.
        Raises InsufficientMargin if locked balance (or the lock) is too low.
        """
        asset = self._balances.check_asset(asset, "margin reductions")
        amount = parse_amount(amount)

        async with self._balances.account(user_id, asset):
            margin_lock = self._lock_for_adjustment(user_id, asset, trade_id)
            if margin_lock is not None and margin_lock.amount < amount:
                raise InsufficientMargin(
                    f"Insufficient margin locked for trade {trade_id}",
                    have=margin_lock.amount,
                    need=amount,
                )

            def charge(current: MarginBalance) -> MarginBalance:
                if current.locked < amount:
                    raise InsufficientMargin(
                        "Insufficient locked margin",
                        have=current.locked,
                        need=amount,
                    )
                return current.with_values(locked=subtract(current.locked, amount))

            balance = self._balances.apply(user_id, asset, charge)
            if margin_lock is not None:
                self._resize_lock(margin_lock, subtract(margin_lock.amount, amount))

        logger.info(f"Locked margin reduced: {user_id} -{amount} {asset.value}")
        self._balances.notify_changed(user_id)
        return balance

    async def add_locked(
        self,
        user_id: str,
        asset,
        amount: AmountLike,
        trade_id: Optional[str] = None,
    ) -> MarginBalance:
        """Refund a fee into locked margin, growing the named lock if given."""
        asset = self._balances.check_asset(asset, "margin additions")
        amount = parse_amount(amount)

        async with self._balances.account(user_id, asset):
            margin_lock = self._lock_for_adjustment(user_id, asset, trade_id)

            balance = self._balances.apply(
                user_id,
                asset,
                lambda current: current.with_values(locked=add(current.locked, amount)),
            )
            if margin_lock is not None:
                self._resize_lock(margin_lock, add(margin_lock.amount, amount))

        logger.info(f"Locked margin increased: {user_id} +{amount} {asset.value}")
        self._balances.notify_changed(user_id)
        return balance

    async def deduct(self, user_id: str, asset, amount: AmountLike) -> MarginBalance:
        """
        Charge a fee that is not tied to a lock against available margin.

        Raises InsufficientMargin if available balance is too low.
        """
        asset = self._balances.check_asset(asset, "margin deductions")
        amount = parse_amount(amount)

        async with self._balances.account(user_id, asset):
            balance = self._balances.debit_available(user_id, asset, amount)

        logger.info(f"Margin deducted: {user_id} -{amount} {asset.value}")
        self._balances.notify_changed(user_id)
        return balance

    def _lock_for_adjustment(
        self,
        user_id: str,
        asset: AssetType,
        trade_id: Optional[str],
    ) -> Optional[MarginLock]:
        if trade_id is None:
            return None
        margin_lock = self.get_lock(user_id, asset, trade_id)
        if margin_lock is None:
            raise LockNotFound(f"Margin lock not found for trade {trade_id}")
        return margin_lock

    def _resize_lock(self, margin_lock: MarginLock, amount: Decimal) -> None:
        if amount == ZERO:
            # Nothing left to release; close the lock
            self._store.delete(MARGIN_LOCKS, margin_lock.key)
            logger.info(f"Margin lock closed by fees: trade {margin_lock.trade_id}")
            return
        self._store.update(MARGIN_LOCKS, {"amount": format_amount(amount)}, margin_lock.key)
