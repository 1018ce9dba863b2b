import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from stellar_sdk import StrKey

from marginledger.amounts import STELLAR_DECIMALS, AmountLike, fractional_digits, parse_amount
from marginledger.errors import InvalidAmount, InvalidDestination, InvalidWithdrawal, StoreConflict
from marginledger.ledger.balances import BalanceManager
from marginledger.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from marginledger.storage.ledger_store import WITHDRAWAL_REQUESTS, LedgerStore

logger = logging.getLogger(__name__)


class WithdrawalWorkflow:
    """
    Lifecycle of withdrawal requests.

    Funds leave available balance when the request is made. From PENDING a
    request is either completed (funds left the system) or rejected (funds
    are credited back). PROCESSING is the slot used while a payout is in
    flight and can only move on to COMPLETED. Terminal requests never
    change again.
    """

    def __init__(self, store: LedgerStore, balances: BalanceManager) -> None:
        self._store = store
        self._balances = balances

    def get_withdrawal(self, withdrawal_id: str) -> Optional[WithdrawalRequest]:
        records = self._store.find(WITHDRAWAL_REQUESTS, {"id": withdrawal_id})
        if not records:
            return None
        return WithdrawalRequest.from_record(records[0])

    def list_withdrawals(
        self,
        user_id: Optional[str] = None,
        status: Optional[WithdrawalStatus] = None,
    ) -> list[WithdrawalRequest]:
        """List withdrawal requests, oldest first."""
        filter: dict[str, Any] = {}
        if user_id is not None:
            filter["user_id"] = user_id
        if status is not None:
            filter["status"] = status.value
        requests = [
            WithdrawalRequest.from_record(r)
            for r in self._store.find(WITHDRAWAL_REQUESTS, filter)
        ]
        return sorted(requests, key=lambda r: r.created_at)

    async def request_withdrawal(
        self,
        user_id: str,
        amount: AmountLike,
        asset,
        destination_address: str,
    ) -> WithdrawalRequest:
        """
        Reserve funds and open a PENDING withdrawal.

        Raises UnsupportedAsset, InvalidAmount, InvalidDestination or
        InsufficientMargin without changing anything.
        """
        asset = self._balances.check_asset(asset, "withdrawals")
        amount = parse_amount(amount)
        if fractional_digits(amount) > STELLAR_DECIMALS:
            raise InvalidAmount(
                f"Amount {amount} has more than {STELLAR_DECIMALS} fractional digits "
                f"and cannot be paid out"
            )
        if not StrKey.is_valid_ed25519_public_key(destination_address):
            raise InvalidDestination(f"Invalid destination address: {destination_address}")

        withdrawal = WithdrawalRequest.create(
            user_id=user_id,
            amount=amount,
            asset=asset,
            destination_address=destination_address,
        )

        async with self._balances.account(user_id, asset):
            self._balances.debit_available(user_id, asset, amount)
            try:
                self._store.insert(WITHDRAWAL_REQUESTS, withdrawal.to_record())
            except StoreConflict:
                self._balances.credit_available(user_id, asset, amount)
                raise

        logger.info(
            f"Withdrawal requested: {withdrawal.id} {user_id} {amount} {asset.value} "
            f"-> {destination_address}"
        )
        self._balances.notify_changed(user_id)
        return withdrawal

    async def process_withdrawal(self, withdrawal_id: str, tx_hash: str) -> WithdrawalRequest:
        """
        Record that a PENDING withdrawal was paid out in tx_hash.

        Balances are untouched: the funds were reserved at request time.
        """
        withdrawal = await self._transition(
            withdrawal_id,
            WithdrawalStatus.PENDING,
            {"status": WithdrawalStatus.COMPLETED.value, "tx_hash": tx_hash},
        )
        logger.info(f"Withdrawal completed: {withdrawal_id} tx={tx_hash}")
        self._balances.notify_changed(withdrawal.user_id)
        return withdrawal

    async def reject_withdrawal(self, withdrawal_id: str, reason: str) -> WithdrawalRequest:
        """Reject a PENDING withdrawal and return its funds to available balance."""

        def refund(withdrawal: WithdrawalRequest) -> None:
            self._balances.credit_available(withdrawal.user_id, withdrawal.asset, withdrawal.amount)

        withdrawal = await self._transition(
            withdrawal_id,
            WithdrawalStatus.PENDING,
            {"status": WithdrawalStatus.REJECTED.value, "processing_notes": reason},
            after_update=refund,
        )
        logger.info(f"Withdrawal rejected: {withdrawal_id} ({reason})")
        self._balances.notify_changed(withdrawal.user_id)
        return withdrawal

    async def begin_payout(self, withdrawal_id: str) -> WithdrawalRequest:
        """Claim a PENDING withdrawal for an on-chain payout (PENDING -> PROCESSING)."""
        withdrawal = await self._transition(
            withdrawal_id,
            WithdrawalStatus.PENDING,
            {"status": WithdrawalStatus.PROCESSING.value},
        )
        logger.info(f"Withdrawal payout started: {withdrawal_id}")
        return withdrawal

    async def complete_payout(self, withdrawal_id: str, tx_hash: str) -> WithdrawalRequest:
        """Finish a payout (PROCESSING -> COMPLETED)."""
        withdrawal = await self._transition(
            withdrawal_id,
            WithdrawalStatus.PROCESSING,
            {"status": WithdrawalStatus.COMPLETED.value, "tx_hash": tx_hash},
        )
        logger.info(f"Withdrawal payout completed: {withdrawal_id} tx={tx_hash}")
        self._balances.notify_changed(withdrawal.user_id)
        return withdrawal

    async def note_payout_failure(self, withdrawal_id: str, note: str) -> WithdrawalRequest:
        """Attach a failure note to a PROCESSING withdrawal, leaving it for an operator."""
        return await self._transition(
            withdrawal_id,
            WithdrawalStatus.PROCESSING,
            {"processing_notes": note},
        )

    async def _transition(
        self,
        withdrawal_id: str,
        expected: WithdrawalStatus,
        patch: dict[str, Any],
        after_update: Optional[Callable[[WithdrawalRequest], None]] = None,
    ) -> WithdrawalRequest:
        withdrawal = self.get_withdrawal(withdrawal_id)
        if withdrawal is None:
            raise InvalidWithdrawal(f"Withdrawal not found: {withdrawal_id}")

        async with self._balances.account(withdrawal.user_id, withdrawal.asset):
            # Re-read inside the scope; a concurrent transition may have won
            withdrawal = self.get_withdrawal(withdrawal_id)
            if withdrawal is None or withdrawal.status != expected:
                status = withdrawal.status.value if withdrawal else "missing"
                raise InvalidWithdrawal(
                    f"Invalid withdrawal request {withdrawal_id}: "
                    f"status is {status}, expected {expected.value}"
                )

            rows = self._store.update(
                WITHDRAWAL_REQUESTS,
                {**patch, "updated_at": datetime.now(timezone.utc)},
                {"id": withdrawal_id, "status": expected.value},
            )
            if not rows:
                raise InvalidWithdrawal(
                    f"Invalid withdrawal request {withdrawal_id}: "
                    f"status changed during update, expected {expected.value}"
                )
            updated = WithdrawalRequest.from_record(rows[0])

            if after_update is not None:
                try:
                    after_update(updated)
                except Exception:
                    # Put the request back so the transition can be retried
                    original = withdrawal.to_record()
                    self._store.update(
                        WITHDRAWAL_REQUESTS,
                        {name: original[name] for name in (*patch, "updated_at")},
                        {"id": withdrawal_id},
                    )
                    raise

        return updated
