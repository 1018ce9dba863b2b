import asyncio
import logging
from decimal import Decimal
from typing import Protocol

from marginledger.errors import InvalidWithdrawal
from marginledger.models.asset import AssetType
from marginledger.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from marginledger.workflows.withdrawals import WithdrawalWorkflow

logger = logging.getLogger(__name__)


class PaymentSubmitter(Protocol):
    """Protocol for paying out withdrawals on the blockchain."""

    async def submit_payment(
        self,
        destination: str,
        asset: AssetType,
        amount: Decimal,
    ) -> str:
        """Submit a payment transaction. Returns tx hash."""
        ...


class PayoutProcessor:
    """
    Pays out pending withdrawals and records their transaction hashes.

    Each PENDING withdrawal is claimed (PROCESSING), paid on-chain and then
    completed. A failed payment stays PROCESSING with a note so an operator
    can reconcile it by hand; it is never retried automatically.
    """

    def __init__(
        self,
        withdrawals: WithdrawalWorkflow,
        payment_submitter: PaymentSubmitter,
        poll_interval: float = 10.0,
    ) -> None:
        self._withdrawals = withdrawals
        self._payments = payment_submitter
        self._poll_interval = poll_interval
        self._running = False

    async def start(self) -> None:
        """Start the processor loop."""
        self._running = True
        logger.info("PayoutProcessor started")

        while self._running:
            try:
                await self.process_pending()
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error processing payouts: {e}")
                await asyncio.sleep(self._poll_interval)

        logger.info("PayoutProcessor stopped")

    async def stop(self) -> None:
        """Stop the processor loop."""
        self._running = False

    async def process_pending(self) -> int:
        """Pay out every currently PENDING withdrawal. Returns the number completed."""
        completed = 0
        for withdrawal in self._withdrawals.list_withdrawals(status=WithdrawalStatus.PENDING):
            if await self._pay_out(withdrawal):
                completed += 1
        return completed

    async def _pay_out(self, withdrawal: WithdrawalRequest) -> bool:
        try:
            await self._withdrawals.begin_payout(withdrawal.id)
        except InvalidWithdrawal:
            # Rejected or processed by an operator since we listed it
            logger.debug(f"Skipping withdrawal {withdrawal.id}: no longer pending")
            return False

        try:
            tx_hash = await self._payments.submit_payment(
                destination=withdrawal.destination_address,
                asset=withdrawal.asset,
                amount=withdrawal.amount,
            )
        except Exception as e:
            logger.error(f"Payout failed for withdrawal {withdrawal.id}: {e}")
            await self._withdrawals.note_payout_failure(withdrawal.id, f"Payout failed: {e}")
            return False

        await self._withdrawals.complete_payout(withdrawal.id, tx_hash)
        return True


class MockPaymentSubmitter:
    """
    Mock payment submitter for testing.

    Simply returns a fake tx hash without submitting to blockchain.
    """

    def __init__(self) -> None:
        self._tx_count = 0
        self.payments: list[tuple[str, AssetType, Decimal]] = []

    async def submit_payment(
        self,
        destination: str,
        asset: AssetType,
        amount: Decimal,
    ) -> str:
        """Mock payment submission."""
        self._tx_count += 1
        self.payments.append((destination, asset, amount))
        tx_hash = f"mock_payout_tx_{self._tx_count}"
        logger.info(f"Mock payout: {destination} {amount} {asset.value} -> {tx_hash}")
        return tx_hash
