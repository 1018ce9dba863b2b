from decimal import Decimal

import pytest
from stellar_sdk import Keypair

from marginledger.executor.payout_processor import MockPaymentSubmitter, PayoutProcessor
from marginledger.ledger.balances import BalanceManager
from marginledger.models.asset import AssetType
from marginledger.models.withdrawal import WithdrawalStatus
from marginledger.storage.ledger_store import MemoryLedgerStore
from marginledger.workflows.withdrawals import WithdrawalWorkflow

USER = "user1"


class FailingSubmitter:
    async def submit_payment(self, destination: str, asset: AssetType, amount: Decimal) -> str:
        raise RuntimeError("tx_bad_seq")


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def balances(store: MemoryLedgerStore) -> BalanceManager:
    return BalanceManager(store=store)


@pytest.fixture
def withdrawals(store: MemoryLedgerStore, balances: BalanceManager) -> WithdrawalWorkflow:
    return WithdrawalWorkflow(store=store, balances=balances)


@pytest.fixture
def submitter() -> MockPaymentSubmitter:
    return MockPaymentSubmitter()


@pytest.fixture
def processor(withdrawals: WithdrawalWorkflow, submitter: MockPaymentSubmitter) -> PayoutProcessor:
    return PayoutProcessor(withdrawals=withdrawals, payment_submitter=submitter, poll_interval=0.01)


async def pending_withdrawal(
    balances: BalanceManager,
    withdrawals: WithdrawalWorkflow,
    amount: str = "25",
):
    await balances.set_balance(USER, AssetType.USDC, "100", "0", "0")
    return await withdrawals.request_withdrawal(USER, amount, "usdc", Keypair.random().public_key)


class TestPayoutProcessor:
    """Tests for automatic withdrawal payouts."""

    @pytest.mark.asyncio
    async def test_pays_out_pending_withdrawals(
        self,
        processor: PayoutProcessor,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        submitter: MockPaymentSubmitter,
    ) -> None:
        withdrawal = await pending_withdrawal(balances, withdrawals)

        completed = await processor.process_pending()

        assert completed == 1
        assert submitter.payments == [
            (withdrawal.destination_address, AssetType.USDC, Decimal("25")),
        ]
        paid = withdrawals.get_withdrawal(withdrawal.id)
        assert paid.status == WithdrawalStatus.COMPLETED
        assert paid.tx_hash == "mock_payout_tx_1"
        assert balances.get_balance(USER, AssetType.USDC).available == Decimal("75")

    @pytest.mark.asyncio
    async def test_nothing_pending(self, processor: PayoutProcessor) -> None:
        assert await processor.process_pending() == 0

    @pytest.mark.asyncio
    async def test_rejected_withdrawals_are_not_paid(
        self,
        processor: PayoutProcessor,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        submitter: MockPaymentSubmitter,
    ) -> None:
        withdrawal = await pending_withdrawal(balances, withdrawals)
        await withdrawals.reject_withdrawal(withdrawal.id, "operator said no")

        assert await processor.process_pending() == 0
        assert submitter.payments == []

    @pytest.mark.asyncio
    async def test_failed_payment_stays_processing(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
    ) -> None:
        processor = PayoutProcessor(withdrawals=withdrawals, payment_submitter=FailingSubmitter())
        withdrawal = await pending_withdrawal(balances, withdrawals)

        assert await processor.process_pending() == 0

        stuck = withdrawals.get_withdrawal(withdrawal.id)
        assert stuck.status == WithdrawalStatus.PROCESSING
        assert "tx_bad_seq" in stuck.processing_notes
        # Not retried on the next pass
        assert await processor.process_pending() == 0
        assert balances.get_balance(USER, AssetType.USDC).available == Decimal("75")
