from decimal import Decimal

import pytest
from stellar_sdk import Keypair

from marginledger.errors import (
    InsufficientMargin,
    InvalidAmount,
    InvalidDestination,
    InvalidWithdrawal,
    LedgerUnavailable,
    UnsupportedAsset,
)
from marginledger.events.notifier import BalanceNotifier
from marginledger.ledger.balances import BalanceManager
from marginledger.models.asset import AssetType
from marginledger.models.withdrawal import WithdrawalStatus
from marginledger.storage.ledger_store import WITHDRAWAL_REQUESTS, MemoryLedgerStore
from marginledger.workflows.withdrawals import WithdrawalWorkflow

USER = "user1"


class StaleStatusStore(MemoryLedgerStore):
    """Store where every status-guarded withdrawal update finds the status already changed."""

    def update(self, table, patch, filter):
        if table == WITHDRAWAL_REQUESTS and "status" in filter:
            return []
        return super().update(table, patch, filter)


@pytest.fixture
def destination() -> str:
    return Keypair.random().public_key


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def notifier() -> BalanceNotifier:
    return BalanceNotifier()


@pytest.fixture
def balances(store: MemoryLedgerStore, notifier: BalanceNotifier) -> BalanceManager:
    return BalanceManager(store=store, notifier=notifier)


@pytest.fixture
def withdrawals(store: MemoryLedgerStore, balances: BalanceManager) -> WithdrawalWorkflow:
    return WithdrawalWorkflow(store=store, balances=balances)


async def fund(balances: BalanceManager, available: str) -> None:
    await balances.set_balance(USER, AssetType.XLM, available, "0", "0")


def available(balances: BalanceManager) -> Decimal:
    return balances.get_balance(USER, AssetType.XLM).available


class TestRequestWithdrawal:
    """Tests for requesting withdrawals."""

    @pytest.mark.asyncio
    async def test_request_reserves_funds(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")

        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)

        assert withdrawal.status == WithdrawalStatus.PENDING
        assert withdrawal.amount == Decimal("30")
        assert withdrawal.destination_address == destination
        assert available(balances) == Decimal("70")
        assert withdrawals.get_withdrawal(withdrawal.id) == withdrawal

    @pytest.mark.asyncio
    async def test_insufficient_balance_creates_nothing(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "10")

        with pytest.raises(InsufficientMargin):
            await withdrawals.request_withdrawal(USER, "10.0000001", "xlm", destination)

        assert available(balances) == Decimal("10")
        assert withdrawals.list_withdrawals(user_id=USER) == []

    @pytest.mark.asyncio
    async def test_locked_margin_cannot_be_withdrawn(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await balances.set_balance(USER, AssetType.XLM, "10", "90", "0")

        with pytest.raises(InsufficientMargin):
            await withdrawals.request_withdrawal(USER, "20", "xlm", destination)

    @pytest.mark.asyncio
    async def test_invalid_destination(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
    ) -> None:
        await fund(balances, "100")

        with pytest.raises(InvalidDestination):
            await withdrawals.request_withdrawal(USER, "1", "xlm", "not-an-address")

        assert available(balances) == Decimal("100")

    @pytest.mark.asyncio
    async def test_invalid_amount(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")

        with pytest.raises(InvalidAmount):
            await withdrawals.request_withdrawal(USER, "0", "xlm", destination)

    @pytest.mark.asyncio
    async def test_amount_beyond_payout_precision(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")

        with pytest.raises(InvalidAmount):
            await withdrawals.request_withdrawal(USER, "1.00000001", "xlm", destination)

        assert available(balances) == Decimal("100")
        assert withdrawals.list_withdrawals(user_id=USER) == []

        withdrawal = await withdrawals.request_withdrawal(USER, "1.0000001", "xlm", destination)
        assert withdrawal.amount == Decimal("1.0000001")

    @pytest.mark.asyncio
    async def test_unsupported_asset(
        self,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        with pytest.raises(UnsupportedAsset):
            await withdrawals.request_withdrawal(USER, "1", "eth", destination)


class TestProcessAndReject:
    """Tests for operator transitions."""

    @pytest.mark.asyncio
    async def test_reject_refunds(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)

        rejected = await withdrawals.reject_withdrawal(withdrawal.id, "bad address")

        assert rejected.status == WithdrawalStatus.REJECTED
        assert rejected.processing_notes == "bad address"
        assert available(balances) == Decimal("100")

    @pytest.mark.asyncio
    async def test_process_leaves_balance(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)

        completed = await withdrawals.process_withdrawal(withdrawal.id, "abc123")

        assert completed.status == WithdrawalStatus.COMPLETED
        assert completed.tx_hash == "abc123"
        assert available(balances) == Decimal("70")

    @pytest.mark.asyncio
    async def test_terminal_withdrawals_never_change(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        first = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)
        second = await withdrawals.request_withdrawal(USER, "20", "xlm", destination)
        await withdrawals.process_withdrawal(first.id, "tx1")
        await withdrawals.reject_withdrawal(second.id, "no")

        for withdrawal_id in (first.id, second.id):
            with pytest.raises(InvalidWithdrawal):
                await withdrawals.process_withdrawal(withdrawal_id, "tx2")
            with pytest.raises(InvalidWithdrawal):
                await withdrawals.reject_withdrawal(withdrawal_id, "again")

        assert available(balances) == Decimal("70")
        assert withdrawals.get_withdrawal(first.id).tx_hash == "tx1"
        assert withdrawals.get_withdrawal(second.id).processing_notes == "no"

    @pytest.mark.asyncio
    async def test_lost_status_race_does_not_refund(
        self,
        notifier: BalanceNotifier,
        destination: str,
    ) -> None:
        store = StaleStatusStore()
        balances = BalanceManager(store=store, notifier=notifier)
        withdrawals = WithdrawalWorkflow(store=store, balances=balances)
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)

        with pytest.raises(InvalidWithdrawal):
            await withdrawals.reject_withdrawal(withdrawal.id, "no")

        assert available(balances) == Decimal("70")

    @pytest.mark.asyncio
    async def test_failed_refund_restores_pending(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)

        def broken_credit(*args, **kwargs):
            raise LedgerUnavailable("store down")

        with monkeypatch.context() as patched:
            patched.setattr(balances, "credit_available", broken_credit)
            with pytest.raises(LedgerUnavailable):
                await withdrawals.reject_withdrawal(withdrawal.id, "no")

        restored = withdrawals.get_withdrawal(withdrawal.id)
        assert restored.status == WithdrawalStatus.PENDING
        assert restored.processing_notes is None
        assert available(balances) == Decimal("70")

        rejected = await withdrawals.reject_withdrawal(withdrawal.id, "no")
        assert rejected.status == WithdrawalStatus.REJECTED
        assert available(balances) == Decimal("100")

    @pytest.mark.asyncio
    async def test_unknown_withdrawal(self, withdrawals: WithdrawalWorkflow) -> None:
        with pytest.raises(InvalidWithdrawal):
            await withdrawals.process_withdrawal("missing", "tx")
        with pytest.raises(InvalidWithdrawal):
            await withdrawals.reject_withdrawal("missing", "reason")

    @pytest.mark.asyncio
    async def test_list_by_status(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        first = await withdrawals.request_withdrawal(USER, "1", "xlm", destination)
        second = await withdrawals.request_withdrawal(USER, "2", "xlm", destination)
        await withdrawals.reject_withdrawal(first.id, "no")

        pending = withdrawals.list_withdrawals(status=WithdrawalStatus.PENDING)

        assert [w.id for w in pending] == [second.id]
        assert len(withdrawals.list_withdrawals(user_id=USER)) == 2
        assert withdrawals.list_withdrawals(user_id="someone-else") == []


class TestPayoutStates:
    """Tests for the PROCESSING state used by automatic payouts."""

    @pytest.mark.asyncio
    async def test_begin_and_complete_payout(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)

        processing = await withdrawals.begin_payout(withdrawal.id)
        assert processing.status == WithdrawalStatus.PROCESSING

        completed = await withdrawals.complete_payout(withdrawal.id, "tx1")
        assert completed.status == WithdrawalStatus.COMPLETED
        assert available(balances) == Decimal("70")

    @pytest.mark.asyncio
    async def test_processing_cannot_be_rejected(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)
        await withdrawals.begin_payout(withdrawal.id)

        with pytest.raises(InvalidWithdrawal):
            await withdrawals.reject_withdrawal(withdrawal.id, "too late")
        with pytest.raises(InvalidWithdrawal):
            await withdrawals.begin_payout(withdrawal.id)

        assert available(balances) == Decimal("70")

    @pytest.mark.asyncio
    async def test_payout_failure_note(
        self,
        balances: BalanceManager,
        withdrawals: WithdrawalWorkflow,
        destination: str,
    ) -> None:
        await fund(balances, "100")
        withdrawal = await withdrawals.request_withdrawal(USER, "30", "xlm", destination)
        await withdrawals.begin_payout(withdrawal.id)

        noted = await withdrawals.note_payout_failure(withdrawal.id, "rpc down")

        assert noted.status == WithdrawalStatus.PROCESSING
        assert noted.processing_notes == "rpc down"
