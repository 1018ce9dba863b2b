import asyncio
import logging
from decimal import Decimal
from typing import NamedTuple, Optional, Protocol

from marginledger.amounts import AmountLike, parse_amount
from marginledger.errors import (
    DepositFailureReason,
    DepositVerificationFailed,
    DuplicateDeposit,
    StoreConflict,
)
from marginledger.ledger.balances import BalanceManager
from marginledger.models.asset import AssetType
from marginledger.models.balance import MarginBalance
from marginledger.models.deposit import DepositRecord
from marginledger.storage.ledger_store import DEPOSITS, LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_TIMEOUT = 20.0


class VerificationResult(NamedTuple):
    """Answer from a deposit verifier."""

    ok: bool
    reason: Optional[DepositFailureReason] = None
    detail: Optional[str] = None

    @staticmethod
    def success() -> "VerificationResult":
        return VerificationResult(ok=True)

    @staticmethod
    def failure(reason: DepositFailureReason, detail: Optional[str] = None) -> "VerificationResult":
        return VerificationResult(ok=False, reason=reason, detail=detail)


class DepositVerifier(Protocol):
    """Protocol for confirming on-chain deposits to the protocol wallet."""

    async def verify(
        self,
        sender: str,
        tx_hash: str,
        amount: Decimal,
        asset: AssetType,
    ) -> VerificationResult:
        """Check that sender paid amount of asset to the protocol wallet in tx_hash."""
        ...


class DepositWorkflow:
    """
    Credits margin for verified on-chain deposits.

    Verification happens before any account scope is entered since it is a
    slow network call. Each transaction hash is credited at most once.
    """

    def __init__(
        self,
        store: LedgerStore,
        balances: BalanceManager,
        verifier: DepositVerifier,
        verify_timeout: float = DEFAULT_VERIFY_TIMEOUT,
    ) -> None:
        self._store = store
        self._balances = balances
        self._verifier = verifier
        self._verify_timeout = verify_timeout

    def get_deposit(self, tx_hash: str) -> Optional[DepositRecord]:
        records = self._store.find(DEPOSITS, {"tx_hash": tx_hash.strip().lower()})
        if not records:
            return None
        return DepositRecord.from_record(records[0])

    def list_deposits(self, user_id: str) -> list[DepositRecord]:
        """List a user's credited deposits, oldest first."""
        deposits = [
            DepositRecord.from_record(r)
            for r in self._store.find(DEPOSITS, {"user_id": user_id})
        ]
        return sorted(deposits, key=lambda d: d.created_at)

    async def deposit_margin(
        self,
        user_address: str,
        amount: AmountLike,
        asset,
        tx_hash: str,
    ) -> MarginBalance:
        """
        Verify an on-chain deposit and credit it to available balance.

        Raises:
            UnsupportedAsset / InvalidAmount: bad input
            DuplicateDeposit: tx_hash was already credited
            DepositVerificationFailed: the verifier rejected, timed out or errored
        """
        asset = self._balances.check_asset(asset, "margin deposits")
        amount = parse_amount(amount)
        # Hashes are hex; the same transaction may arrive in either case
        tx_hash = tx_hash.strip().lower()

        if self.get_deposit(tx_hash) is not None:
            raise DuplicateDeposit(tx_hash)

        await self._verify(user_address, tx_hash, amount, asset)

        record = DepositRecord(tx_hash=tx_hash, user_id=user_address, asset=asset, amount=amount)

        async with self._balances.account(user_address, asset):
            # Another request may have credited the same transaction meanwhile
            if self.get_deposit(tx_hash) is not None:
                raise DuplicateDeposit(tx_hash)

            balance = self._balances.credit_available(user_address, asset, amount)
            try:
                self._store.insert(DEPOSITS, record.to_record())
            except StoreConflict:
                self._balances.debit_available(user_address, asset, amount)
                raise DuplicateDeposit(tx_hash) from None

        logger.info(f"Deposit credited: {user_address} +{amount} {asset.value} tx={tx_hash}")
        self._balances.notify_changed(user_address)
        return balance

    async def _verify(self, sender: str, tx_hash: str, amount: Decimal, asset: AssetType) -> None:
        try:
            result = await asyncio.wait_for(
                self._verifier.verify(sender, tx_hash, amount, asset),
                timeout=self._verify_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Deposit verification timed out: tx={tx_hash}")
            raise DepositVerificationFailed(
                DepositFailureReason.TIMEOUT,
                f"No answer within {self._verify_timeout}s",
            ) from None
        except DepositVerificationFailed:
            raise
        except Exception as e:
            logger.exception(f"Deposit verifier error for tx={tx_hash}: {e}")
            raise DepositVerificationFailed(DepositFailureReason.UNAVAILABLE, str(e)) from e

        if not result.ok:
            reason = result.reason or DepositFailureReason.NOT_FOUND
            logger.warning(
                f"Deposit rejected: {sender} {amount} {asset.value} tx={tx_hash} "
                f"reason={reason.value} {result.detail or ''}"
            )
            raise DepositVerificationFailed(reason, result.detail)
