"""Margin balance, deposit and lock API routes."""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marginledger.amounts import format_amount
from marginledger.api.auth import verify_request_signature
from marginledger.api.dependencies import get_balances, get_deposits, get_locks
from marginledger.ledger.balances import BalanceManager
from marginledger.ledger.locks import MarginLockRegistry
from marginledger.models.balance import MarginBalance
from marginledger.workflows.deposits import DepositWorkflow

router = APIRouter(prefix="/margin", tags=["margin"])


class DepositRequest(BaseModel):
    """Request body for crediting an on-chain deposit."""

    asset: str = Field(..., description="Asset deposited: xlm or usdc")
    amount: str = Field(..., description="Amount deposited (decimal string)")
    tx_hash: str = Field(..., description="Hash of the deposit transaction")


class BalanceResponse(BaseModel):
    """A user's margin balance in one asset."""

    user_address: str = Field(..., description="User's Stellar address")
    asset: str = Field(..., description="Asset")
    available: str = Field(..., description="Balance free to withdraw or lock")
    locked: str = Field(..., description="Balance locked in open trades")
    unrealized_pnl: str = Field(..., description="Mark-to-market P&L of open trades")
    total: str = Field(..., description="available + locked")

    @staticmethod
    def from_balance(balance: MarginBalance) -> "BalanceResponse":
        return BalanceResponse(
            user_address=balance.user_id,
            asset=balance.asset.value,
            available=format_amount(balance.available),
            locked=format_amount(balance.locked),
            unrealized_pnl=format_amount(balance.unrealized_pnl),
            total=format_amount(balance.total),
        )


class LockResponse(BaseModel):
    """An open margin lock."""

    trade_id: str
    asset: str
    amount: str
    created_at: datetime


class DepositResponse(BaseModel):
    """A credited deposit."""

    tx_hash: str
    asset: str
    amount: str
    created_at: datetime


@router.post("/deposits", response_model=BalanceResponse)
async def deposit_margin(
    deposit: DepositRequest,
    user_address: str = Depends(verify_request_signature),
    deposits: DepositWorkflow = Depends(get_deposits),
) -> BalanceResponse:
    """
    Credit a deposit after verifying its transaction on-chain.

    The transaction must be a successful payment of exactly the given
    amount and asset from the caller to the protocol wallet.
    """
    balance = await deposits.deposit_margin(
        user_address=user_address,
        amount=deposit.amount,
        asset=deposit.asset,
        tx_hash=deposit.tx_hash,
    )
    return BalanceResponse.from_balance(balance)


@router.get("/deposits", response_model=list[DepositResponse])
async def list_deposits(
    user_address: str = Depends(verify_request_signature),
    deposits: DepositWorkflow = Depends(get_deposits),
) -> list[DepositResponse]:
    return [
        DepositResponse(
            tx_hash=d.tx_hash,
            asset=d.asset.value,
            amount=format_amount(d.amount),
            created_at=d.created_at,
        )
        for d in deposits.list_deposits(user_address)
    ]


@router.get("/balances/{asset}", response_model=BalanceResponse)
async def get_balance(
    asset: str,
    user_address: str = Depends(verify_request_signature),
    balances: BalanceManager = Depends(get_balances),
) -> BalanceResponse:
    """Get the caller's margin balance in one asset."""
    parsed = balances.check_asset(asset, "balances")
    return BalanceResponse.from_balance(balances.get_balance(user_address, parsed))


@router.get("/locks", response_model=list[LockResponse])
async def list_locks(
    user_address: str = Depends(verify_request_signature),
    locks: MarginLockRegistry = Depends(get_locks),
) -> list[LockResponse]:
    """List the caller's open margin locks."""
    return [
        LockResponse(
            trade_id=lock.trade_id,
            asset=lock.asset.value,
            amount=format_amount(lock.amount),
            created_at=lock.created_at,
        )
        for lock in locks.list_locks(user_address)
    ]
