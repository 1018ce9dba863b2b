"""Withdrawal API routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from marginledger.amounts import format_amount
from marginledger.api.auth import require_admin, verify_request_signature
from marginledger.api.dependencies import get_withdrawals
from marginledger.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from marginledger.workflows.withdrawals import WithdrawalWorkflow

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])
admin_router = APIRouter(prefix="/admin/withdrawals", tags=["admin"])


class WithdrawalBody(BaseModel):
    """Request body for a withdrawal."""

    asset: str = Field(..., description="Asset to withdraw: xlm or usdc")
    amount: str = Field(..., description="Amount to withdraw (decimal string)")
    destination_address: str = Field(..., description="Stellar account to pay out to")


class ProcessBody(BaseModel):
    tx_hash: str = Field(..., description="Hash of the payout transaction")


class RejectBody(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the withdrawal was rejected")


class WithdrawalResponse(BaseModel):
    """A withdrawal request and its current status."""

    id: str
    user_address: str
    asset: str
    amount: str
    destination_address: str
    status: str = Field(..., description="PENDING, PROCESSING, COMPLETED or REJECTED")
    tx_hash: Optional[str] = None
    processing_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def from_request(withdrawal: WithdrawalRequest) -> "WithdrawalResponse":
        return WithdrawalResponse(
            id=withdrawal.id,
            user_address=withdrawal.user_id,
            asset=withdrawal.asset.value,
            amount=format_amount(withdrawal.amount),
            destination_address=withdrawal.destination_address,
            status=withdrawal.status.value,
            tx_hash=withdrawal.tx_hash,
            processing_notes=withdrawal.processing_notes,
            created_at=withdrawal.created_at,
            updated_at=withdrawal.updated_at,
        )


@router.post("", response_model=WithdrawalResponse)
async def request_withdrawal(
    body: WithdrawalBody,
    user_address: str = Depends(verify_request_signature),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> WithdrawalResponse:
    """
    Request a withdrawal.

    The amount leaves the caller's available balance immediately and is
    returned if an operator rejects the request.
    """
    withdrawal = await withdrawals.request_withdrawal(
        user_id=user_address,
        amount=body.amount,
        asset=body.asset,
        destination_address=body.destination_address,
    )
    return WithdrawalResponse.from_request(withdrawal)


@router.get("", response_model=list[WithdrawalResponse])
async def list_my_withdrawals(
    user_address: str = Depends(verify_request_signature),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> list[WithdrawalResponse]:
    return [
        WithdrawalResponse.from_request(w)
        for w in withdrawals.list_withdrawals(user_id=user_address)
    ]


@router.get("/{withdrawal_id}", response_model=WithdrawalResponse)
async def get_withdrawal(
    withdrawal_id: str,
    user_address: str = Depends(verify_request_signature),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> WithdrawalResponse:
    withdrawal = withdrawals.get_withdrawal(withdrawal_id)
    if withdrawal is None or withdrawal.user_id != user_address:
        raise HTTPException(
            status_code=404,
            detail=f"Withdrawal not found: {withdrawal_id}",
        )
    return WithdrawalResponse.from_request(withdrawal)


@admin_router.get("", response_model=list[WithdrawalResponse])
async def list_withdrawals(
    status: Optional[WithdrawalStatus] = None,
    admin: str = Depends(require_admin),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> list[WithdrawalResponse]:
    """List withdrawal requests, optionally by status."""
    return [
        WithdrawalResponse.from_request(w)
        for w in withdrawals.list_withdrawals(status=status)
    ]


@admin_router.post("/{withdrawal_id}/process", response_model=WithdrawalResponse)
async def process_withdrawal(
    withdrawal_id: str,
    body: ProcessBody,
    admin: str = Depends(require_admin),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> WithdrawalResponse:
    """Mark a PENDING withdrawal as paid out in the given transaction."""
    withdrawal = await withdrawals.process_withdrawal(withdrawal_id, body.tx_hash)
    return WithdrawalResponse.from_request(withdrawal)


@admin_router.post("/{withdrawal_id}/complete", response_model=WithdrawalResponse)
async def complete_payout(
    withdrawal_id: str,
    body: ProcessBody,
    admin: str = Depends(require_admin),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> WithdrawalResponse:
    """
    Complete a PROCESSING withdrawal whose automatic payout failed.

    Used once an operator has settled the payout on-chain by hand.
    """
    withdrawal = await withdrawals.complete_payout(withdrawal_id, body.tx_hash)
    return WithdrawalResponse.from_request(withdrawal)


@admin_router.post("/{withdrawal_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    withdrawal_id: str,
    body: RejectBody,
    admin: str = Depends(require_admin),
    withdrawals: WithdrawalWorkflow = Depends(get_withdrawals),
) -> WithdrawalResponse:
    """Reject a PENDING withdrawal and return the funds to the user."""
    withdrawal = await withdrawals.reject_withdrawal(withdrawal_id, body.reason)
    return WithdrawalResponse.from_request(withdrawal)
