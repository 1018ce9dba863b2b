from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid

from marginledger.amounts import format_amount, to_decimal
from marginledger.models.asset import AssetType


class WithdrawalStatus(Enum):
    """Lifecycle of a withdrawal request."""

    PENDING = "PENDING"  # Funds reserved, awaiting an operator
    PROCESSING = "PROCESSING"  # Payout in flight
    COMPLETED = "COMPLETED"  # Funds left the system
    REJECTED = "REJECTED"  # Funds returned to available balance

    @property
    def is_terminal(self) -> bool:
        return self in (WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED)


@dataclass(frozen=True)
class WithdrawalRequest:
    """A user's request to move collateral out to an on-chain address."""

    id: str
    user_id: str
    amount: Decimal
    asset: AssetType
    destination_address: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    tx_hash: Optional[str] = None
    processing_notes: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @staticmethod
    def create(
        user_id: str,
        amount: Decimal,
        asset: AssetType,
        destination_address: str,
    ) -> "WithdrawalRequest":
        """Create a new PENDING withdrawal request."""
        return WithdrawalRequest(
            id=str(uuid.uuid4()),
            user_id=user_id,
            amount=amount,
            asset=asset,
            destination_address=destination_address,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": format_amount(self.amount),
            "asset": self.asset.value,
            "destination_address": self.destination_address,
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "processing_notes": self.processing_notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_record(record: dict[str, Any]) -> "WithdrawalRequest":
        return WithdrawalRequest(
            id=record["id"],
            user_id=record["user_id"],
            amount=to_decimal(record["amount"]),
            asset=AssetType(record["asset"]),
            destination_address=record["destination_address"],
            status=WithdrawalStatus(record["status"]),
            tx_hash=record.get("tx_hash"),
            processing_notes=record.get("processing_notes"),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )
