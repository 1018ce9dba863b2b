from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from marginledger.amounts import format_amount, to_decimal
from marginledger.models.asset import AssetType


@dataclass(frozen=True)
class DepositRecord:
    """An on-chain transaction that has been credited to a user."""

    tx_hash: str
    user_id: str
    asset: AssetType
    amount: Decimal
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "user_id": self.user_id,
            "asset": self.asset.value,
            "amount": format_amount(self.amount),
            "created_at": self.created_at,
        }

    @staticmethod
    def from_record(record: dict[str, Any]) -> "DepositRecord":
        return DepositRecord(
            tx_hash=record["tx_hash"],
            user_id=record["user_id"],
            asset=AssetType(record["asset"]),
            amount=to_decimal(record["amount"]),
            created_at=record["created_at"],
        )
