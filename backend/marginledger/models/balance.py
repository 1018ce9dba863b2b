from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
import uuid

from marginledger.amounts import ZERO, add, format_amount, to_decimal
from marginledger.models.asset import AssetType


@dataclass(frozen=True)
class MarginBalance:
    """
    Collateral held by one user in one asset.

    - available: Funds that can be withdrawn or committed to a new lock
    - locked: Funds committed to open trades
    - unrealized_pnl: Mark-to-market P&L of open trades, informational only
    - total = available + locked
    """

    user_id: str
    asset: AssetType
    available: Decimal = ZERO
    locked: Decimal = ZERO
    unrealized_pnl: Decimal = ZERO
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def total(self) -> Decimal:
        """Total collateral including locked funds."""
        return add(self.available, self.locked)

    @property
    def exists(self) -> bool:
        """Whether this balance has been written to the store."""
        return self.created_at is not None

    def with_values(
        self,
        available: Optional[Decimal] = None,
        locked: Optional[Decimal] = None,
        unrealized_pnl: Optional[Decimal] = None,
    ) -> "MarginBalance":
        """Copy of this balance with the given fields replaced."""
        return replace(
            self,
            available=self.available if available is None else available,
            locked=self.locked if locked is None else locked,
            unrealized_pnl=self.unrealized_pnl if unrealized_pnl is None else unrealized_pnl,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "asset": self.asset.value,
            "available": format_amount(self.available),
            "locked": format_amount(self.locked),
            "unrealized_pnl": format_amount(self.unrealized_pnl),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_record(record: dict[str, Any]) -> "MarginBalance":
        return MarginBalance(
            user_id=record["user_id"],
            asset=AssetType(record["asset"]),
            available=to_decimal(record["available"]),
            locked=to_decimal(record["locked"]),
            unrealized_pnl=to_decimal(record["unrealized_pnl"]),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )


@dataclass(frozen=True)
class MarginLock:
    """
    Margin pinned to a single trade.

    At most one lock is open per (user, asset, trade).
    """

    user_id: str
    asset: AssetType
    trade_id: str
    amount: Decimal
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> dict[str, str]:
        return {"user_id": self.user_id, "asset": self.asset.value, "trade_id": self.trade_id}

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "asset": self.asset.value,
            "trade_id": self.trade_id,
            "amount": format_amount(self.amount),
            "created_at": self.created_at,
        }

    @staticmethod
    def from_record(record: dict[str, Any]) -> "MarginLock":
        return MarginLock(
            id=record["id"],
            user_id=record["user_id"],
            asset=AssetType(record["asset"]),
            trade_id=record["trade_id"],
            amount=to_decimal(record["amount"]),
            created_at=record["created_at"],
        )
