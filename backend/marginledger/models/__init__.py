from marginledger.models.asset import AssetType
from marginledger.models.balance import MarginBalance, MarginLock
from marginledger.models.deposit import DepositRecord
from marginledger.models.withdrawal import WithdrawalRequest, WithdrawalStatus

__all__ = [
    "AssetType",
    "MarginBalance",
    "MarginLock",
    "DepositRecord",
    "WithdrawalRequest",
    "WithdrawalStatus",
]
