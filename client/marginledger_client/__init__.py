from marginledger_client.client import MarginLedgerClient, BalanceResponse, WithdrawalResponse
from marginledger_client.exceptions import (
    MarginLedgerError,
    AuthenticationError,
    RequestRejectedError,
    NotFoundError,
    NetworkError,
)

__all__ = [
    "MarginLedgerClient",
    "BalanceResponse",
    "WithdrawalResponse",
    "MarginLedgerError",
    "AuthenticationError",
    "RequestRejectedError",
    "NotFoundError",
    "NetworkError",
]
