"""Exceptions raised by the margin ledger."""

from enum import Enum
from typing import Optional


class LedgerError(Exception):
    """Base exception for margin ledger errors."""

    status_code = 400
    retryable = False


class UnsupportedAsset(LedgerError):
    """Raised when an asset is not supported for the requested operation."""

    pass


# Alias used by callers that speak in terms of invalid tokens
InvalidAsset = UnsupportedAsset


class InvalidAmount(LedgerError):
    """Raised when an amount is malformed, non-positive or too precise."""

    pass


class InvalidDestination(LedgerError):
    """Raised when a withdrawal destination is not a valid Stellar account."""

    pass


class InsufficientMargin(LedgerError):
    """Raised when the available or locked balance is too low."""

    def __init__(self, message: str, have=None, need=None):
        self.have = have
        self.need = need
        if have is not None and need is not None:
            message = f"{message}: have {have}, need {need}"
        super().__init__(message)


class LockNotFound(LedgerError):
    """Raised when no open margin lock matches."""

    status_code = 404


class LockExists(LedgerError):
    """Raised when a margin lock is already open for the trade."""

    status_code = 409


class InvalidWithdrawal(LedgerError):
    """Raised for unknown withdrawals or a transition from the wrong state."""

    status_code = 409


class DuplicateDeposit(LedgerError):
    """Raised when an on-chain transaction has already been credited."""

    status_code = 409

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} has already been credited")


class DepositFailureReason(Enum):
    """Why a deposit transaction could not be verified."""

    NOT_FOUND = "not_found"
    FAILED = "failed"  # Transaction failed on-chain
    SENDER_MISMATCH = "sender_mismatch"
    RECIPIENT_MISMATCH = "recipient_mismatch"
    AMOUNT_OR_ASSET_MISMATCH = "amount_or_asset_mismatch"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"  # Verifier raised instead of answering


TRANSIENT_REASONS = frozenset(
    {DepositFailureReason.TIMEOUT, DepositFailureReason.UNAVAILABLE}
)


class DepositVerificationFailed(LedgerError):
    """Raised when the deposit verifier rejects or cannot confirm a transaction."""

    status_code = 422
    retryable = True

    def __init__(self, reason: DepositFailureReason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        message = f"Deposit verification failed ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        if reason in TRANSIENT_REASONS:
            self.status_code = 503


class StoreConflict(LedgerError):
    """
    Raised by a ledger store when a write collides with another writer.

    Internal retry signal; never surfaced to API callers as-is.
    """

    status_code = 503
    retryable = True


class LedgerUnavailable(LedgerError):
    """Raised when a write could not be applied after bounded retries."""

    status_code = 503
    retryable = True
