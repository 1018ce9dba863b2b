"""Exceptions for the margin ledger client."""

from typing import Optional


class MarginLedgerError(Exception):
    """Base exception for margin ledger client errors."""

    pass


class AuthenticationError(MarginLedgerError):
    """Raised when authentication fails."""

    pass


class RequestRejectedError(MarginLedgerError):
    """Raised when the ledger rejects a request (4xx with a ledger error)."""

    def __init__(self, status_code: int, error: str, detail: str, reason: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        self.detail = detail
        self.reason = reason
        super().__init__(f"{error}: {detail}")


class NotFoundError(MarginLedgerError):
    """Raised when a resource is not found."""

    pass


class NetworkError(MarginLedgerError):
    """Raised when there's a network communication error."""

    pass
