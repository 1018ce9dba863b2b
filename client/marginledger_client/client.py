"""Client for the margin ledger API."""

import hashlib
import json as json_lib
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx
from stellar_sdk import Keypair

from marginledger_client.exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    RequestRejectedError,
)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class BalanceResponse:
    """Margin balance in one asset."""

    user_address: str
    asset: str
    available: str
    locked: str
    unrealized_pnl: str
    total: str


@dataclass
class WithdrawalResponse:
    """A withdrawal request."""

    id: str
    user_address: str
    asset: str
    amount: str
    destination_address: str
    status: str
    tx_hash: Optional[str] = None
    processing_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status in ("PENDING", "PROCESSING")

    @property
    def is_completed(self) -> bool:
        return self.status == "COMPLETED"

    @property
    def is_rejected(self) -> bool:
        return self.status == "REJECTED"

    @staticmethod
    def from_json(data: dict[str, Any]) -> "WithdrawalResponse":
        return WithdrawalResponse(
            id=data["id"],
            user_address=data["user_address"],
            asset=data["asset"],
            amount=data["amount"],
            destination_address=data["destination_address"],
            status=data["status"],
            tx_hash=data.get("tx_hash"),
            processing_notes=data.get("processing_notes"),
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
        )


class MarginLedgerClient:
    """
    Client for the margin ledger.

    All requests are signed using the provided Stellar keypair.
    """

    def __init__(
        self,
        base_url: str,
        keypair: Keypair,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Base URL of the margin ledger API
            keypair: Stellar keypair for signing requests
            timeout: Request timeout in seconds
            transport: Optional httpx transport (for testing)
        """
        self._base_url = base_url.rstrip("/")
        self._keypair = keypair
        self._timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "MarginLedgerClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _sign_request(
        self,
        method: str,
        path: str,
        body: bytes,
    ) -> tuple[str, str, str]:
        """
        Sign a request and return authentication headers.

        Returns:
            Tuple of (address, signature, timestamp)
        """
        timestamp = int(time.time())
        body_hash = hashlib.sha256(body).hexdigest()
        message = f"{method}|{path}|{body_hash}|{timestamp}"

        signature = self._keypair.sign(message.encode("utf-8"))

        return self._keypair.public_key, signature.hex(), str(timestamp)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
    ) -> Any:
        """Make an authenticated request to the API."""
        url = f"{self._base_url}{path}"
        body = b""

        if json is not None:
            body = json_lib.dumps(json).encode("utf-8")

        address, signature, timestamp = self._sign_request(method, path, body)

        headers = {
            "X-Stellar-Address": address,
            "X-Stellar-Signature": signature,
            "X-Timestamp": timestamp,
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.request(method, url, headers=headers, content=body)
        except httpx.RequestError as e:
            raise NetworkError(f"Request failed: {e}") from e

        if response.status_code == 401:
            raise AuthenticationError(response.text)
        elif response.status_code == 404:
            raise NotFoundError(response.text)
        elif response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and "error" in data:
                raise RequestRejectedError(
                    status_code=response.status_code,
                    error=data["error"],
                    detail=data.get("detail", ""),
                    reason=data.get("reason"),
                )
            raise NetworkError(f"HTTP {response.status_code}: {response.text}")

        return response.json()

    async def deposit(self, asset: str, amount: str, tx_hash: str) -> BalanceResponse:
        """
        Credit an on-chain deposit to the caller's margin.

        Args:
            asset: "xlm" or "usdc"
            amount: Amount paid to the protocol wallet, as decimal string
            tx_hash: Hash of the payment transaction

        Returns:
            The new balance
        """
        response = await self._request(
            "POST",
            "/margin/deposits",
            json={"asset": asset, "amount": amount, "tx_hash": tx_hash},
        )
        return BalanceResponse(**response)

    async def get_balance(self, asset: str) -> BalanceResponse:
        """Get the caller's margin balance in one asset."""
        response = await self._request("GET", f"/margin/balances/{asset}")
        return BalanceResponse(**response)

    async def request_withdrawal(
        self,
        asset: str,
        amount: str,
        destination_address: Optional[str] = None,
    ) -> WithdrawalResponse:
        """
        Request a withdrawal.

        Args:
            asset: Asset to withdraw
            amount: Amount to withdraw as decimal string
            destination_address: Payout account (defaults to the caller)

        Returns:
            The PENDING withdrawal request
        """
        response = await self._request(
            "POST",
            "/withdrawals",
            json={
                "asset": asset,
                "amount": amount,
                "destination_address": destination_address or self._keypair.public_key,
            },
        )
        return WithdrawalResponse.from_json(response)

    async def get_withdrawal(self, withdrawal_id: str) -> WithdrawalResponse:
        """Get one of the caller's withdrawals."""
        response = await self._request("GET", f"/withdrawals/{withdrawal_id}")
        return WithdrawalResponse.from_json(response)

    async def list_withdrawals(self) -> list[WithdrawalResponse]:
        """List the caller's withdrawals."""
        response = await self._request("GET", "/withdrawals")
        return [WithdrawalResponse.from_json(item) for item in response]
