"""Soroban RPC client for interacting with Stellar network."""

import logging
import time

from stellar_sdk import SorobanServer, TransactionBuilder, TransactionEnvelope
from stellar_sdk.soroban_rpc import (
    GetTransactionResponse,
    GetTransactionStatus,
    SendTransactionStatus,
)

from marginledger.config import DEFAULT_NETWORK_PASSPHRASE, DEFAULT_RPC_URL

logger = logging.getLogger(__name__)


class SorobanClient:
    """
    Client for the Soroban RPC.

    Handles transaction lookups, transaction building and submission. All
    calls are blocking; async callers should run them in a worker thread.
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        network_passphrase: str = DEFAULT_NETWORK_PASSPHRASE,
        confirm_timeout: int = 60,
    ) -> None:
        self._rpc_url = rpc_url
        self._network_passphrase = network_passphrase
        self._confirm_timeout = confirm_timeout
        self._server = SorobanServer(rpc_url)

    @property
    def network_passphrase(self) -> str:
        return self._network_passphrase

    def get_transaction(self, tx_hash: str) -> GetTransactionResponse:
        """Look up a transaction by hash."""
        return self._server.get_transaction(tx_hash)

    def build_transaction(
        self,
        source_account: str,
        base_fee: int = 100,
    ) -> TransactionBuilder:
        """
        Create a transaction builder for the source account.

        Args:
            source_account: Public key of the source account
            base_fee: Base fee in stroops

        Returns:
            TransactionBuilder ready for operations
        """
        account = self._server.load_account(source_account)
        return TransactionBuilder(
            source_account=account,
            network_passphrase=self._network_passphrase,
            base_fee=base_fee,
        )

    def submit_transaction(self, envelope: TransactionEnvelope) -> str:
        """
        Submit a signed transaction and wait for it to be applied.

        Args:
            envelope: Signed transaction envelope

        Returns:
            Transaction hash
        """
        response = self._server.send_transaction(envelope)

        if response.status in (SendTransactionStatus.ERROR, SendTransactionStatus.TRY_AGAIN_LATER):
            raise RuntimeError(f"Transaction rejected: {response.status.value} {response.error_result_xdr}")

        tx_hash = response.hash

        for _ in range(self._confirm_timeout):
            result = self._server.get_transaction(tx_hash)
            if result.status == GetTransactionStatus.SUCCESS:
                logger.info(f"Transaction confirmed: {tx_hash}")
                return tx_hash
            elif result.status == GetTransactionStatus.FAILED:
                raise RuntimeError(f"Transaction failed: {tx_hash}")
            time.sleep(1)

        raise TimeoutError(f"Transaction {tx_hash} did not confirm after {self._confirm_timeout}s")
