"""Verification of margin deposits against Stellar transactions."""

import asyncio
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from stellar_sdk import FeeBumpTransactionEnvelope, Payment, TransactionBuilder
from stellar_sdk.soroban_rpc import GetTransactionStatus

from marginledger.blockchain.assets import to_stellar_asset
from marginledger.blockchain.client import SorobanClient
from marginledger.errors import DepositFailureReason
from marginledger.models.asset import AssetType
from marginledger.workflows.deposits import VerificationResult

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class StellarDepositVerifier:
    """
    Confirms that a transaction paid the protocol wallet.

    A deposit is accepted when the transaction succeeded on-chain and holds
    a payment operation, sourced from the depositor, to the protocol wallet,
    of exactly the claimed amount and asset. Checks run in that order so the
    first mismatch is the one reported.
    """

    def __init__(
        self,
        client: SorobanClient,
        protocol_wallet: str,
        usdc_issuer: str,
    ) -> None:
        self._client = client
        self._protocol_wallet = protocol_wallet
        self._usdc_issuer = usdc_issuer

    async def verify(
        self,
        sender: str,
        tx_hash: str,
        amount: Decimal,
        asset: AssetType,
    ) -> VerificationResult:
        tx_hash = tx_hash.lower()
        if not TX_HASH_PATTERN.match(tx_hash):
            return VerificationResult.failure(
                DepositFailureReason.NOT_FOUND,
                f"Malformed transaction hash: {tx_hash}",
            )

        response = await asyncio.to_thread(self._client.get_transaction, tx_hash)
        return self.check_transaction(response, sender, amount, asset)

    def check_transaction(
        self,
        response: Any,
        sender: str,
        amount: Decimal,
        asset: AssetType,
    ) -> VerificationResult:
        """Check a get_transaction response against the claimed deposit."""
        if response.status == GetTransactionStatus.NOT_FOUND or not response.envelope_xdr:
            return VerificationResult.failure(DepositFailureReason.NOT_FOUND, "Transaction not found")

        if response.status == GetTransactionStatus.FAILED:
            return VerificationResult.failure(DepositFailureReason.FAILED, "Transaction failed")

        envelope = TransactionBuilder.from_xdr(
            response.envelope_xdr,
            self._client.network_passphrase,
        )
        if isinstance(envelope, FeeBumpTransactionEnvelope):
            transaction = envelope.transaction.inner_transaction_envelope.transaction
        else:
            transaction = envelope.transaction

        tx_source = transaction.source.account_id
        payments = [op for op in transaction.operations if isinstance(op, Payment)]

        from_sender = [
            op for op in payments
            if (op.source.account_id if op.source is not None else tx_source) == sender
        ]
        if not from_sender:
            return VerificationResult.failure(
                DepositFailureReason.SENDER_MISMATCH,
                "Transaction not from specified sender",
            )

        to_wallet = [op for op in from_sender if op.destination.account_id == self._protocol_wallet]
        if not to_wallet:
            return VerificationResult.failure(
                DepositFailureReason.RECIPIENT_MISMATCH,
                "Transaction not sent to protocol wallet",
            )

        expected_asset = to_stellar_asset(asset, self._usdc_issuer)
        for op in to_wallet:
            try:
                paid = Decimal(str(op.amount))
            except InvalidOperation:
                continue
            if op.asset == expected_asset and paid == amount:
                return VerificationResult.success()

        return VerificationResult.failure(
            DepositFailureReason.AMOUNT_OR_ASSET_MISMATCH,
            f"No matching {asset.value} transfer found for amount {amount}",
        )
