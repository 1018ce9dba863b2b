"""Transaction submission for withdrawal payouts."""

import asyncio
import logging
from decimal import Decimal

from stellar_sdk import Keypair

from marginledger.amounts import STELLAR_DECIMALS, format_amount, fractional_digits
from marginledger.blockchain.assets import to_stellar_asset
from marginledger.blockchain.client import SorobanClient
from marginledger.models.asset import AssetType

logger = logging.getLogger(__name__)


class StellarPaymentSubmitter:
    """
    Pays out withdrawals from the protocol wallet.

    All transactions are signed by the protocol wallet keypair.
    """

    def __init__(
        self,
        client: SorobanClient,
        wallet_keypair: Keypair,
        usdc_issuer: str,
    ) -> None:
        """
        Initialize the payment submitter.

        Args:
            client: SorobanClient for RPC communication
            wallet_keypair: Keypair of the protocol wallet
            usdc_issuer: Issuer account of the USDC asset
        """
        self._client = client
        self._wallet_keypair = wallet_keypair
        self._usdc_issuer = usdc_issuer

    @property
    def wallet_address(self) -> str:
        return self._wallet_keypair.public_key

    async def submit_payment(
        self,
        destination: str,
        asset: AssetType,
        amount: Decimal,
    ) -> str:
        """
        Submit a payment transaction.

        Args:
            destination: Recipient's Stellar address
            asset: Asset to pay
            amount: Amount to pay

        Returns:
            Transaction hash
        """
        if fractional_digits(amount) > STELLAR_DECIMALS:
            raise ValueError(f"Amount {amount} has more than {STELLAR_DECIMALS} decimals")

        logger.info(f"Submitting payment: {destination} {amount} {asset.value}")
        return await asyncio.to_thread(self._submit, destination, asset, amount)

    def _submit(self, destination: str, asset: AssetType, amount: Decimal) -> str:
        builder = self._client.build_transaction(self._wallet_keypair.public_key)
        builder.append_payment_op(
            destination=destination,
            asset=to_stellar_asset(asset, self._usdc_issuer),
            amount=format_amount(amount),
        )
        builder.set_timeout(30)
        tx = builder.build()

        tx.sign(self._wallet_keypair)

        return self._client.submit_transaction(tx)
