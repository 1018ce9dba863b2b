from marginledger.blockchain.client import SorobanClient
from marginledger.blockchain.transaction import StellarPaymentSubmitter
from marginledger.blockchain.verifier import StellarDepositVerifier

__all__ = [
    "SorobanClient",
    "StellarDepositVerifier",
    "StellarPaymentSubmitter",
]
