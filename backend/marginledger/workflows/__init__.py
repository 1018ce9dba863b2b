from marginledger.workflows.deposits import DepositVerifier, DepositWorkflow, VerificationResult
from marginledger.workflows.withdrawals import WithdrawalWorkflow

__all__ = [
    "DepositVerifier",
    "DepositWorkflow",
    "VerificationResult",
    "WithdrawalWorkflow",
]
