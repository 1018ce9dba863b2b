from marginledger.executor.payout_processor import (
    MockPaymentSubmitter,
    PaymentSubmitter,
    PayoutProcessor,
)

__all__ = [
    "PayoutProcessor",
    "PaymentSubmitter",
    "MockPaymentSubmitter",
]
