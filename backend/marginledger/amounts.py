"""Exact decimal handling for ledger amounts."""

from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_EVEN, localcontext
from typing import Union

from marginledger.errors import InvalidAmount

# Token amounts are stored as NUMERIC(40, 18); keep headroom for intermediate sums
PRECISION = 60
MAX_FRACTIONAL_DIGITS = 18
# Stellar amounts carry at most 7 fractional digits
STELLAR_DECIMALS = 7

LEDGER_CONTEXT = Context(prec=PRECISION, rounding=ROUND_HALF_EVEN)

ZERO = Decimal("0")

AmountLike = Union[str, int, Decimal]


def to_decimal(value: AmountLike) -> Decimal:
    """
    Parse a ledger value into an exact Decimal.

    Floats are refused outright since they cannot represent token amounts
    exactly. Raises InvalidAmount for malformed, non-finite or over-precise
    values. The sign is not checked here.
    """
    if isinstance(value, float) or isinstance(value, bool):
        raise InvalidAmount(f"Amount must be a decimal string, got {type(value).__name__}")

    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"Invalid amount: {value!r}") from e

    if not result.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")

    exponent = result.as_tuple().exponent
    if isinstance(exponent, int) and -exponent > MAX_FRACTIONAL_DIGITS:
        raise InvalidAmount(
            f"Amount {value} has more than {MAX_FRACTIONAL_DIGITS} fractional digits"
        )

    return result


def parse_amount(value: AmountLike) -> Decimal:
    """Parse a strictly positive amount (deposits, locks, withdrawals, fees)."""
    amount = to_decimal(value)
    if amount <= ZERO:
        raise InvalidAmount("Amount must be positive")
    return amount


def add(a: Decimal, b: Decimal) -> Decimal:
    return LEDGER_CONTEXT.add(a, b)


def subtract(a: Decimal, b: Decimal) -> Decimal:
    return LEDGER_CONTEXT.subtract(a, b)


def format_amount(value: Decimal) -> str:
    """Render a Decimal as a plain decimal string (no exponent notation)."""
    with localcontext(LEDGER_CONTEXT):
        normalized = value.normalize()
        if normalized == ZERO:
            return "0"
        return format(normalized, "f")


def fractional_digits(value: Decimal) -> int:
    """Number of significant digits after the decimal point."""
    with localcontext(LEDGER_CONTEXT):
        exponent = value.normalize().as_tuple().exponent
    if not isinstance(exponent, int) or exponent >= 0:
        return 0
    return -exponent
