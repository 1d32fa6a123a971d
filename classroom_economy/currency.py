"""
Currency Module

Fixed-point money for the classroom economy. NEVER uses float for monetary
values: every amount is a Decimal rounded to the currency precision.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes with precision and display symbol"""
    ZAR = ("ZAR", 2, "R")  # South African Rand
    USD = ("USD", 2, "$")
    EUR = ("EUR", 2, "€")
    GBP = ("GBP", 2, "£")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))

        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = to_decimal(multiplier)
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display, e.g. R1,250.00"""
        sign = "-" if self.amount < 0 else ""
        return f"{sign}{self.currency.symbol}{abs(self.amount):,.{self.currency.precision}f}"


def to_decimal(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Convert an incoming amount to Decimal without binary float artefacts.

    Floats are routed through their shortest repr so 0.1 becomes Decimal('0.1').

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError("Boolean is not a monetary amount")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal")
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise ValueError(f"Unsupported amount type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value}")
    return result


def quantize(value: Decimal, currency: Currency) -> Decimal:
    """Round a Decimal to the currency precision"""
    return value.quantize(Decimal('0.1') ** currency.precision, rounding=ROUND_HALF_UP)


def currency_from_code(code: str) -> Currency:
    """Look up a Currency by ISO code"""
    try:
        return Currency[code.upper()]
    except KeyError:
        raise ValueError(f"Unsupported currency: {code}")
