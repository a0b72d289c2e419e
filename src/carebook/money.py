"""Geldbeträge als Decimal, kaufmännisch auf Cent gerundet."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from carebook.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        # float über str, sonst landet 0.1 als 0.1000000000000000055511151231257827 im Betrag
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"invalid amount {value!r}") from e
    if not d.is_finite():
        raise ValidationError(f"invalid amount {value!r}")
    return d


def round_money(value: Number) -> Decimal:
    d = to_decimal(value)
    if d is None:
        raise ValidationError("amount is required")
    try:
        return d.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValidationError(f"amount out of range: {value!r}") from e


def sum_money(amounts: Iterable[Number]) -> Decimal:
    total = ZERO
    for a in amounts:
        total += round_money(a)
    return total


def multiply_money(amount: Number, factor: Number) -> Decimal:
    return round_money(to_decimal(amount) * to_decimal(factor))


def parse_money(text: str) -> Decimal:
    """'$1,050.50' oder '1050.5' -> Decimal('1050.50')."""
    if text is None:
        raise ValidationError("amount is required")
    cleaned = str(text).replace("$", "").replace(",", "").strip()
    if not cleaned:
        raise ValidationError("amount is required")
    return round_money(cleaned)


def format_money(amount: Number, symbol: str = "$") -> str:
    return f"{symbol}{round_money(amount):,.2f}"
