"""Decimal helpers for currency amounts"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

from rentwatch.domain.constants import CENT


def to_money(value: Any) -> Decimal:
    """Coerce ints, strings, floats and Decimals to a cent-quantized Decimal"""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        # str() avoids binary float artefacts such as 0.1 -> 0.1000000000000000055
        amount = Decimal(str(value))
    else:
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Not a monetary amount: {value!r}") from e
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    return to_money(sum(values, Decimal("0")))
