"""Fixed-point token amounts (integer base units + decimals)."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import Union

Number = Union[int, float, str, Decimal]

# Enough digits for 24-decimal tokens times large balances
_PRECISION = 80


@dataclass(frozen=True)
class FixedNumber:
    units: int
    decimals: int

    @classmethod
    def from_display(cls, value: Number, decimals: int) -> "FixedNumber":
        """Convert a displayed quantity to base units, always flooring."""
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            d = Decimal(str(value)) * (Decimal(10) ** decimals)
            units = int(d.to_integral_value(rounding=ROUND_FLOOR))
        return cls(units=max(0, units), decimals=decimals)

    @classmethod
    def from_units(cls, units: Union[int, str], decimals: int) -> "FixedNumber":
        return cls(units=int(units), decimals=decimals)

    def to_decimal(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return Decimal(self.units) / (Decimal(10) ** self.decimals)

    def to_float(self) -> float:
        return float(self.to_decimal())

    def to_u128(self) -> str:
        return str(self.units)

    def is_zero(self) -> bool:
        return self.units == 0

    def ratio(self, other: "FixedNumber") -> Decimal:
        """self / other in display units (e.g. USDC per base unit)."""
        if other.units == 0:
            raise ZeroDivisionError("ratio against a zero amount")
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return self.to_decimal() / other.to_decimal()
