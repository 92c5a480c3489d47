"""IO token denominations. Balances and quantities on the wire are integer mIO."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

from ario.core.constants import MIO_PER_IO


class IOToken:
    """A quantity of IO, allowing up to six decimal places."""

    def __init__(self, value: Union[int, float, str, Decimal]) -> None:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid IO quantity: {value!r}") from exc
        if amount < 0:
            raise ValueError("IO quantity must be non-negative")
        self._value = amount

    def to_mio(self) -> "mIOToken":
        mio = (self._value * MIO_PER_IO).quantize(Decimal(1), rounding=ROUND_DOWN)
        return mIOToken(int(mio))

    def value_of(self) -> Decimal:
        return self._value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, IOToken) and other._value == self._value

    def __hash__(self) -> int:
        return hash(("IO", self._value))

    def __str__(self) -> str:
        return f"{self._value:,f}"

    def __repr__(self) -> str:
        return f"IOToken({self._value})"


class mIOToken:  # noqa: N801
    """A quantity of mIO, the indivisible unit the network accounts in."""

    def __init__(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("mIO quantity must be an integer")
        if value < 0:
            raise ValueError("mIO quantity must be non-negative")
        self._value = value

    def to_io(self) -> IOToken:
        return IOToken(Decimal(self._value) / MIO_PER_IO)

    def value_of(self) -> int:
        return self._value

    def __int__(self) -> int:
        return self._value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, mIOToken) and other._value == self._value

    def __hash__(self) -> int:
        return hash(("mIO", self._value))

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return f"mIOToken({self._value})"


Quantity = Union[int, mIOToken]


def quantity_to_mio(qty: Quantity) -> int:
    """Normalize a write quantity to an integer mIO amount."""
    if isinstance(qty, mIOToken):
        return qty.value_of()
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValueError("Quantity must be an integer mIO amount or an mIOToken")
    if qty < 0:
        raise ValueError("Quantity must be non-negative")
    return qty


def format_io_with_commas(token: IOToken) -> str:
    """Render an IO amount for humans, e.g. ``1,234.5``."""
    whole, _, fraction = f"{token.value_of():f}".partition(".")
    fraction = fraction.rstrip("0")
    rendered = f"{int(whole):,}"
    return f"{rendered}.{fraction}" if fraction else rendered
