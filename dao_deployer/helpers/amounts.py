"""
Address and amount helpers.

Public API
----------
is_hex_address(value)
    True for a ``0x``-prefixed 20-byte hex string (any casing).
normalize_address(value)
    Checksummed form of a valid address; ``ValueError`` otherwise.
is_zero_address(value)
    True for ``0x000...000``.
to_minimal_units(amount, decimals) / to_display_units(value, decimals)
    Exact conversion between display amounts and integer minimal units.
checked_sub / checked_mul
    Unsigned 256-bit arithmetic that refuses to wrap.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, localcontext

from eth_utils import to_checksum_address

__all__ = [
    "UINT256_MAX",
    "ZERO_ADDRESS",
    "is_hex_address",
    "normalize_address",
    "is_zero_address",
    "address_file_stem",
    "to_minimal_units",
    "to_display_units",
    "format_display_amount",
    "checked_sub",
    "checked_mul",
]

UINT256_MAX = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_HEX_ADDRESS_RE = re.compile(r"0x[a-fA-F0-9]{40}")


def is_hex_address(value: object) -> bool:
    return isinstance(value, str) and bool(_HEX_ADDRESS_RE.fullmatch(value.strip()))


def normalize_address(value: str) -> str:
    if not is_hex_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return to_checksum_address(value.strip())


def is_zero_address(value: str) -> bool:
    return is_hex_address(value) and int(value.strip(), 16) == 0


def address_file_stem(address: str) -> str:
    """Lowercase hex without the 0x prefix (the key-file naming scheme)."""
    return normalize_address(address)[2:].lower()


def to_minimal_units(amount: Decimal | str | int, decimals: int = 18) -> int:
    """Convert a display amount (e.g. ``"0.5"`` ETH) to integer minimal units.

    Raises ValueError for negative amounts, non-numeric input, or amounts that
    carry more precision than ``decimals`` allows.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount!r}")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
        result = int(scaled)
    if result > UINT256_MAX:
        raise ValueError(f"Amount {amount} exceeds uint256")
    return result


def to_display_units(value: int, decimals: int = 18) -> Decimal:
    if value < 0:
        raise ValueError(f"Negative amount: {value}")
    with localcontext() as ctx:
        ctx.prec = 100
        return (Decimal(int(value)).scaleb(-decimals)).normalize()


def format_display_amount(value: int, decimals: int = 18, symbol: str | None = None) -> str:
    amount = to_display_units(value, decimals)
    # normalize() can produce exponent notation (1E+1); render plainly
    text = format(amount, "f")
    return f"{text} {symbol}" if symbol else text


def checked_sub(a: int, b: int) -> int:
    """a - b for uint256 operands; ValueError instead of underflow."""
    _require_uint256(a)
    _require_uint256(b)
    if b > a:
        raise ValueError(f"uint256 underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    _require_uint256(a)
    _require_uint256(b)
    result = a * b
    if result > UINT256_MAX:
        raise ValueError(f"uint256 overflow: {a} * {b}")
    return result


def _require_uint256(value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0 or value > UINT256_MAX:
        raise ValueError(f"Not a uint256 value: {value!r}")
