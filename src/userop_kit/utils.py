"""Address and amount helpers."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from web3 import Web3

ZERO_ADDRESSES = frozenset(
    address.lower()
    for address in (
        "0x0000000000000000000000000000000000000000",
        "0x000000000000000000000000000000000000dEaD",
        "0xdeaDDeADDEaDdeaDdEAddEADDEAdDeadDEADDEaD",
        "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
        "0xDDdDddDdDdddDDddDDddDDDDdDdDDdDDdDDDDDDd",
        "0xFFfFfFffFFfffFFfFFfFFFFFffFFFffffFfFFFfF",
    )
)


def checksum_address(address: str) -> str:
    """Return the EIP-55 checksummed form of ``address``."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return Web3.to_checksum_address(address)


def is_valid_address(address: Any) -> bool:
    return isinstance(address, str) and Web3.is_address(address)


def addresses_equal(address1: Optional[str], address2: Optional[str]) -> bool:
    if not address1 and not address2:
        return True
    if not address1 or not address2:
        return False
    return address1.lower() == address2.lower()


def is_zero_address(address: Optional[str]) -> bool:
    return bool(address) and address.lower() in ZERO_ADDRESSES


def to_big_number(number: Union[str, int, float, Decimal], decimals: int = 18) -> int:
    """Scale a human readable amount to its integer base-unit value."""
    try:
        amount = Decimal(str(number))
    except InvalidOperation:
        raise ValueError(f"Invalid number: {number}") from None
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{number} has more than {decimals} decimals")
    return int(scaled)


def parse_big_number(value: Union[int, str], decimals: int = 18) -> str:
    """Format an integer base-unit value as a decimal string."""
    amount = Decimal(to_int_quantity(value)).scaleb(-decimals)
    text = format(amount.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def to_int_quantity(value: Any) -> int:
    """Coerce an int, decimal string or 0x-prefixed hex quantity to int."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16) if len(text) > 2 else 0
        return int(text)
    raise ValueError(f"Invalid quantity: {value!r}")


def parse_value(value: Any) -> int:
    """Parse a transaction value, which must be a non-negative integer."""
    try:
        amount = to_int_quantity(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value: {value!r}. Value must be a non-negative integer.") from None
    if amount < 0:
        raise ValueError(f"Invalid value: {value!r}. Value must be a non-negative integer.")
    return amount


class KitUtils:
    """Helpers exposed as ``TransactionKit.utils``."""

    checksum_address = staticmethod(checksum_address)
    is_valid_address = staticmethod(is_valid_address)
    addresses_equal = staticmethod(addresses_equal)
    is_zero_address = staticmethod(is_zero_address)
    to_big_number = staticmethod(to_big_number)
    parse_big_number = staticmethod(parse_big_number)
    to_int_quantity = staticmethod(to_int_quantity)
    parse_value = staticmethod(parse_value)
