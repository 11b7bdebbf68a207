"""Helpers for payout addresses."""
import re
from typing import Optional

from utils.exceptions import InvalidAddressError

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: Optional[str]) -> str:
    """Validate an EVM address and return its lower-case form.

    Raises:
        InvalidAddressError: If the address is missing or malformed
    """
    if not isinstance(address, str):
        raise InvalidAddressError(address)
    candidate = address.strip()
    if not ADDRESS_PATTERN.match(candidate):
        raise InvalidAddressError(address)
    return candidate.lower()


def normalize_optional_address(address: Optional[str]) -> Optional[str]:
    """Normalize a hint address, returning None for blank or malformed input."""
    if not address:
        return None
    try:
        return normalize_address(address)
    except InvalidAddressError:
        return None


def format_address(address: str) -> str:
    """Shorten an address for display, e.g. 0x1234...abcd."""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"
