"""Equal-share split of a pot in minor units."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from utils.exceptions import InvalidAmountError


@dataclass(frozen=True)
class Share:
    """Amount owed to one address."""
    address: str
    amount: Decimal


def to_minor_units(amount: Decimal, decimals: int) -> int:
    """Convert a decimal amount to integer minor units, refusing to round."""
    scaled = Decimal(amount).scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmountError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def from_minor_units(units: int, decimals: int) -> Decimal:
    return Decimal(units).scaleb(-decimals)


def compute_shares(total: Decimal, addresses: Iterable[str], decimals: int = 2) -> List[Share]:
    """Split ``total`` evenly across ``addresses``.

    Addresses are sorted ascending and the indivisible remainder goes to the
    first one, so the shares always add up to ``total`` exactly and repeated
    runs produce the same plan.

    Raises:
        InvalidAmountError: If the total is not positive, is finer than
            ``decimals``, or is too small to give everyone a non-zero share
    """
    ordered = sorted(addresses)
    if not ordered:
        return []

    total_units = to_minor_units(total, decimals)
    if total_units <= 0:
        raise InvalidAmountError(f"Pot amount must be positive, got {total}")

    base, remainder = divmod(total_units, len(ordered))
    if base == 0:
        raise InvalidAmountError(
            f"Pot amount {total} is too small for {len(ordered)} participants"
        )

    shares = []
    for index, address in enumerate(ordered):
        units = base + remainder if index == 0 else base
        shares.append(Share(address=address, amount=from_minor_units(units, decimals)))
    return shares
