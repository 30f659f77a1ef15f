"""Ether / wei conversion."""

from decimal import Decimal, localcontext

WEI_PER_ETHER = Decimal(10) ** 18

# Enough digits for any uint256 wei value.
_WEI_PRECISION = 78


def to_wei(amount: Decimal) -> int:
    """
    Exact ether-to-wei conversion.

    Raises:
        ValueError: amount has more than 18 decimal places
    """
    with localcontext() as ctx:
        ctx.prec = _WEI_PRECISION
        wei = amount * WEI_PER_ETHER
        if wei != wei.to_integral_value():
            raise ValueError("amount has more than 18 decimal places")
        return int(wei)
