"""Amount conversion between display units and on-chain integer units."""

from decimal import ROUND_CEILING, ROUND_DOWN, Decimal

MONEY_QUANT = Decimal("0.00000001")


def quantize_money(amount: Decimal) -> Decimal:
    """Truncate to the 8 decimal places every money column stores."""
    return Decimal(amount).quantize(MONEY_QUANT, rounding=ROUND_DOWN)


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    """Convert a display amount to integer base units.

    Example: to_smallest_unit(Decimal("1.5"), 9) == 1_500_000_000
    """
    return int((Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_smallest_unit(amount: int | str, decimals: int) -> Decimal:
    """Convert integer base units to a display amount."""
    return Decimal(int(amount)) / (Decimal(10) ** decimals)


def split_amount(total: Decimal, max_part: Decimal) -> list[Decimal]:
    """Split ``total`` into the fewest equal parts not exceeding ``max_part``.

    Parts are truncated to 8 decimals; the remainder from truncation is added
    to the last part so the parts always sum to ``total``.
    """
    if max_part <= 0:
        raise ValueError("max_part must be positive")
    if total <= max_part:
        return [total]
    count = int((total / max_part).to_integral_value(rounding=ROUND_CEILING))
    part = quantize_money(total / count)
    parts = [part] * count
    parts[-1] = total - part * (count - 1)
    return parts
