"""
Split builders for the entry modes clients offer.

Equal and percentage splits are a convenience: they are resolved to
concrete per-member amounts here, before the validator ever sees them.
Every builder returns SplitLines whose amounts sum exactly to the total
(rounding remainders never make a share negative).
"""

from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from splitledger.ledger.errors import ValidationError
from splitledger.models.ledger import SplitLine
from splitledger.validation.validator import INVALID_AMOUNT, MISSING_FIELDS, to_decimal


CENT = Decimal("0.01")
PERCENT_TOLERANCE = Decimal("0.1")
PERCENTAGE_MISMATCH = "percentage mismatch"


class SplitMode(str, Enum):
    EQUAL = "equal"
    EXACT = "exact"
    PERCENTAGE = "percentage"


def _positive_total(amount: Any) -> Decimal:
    total = to_decimal(amount)
    if total <= 0:
        raise ValidationError(INVALID_AMOUNT, "Amount must be greater than zero")
    return total


def equal_split(amount: Any, member_ids: Sequence[str]) -> list[SplitLine]:
    """
    Split amount equally, cent-exact.

    100 over three members gives 33.34, 33.33, 33.33.
    """
    if not member_ids:
        raise ValidationError(MISSING_FIELDS, "Nobody to split between")

    total = _positive_total(amount)
    count = len(member_ids)

    base = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    extra_cents = int(((total - base * count) / CENT).to_integral_value(rounding=ROUND_DOWN))
    shares = [base + CENT if i < extra_cents else base for i in range(count)]

    # Sub-cent residue when the total itself has more than two decimals
    shares[0] += total - sum(shares, Decimal("0"))

    return [
        SplitLine(member_id=member, amount=share)
        for member, share in zip(member_ids, shares)
    ]


def percentage_split(amount: Any, percentages: Mapping[str, Any]) -> list[SplitLine]:
    """
    Split amount by percentage.

    Shares are proportional to the given percentages, so a set that is
    off 100 by less than the tolerance is scaled to the full amount.

    Raises:
        ValidationError: "percentage mismatch" unless the percentages
                         sum to 100 (within 0.1)
    """
    if not percentages:
        raise ValidationError(MISSING_FIELDS, "No percentages given")

    total = _positive_total(amount)
    pcts = {member: to_decimal(pct) for member, pct in percentages.items()}

    if any(pct < 0 for pct in pcts.values()):
        raise ValidationError(INVALID_AMOUNT, "Percentages cannot be negative")

    pct_total = sum(pcts.values(), Decimal("0"))
    if abs(pct_total - Decimal("100")) > PERCENT_TOLERANCE:
        raise ValidationError(
            PERCENTAGE_MISMATCH,
            f"Total percentage must be 100% (currently {pct_total}%)",
        )

    exact = {member: total * pct / pct_total for member, pct in pcts.items()}
    shares = {member: value.quantize(CENT, rounding=ROUND_DOWN) for member, value in exact.items()}

    # Leftover cents go to the largest rounding losses; ties keep entry order
    leftover = total - sum(shares.values(), Decimal("0"))
    extra_cents = int((leftover / CENT).to_integral_value(rounding=ROUND_DOWN))
    by_loss = sorted(shares, key=lambda member: exact[member] - shares[member], reverse=True)
    for member in by_loss[:extra_cents]:
        shares[member] += CENT

    # Sub-cent residue when the total itself has more than two decimals
    largest = max(shares, key=lambda member: exact[member])
    shares[largest] += total - sum(shares.values(), Decimal("0"))

    return [SplitLine(member_id=member, amount=share) for member, share in shares.items()]


def exact_split(amounts: Mapping[str, Any]) -> list[SplitLine]:
    """Explicit per-member amounts, passed through as SplitLines."""
    return [
        SplitLine(member_id=member, amount=to_decimal(value))
        for member, value in amounts.items()
    ]


def build_splits(
    mode: SplitMode,
    amount: Any,
    member_ids: Sequence[str],
    values: Optional[Mapping[str, Any]] = None,
) -> list[SplitLine]:
    """
    Resolve a split entry mode to concrete amounts.

    Args:
        mode: How the client entered the split
        amount: Expense total
        member_ids: Members to split between (EQUAL mode)
        values: member -> amount (EXACT) or member -> percentage (PERCENTAGE)
    """
    mode = SplitMode(mode)
    if mode == SplitMode.EQUAL:
        return equal_split(amount, member_ids)
    if not values:
        raise ValidationError(MISSING_FIELDS, f"{mode.value} split needs per-member values")
    if mode == SplitMode.PERCENTAGE:
        return percentage_split(amount, values)
    return exact_split(values)
