"""Money, VAT and milestone arithmetic shared by services."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from kablan.models.entities import Q2, ZERO, Milestone

HUNDRED = Decimal("100")


def q2(value: Decimal) -> Decimal:
    return value.quantize(Q2, rounding=ROUND_HALF_UP)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` rounded to cents, 0 when ``whole`` is 0."""

    if whole == ZERO:
        return ZERO
    return q2(part / whole * HUNDRED)


def amount_with_vat(amount: Decimal, vat_rate: Decimal) -> Decimal:
    return q2(amount * (1 + vat_rate))


def amount_without_vat(gross: Decimal, vat_rate: Decimal) -> Decimal:
    return q2(gross / (1 + vat_rate))


def milestone_percentage(amount: Decimal, contract_amount: Decimal) -> Decimal:
    if contract_amount <= ZERO:
        return ZERO
    return percent_of(amount, contract_amount)


def rebalance_milestones(milestones: list[Milestone], contract_amount: Decimal) -> list[Milestone]:
    """Recompute every milestone percentage against a (new) contract amount."""

    return [
        milestone.model_copy(update={"percentage": milestone_percentage(milestone.amount, contract_amount)})
        for milestone in milestones
    ]
