"""
Claim Financials Engine.

Pure functions with deterministic behavior. No I/O.

Derives every computed figure of a claim from its stored inputs:

    adjustment_total = sum(adjustments.amount)          (signed)
    total_amount     = subtotal + adjustment_total + tax_amount
    amount_due       = total_amount - retention_amount
    balance_due      = amount_due - total_paid

and the display rollups (verification metrics, category and tier totals)
from the line items alone.  ``recompute`` is called before every claim
persist; running it twice on an unchanged claim yields identical values.

Negative totals: an over-credited claim (``total_amount < 0``) is rejected
with ``ValidationError``; an overpaid claim (``balance_due < 0``) is allowed
and logged as a warning.

Usage:
    from billing_engines.claim_financials import (
        derive_totals,
        recompute,
        verification_metrics,
    )

    totals = derive_totals(
        subtotal=Decimal("10000.00"),
        adjustments=(),
        tax_amount=Decimal("0"),
        retention_amount=Decimal("1000.00"),
        total_paid=Decimal("0"),
    )
    assert totals.amount_due == Decimal("9000.00")
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Sequence

from billing_kernel.domain.claim import Claim, ClaimAdjustment, ClaimLineItem
from billing_kernel.domain.money import ZERO, percent, round_money
from billing_kernel.exceptions import ValidationError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.claim_financials")


CATEGORY_BUCKETS: tuple[str, ...] = (
    "civil",
    "electrical",
    "traffic_control",
    "vegetation",
    "other",
)
TIER_BUCKETS: tuple[str, ...] = ("prime", "sub", "sub_of_sub")


@dataclass(frozen=True)
class ClaimTotals:
    """Derived monetary totals of a claim."""
    subtotal: Decimal
    adjustment_total: Decimal
    tax_amount: Decimal
    retention_amount: Decimal
    total_amount: Decimal
    amount_due: Decimal
    total_paid: Decimal
    balance_due: Decimal


@dataclass(frozen=True)
class VerificationMetrics:
    total_units: int
    units_with_photos: int
    photo_compliance_rate: int
    units_with_gps: int
    high_quality_gps: int
    gps_compliance_rate: int


def derive_totals(
    subtotal: Decimal,
    adjustments: Sequence[ClaimAdjustment],
    tax_amount: Decimal,
    retention_amount: Decimal,
    total_paid: Decimal,
) -> ClaimTotals:
    """Apply the claim invariant to the stored inputs.

    Raises:
        ValidationError: ``total_amount`` would be negative (over-credited).
    """
    adjustment_total = sum((a.amount for a in adjustments), ZERO)
    total_amount = subtotal + adjustment_total + tax_amount
    if total_amount < ZERO:
        raise ValidationError(
            f"Adjustments of {adjustment_total} would make the claim total negative "
            f"({total_amount})",
            field="adjustments",
            value=str(adjustment_total),
        )
    amount_due = total_amount - retention_amount
    balance_due = amount_due - total_paid
    if balance_due < ZERO:
        logger.warning(
            "claim_overpaid",
            extra={"amount_due": str(amount_due), "total_paid": str(total_paid)},
        )
    return ClaimTotals(
        subtotal=subtotal,
        adjustment_total=adjustment_total,
        tax_amount=tax_amount,
        retention_amount=retention_amount,
        total_amount=total_amount,
        amount_due=amount_due,
        total_paid=total_paid,
        balance_due=balance_due,
    )


def subtotal_of(line_items: Sequence[ClaimLineItem]) -> Decimal:
    return sum((li.total_amount for li in line_items), ZERO)


def rate_amount(base: Decimal, rate: Decimal | None) -> Decimal:
    """``base * rate`` rounded to cents; zero when no rate is given."""
    if not rate:
        return ZERO
    if rate < ZERO or rate > Decimal("1"):
        raise ValidationError(
            f"rate must be between 0 and 1, got {rate}", field="rate", value=str(rate)
        )
    return round_money(base * rate)


def recompute(claim: Claim) -> Claim:
    """Return ``claim`` with every derived figure refreshed.

    ``total_paid`` is re-summed from ``payments`` and ``line_item_count`` from
    ``line_items``; ``subtotal``, ``tax_amount`` and ``retention_amount`` are
    stored inputs fixed at aggregation time.
    """
    total_paid = sum((p.amount for p in claim.payments), ZERO)
    totals = derive_totals(
        subtotal=claim.subtotal,
        adjustments=claim.adjustments,
        tax_amount=claim.tax_amount,
        retention_amount=claim.retention_amount,
        total_paid=total_paid,
    )
    return replace(
        claim,
        adjustment_total=totals.adjustment_total,
        total_amount=totals.total_amount,
        amount_due=totals.amount_due,
        total_paid=totals.total_paid,
        balance_due=totals.balance_due,
        line_item_count=len(claim.line_items),
    )


def verification_metrics(line_items: Sequence[ClaimLineItem]) -> VerificationMetrics:
    total = len(line_items)
    with_photos = sum(1 for li in line_items if li.photo_count > 0)
    with_gps = sum(1 for li in line_items if li.has_gps)
    high_gps = sum(1 for li in line_items if li.gps_quality == "high")
    return VerificationMetrics(
        total_units=total,
        units_with_photos=with_photos,
        photo_compliance_rate=percent(with_photos, total),
        units_with_gps=with_gps,
        high_quality_gps=high_gps,
        gps_compliance_rate=percent(with_gps, total),
    )


def category_totals(line_items: Sequence[ClaimLineItem]) -> dict[str, Decimal]:
    """Sum of line totals per work category; unknown categories fold into ``other``."""
    totals = {bucket: ZERO for bucket in CATEGORY_BUCKETS}
    for li in line_items:
        key = li.work_category or "other"
        if key not in totals:
            key = "other"
        totals[key] += li.total_amount
    return totals


def tier_totals(line_items: Sequence[ClaimLineItem]) -> dict[str, Decimal]:
    """Sum of line totals per tier; unknown tiers fold into ``prime``."""
    totals = {bucket: ZERO for bucket in TIER_BUCKETS}
    for li in line_items:
        key = li.performed_by_tier or "prime"
        if key not in totals:
            key = "prime"
        totals[key] += li.total_amount
    return totals


def days_past_due(due_date: date | None, balance_due: Decimal, today: date) -> int:
    """Whole days past ``due_date`` while a balance is outstanding."""
    if due_date is None or balance_due <= ZERO:
        return 0
    return max((today - due_date).days, 0)
