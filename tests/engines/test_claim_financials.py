"""
Tests for the Claim Financials Engine.

Covers:
- The claim invariant (derive_totals / recompute)
- Retention and tax rounding
- Negative total and overpayment decisions
- Verification metrics, category and tier rollups
- Days past due
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.claim_financials import (
    category_totals,
    days_past_due,
    derive_totals,
    rate_amount,
    recompute,
    subtotal_of,
    tier_totals,
    verification_metrics,
)
from billing_kernel.domain.claim import Claim, ClaimAdjustment, ClaimLineItem, Payment
from billing_kernel.exceptions import ValidationError

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def line(number=1, total="100.00", photos=1, gps=True, quality="high", tier="prime", category="electrical"):
    return ClaimLineItem(
        unit_entry_id=uuid4(),
        line_number=number,
        item_code="POLE-SET",
        description="Set distribution pole",
        quantity=Decimal("4"),
        unit="EA",
        unit_price=Decimal(total) / 4,
        total_amount=Decimal(total),
        photo_count=photos,
        has_gps=gps,
        gps_quality=quality if gps else "none",
        performed_by_tier=tier,
        work_category=category,
    )


def claim_with(subtotal, retention="0", tax="0", adjustments=(), payments=()):
    return Claim(
        company_id=uuid4(),
        claim_number="CLM-2024-00001-042",
        created_by=uuid4(),
        created_at=NOW,
        subtotal=Decimal(subtotal),
        retention_amount=Decimal(retention),
        tax_amount=Decimal(tax),
        adjustments=tuple(adjustments),
        payments=tuple(payments),
    )


def payment(amount):
    return Payment(
        amount=Decimal(amount),
        payment_date=date(2024, 4, 1),
        recorded_by=uuid4(),
        recorded_at=NOW,
    )


class TestDeriveTotals:

    def test_retention_scenario(self):
        """Subtotal 10000 with 10% retention leaves 9000 due."""
        retention = rate_amount(Decimal("10000"), Decimal("0.10"))
        totals = derive_totals(
            subtotal=Decimal("10000"),
            adjustments=(),
            tax_amount=Decimal("0"),
            retention_amount=retention,
            total_paid=Decimal("0"),
        )
        assert retention == Decimal("1000.00")
        assert totals.total_amount == Decimal("10000")
        assert totals.amount_due == Decimal("9000.00")
        assert totals.balance_due == Decimal("9000.00")

    def test_full_invariant(self):
        totals = derive_totals(
            subtotal=Decimal("10000"),
            adjustments=(
                ClaimAdjustment(description="Backcharge", amount=Decimal("-250")),
                ClaimAdjustment(description="Extra mobilization", amount=Decimal("400")),
            ),
            tax_amount=Decimal("825"),
            retention_amount=Decimal("500"),
            total_paid=Decimal("3000"),
        )
        assert totals.adjustment_total == Decimal("150")
        assert totals.total_amount == Decimal("10975")
        assert totals.amount_due == Decimal("10475")
        assert totals.balance_due == Decimal("7475")

    def test_over_credit_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            derive_totals(
                subtotal=Decimal("100"),
                adjustments=(ClaimAdjustment(description="Credit", amount=Decimal("-100.01")),),
                tax_amount=Decimal("0"),
                retention_amount=Decimal("0"),
                total_paid=Decimal("0"),
            )
        assert exc_info.value.field == "adjustments"

    def test_overpayment_allowed_and_logged(self, captured_logs):
        totals = derive_totals(
            subtotal=Decimal("100"),
            adjustments=(),
            tax_amount=Decimal("0"),
            retention_amount=Decimal("0"),
            total_paid=Decimal("150"),
        )
        assert totals.balance_due == Decimal("-50")
        assert any(r["message"] == "claim_overpaid" for r in captured_logs())


class TestRateAmount:

    def test_rounds_to_cents(self):
        assert rate_amount(Decimal("333.33"), Decimal("0.0825")) == Decimal("27.50")

    def test_no_rate_is_zero(self):
        assert rate_amount(Decimal("100"), None) == Decimal("0")
        assert rate_amount(Decimal("100"), Decimal("0")) == Decimal("0")

    @pytest.mark.parametrize("rate", ["-0.01", "1.01"])
    def test_out_of_range_rejected(self, rate):
        with pytest.raises(ValidationError):
            rate_amount(Decimal("100"), Decimal(rate))


class TestRecompute:

    def test_recompute_sums_payments_and_lines(self):
        claim = replace(
            claim_with("10000", retention="1000", payments=(payment("2500"), payment("1500"))),
            line_items=(line(1), line(2)),
        )
        result = recompute(claim)
        assert result.total_paid == Decimal("4000")
        assert result.balance_due == Decimal("5000")
        assert result.line_item_count == 2

    def test_recompute_is_idempotent(self):
        claim = claim_with(
            "6250",
            retention="625",
            tax="100",
            adjustments=(ClaimAdjustment(description="Credit", amount=Decimal("-50")),),
            payments=(payment("1000"),),
        )
        once = recompute(claim)
        assert recompute(once) == once

    def test_subtotal_of_lines(self):
        assert subtotal_of((line(1, "5000.00"), line(2, "1250.00"))) == Decimal("6250.00")
        assert subtotal_of(()) == Decimal("0")


class TestVerificationMetrics:

    def test_compliance_scenario(self):
        """Photos [2,1,0] and GPS [yes,yes,no] give 67% compliance on both."""
        items = (
            line(1, photos=2, gps=True, quality="high"),
            line(2, photos=1, gps=True, quality="medium"),
            line(3, photos=0, gps=False),
        )
        metrics = verification_metrics(items)
        assert metrics.total_units == 3
        assert metrics.units_with_photos == 2
        assert metrics.photo_compliance_rate == 67
        assert metrics.units_with_gps == 2
        assert metrics.high_quality_gps == 1
        assert metrics.gps_compliance_rate == 67

    def test_empty_claim(self):
        metrics = verification_metrics(())
        assert metrics.total_units == 0
        assert metrics.photo_compliance_rate == 0
        assert metrics.gps_compliance_rate == 0


class TestRollups:

    def test_category_totals_fold_unknown_into_other(self):
        totals = category_totals(
            (
                line(1, "100.00", category="civil"),
                line(2, "50.00", category="overhead"),
                line(3, "25.00", category=None),
                line(4, "10.00", category="electrical"),
            )
        )
        assert totals == {
            "civil": Decimal("100.00"),
            "electrical": Decimal("10.00"),
            "traffic_control": Decimal("0"),
            "vegetation": Decimal("0"),
            "other": Decimal("75.00"),
        }

    def test_tier_totals_fold_unknown_into_prime(self):
        totals = tier_totals(
            (
                line(1, "100.00", tier="sub"),
                line(2, "40.00", tier="sub_of_sub"),
                line(3, "10.00", tier="unknown"),
                line(4, "5.00", tier="prime"),
            )
        )
        assert totals == {
            "prime": Decimal("15.00"),
            "sub": Decimal("100.00"),
            "sub_of_sub": Decimal("40.00"),
        }


class TestDaysPastDue:

    def test_counts_days_after_due(self):
        assert days_past_due(date(2024, 4, 1), Decimal("10"), date(2024, 4, 11)) == 10

    def test_zero_before_due(self):
        assert days_past_due(date(2024, 4, 1), Decimal("10"), date(2024, 3, 20)) == 0

    def test_zero_when_settled_or_undated(self):
        assert days_past_due(date(2024, 4, 1), Decimal("0"), date(2024, 5, 1)) == 0
        assert days_past_due(None, Decimal("10"), date(2024, 5, 1)) == 0
