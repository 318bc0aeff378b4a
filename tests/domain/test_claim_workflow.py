"""
Tests for the claim record, the claim status workflow and money helpers.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.actor import Actor, Role
from billing_kernel.domain.claim import (
    CLAIM_TRANSITIONS,
    CLAIM_WORKFLOW,
    PAYABLE_STATUSES,
    Claim,
    ClaimStatus,
    transition_claim,
)
from billing_kernel.domain.money import fixed2, percent, plain, round_money, to_decimal
from billing_kernel.exceptions import AuthorizationError, TransitionError, ValidationError

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_claim(status=ClaimStatus.DRAFT, **kwargs) -> Claim:
    return Claim(
        company_id=uuid4(),
        claim_number="CLM-2024-00001-042",
        created_by=uuid4(),
        created_at=NOW,
        status=status,
        **kwargs,
    )


class TestClaimWorkflowStructure:

    def test_every_status_reachable_from_draft(self):
        seen = {"draft"}
        frontier = ["draft"]
        while frontier:
            for target in CLAIM_TRANSITIONS[frontier.pop()]:
                if target not in seen:
                    seen.add(target)
                    frontier.append(target)
        assert seen == {s.value for s in ClaimStatus}

    @pytest.mark.parametrize("terminal", ["closed", "void"])
    def test_terminal_states_have_no_exit(self, terminal):
        assert CLAIM_TRANSITIONS[terminal] == frozenset()

    def test_paid_only_closes(self):
        assert CLAIM_TRANSITIONS["paid"] == frozenset({"closed"})

    def test_payments_land_on_payable_statuses(self):
        assert set(CLAIM_WORKFLOW.sources_for("record_payment")) == set(PAYABLE_STATUSES)

    def test_void_never_after_payment(self):
        sources = set(CLAIM_WORKFLOW.sources_for("void"))
        assert not sources & {"partially_paid", "paid", "submitted", "accepted"}


class TestTransitionClaim:

    def test_approve_appends_log(self):
        actor = Actor(id=uuid4(), role=Role.PM)
        claim = make_claim(status=ClaimStatus.PENDING_REVIEW)

        approved = transition_claim(
            claim, "approve", at=NOW, role="pm", actor_id=actor.id, details="Looks good"
        )

        assert approved.status is ClaimStatus.APPROVED
        assert len(approved.change_log) == 1
        entry = approved.change_log[0]
        assert entry.action == "approve"
        assert entry.previous_status == "pending_review"
        assert entry.new_status == "approved"
        assert entry.details == "Looks good"
        assert entry.actor_id == actor.id

    def test_approve_by_foreman_rejected(self):
        with pytest.raises(AuthorizationError):
            transition_claim(make_claim(), "approve", at=NOW, role="foreman")

    def test_submit_requires_approval(self):
        with pytest.raises(TransitionError) as exc_info:
            transition_claim(make_claim(), "submit", at=NOW, role="pm")
        assert exc_info.value.expected == ["approved"]

    def test_record_payment_target_is_explicit(self):
        claim = make_claim(status=ClaimStatus.SUBMITTED)
        partial = transition_claim(claim, "record_payment", at=NOW, to_state="partially_paid")
        paid = transition_claim(partial, "record_payment", at=NOW, to_state="paid")
        assert partial.status is ClaimStatus.PARTIALLY_PAID
        assert paid.status is ClaimStatus.PAID
        assert [e.new_status for e in paid.change_log] == ["partially_paid", "paid"]

    def test_log_action_override(self):
        claim = make_claim(status=ClaimStatus.APPROVED)
        updated = transition_claim(
            claim, "record_payment", at=NOW, to_state="paid", log_action="payment_recorded"
        )
        assert updated.change_log[-1].action == "payment_recorded"

    def test_changes_applied(self):
        claim = make_claim(status=ClaimStatus.APPROVED)
        submitted = transition_claim(claim, "submit", at=NOW, due_date=date(2024, 4, 14))
        assert submitted.due_date == date(2024, 4, 14)


class TestClaimRecord:

    def test_invoice_date_prefers_submission(self):
        claim = make_claim()
        assert claim.invoice_date == date(2024, 3, 15)
        submitted = make_claim(submitted_at=datetime(2024, 4, 2, 9, tzinfo=timezone.utc))
        assert submitted.invoice_date == date(2024, 4, 2)

    def test_with_log_is_append_only(self):
        claim = make_claim().with_log("created", NOW, None, details="Created with 2 units")
        longer = claim.with_log("updated", NOW, None)
        assert len(claim.change_log) == 1
        assert [e.action for e in longer.change_log] == ["created", "updated"]


class TestMoney:

    def test_to_decimal_rejects_float(self):
        with pytest.raises(ValidationError):
            to_decimal(1.5, "quantity")

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal("abc", "quantity")
        assert exc_info.value.field == "quantity"

    def test_to_decimal_accepts_int_and_str(self):
        assert to_decimal(3) == Decimal("3")
        assert to_decimal("2.50") == Decimal("2.50")

    def test_round_money_half_up(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("2.344")) == Decimal("2.34")

    @pytest.mark.parametrize(
        "part,whole,expected",
        [(2, 3, 67), (1, 3, 33), (1, 2, 50), (0, 0, 0), (3, 3, 100)],
    )
    def test_percent(self, part, whole, expected):
        assert percent(part, whole) == expected

    def test_plain_and_fixed2(self):
        assert plain(Decimal("200.000000000")) == "200"
        assert plain(Decimal("1.500000000")) == "1.5"
        assert fixed2(Decimal("5000")) == "5000.00"
        assert fixed2(Decimal("12.5")) == "12.50"
