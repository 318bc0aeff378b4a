"""
PaymentLedger -- records money received against a claim.

Responsibility:
    Appends a ``Payment``, recomputes ``total_paid`` and ``balance_due``,
    moves the claim to ``partially_paid`` or ``paid`` and, once paid in
    full, settles every unit on the claim (``invoiced -> paid``).

Architecture position:
    Kernel > Services -- imperative shell.  The claim move goes through
    ``transition_claim`` (action ``record_payment``); the unit move fires
    the ``settle_payment`` edge of the unit workflow.

Invariants enforced:
    - Payment amounts are strictly positive.
    - Payments land only on payable claims (approved, submitted, accepted,
      partially_paid).
    - Claim state first, units follow: the unit settlement UPDATE runs in
      the same transaction after the claim row is written.

Failure modes:
    - PaymentError: non-positive amount, unknown payment method.
    - TransitionError: claim not in a payable status.
    - ClaimNotFoundError: unknown id or another company's claim.

Audit relevance:
    ``payment_recorded`` and, when the claim is settled,
    ``claim_paid_in_full`` with the number of units settled.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_engines.claim_financials import recompute
from billing_kernel.domain.actor import Actor
from billing_kernel.domain.claim import (
    PAYABLE_STATUSES,
    Claim,
    ClaimStatus,
    Payment,
    PaymentMethod,
    transition_claim,
)
from billing_kernel.domain.money import ZERO, round_money, to_decimal
from billing_kernel.exceptions import PaymentError, TransitionError, ValidationError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.base import BaseService
from billing_kernel.services.claim_service import load_claim_model, settle_claim_units

logger = get_logger("services.payment_ledger")


class PaymentLedger(BaseService):
    """Records payments and settles paid claims."""

    def record_payment(
        self,
        company_id: UUID,
        claim_id: UUID,
        amount: Decimal | int | str,
        payment_date: date,
        actor: Actor,
        payment_method: PaymentMethod | str = PaymentMethod.ACH,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> Claim:
        """
        Apply a payment to ``claim_id``.

        Postconditions:
            - ``balance_due <= 0`` -> status ``paid``, ``paid_in_full_at``
              stamped, units ``paid``.
            - otherwise status ``partially_paid``.
        """
        try:
            value = to_decimal(amount, "amount")
        except ValidationError as exc:
            raise PaymentError(exc.message, claim_id=claim_id, amount=amount) from exc
        value = round_money(value)
        if value <= ZERO:
            raise PaymentError(
                f"Payment amount must be positive, got {amount}", claim_id=claim_id, amount=value
            )
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise PaymentError(
                f"Unknown payment method: {payment_method!r}", claim_id=claim_id, amount=value
            ) from None

        with LogContext.bind(company_id=company_id, claim_id=claim_id, actor_id=actor.id):
            try:
                model = load_claim_model(self._session, company_id, claim_id)
                claim = model.to_dto()
                if claim.status.value not in PAYABLE_STATUSES:
                    logger.warning(
                        "payment_rejected",
                        extra={
                            "claim_number": claim.claim_number,
                            "status": claim.status.value,
                            "amount": str(value),
                        },
                    )
                    raise TransitionError(
                        entity="claim",
                        entity_id=claim.id,
                        current_status=claim.status.value,
                        requested_status=ClaimStatus.PAID.value,
                        action="record_payment",
                        expected=PAYABLE_STATUSES,
                    )

                now = self._clock.now()
                payment = Payment(
                    amount=value,
                    payment_date=payment_date,
                    recorded_by=actor.id,
                    recorded_at=now,
                    payment_method=method,
                    reference_number=reference_number,
                    notes=notes,
                )
                paid = recompute(replace(claim, payments=claim.payments + (payment,)))
                settled = paid.balance_due <= ZERO
                target = ClaimStatus.PAID if settled else ClaimStatus.PARTIALLY_PAID
                paid = transition_claim(
                    paid,
                    "record_payment",
                    at=now,
                    role=actor.role.value,
                    actor_id=actor.id,
                    to_state=target.value,
                    details=f"Payment of {value} via {method.value}",
                    log_action="payment_recorded",
                    paid_in_full_at=now if settled else None,
                )
                model.apply_dto(paid, updated_by_id=actor.id)

                units_settled = 0
                if settled:
                    self._session.flush()
                    units_settled = settle_claim_units(self._session, paid, actor, now)
                self._commit()
                if units_settled:
                    self._session.expire_all()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "payment_recorded",
                extra={
                    "claim_number": paid.claim_number,
                    "amount": str(value),
                    "payment_method": method.value,
                    "total_paid": str(paid.total_paid),
                    "balance_due": str(paid.balance_due),
                    "to_status": paid.status.value,
                },
            )
            if settled:
                logger.info(
                    "claim_paid_in_full",
                    extra={"claim_number": paid.claim_number, "units_settled": units_settled},
                )
            return paid
