"""
ClaimService -- claim lifecycle after aggregation.

Responsibility:
    Drives a claim through review, approval, submission, acceptance or
    rejection, closing and voiding; records signed adjustments; deletes
    draft claims and releases their units; answers the claim queries
    (listing, unpaid, past due).

Architecture position:
    Kernel > Services -- imperative shell over
    ``billing_kernel.domain.claim.transition_claim``.  Every persist goes
    through ``billing_engines.claim_financials.recompute``.

Invariants enforced:
    - Claim status moves only along ``CLAIM_WORKFLOW``; each move appends a
      change-log entry with previous and new status.
    - ``total_amount = subtotal + adjustment_total + tax_amount`` and
      ``amount_due = total_amount - retention_amount`` after every write.
    - Releasing a claim (delete or void) moves its units
      ``invoiced -> approved`` with ``claim_id = None``, conditioned on the
      units still pointing at this claim.

Failure modes:
    - ClaimNotFoundError: unknown id or another company's claim.
    - TransitionError / AuthorizationError: from the claim workflow or the
      deletion gate.
    - ValidationError: adjustments that would make the claim negative,
      missing adjustment fields.

Audit relevance:
    Every mutation logs ``claim_<action>`` with claim number, statuses and
    actor, and lands in the claim's own change log.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from billing_engines.claim_financials import days_past_due, recompute
from billing_kernel.domain.actor import CLAIM_MANAGER_ROLES, Actor
from billing_kernel.domain.claim import (
    CLAIM_WORKFLOW,
    DELETABLE_STATUS,
    UNPAID_STATUSES,
    AdjustmentCategory,
    Claim,
    ClaimAdjustment,
    ClaimStatus,
    OracleExportState,
    SubmissionMethod,
    transition_claim,
)
from billing_kernel.domain.money import ZERO, round_money, to_decimal
from billing_kernel.domain.unit_entry import UNIT_WORKFLOW, UnitStatus
from billing_kernel.exceptions import ClaimNotFoundError, TransitionError, ValidationError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.claim import ClaimModel
from billing_kernel.models.unit_entry import UnitEntryModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.claim")

DEFAULT_LIST_LIMIT = 50
EDITABLE_STATUSES: frozenset[str] = frozenset({"draft", "pending_review", "revision_requested"})
ADJUSTABLE_STATUSES: frozenset[str] = frozenset(
    {"draft", "pending_review", "revision_requested", "approved", "submitted", "accepted", "partially_paid"}
)
ORACLE_REFERENCE_FIELDS: frozenset[str] = frozenset(
    {
        "vendor_id",
        "vendor_number",
        "vendor_name",
        "vendor_site_id",
        "vendor_site_code",
        "business_unit",
        "payment_terms",
        "po_number",
        "contract_number",
        "project_number",
        "task_number",
        "expenditure_organization",
    }
)


@dataclass(frozen=True)
class PastDueClaim:
    claim: Claim
    days_past_due: int


def load_claim_model(session, company_id: UUID, claim_id: UUID) -> ClaimModel:
    """Fetch a claim of ``company_id`` or raise ``ClaimNotFoundError``."""
    model = session.get(ClaimModel, claim_id)
    if model is None or model.company_id != company_id:
        raise ClaimNotFoundError(claim_id)
    return model


def release_claim_units(session, claim_id: UUID, actor: Actor) -> int:
    """Unlink every unit still invoiced on ``claim_id``. Returns the row count."""
    edge = UNIT_WORKFLOW.apply(claim_id, UnitStatus.INVOICED.value, "unlink_from_claim")
    result = session.execute(
        update(UnitEntryModel)
        .where(
            UnitEntryModel.claim_id == claim_id,
            UnitEntryModel.status == edge.from_state,
        )
        .values(status=edge.to_state, claim_id=None, updated_by_id=actor.id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def settle_claim_units(session, claim: Claim, actor: Actor, now) -> int:
    """Move every unit still invoiced on a paid claim to ``paid``. Returns the row count."""
    edge = UNIT_WORKFLOW.apply(claim.id, UnitStatus.INVOICED.value, "settle_payment")
    result = session.execute(
        update(UnitEntryModel)
        .where(
            UnitEntryModel.id.in_(claim.unit_entry_ids),
            UnitEntryModel.claim_id == claim.id,
            UnitEntryModel.status == edge.from_state,
        )
        .values(status=edge.to_state, paid_at=now, paid_by=actor.id, updated_by_id=actor.id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


class ClaimService(BaseService):
    """
    Service for claims once they exist.

    Contract:
        Every mutating method commits on success and rolls back on failure.
    """

    # =========================================================================
    # Workflow
    # =========================================================================

    def send_for_review(self, company_id: UUID, claim_id: UUID, actor: Actor) -> Claim:
        return self._transition(company_id, claim_id, actor, "send_for_review")

    def request_revision(
        self, company_id: UUID, claim_id: UUID, actor: Actor, notes: str | None = None
    ) -> Claim:
        return self._transition(company_id, claim_id, actor, "request_revision", details=notes)

    def approve(
        self, company_id: UUID, claim_id: UUID, actor: Actor, notes: str | None = None
    ) -> Claim:
        """draft or pending_review -> approved (pm/admin)."""
        now = self._clock.now()
        return self._transition(
            company_id,
            claim_id,
            actor,
            "approve",
            details=notes,
            approved_at=now,
            approved_by=actor.id,
            approval_notes=notes,
        )

    def submit(
        self,
        company_id: UUID,
        claim_id: UUID,
        actor: Actor,
        method: SubmissionMethod | str = SubmissionMethod.PORTAL,
        reference: str | None = None,
        due_date: date | None = None,
    ) -> Claim:
        """
        approved -> submitted.

        ``due_date`` defaults to today plus ``ClaimPolicy.due_days``.
        """
        try:
            method = SubmissionMethod(method)
        except ValueError:
            raise ValidationError(
                f"Unknown submission method: {method!r}", field="method", value=method
            ) from None
        now = self._clock.now()
        due = due_date or (self._clock.today() + timedelta(days=self._config.claims.due_days))
        return self._transition(
            company_id,
            claim_id,
            actor,
            "submit",
            details=f"Submitted via {method.value}",
            submitted_at=now,
            submitted_by=actor.id,
            submission_method=method,
            submission_reference=reference,
            due_date=due,
        )

    def accept(self, company_id: UUID, claim_id: UUID, actor: Actor) -> Claim:
        return self._transition(company_id, claim_id, actor, "accept")

    def reject(
        self, company_id: UUID, claim_id: UUID, actor: Actor, reason: str | None = None
    ) -> Claim:
        return self._transition(company_id, claim_id, actor, "reject", details=reason)

    def close(self, company_id: UUID, claim_id: UUID, actor: Actor) -> Claim:
        return self._transition(company_id, claim_id, actor, "close")

    def void(
        self, company_id: UUID, claim_id: UUID, actor: Actor, reason: str | None = None
    ) -> Claim:
        """Void an unpaid claim and hand its units back to the unbilled pool."""
        return self._transition(
            company_id, claim_id, actor, "void", details=reason, release_units=True
        )

    def _transition(
        self,
        company_id: UUID,
        claim_id: UUID,
        actor: Actor,
        action: str,
        details: str | None = None,
        release_units: bool = False,
        **changes,
    ) -> Claim:
        with LogContext.bind(company_id=company_id, claim_id=claim_id, actor_id=actor.id):
            try:
                model = load_claim_model(self._session, company_id, claim_id)
                claim = model.to_dto()
                updated = transition_claim(
                    claim,
                    action,
                    at=self._clock.now(),
                    role=actor.role.value,
                    actor_id=actor.id,
                    details=details,
                    **changes,
                )
                updated = recompute(updated)
                model.apply_dto(updated, updated_by_id=actor.id)
                released = 0
                if release_units:
                    self._session.flush()
                    released = release_claim_units(self._session, claim.id, actor)
                self._commit()
                if released:
                    self._session.expire_all()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                f"claim_{action}",
                extra={
                    "claim_number": updated.claim_number,
                    "from_status": claim.status.value,
                    "to_status": updated.status.value,
                    "units_released": released,
                },
            )
            return updated

    # =========================================================================
    # Edits
    # =========================================================================

    def update_claim(
        self,
        company_id: UUID,
        claim_id: UUID,
        actor: Actor,
        description: str | None = None,
        due_date: date | None = None,
        job_number: str | None = None,
        **oracle_references: str | None,
    ) -> Claim:
        """
        Edit header fields and ERP references of a claim still in review.

        ``oracle_references`` accepts the vendor and project reference
        fields of ``OracleExportState`` (``vendor_number``, ``po_number``...).
        """
        actor.require(CLAIM_MANAGER_ROLES, "update_claim")
        unknown = set(oracle_references) - ORACLE_REFERENCE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown claim reference fields: {', '.join(sorted(unknown))}",
                field="oracle",
                value=sorted(unknown),
            )

        with LogContext.bind(company_id=company_id, claim_id=claim_id, actor_id=actor.id):
            try:
                model = load_claim_model(self._session, company_id, claim_id)
                claim = model.to_dto()
                if claim.status.value not in EDITABLE_STATUSES:
                    raise TransitionError(
                        entity="claim",
                        entity_id=claim.id,
                        current_status=claim.status.value,
                        requested_status=claim.status.value,
                        action="update",
                        expected=sorted(EDITABLE_STATUSES),
                    )
                changes = {}
                if description is not None:
                    changes["description"] = description
                if due_date is not None:
                    changes["due_date"] = due_date
                if job_number is not None:
                    changes["job_number"] = job_number
                oracle: OracleExportState = replace(claim.oracle, **oracle_references)
                fields = sorted([*changes, *oracle_references])
                updated = replace(claim, oracle=oracle, **changes).with_log(
                    "updated",
                    self._clock.now(),
                    actor.id,
                    details=f"Updated {', '.join(fields)}" if fields else None,
                )
                model.apply_dto(updated, updated_by_id=actor.id)
                self._commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "claim_updated",
                extra={"claim_number": updated.claim_number, "fields": fields},
            )
            return updated

    def add_adjustment(
        self,
        company_id: UUID,
        claim_id: UUID,
        actor: Actor,
        description: str,
        amount: Decimal | int | str,
        category: AdjustmentCategory | str = AdjustmentCategory.OTHER,
        reason: str | None = None,
    ) -> Claim:
        """
        Append a signed adjustment and recompute the totals.

        Credits and deductions are negative amounts.  A credit that clears
        the balance of a partially paid claim settles it: the claim moves to
        ``paid`` and its units follow, as with a final payment.

        Raises:
            ValidationError: empty description, zero amount, or a total that
                would go negative.
        """
        actor.require(CLAIM_MANAGER_ROLES, "add_adjustment")
        if not description or not description.strip():
            raise ValidationError("Adjustment description is required", field="description")
        value = round_money(to_decimal(amount, "amount"))
        if value == ZERO:
            raise ValidationError("Adjustment amount must not be zero", field="amount", value=str(value))
        try:
            category = AdjustmentCategory(category)
        except ValueError:
            raise ValidationError(
                f"Unknown adjustment category: {category!r}", field="category", value=category
            ) from None

        with LogContext.bind(company_id=company_id, claim_id=claim_id, actor_id=actor.id):
            try:
                model = load_claim_model(self._session, company_id, claim_id)
                claim = model.to_dto()
                if claim.status.value not in ADJUSTABLE_STATUSES:
                    raise TransitionError(
                        entity="claim",
                        entity_id=claim.id,
                        current_status=claim.status.value,
                        requested_status=claim.status.value,
                        action="add_adjustment",
                        expected=sorted(ADJUSTABLE_STATUSES),
                    )
                now = self._clock.now()
                adjustment = ClaimAdjustment(
                    description=description,
                    amount=value,
                    reason=reason,
                    category=category,
                    created_by=actor.id,
                    created_at=now,
                )
                updated = recompute(
                    replace(claim, adjustments=claim.adjustments + (adjustment,))
                ).with_log(
                    "adjustment_added",
                    now,
                    actor.id,
                    details=f"{category.value}: {description} ({value})",
                )
                settled = (
                    updated.status is ClaimStatus.PARTIALLY_PAID and updated.balance_due <= ZERO
                )
                if settled:
                    updated = transition_claim(
                        updated,
                        "record_payment",
                        at=now,
                        role=actor.role.value,
                        actor_id=actor.id,
                        to_state=ClaimStatus.PAID.value,
                        details="Balance cleared by adjustment",
                        log_action="settled_by_adjustment",
                        paid_in_full_at=now,
                    )
                model.apply_dto(updated, updated_by_id=actor.id)
                units_settled = 0
                if settled:
                    self._session.flush()
                    units_settled = settle_claim_units(self._session, updated, actor, now)
                self._commit()
                if units_settled:
                    self._session.expire_all()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "claim_adjustment_added",
                extra={
                    "claim_number": updated.claim_number,
                    "category": category.value,
                    "amount": str(value),
                    "total_amount": str(updated.total_amount),
                    "amount_due": str(updated.amount_due),
                },
            )
            if settled:
                logger.info(
                    "claim_paid_in_full",
                    extra={"claim_number": updated.claim_number, "units_settled": units_settled},
                )
            return updated

    def delete_claim(self, company_id: UUID, claim_id: UUID, actor: Actor) -> int:
        """
        Delete a claim and return its units to ``approved``.

        Drafts may be deleted by pm/admin; any other status by admin only.
        Claims with recorded payments are never deleted.

        Returns:
            Number of units released.
        """
        actor.require(CLAIM_MANAGER_ROLES, "delete_claim")
        with LogContext.bind(company_id=company_id, claim_id=claim_id, actor_id=actor.id):
            try:
                model = load_claim_model(self._session, company_id, claim_id)
                claim = model.to_dto()
                if (claim.status.value != DELETABLE_STATUS and not actor.is_admin) or claim.payments:
                    raise TransitionError(
                        entity="claim",
                        entity_id=claim.id,
                        current_status=claim.status.value,
                        requested_status="deleted",
                        action="delete",
                        expected=(DELETABLE_STATUS,),
                    )
                released = release_claim_units(self._session, claim.id, actor)
                self._session.delete(model)
                self._commit()
                self._session.expire_all()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "claim_deleted",
                extra={
                    "claim_number": claim.claim_number,
                    "status": claim.status.value,
                    "units_released": released,
                },
            )
            return released

    # =========================================================================
    # Queries
    # =========================================================================

    def get_claim(self, company_id: UUID, claim_id: UUID) -> Claim:
        return load_claim_model(self._session, company_id, claim_id).to_dto()

    def list_claims(
        self,
        company_id: UUID,
        status: ClaimStatus | str | None = None,
        job_id: UUID | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Claim]:
        """Newest first. ``job_id`` matches any job the claim spans."""
        stmt = select(ClaimModel).where(ClaimModel.company_id == company_id)
        if status is not None:
            stmt = stmt.where(ClaimModel.status == ClaimStatus(status).value)
        stmt = stmt.order_by(ClaimModel.created_at.desc(), ClaimModel.claim_number.desc())
        if job_id is None:
            stmt = stmt.limit(limit)
        claims = [row.to_dto() for row in self._session.execute(stmt).scalars()]
        if job_id is not None:
            claims = [c for c in claims if job_id in c.job_ids][:limit]
        return claims

    def get_unpaid(self, company_id: UUID) -> list[Claim]:
        """Submitted claims with an outstanding balance, oldest due date first.

        Approved claims have not been sent to the utility and carry no due
        date, so they are not unpaid yet.
        """
        rows = self._session.execute(
            select(ClaimModel)
            .where(ClaimModel.company_id == company_id)
            .where(ClaimModel.status.in_(UNPAID_STATUSES))
            .where(ClaimModel.balance_due > 0)
            .order_by(ClaimModel.due_date.asc(), ClaimModel.claim_number.asc())
        ).scalars()
        return [row.to_dto() for row in rows]

    def get_past_due(self, company_id: UUID, as_of: date | None = None) -> list[PastDueClaim]:
        """Unpaid claims whose due date has passed, most overdue first."""
        today = as_of or self._clock.today()
        overdue = [
            PastDueClaim(claim=c, days_past_due=days_past_due(c.due_date, c.balance_due, today))
            for c in self.get_unpaid(company_id)
        ]
        overdue = [p for p in overdue if p.days_past_due > 0]
        overdue.sort(key=lambda p: p.days_past_due, reverse=True)
        return overdue

    @staticmethod
    def allowed_actions(claim: Claim) -> tuple[str, ...]:
        """Workflow actions that may fire from the claim's current status."""
        return tuple(
            action
            for action in CLAIM_WORKFLOW.actions
            if claim.status.value in CLAIM_WORKFLOW.sources_for(action)
        )
