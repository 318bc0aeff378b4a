"""
DisputeResolver -- closes a unit dispute without losing its history.

Responsibility:
    Applies one of four resolutions to a disputed unit entry:

        accept    disputed -> approved, approval stamped
        adjust    disputed -> approved with a corrected quantity; the
                  before/after figures are appended to ``adjustments``
        void      disputed -> draft and soft-deleted
        resubmit  disputed -> draft for the crew to correct

Architecture position:
    Kernel > Services -- imperative shell over
    ``billing_kernel.domain.unit_entry.transition_unit``.

Invariants enforced:
    - Only entries with ``is_disputed`` are resolvable.
    - Resolution text is mandatory; the original dispute reason and
      category are kept.
    - ``total_amount`` follows the adjusted quantity
      (``UnitEntry.with_quantity``).
    - Role gate pm, gf, admin (declared on the workflow edges).

Failure modes:
    - ValidationError: unknown action, empty resolution, bad quantity.
    - TransitionError: entry is not disputed.
    - AuthorizationError: role outside the gate.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.domain.actor import Actor
from billing_kernel.domain.money import ZERO, to_decimal
from billing_kernel.domain.unit_entry import (
    UNIT_WORKFLOW,
    QuantityAdjustment,
    UnitEntry,
    UnitStatus,
    transition_unit,
)
from billing_kernel.exceptions import TransitionError, ValidationError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.base import BaseService
from billing_kernel.services.unit_entry_service import load_unit_model

logger = get_logger("services.dispute_resolver")

DEFAULT_ADJUSTMENT_REASON = "Dispute resolution adjustment"


class ResolutionAction(str, Enum):
    ACCEPT = "accept"
    ADJUST = "adjust"
    VOID = "void"
    RESUBMIT = "resubmit"


class DisputeResolver(BaseService):
    """Resolves disputed unit entries."""

    def resolve_dispute(
        self,
        company_id: UUID,
        unit_id: UUID,
        actor: Actor,
        action: ResolutionAction | str,
        resolution: str,
        adjusted_quantity: Decimal | int | str | None = None,
        adjustment_reason: str | None = None,
    ) -> UnitEntry:
        """
        Resolve the dispute on ``unit_id``.

        Postconditions:
            - ``is_disputed`` is False; ``dispute_resolution`` and
              ``dispute_resolved_at/by`` are recorded.
        """
        try:
            action = ResolutionAction(action)
        except ValueError:
            raise ValidationError(
                f"Unknown resolution action: {action!r}", field="action", value=action
            ) from None
        if not resolution or not resolution.strip():
            raise ValidationError("Resolution text is required", field="resolution")

        actor.require(UNIT_WORKFLOW.roles_for(f"resolve_{action.value}"), f"resolve_{action.value}")

        with LogContext.bind(company_id=company_id, unit_id=unit_id, actor_id=actor.id):
            try:
                model = load_unit_model(self._session, company_id, unit_id)
                entry = model.to_dto()
                if not entry.is_disputed:
                    raise TransitionError(
                        entity="unit_entry",
                        entity_id=entry.id,
                        current_status=entry.status.value,
                        requested_status=UnitStatus.APPROVED.value,
                        action=f"resolve_{action.value}",
                        expected=(UnitStatus.DISPUTED.value,),
                    )

                now = self._clock.now()
                resolved = self._apply(entry, actor, action, now, adjusted_quantity, adjustment_reason)
                resolved = transition_unit(
                    resolved,
                    f"resolve_{action.value}",
                    role=actor.role.value,
                    actor_id=actor.id,
                    is_disputed=False,
                    dispute_resolution=resolution,
                    dispute_resolved_at=now,
                    dispute_resolved_by=actor.id,
                )
                model.apply_dto(resolved, updated_by_id=actor.id)
                self._commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "unit_dispute_resolved",
                extra={
                    "action": action.value,
                    "to_status": resolved.status.value,
                    "previous_status": (
                        entry.previous_status.value if entry.previous_status else None
                    ),
                    "quantity": str(resolved.quantity),
                    "total_amount": str(resolved.total_amount),
                },
            )
            return resolved

    def _apply(
        self,
        entry: UnitEntry,
        actor: Actor,
        action: ResolutionAction,
        now,
        adjusted_quantity,
        adjustment_reason: str | None,
    ) -> UnitEntry:
        if action is ResolutionAction.ACCEPT:
            return replace(entry, approved_at=now, approved_by=actor.id)

        if action is ResolutionAction.ADJUST:
            if adjusted_quantity is None:
                raise ValidationError(
                    "adjusted_quantity is required to adjust", field="adjusted_quantity"
                )
            quantity = to_decimal(adjusted_quantity, "adjusted_quantity")
            if quantity <= ZERO:
                raise ValidationError(
                    "adjusted_quantity must be greater than zero",
                    field="adjusted_quantity",
                    value=str(quantity),
                )
            if quantity == entry.quantity:
                raise ValidationError(
                    "adjusted_quantity must differ from the current quantity",
                    field="adjusted_quantity",
                    value=str(quantity),
                )
            adjusted = entry.with_quantity(quantity)
            record = QuantityAdjustment(
                adjusted_at=now,
                adjusted_by=actor.id,
                reason=adjustment_reason or DEFAULT_ADJUSTMENT_REASON,
                original_quantity=entry.quantity,
                new_quantity=adjusted.quantity,
                original_total=entry.total_amount,
                new_total=adjusted.total_amount,
            )
            return replace(
                adjusted,
                adjustments=entry.adjustments + (record,),
                approved_at=now,
                approved_by=actor.id,
            )

        if action is ResolutionAction.VOID:
            return replace(
                entry,
                is_deleted=True,
                deleted_at=now,
                deleted_by=actor.id,
                delete_reason=f"Voided in dispute resolution: {entry.dispute_reason}",
            )

        return entry
