"""
UnitEntryService -- digital receipts from field capture to approval.

Responsibility:
    Records unit entries against a locked contract rate, drives them
    through the evidence-gated workflow (submit, verify, approve, dispute),
    soft-deletes them, and answers the ledger queries (listing, unbilled by
    job, disputed).

Architecture position:
    Kernel > Services -- imperative shell.  Rate resolution is delegated to
    ``RateCatalogService``; status changes go through
    ``billing_kernel.domain.unit_entry.transition_unit``.  Claim linkage and
    payment settlement are NOT exposed here: only ``ClaimAggregator``,
    ``ClaimService`` and ``PaymentLedger`` fire those edges.

Invariants enforced:
    - Every entry carries a rate snapshot; a missing rate is terminal.
    - ``total_amount = round(quantity * unit_price, 2)``.
    - Evidence rule: at least one photo, or a waiver with a reason.
    - Auto-submit only when evidence is present and the GPS fix is within
      ``EvidencePolicy.auto_submit_max_accuracy``.

Failure modes:
    - ValidationError: missing/invalid fields, evidence, batch size.
    - RateNotFoundError: no active rate for the item code.
    - UnitEntryNotFoundError: unknown id, another company's or deleted entry.
    - TransitionError / AuthorizationError: from the unit workflow.

Audit relevance:
    Every mutation logs a snake_case event with unit id, actor and statuses.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.actor import Actor, Role
from billing_kernel.domain.money import ZERO, to_decimal
from billing_kernel.domain.unit_entry import (
    BILLED_STATUSES,
    ORIGINAL_ENTRANT,
    DisputeCategory,
    GeoLocation,
    PerformedBy,
    Photo,
    Tier,
    UnitEntry,
    UnitStatus,
    WorkCategory,
    classify_gps_quality,
    transition_unit,
)
from billing_kernel.exceptions import (
    AuthorizationError,
    BillingKernelError,
    TransitionError,
    UnitEntryNotFoundError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.unit_entry import UnitEntryModel
from billing_kernel.services.base import BaseService
from billing_kernel.services.rate_catalog_service import RateCatalogService

logger = get_logger("services.unit_entry")

DEFAULT_DELETE_REASON = "Deleted by user"
DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 500


# ---------------------------------------------------------------------------
# Request / result records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UnitEntryRequest:
    """Field input for one unit entry. ``utility_id`` is the job's utility."""
    job_id: UUID | None
    item_code: str
    quantity: Decimal | int | str | None
    work_date: date | None
    location: GeoLocation | None
    performed_by: PerformedBy | None
    utility_id: UUID | None = None
    photos: tuple[Photo, ...] = ()
    photo_waived: bool = False
    photo_waived_reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class BatchEntryResult:
    index: int
    success: bool
    unit_id: UUID | None = None
    item_code: str | None = None
    total_amount: Decimal | None = None
    status: UnitStatus | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class BatchResult:
    total: int
    results: tuple[BatchEntryResult, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded


@dataclass(frozen=True)
class UnbilledJob:
    job_id: UUID
    units: tuple[UnitEntry, ...]
    total_amount: Decimal

    @property
    def unit_count(self) -> int:
        return len(self.units)


@dataclass(frozen=True)
class UnbilledSummary:
    total_units: int
    total_amount: Decimal
    by_job: tuple[UnbilledJob, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Shared loader
# ---------------------------------------------------------------------------


def load_unit_model(session, company_id: UUID, unit_id: UUID) -> UnitEntryModel:
    """Fetch a live (not deleted) entry of ``company_id`` or raise."""
    model = session.get(UnitEntryModel, unit_id)
    if model is None or model.company_id != company_id or model.is_deleted:
        raise UnitEntryNotFoundError(unit_id)
    return model


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class UnitEntryService(BaseService):
    """
    Service for unit ledger entries.

    Contract:
        Every mutating method commits on success and rolls back on failure.
        ``company_id`` scopes every lookup; another company's entry is
        reported as not found.
    """

    def __init__(self, session, clock=None, config=None, rate_catalogs: RateCatalogService | None = None):
        super().__init__(session, clock, config)
        self._rates = rate_catalogs or RateCatalogService(session, self._clock, self._config)

    # =========================================================================
    # Create
    # =========================================================================

    def create_entry(self, company_id: UUID, request: UnitEntryRequest, actor: Actor) -> UnitEntry:
        """
        Record a unit entry with a locked rate, auto-submitting it when the
        evidence allows.

        Postconditions:
            - Status is ``submitted`` when evidence and GPS pass the policy,
              ``draft`` otherwise.
        """
        try:
            entry = self._build_entry(company_id, request, actor)
            now = self._clock.now()
            auto_submitted = self._qualifies_for_auto_submit(entry)
            if auto_submitted:
                entry = transition_unit(
                    entry,
                    "auto_submit",
                    role=actor.role.value,
                    actor_id=actor.id,
                    submitted_at=now,
                    submitted_by=actor.id,
                )

            model = UnitEntryModel.from_dto(entry, created_by_id=actor.id, created_at=now)
            self._session.add(model)
            self._commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "unit_entry_created",
            extra={
                "unit_id": str(entry.id),
                "company_id": str(company_id),
                "job_id": str(entry.job_id),
                "item_code": entry.item_code,
                "quantity": str(entry.quantity),
                "total_amount": str(entry.total_amount),
                "gps_quality": entry.gps_quality.value,
                "auto_submitted": auto_submitted,
                "status": entry.status.value,
            },
        )
        return entry

    def batch_create(
        self,
        company_id: UUID,
        requests: Sequence[UnitEntryRequest],
        actor: Actor,
    ) -> BatchResult:
        """
        Create up to ``EvidencePolicy.batch_limit`` entries.

        Each entry commits on its own; a rejected entry is reported in its
        result and never aborts the rest of the batch.
        """
        limit = self._config.evidence.batch_limit
        if not requests:
            raise ValidationError("entries must not be empty", field="entries")
        if len(requests) > limit:
            raise ValidationError(
                f"Maximum {limit} entries per batch", field="entries", value=len(requests)
            )

        results: list[BatchEntryResult] = []
        for index, request in enumerate(requests):
            try:
                entry = self.create_entry(company_id, request, actor)
            except (BillingKernelError, ValueError) as exc:
                logger.warning(
                    "unit_entry_batch_item_failed",
                    extra={
                        "index": index,
                        "item_code": request.item_code,
                        "error_code": getattr(exc, "code", "VALUE_ERROR"),
                        "error": str(exc),
                    },
                )
                results.append(
                    BatchEntryResult(
                        index=index,
                        success=False,
                        item_code=request.item_code,
                        error=str(exc),
                        error_code=getattr(exc, "code", "VALUE_ERROR"),
                    )
                )
                continue
            results.append(
                BatchEntryResult(
                    index=index,
                    success=True,
                    unit_id=entry.id,
                    item_code=entry.item_code,
                    total_amount=entry.total_amount,
                    status=entry.status,
                )
            )

        batch = BatchResult(total=len(requests), results=tuple(results))
        logger.info(
            "unit_entry_batch_completed",
            extra={
                "company_id": str(company_id),
                "total": batch.total,
                "succeeded": batch.succeeded,
                "failed": batch.failed,
            },
        )
        return batch

    def _build_entry(self, company_id: UUID, request: UnitEntryRequest, actor: Actor) -> UnitEntry:
        missing = [
            name
            for name in ("job_id", "quantity", "work_date", "location", "performed_by")
            if getattr(request, name) is None
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", field=missing[0]
            )
        if not request.item_code or not request.item_code.strip():
            raise ValidationError("item_code is required", field="item_code")

        quantity = to_decimal(request.quantity, "quantity")
        if quantity <= ZERO:
            raise ValidationError(
                "quantity must be greater than zero", field="quantity", value=str(quantity)
            )

        has_waiver = request.photo_waived and bool((request.photo_waived_reason or "").strip())
        if not request.photos and not has_waiver:
            raise ValidationError(
                "At least one photo is required unless the photo is waived with a reason",
                field="photos",
            )

        catalog, item = self._rates.resolve_catalog_item(
            company_id, request.utility_id, request.item_code
        )
        if item.min_quantity is not None and quantity < item.min_quantity:
            raise ValidationError(
                f"quantity {quantity} is below the minimum {item.min_quantity} for {item.item_code}",
                field="quantity",
                value=str(quantity),
            )
        if item.max_quantity is not None and quantity > item.max_quantity:
            raise ValidationError(
                f"quantity {quantity} exceeds the maximum {item.max_quantity} for {item.item_code}",
                field="quantity",
                value=str(quantity),
            )

        policy = self._config.evidence
        return UnitEntry(
            company_id=company_id,
            utility_id=request.utility_id,
            job_id=request.job_id,
            catalog_id=catalog.id,
            rate_item_id=item.id,
            item_code=item.item_code,
            description=item.description,
            category=item.category.value,
            subcategory=item.subcategory,
            unit=item.unit,
            unit_price=item.unit_price,
            oracle_expenditure_type=item.oracle_expenditure_type,
            quantity=quantity,
            work_date=request.work_date,
            location=request.location,
            gps_quality=classify_gps_quality(
                request.location.accuracy if request.location.has_fix else None,
                policy.gps_high_accuracy_below,
                policy.gps_medium_accuracy_below,
            ),
            performed_by=request.performed_by,
            photos=tuple(request.photos),
            photo_waived=request.photo_waived,
            photo_waived_reason=request.photo_waived_reason if request.photo_waived else None,
            notes=request.notes,
            entered_by=actor.id,
        )

    def _qualifies_for_auto_submit(self, entry: UnitEntry) -> bool:
        accuracy = entry.location.accuracy
        return (
            entry.has_evidence
            and entry.location.has_fix
            and accuracy is not None
            and accuracy <= self._config.evidence.auto_submit_max_accuracy
        )

    # =========================================================================
    # Workflow
    # =========================================================================

    def submit(self, company_id: UUID, unit_id: UUID, actor: Actor) -> UnitEntry:
        """draft -> submitted; only the original entrant may submit."""
        return self._transition(
            company_id,
            unit_id,
            actor,
            "submit",
            "unit_entry_submitted",
            lambda entry, now: {"submitted_at": now, "submitted_by": actor.id},
        )

    def verify(
        self,
        company_id: UUID,
        unit_id: UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> UnitEntry:
        """submitted -> verified (gf, qa, pm, admin)."""
        return self._transition(
            company_id,
            unit_id,
            actor,
            "verify",
            "unit_entry_verified",
            lambda entry, now: {
                "verified_at": now,
                "verified_by": actor.id,
                "verification_notes": notes,
            },
        )

    def approve(self, company_id: UUID, unit_id: UUID, actor: Actor) -> UnitEntry:
        """verified -> approved (pm, admin)."""
        return self._transition(
            company_id,
            unit_id,
            actor,
            "approve",
            "unit_entry_approved",
            lambda entry, now: {"approved_at": now, "approved_by": actor.id},
        )

    def dispute(
        self,
        company_id: UUID,
        unit_id: UUID,
        actor: Actor,
        reason: str,
        category: DisputeCategory | str,
    ) -> UnitEntry:
        """submitted|verified|approved -> disputed, remembering the prior status."""
        if not reason or not reason.strip():
            raise ValidationError("Dispute reason is required", field="reason")
        try:
            category = DisputeCategory(category)
        except ValueError:
            raise ValidationError(
                f"Unknown dispute category: {category!r}", field="category", value=category
            ) from None
        return self._transition(
            company_id,
            unit_id,
            actor,
            "dispute",
            "unit_entry_disputed",
            lambda entry, now: {
                "previous_status": entry.status,
                "is_disputed": True,
                "dispute_reason": reason,
                "dispute_category": category,
                "disputed_at": now,
                "disputed_by": actor.id,
                "dispute_resolution": None,
                "dispute_resolved_at": None,
                "dispute_resolved_by": None,
            },
        )

    def _transition(self, company_id, unit_id, actor: Actor, action: str, event: str, changes) -> UnitEntry:
        with LogContext.bind(company_id=company_id, unit_id=unit_id, actor_id=actor.id):
            try:
                model = load_unit_model(self._session, company_id, unit_id)
                entry = model.to_dto()
                if action == "submit" and actor.id != entry.entered_by:
                    raise AuthorizationError(
                        actor_id=actor.id,
                        role=actor.role.value,
                        action=action,
                        allowed_roles=(ORIGINAL_ENTRANT.name,),
                    )
                now = self._clock.now()
                updated = transition_unit(
                    entry,
                    action,
                    role=actor.role.value,
                    actor_id=actor.id,
                    **changes(entry, now),
                )
                model.apply_dto(updated, updated_by_id=actor.id)
                self._commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                event,
                extra={
                    "from_status": entry.status.value,
                    "to_status": updated.status.value,
                    "role": actor.role.value,
                },
            )
            return updated

    # =========================================================================
    # Soft delete
    # =========================================================================

    def soft_delete(
        self,
        company_id: UUID,
        unit_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> UnitEntry:
        """
        Mark an entry deleted.  Drafts only, unless the actor is an admin;
        billed entries (invoiced, paid) are never deleted.
        """
        try:
            model = load_unit_model(self._session, company_id, unit_id)
            entry = model.to_dto()
            allowed = (UnitStatus.DRAFT.value,)
            if entry.status.value in BILLED_STATUSES or (
                entry.status != UnitStatus.DRAFT and actor.role is not Role.ADMIN
            ):
                raise TransitionError(
                    entity="unit_entry",
                    entity_id=entry.id,
                    current_status=entry.status.value,
                    requested_status="deleted",
                    action="delete",
                    expected=allowed,
                )
            now = self._clock.now()
            deleted = replace(
                entry,
                is_deleted=True,
                deleted_at=now,
                deleted_by=actor.id,
                delete_reason=reason or DEFAULT_DELETE_REASON,
            )
            model.apply_dto(deleted, updated_by_id=actor.id)
            self._commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "unit_entry_deleted",
            extra={
                "unit_id": str(unit_id),
                "status": entry.status.value,
                "reason": deleted.delete_reason,
            },
        )
        return deleted

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, company_id: UUID, unit_id: UUID) -> UnitEntry:
        return load_unit_model(self._session, company_id, unit_id).to_dto()

    def list_entries(
        self,
        company_id: UUID,
        actor: Actor,
        job_id: UUID | None = None,
        status: UnitStatus | None = None,
        work_category: WorkCategory | None = None,
        tier: Tier | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[UnitEntry]:
        """
        List live entries, newest work first.  Foremen see only the entries
        they recorded.
        """
        stmt = select(UnitEntryModel).where(
            UnitEntryModel.company_id == company_id,
            UnitEntryModel.is_deleted.is_(False),
        )
        if job_id is not None:
            stmt = stmt.where(UnitEntryModel.job_id == job_id)
        if status is not None:
            stmt = stmt.where(UnitEntryModel.status == UnitStatus(status).value)
        if work_category is not None:
            stmt = stmt.where(UnitEntryModel.work_category == WorkCategory(work_category).value)
        if tier is not None:
            stmt = stmt.where(UnitEntryModel.tier == Tier(tier).value)
        if start_date is not None:
            stmt = stmt.where(UnitEntryModel.work_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(UnitEntryModel.work_date <= end_date)
        if actor.role is Role.FOREMAN:
            stmt = stmt.where(UnitEntryModel.entered_by == actor.id)

        limit = max(1, min(limit, MAX_LIST_LIMIT))
        stmt = stmt.order_by(
            UnitEntryModel.work_date.desc(), UnitEntryModel.created_at.desc()
        ).limit(limit)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def get_unbilled_by_company(self, company_id: UUID) -> UnbilledSummary:
        """Approved, unlinked, live entries grouped by job."""
        rows = self._session.execute(
            select(UnitEntryModel)
            .where(
                UnitEntryModel.company_id == company_id,
                UnitEntryModel.status == UnitStatus.APPROVED.value,
                UnitEntryModel.claim_id.is_(None),
                UnitEntryModel.is_deleted.is_(False),
            )
            .order_by(UnitEntryModel.work_date, UnitEntryModel.created_at)
        ).scalars().all()

        grouped: dict[UUID, list[UnitEntry]] = {}
        for row in rows:
            entry = row.to_dto()
            grouped.setdefault(entry.job_id, []).append(entry)

        by_job = tuple(
            UnbilledJob(
                job_id=job_id,
                units=tuple(units),
                total_amount=sum((u.total_amount for u in units), ZERO),
            )
            for job_id, units in grouped.items()
        )
        return UnbilledSummary(
            total_units=len(rows),
            total_amount=sum((job.total_amount for job in by_job), ZERO),
            by_job=by_job,
        )

    def get_disputed(self, company_id: UUID) -> list[UnitEntry]:
        rows = self._session.execute(
            select(UnitEntryModel)
            .where(
                UnitEntryModel.company_id == company_id,
                UnitEntryModel.is_disputed.is_(True),
                UnitEntryModel.is_deleted.is_(False),
            )
            .order_by(UnitEntryModel.disputed_at)
        ).scalars()
        return [row.to_dto() for row in rows]
