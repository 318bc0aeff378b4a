"""
ClaimAggregator -- bundles approved unit entries into a claim.

Responsibility:
    Validates that every requested unit is billable, snapshots each one
    into an immutable ``ClaimLineItem``, derives the claim totals and
    persists the claim and the unit linkage in two ordered phases.

Architecture position:
    Kernel > Services -- imperative shell.  Totals come from
    ``billing_engines.claim_financials``; unit status changes go through
    ``transition_unit`` (edge ``link_to_claim``).

Two-phase protocol (``AggregationPlan``):

    prepare   read + validate + build.  Nothing is written.
    commit    phase 1: persist the draft claim under a fresh claim number,
                       retrying with a new random suffix while the unique
                       constraint reports a collision.
              phase 2: one conditional UPDATE links the units:
                       WHERE id IN (...) AND claim_id IS NULL
                         AND status = 'approved' AND is_deleted = false
                       A short rowcount means another aggregator won the
                       race: phase 2 is rolled back, the draft claim is
                       deleted and IneligibleUnitsError is raised.

    The eligibility read in ``prepare`` is advisory; the conditional
    UPDATE is the point of exclusivity.

Invariants enforced:
    - All-or-nothing: either every requested unit is linked to the new
      claim or no claim is left behind and no unit is touched.
    - A unit is linked to at most one claim.
    - Claim numbers ``{prefix}-{year}-{seq:05d}-{rand:03d}`` are unique.
    - A plan commits at most once.

Failure modes:
    - ValidationError: empty unit list, bad rates or period.
    - AuthorizationError: role outside pm/admin.
    - IneligibleUnitsError: fewer eligible units than requested (at prepare
      time or, after a lost race, at commit time).
    - ClaimNumberCollisionError: numbering retries exhausted (transient).
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_engines.claim_financials import rate_amount, recompute, subtotal_of
from billing_kernel.domain.actor import CLAIM_MANAGER_ROLES, Actor
from billing_kernel.domain.claim import Claim, ClaimLineItem, ClaimStatus, ClaimType
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.money import ZERO, to_decimal
from billing_kernel.domain.unit_entry import UnitEntry, UnitStatus, transition_unit
from billing_kernel.exceptions import (
    ClaimNumberCollisionError,
    IneligibleUnitsError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.claim import ClaimModel
from billing_kernel.models.unit_entry import UnitEntryModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.claim_aggregator")

SuffixSource = Callable[[], int]


def random_suffix() -> int:
    """Three-digit random claim number suffix."""
    return secrets.randbelow(1000)


def format_claim_number(prefix: str, year: int, sequence: int, suffix: int) -> str:
    return f"{prefix}-{year}-{sequence:05d}-{suffix:03d}"


def next_claim_sequence(session: Session, company_id: UUID, prefix: str, year: int) -> int:
    """Count of the company's claims already numbered in ``year``, plus one."""
    count = session.execute(
        select(func.count())
        .select_from(ClaimModel)
        .where(ClaimModel.company_id == company_id)
        .where(ClaimModel.claim_number.like(f"{prefix}-{year}-%"))
    ).scalar_one()
    return count + 1


def _eligible_filter(stmt, company_id: UUID, unit_ids: Sequence[UUID]):
    return stmt.where(
        UnitEntryModel.id.in_(unit_ids),
        UnitEntryModel.company_id == company_id,
        UnitEntryModel.claim_id.is_(None),
        UnitEntryModel.status == UnitStatus.APPROVED.value,
        UnitEntryModel.is_deleted.is_(False),
    )


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass
class AggregationPlan:
    """
    A prepared, not yet persisted claim.

    Contract:
        Built only by ``ClaimAggregator.prepare``.  ``commit`` runs both
        phases and may be called once.
    """

    session: Session
    clock: Clock
    config: BillingConfig
    actor: Actor
    claim: Claim
    units: tuple[UnitEntry, ...]
    suffix_source: SuffixSource = random_suffix
    committed: bool = field(default=False, init=False)

    @property
    def unit_ids(self) -> tuple[UUID, ...]:
        return tuple(u.id for u in self.units)

    def commit(self) -> Claim:
        if self.committed:
            raise RuntimeError(f"Aggregation plan for claim {self.claim.id} already committed")
        self.committed = True

        with LogContext.bind(
            company_id=self.claim.company_id, claim_id=self.claim.id, actor_id=self.actor.id
        ):
            claim = self._persist_claim()
            self._link_units(claim)
            logger.info(
                "claim_created",
                extra={
                    "claim_number": claim.claim_number,
                    "company_id": str(claim.company_id),
                    "unit_count": len(self.units),
                    "subtotal": str(claim.subtotal),
                    "amount_due": str(claim.amount_due),
                },
            )
            return claim

    # -- phase 1 -------------------------------------------------------------

    def _persist_claim(self) -> Claim:
        policy = self.config.claims
        year = self.clock.now().year
        number = ""
        for attempt in range(1, policy.number_max_attempts + 1):
            sequence = next_claim_sequence(
                self.session, self.claim.company_id, policy.number_prefix, year
            )
            number = format_claim_number(
                policy.number_prefix, year, sequence, self.suffix_source() % 1000
            )
            claim = replace(self.claim, claim_number=number)
            self.session.add(ClaimModel.from_dto(claim, created_by_id=self.actor.id))
            try:
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                logger.warning(
                    "claim_number_collision",
                    extra={"claim_number": number, "attempt": attempt},
                )
                continue
            except Exception:
                self.session.rollback()
                raise
            return claim

        logger.error(
            "claim_number_exhausted",
            extra={"attempts": policy.number_max_attempts, "last_number": number},
        )
        raise ClaimNumberCollisionError(policy.number_max_attempts, number)

    # -- phase 2 -------------------------------------------------------------

    def _link_units(self, claim: Claim) -> None:
        linked = [
            transition_unit(unit, "link_to_claim", claim_id=claim.id) for unit in self.units
        ]
        try:
            result = self.session.execute(
                _eligible_filter(update(UnitEntryModel), claim.company_id, self.unit_ids)
                .values(
                    status=linked[0].status.value,
                    claim_id=claim.id,
                    updated_by_id=self.actor.id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == len(self.units):
                self.session.commit()
                self.session.expire_all()
                return
            self.session.rollback()
        except Exception:
            self.session.rollback()
            self._compensate(claim)
            raise

        still_eligible = set(
            self.session.execute(
                _eligible_filter(select(UnitEntryModel.id), claim.company_id, self.unit_ids)
            ).scalars()
        )
        missing = [uid for uid in self.unit_ids if uid not in still_eligible]
        logger.warning(
            "claim_aggregation_lost_race",
            extra={
                "claim_number": claim.claim_number,
                "requested": len(self.units),
                "linked": result.rowcount,
                "missing": [str(m) for m in missing],
            },
        )
        self._compensate(claim)
        raise IneligibleUnitsError(
            requested=len(self.units),
            found=len(self.units) - len(missing),
            missing_ids=missing,
        )

    def _compensate(self, claim: Claim) -> None:
        model = self.session.get(ClaimModel, claim.id)
        if model is not None:
            self.session.delete(model)
            self.session.commit()
        logger.info(
            "claim_compensated",
            extra={"claim_number": claim.claim_number},
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ClaimAggregator(BaseService):
    """
    Service that turns approved unit entries into a draft claim.

    ``suffix_source`` supplies the random claim number suffix (0-999).
    """

    def __init__(self, session, clock=None, config=None, suffix_source: SuffixSource | None = None):
        super().__init__(session, clock, config)
        self._suffix_source = suffix_source or random_suffix

    def create_claim(
        self,
        company_id: UUID,
        unit_ids: Sequence[UUID],
        actor: Actor,
        period_start: date | None = None,
        period_end: date | None = None,
        retention_rate: Decimal | int | str | None = None,
        tax_rate: Decimal | int | str | None = None,
        claim_type: ClaimType | str = ClaimType.PROGRESS,
        description: str | None = None,
    ) -> Claim:
        """Prepare and commit in one call."""
        plan = self.prepare(
            company_id,
            unit_ids,
            actor,
            period_start=period_start,
            period_end=period_end,
            retention_rate=retention_rate,
            tax_rate=tax_rate,
            claim_type=claim_type,
            description=description,
        )
        return plan.commit()

    def prepare(
        self,
        company_id: UUID,
        unit_ids: Sequence[UUID],
        actor: Actor,
        period_start: date | None = None,
        period_end: date | None = None,
        retention_rate: Decimal | int | str | None = None,
        tax_rate: Decimal | int | str | None = None,
        claim_type: ClaimType | str = ClaimType.PROGRESS,
        description: str | None = None,
    ) -> AggregationPlan:
        """
        Read, validate and build the claim.  Writes nothing.

        Raises:
            IneligibleUnitsError: any requested unit is missing, not
                approved, already claimed or deleted.
        """
        actor.require(CLAIM_MANAGER_ROLES, "create_claim")

        requested = list(dict.fromkeys(unit_ids or ()))
        if not requested:
            raise ValidationError("unit_ids must not be empty", field="unit_ids")
        if period_start and period_end and period_start > period_end:
            raise ValidationError(
                "period_start must not be after period_end", field="period_start"
            )
        retention = to_decimal(retention_rate, "retention_rate") if retention_rate is not None else ZERO
        tax = to_decimal(tax_rate, "tax_rate") if tax_rate is not None else ZERO
        try:
            claim_type = ClaimType(claim_type)
        except ValueError:
            raise ValidationError(
                f"Unknown claim type: {claim_type!r}", field="claim_type", value=claim_type
            ) from None

        rows = self._session.execute(
            _eligible_filter(select(UnitEntryModel), company_id, requested)
        ).scalars().all()
        by_id = {row.id: row.to_dto() for row in rows}
        if len(by_id) < len(requested):
            missing = [uid for uid in requested if uid not in by_id]
            logger.warning(
                "claim_units_ineligible",
                extra={
                    "company_id": str(company_id),
                    "requested": len(requested),
                    "found": len(by_id),
                    "missing": [str(m) for m in missing],
                },
            )
            raise IneligibleUnitsError(
                requested=len(requested), found=len(by_id), missing_ids=missing
            )

        units = tuple(by_id[uid] for uid in requested)
        line_items = tuple(
            ClaimLineItem.from_unit(unit, number) for number, unit in enumerate(units, start=1)
        )
        subtotal = subtotal_of(line_items)
        now = self._clock.now()

        claim = Claim(
            company_id=company_id,
            claim_number="",
            created_by=actor.id,
            created_at=now,
            line_items=line_items,
            job_ids=tuple(dict.fromkeys(u.job_id for u in units)),
            utility_id=units[0].utility_id,
            claim_type=claim_type,
            period_start=period_start,
            period_end=period_end,
            description=description,
            subtotal=subtotal,
            retention_rate=retention,
            retention_amount=rate_amount(subtotal, retention),
            tax_rate=tax,
            tax_amount=rate_amount(subtotal, tax),
            status=ClaimStatus.DRAFT,
        )
        claim = recompute(claim).with_log(
            "created",
            now,
            actor.id,
            details=f"Created with {len(units)} units",
            new_status=ClaimStatus.DRAFT.value,
        )

        logger.info(
            "claim_aggregation_prepared",
            extra={
                "claim_id": str(claim.id),
                "company_id": str(company_id),
                "unit_count": len(units),
                "subtotal": str(claim.subtotal),
            },
        )
        return AggregationPlan(
            session=self._session,
            clock=self._clock,
            config=self._config,
            actor=actor,
            claim=claim,
            units=units,
            suffix_source=self._suffix_source,
        )
