"""
Unit ledger entry -- the digital receipt (``billing_kernel.domain.unit_entry``).

Responsibility
--------------
Frozen record for one quantity of field work with its locked rate,
verification evidence and audit trail, plus the unit status workflow and
the single transition function every status change goes through.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Consumed by
``UnitEntryService``, ``DisputeResolver``, ``ClaimAggregator`` and
``PaymentLedger``.

Invariants enforced
-------------------
* ``total_amount = round(quantity * unit_price, 2)``; never set on its own
  (``with_quantity`` is the only way to change quantity).
* ``item_code``, ``unit``, ``unit_price`` and ``category`` are snapshots
  taken at creation; later catalog edits never reach a recorded unit.
* Status changes only along ``UNIT_WORKFLOW`` (``transition_unit``).
* ``claim_id`` set implies status in {invoiced, paid}; status ``approved``
  implies ``claim_id is None`` (``check_linkage``).

Failure modes
-------------
* ``TransitionError`` for any edge outside the table.
* ``AuthorizationError`` when the actor's role is outside the edge's gate.
* ``ValueError`` at construction for non-positive quantity.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from billing_kernel.domain.actor import (
    APPROVE_ROLES,
    RESOLVE_DISPUTE_ROLES,
    VERIFY_ROLES,
)
from billing_kernel.domain.money import round_money
from billing_kernel.domain.workflow import Guard, Transition, Workflow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class UnitStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    APPROVED = "approved"
    INVOICED = "invoiced"
    PAID = "paid"
    DISPUTED = "disputed"


class Tier(str, Enum):
    PRIME = "prime"
    SUB = "sub"
    SUB_OF_SUB = "sub_of_sub"


class WorkCategory(str, Enum):
    ELECTRICAL = "electrical"
    CIVIL = "civil"
    OVERHEAD = "overhead"
    UNDERGROUND = "underground"
    TRAFFIC_CONTROL = "traffic_control"
    VEGETATION = "vegetation"
    INSPECTION = "inspection"
    EMERGENCY = "emergency"
    OTHER = "other"


class GpsQuality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class PhotoType(str, Enum):
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"
    MATERIAL = "material"
    MEASUREMENT = "measurement"
    OTHER = "other"


class DisputeCategory(str, Enum):
    QUANTITY = "quantity"
    RATE = "rate"
    QUALITY = "quality"
    LOCATION = "location"
    PHOTO = "photo"
    DUPLICATE = "duplicate"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

ORIGINAL_ENTRANT = Guard(
    name="original_entrant",
    description="Only the actor who recorded the entry may submit it",
)

_DISPUTABLE = ("submitted", "verified", "approved")

UNIT_WORKFLOW = Workflow(
    name="unit_entry",
    description="Digital receipt lifecycle from field capture to payment",
    initial_state=UnitStatus.DRAFT.value,
    states=tuple(s.value for s in UnitStatus),
    transitions=(
        Transition("draft", "submitted", action="auto_submit"),
        Transition("draft", "submitted", action="submit", guard=ORIGINAL_ENTRANT),
        Transition("submitted", "verified", action="verify", allowed_roles=VERIFY_ROLES),
        Transition("verified", "approved", action="approve", allowed_roles=APPROVE_ROLES),
        *(
            Transition(source, "disputed", action="dispute")
            for source in _DISPUTABLE
        ),
        Transition("disputed", "approved", action="resolve_accept", allowed_roles=RESOLVE_DISPUTE_ROLES),
        Transition("disputed", "approved", action="resolve_adjust", allowed_roles=RESOLVE_DISPUTE_ROLES),
        Transition("disputed", "draft", action="resolve_void", allowed_roles=RESOLVE_DISPUTE_ROLES),
        Transition("disputed", "draft", action="resolve_resubmit", allowed_roles=RESOLVE_DISPUTE_ROLES),
        # System edges: fired only by ClaimAggregator / PaymentLedger / claim deletion
        Transition("approved", "invoiced", action="link_to_claim"),
        Transition("invoiced", "approved", action="unlink_from_claim"),
        Transition("invoiced", "paid", action="settle_payment"),
    ),
    terminal_states=("paid",),
)

UNIT_TRANSITIONS: dict[str, frozenset[str]] = UNIT_WORKFLOW.adjacency()

BILLED_STATUSES: frozenset[str] = frozenset({"invoiced", "paid"})


# ---------------------------------------------------------------------------
# Evidence records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeoLocation:
    """Where the work was captured. ``accuracy`` in metres, lower is better.

    A location without coordinates records a site description only (no fix).
    """
    latitude: Decimal | None = None
    longitude: Decimal | None = None
    accuracy: Decimal | None = None
    altitude: Decimal | None = None
    captured_at: datetime | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        if self.latitude is not None and not Decimal("-90") <= self.latitude <= Decimal("90"):
            raise ValueError(f"latitude out of range: {self.latitude}")
        if self.longitude is not None and not Decimal("-180") <= self.longitude <= Decimal("180"):
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.accuracy is not None and self.accuracy < Decimal("0"):
            raise ValueError(f"accuracy cannot be negative: {self.accuracy}")

    @property
    def has_fix(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Photo:
    """A photo reference. Bytes live in object storage; only the key is kept."""
    url: str
    key: str | None = None
    file_name: str | None = None
    captured_at: datetime | None = None
    photo_type: PhotoType = PhotoType.DURING
    latitude: Decimal | None = None
    longitude: Decimal | None = None


@dataclass(frozen=True)
class PerformedBy:
    tier: Tier = Tier.PRIME
    work_category: WorkCategory = WorkCategory.ELECTRICAL
    sub_contractor_id: UUID | None = None
    sub_contractor_name: str | None = None
    crew_size: int = 1


@dataclass(frozen=True)
class QuantityAdjustment:
    """One quantity correction with before/after values."""
    adjusted_at: datetime
    adjusted_by: UUID
    reason: str
    original_quantity: Decimal
    new_quantity: Decimal
    original_total: Decimal
    new_total: Decimal


def classify_gps_quality(
    accuracy: Decimal | None,
    high_below: Decimal = Decimal("10"),
    medium_below: Decimal = Decimal("50"),
) -> GpsQuality:
    """Bucket GPS accuracy: high < 10, medium < 50, low otherwise."""
    if accuracy is None:
        return GpsQuality.NONE
    if accuracy < high_below:
        return GpsQuality.HIGH
    if accuracy < medium_below:
        return GpsQuality.MEDIUM
    return GpsQuality.LOW


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return round_money(quantity * unit_price)


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UnitEntry:
    """One quantity of billable work with its locked rate and evidence."""
    company_id: UUID
    job_id: UUID
    catalog_id: UUID
    rate_item_id: UUID
    item_code: str
    description: str
    category: str
    unit: str
    unit_price: Decimal
    quantity: Decimal
    work_date: date
    location: GeoLocation
    performed_by: PerformedBy
    entered_by: UUID
    total_amount: Decimal = Decimal("0")
    utility_id: UUID | None = None
    subcategory: str | None = None
    oracle_expenditure_type: str | None = None
    photos: tuple[Photo, ...] = ()
    photo_waived: bool = False
    photo_waived_reason: str | None = None
    gps_quality: GpsQuality = GpsQuality.NONE
    notes: str | None = None
    status: UnitStatus = UnitStatus.DRAFT
    previous_status: UnitStatus | None = None
    claim_id: UUID | None = None
    submitted_at: datetime | None = None
    submitted_by: UUID | None = None
    verified_at: datetime | None = None
    verified_by: UUID | None = None
    verification_notes: str | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    paid_at: datetime | None = None
    paid_by: UUID | None = None
    is_disputed: bool = False
    dispute_reason: str | None = None
    dispute_category: DisputeCategory | None = None
    disputed_at: datetime | None = None
    disputed_by: UUID | None = None
    dispute_resolution: str | None = None
    dispute_resolved_at: datetime | None = None
    dispute_resolved_by: UUID | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    deleted_by: UUID | None = None
    delete_reason: str | None = None
    adjustments: tuple[QuantityAdjustment, ...] = ()
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.quantity <= Decimal("0"):
            raise ValueError(f"quantity must be positive: {self.quantity}")
        expected = line_total(self.quantity, self.unit_price)
        if self.total_amount != expected:
            object.__setattr__(self, "total_amount", expected)

    @property
    def photo_count(self) -> int:
        return len(self.photos)

    @property
    def has_evidence(self) -> bool:
        return bool(self.photos) or (self.photo_waived and bool(self.photo_waived_reason))

    @property
    def has_gps(self) -> bool:
        return self.location.has_fix

    @property
    def is_billable(self) -> bool:
        """Eligible for aggregation ("unbilled")."""
        return (
            self.status == UnitStatus.APPROVED
            and self.claim_id is None
            and not self.is_deleted
        )

    def with_quantity(self, quantity: Decimal) -> "UnitEntry":
        return replace(self, quantity=quantity, total_amount=line_total(quantity, self.unit_price))


def transition_unit(
    entry: UnitEntry,
    action: str,
    *,
    role: str | None = None,
    actor_id: UUID | None = None,
    **changes: Any,
) -> UnitEntry:
    """The single status transition function for unit entries.

    Resolves ``action`` against ``UNIT_WORKFLOW`` from the entry's current
    status and returns a new entry with the target status and ``changes``
    applied.
    """
    edge = UNIT_WORKFLOW.apply(
        entry.id, entry.status.value, action, role=role, actor_id=actor_id
    )
    updated = replace(entry, status=UnitStatus(edge.to_state), **changes)
    check_linkage(updated)
    return updated


def check_linkage(entry: UnitEntry) -> None:
    """Assert the unit/claim linkage invariant."""
    if entry.claim_id is not None and entry.status.value not in BILLED_STATUSES:
        raise ValueError(
            f"unit {entry.id} linked to claim {entry.claim_id} in status {entry.status.value}"
        )