"""
Claim value objects (``billing_kernel.domain.claim``).

Responsibility
--------------
Frozen records for an aggregated invoice ("claim"): the immutable
``ClaimLineItem`` snapshot taken from a unit entry at aggregation time,
signed ``ClaimAdjustment`` records, ``Payment`` records, the Oracle export
state, the append-only change log, the claim status workflow and the
single transition function every claim status change goes through.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Totals are
derived by ``billing_engines.claim_financials``; this module only carries
them.

Invariants enforced
-------------------
* Line items are produced once by ``ClaimLineItem.from_unit`` and never
  re-read from the live unit.
* Status changes only along ``CLAIM_WORKFLOW`` (``transition_claim``).
* ``change_log`` is append-only (``with_log`` returns a longer tuple).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from billing_kernel.domain.actor import CLAIM_MANAGER_ROLES
from billing_kernel.domain.unit_entry import UnitEntry
from billing_kernel.domain.workflow import Transition, Workflow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ClaimStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    PARTIALLY_PAID = "partially_paid"
    REJECTED = "rejected"
    PAID = "paid"
    CLOSED = "closed"
    VOID = "void"


class ClaimType(str, Enum):
    PROGRESS = "progress"
    FINAL = "final"
    RETENTION = "retention"
    CHANGE_ORDER = "change_order"
    TIME_AND_MATERIAL = "time_and_material"


class AdjustmentCategory(str, Enum):
    CORRECTION = "correction"
    CREDIT = "credit"
    DEDUCTION = "deduction"
    BACKCHARGE = "backcharge"
    RETENTION_RELEASE = "retention_release"
    OTHER = "other"


class PaymentMethod(str, Enum):
    ACH = "ach"
    CHECK = "check"
    WIRE = "wire"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


class SubmissionMethod(str, Enum):
    PORTAL = "portal"
    EMAIL = "email"
    API = "api"
    MAIL = "mail"
    HAND_DELIVERY = "hand_delivery"


class ExportFormat(str, Enum):
    REST_API = "rest_api"
    JSON = "json"
    CSV = "csv"
    XML = "xml"
    FBDI = "fbdi"
    FBDI_BULK = "fbdi_bulk"


class ExportStatus(str, Enum):
    PENDING = "pending"
    EXPORTED = "exported"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ERROR = "error"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

PAYABLE_STATUSES: tuple[str, ...] = ("approved", "submitted", "accepted", "partially_paid")
UNPAID_STATUSES: tuple[str, ...] = ("submitted", "accepted", "partially_paid")
DELETABLE_STATUS = "draft"

CLAIM_WORKFLOW = Workflow(
    name="claim",
    description="Claim lifecycle from aggregation to payment",
    initial_state=ClaimStatus.DRAFT.value,
    states=tuple(s.value for s in ClaimStatus),
    transitions=(
        Transition("draft", "pending_review", action="send_for_review"),
        Transition("revision_requested", "pending_review", action="send_for_review"),
        Transition("pending_review", "revision_requested", action="request_revision", allowed_roles=CLAIM_MANAGER_ROLES),
        Transition("draft", "approved", action="approve", allowed_roles=CLAIM_MANAGER_ROLES),
        Transition("pending_review", "approved", action="approve", allowed_roles=CLAIM_MANAGER_ROLES),
        Transition("approved", "submitted", action="submit"),
        Transition("submitted", "accepted", action="accept", allowed_roles=CLAIM_MANAGER_ROLES),
        Transition("submitted", "rejected", action="reject", allowed_roles=CLAIM_MANAGER_ROLES),
        Transition("rejected", "revision_requested", action="request_revision", allowed_roles=CLAIM_MANAGER_ROLES),
        *(
            Transition(source, target, action="record_payment")
            for source in PAYABLE_STATUSES
            for target in ("partially_paid", "paid")
        ),
        Transition("paid", "closed", action="close", allowed_roles=CLAIM_MANAGER_ROLES),
        *(
            Transition(source, "void", action="void", allowed_roles=CLAIM_MANAGER_ROLES)
            for source in ("draft", "pending_review", "revision_requested", "approved", "rejected")
        ),
    ),
    terminal_states=("closed", "void"),
)

CLAIM_TRANSITIONS: dict[str, frozenset[str]] = CLAIM_WORKFLOW.adjacency()


# ---------------------------------------------------------------------------
# Line item snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClaimLineItem:
    """Immutable snapshot of one unit entry as billed.

    Produced once at aggregation time.  A later edit to the unit (or to
    its rate catalog) never changes a persisted line item.
    """
    unit_entry_id: UUID
    line_number: int
    item_code: str
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    total_amount: Decimal
    work_date: date | None = None
    photo_count: int = 0
    has_gps: bool = False
    gps_accuracy: Decimal | None = None
    gps_quality: str = "none"
    performed_by_tier: str = "prime"
    sub_contractor_id: UUID | None = None
    sub_contractor_name: str | None = None
    work_category: str | None = None
    oracle_expenditure_type: str | None = None
    oracle_project_number: str | None = None
    oracle_task_number: str | None = None

    @property
    def has_photo(self) -> bool:
        return self.photo_count > 0

    @classmethod
    def from_unit(cls, unit: UnitEntry, line_number: int) -> "ClaimLineItem":
        return cls(
            unit_entry_id=unit.id,
            line_number=line_number,
            item_code=unit.item_code,
            description=unit.description,
            quantity=unit.quantity,
            unit=unit.unit,
            unit_price=unit.unit_price,
            total_amount=unit.total_amount,
            work_date=unit.work_date,
            photo_count=unit.photo_count,
            has_gps=unit.has_gps,
            gps_accuracy=unit.location.accuracy,
            gps_quality=unit.gps_quality.value,
            performed_by_tier=unit.performed_by.tier.value,
            sub_contractor_id=unit.performed_by.sub_contractor_id,
            sub_contractor_name=unit.performed_by.sub_contractor_name,
            work_category=unit.performed_by.work_category.value,
            oracle_expenditure_type=unit.oracle_expenditure_type,
        )


# ---------------------------------------------------------------------------
# Claim sub-records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClaimAdjustment:
    """Signed adjustment: credits and deductions are negative."""
    description: str
    amount: Decimal
    reason: str | None = None
    category: AdjustmentCategory = AdjustmentCategory.OTHER
    created_by: UUID | None = None
    created_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class Payment:
    amount: Decimal
    payment_date: date
    recorded_by: UUID
    recorded_at: datetime
    payment_method: PaymentMethod = PaymentMethod.ACH
    reference_number: str | None = None
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class OracleExportState:
    """ERP-side identity and the last export stamp."""
    vendor_id: str | None = None
    vendor_number: str | None = None
    vendor_name: str | None = None
    vendor_site_id: str | None = None
    vendor_site_code: str | None = None
    business_unit: str | None = None
    payment_terms: str | None = None
    po_number: str | None = None
    contract_number: str | None = None
    project_number: str | None = None
    task_number: str | None = None
    expenditure_organization: str | None = None
    exported_at: datetime | None = None
    exported_by: UUID | None = None
    export_format: ExportFormat | None = None
    export_status: ExportStatus = ExportStatus.PENDING
    external_id: str | None = None


@dataclass(frozen=True)
class ChangeLogEntry:
    action: str
    timestamp: datetime
    actor_id: UUID | None = None
    details: str | None = None
    previous_status: str | None = None
    new_status: str | None = None


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Claim:
    """An aggregated invoice built from approved unit entries.

    Monetary totals are carried, not computed here -- see
    ``billing_engines.claim_financials.recompute``.
    """
    company_id: UUID
    claim_number: str
    created_by: UUID
    created_at: datetime
    line_items: tuple[ClaimLineItem, ...] = ()
    job_ids: tuple[UUID, ...] = ()
    utility_id: UUID | None = None
    job_number: str | None = None
    claim_type: ClaimType = ClaimType.PROGRESS
    period_start: date | None = None
    period_end: date | None = None
    description: str | None = None
    adjustments: tuple[ClaimAdjustment, ...] = ()
    subtotal: Decimal = Decimal("0")
    retention_rate: Decimal = Decimal("0")
    retention_amount: Decimal = Decimal("0")
    retention_released: bool = False
    retention_released_at: datetime | None = None
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    adjustment_total: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    amount_due: Decimal = Decimal("0")
    payments: tuple[Payment, ...] = ()
    total_paid: Decimal = Decimal("0")
    balance_due: Decimal = Decimal("0")
    line_item_count: int = 0
    status: ClaimStatus = ClaimStatus.DRAFT
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    approval_notes: str | None = None
    submitted_at: datetime | None = None
    submitted_by: UUID | None = None
    submission_method: SubmissionMethod | None = None
    submission_reference: str | None = None
    due_date: date | None = None
    paid_in_full_at: datetime | None = None
    oracle: OracleExportState = field(default_factory=OracleExportState)
    change_log: tuple[ChangeLogEntry, ...] = ()
    id: UUID = field(default_factory=uuid4)

    @property
    def unit_entry_ids(self) -> tuple[UUID, ...]:
        return tuple(li.unit_entry_id for li in self.line_items)

    @property
    def invoice_date(self) -> date:
        """Submission date, else creation date."""
        return (self.submitted_at or self.created_at).date()

    def with_log(
        self,
        action: str,
        timestamp: datetime,
        actor_id: UUID | None,
        details: str | None = None,
        previous_status: str | None = None,
        new_status: str | None = None,
    ) -> "Claim":
        entry = ChangeLogEntry(
            action=action,
            timestamp=timestamp,
            actor_id=actor_id,
            details=details,
            previous_status=previous_status,
            new_status=new_status,
        )
        return replace(self, change_log=self.change_log + (entry,))


def transition_claim(
    claim: Claim,
    action: str,
    *,
    at: datetime,
    role: str | None = None,
    actor_id: UUID | None = None,
    to_state: str | None = None,
    details: str | None = None,
    log_action: str | None = None,
    **changes: Any,
) -> Claim:
    """The single status transition function for claims.

    Resolves ``action`` against ``CLAIM_WORKFLOW``, applies ``changes``
    and appends a change-log entry recording previous and new status.
    """
    edge = CLAIM_WORKFLOW.apply(
        claim.id,
        claim.status.value,
        action,
        role=role,
        actor_id=actor_id,
        to_state=to_state,
    )
    updated = replace(claim, status=ClaimStatus(edge.to_state), **changes)
    return updated.with_log(
        log_action or action,
        at,
        actor_id,
        details=details,
        previous_status=edge.from_state,
        new_status=edge.to_state,
    )
