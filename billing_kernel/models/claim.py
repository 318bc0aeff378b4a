"""
Claim ORM models (``billing_kernel.models.claim``).

Responsibility
--------------
Maps the ``Claim`` frozen dataclass and its sub-records to the ``claims``,
``claim_line_items``, ``claim_adjustments``, ``claim_payments`` and
``claim_change_log`` tables.

Architecture position
---------------------
**Kernel persistence layer**.  Imports from ``billing_kernel.db.base`` and
``billing_kernel.domain.claim``.

Invariants enforced
-------------------
* ``claim_number`` is unique (``uq_claims_claim_number``); a duplicate
  insert is how the aggregator detects a numbering collision.
* Line items are written once at creation; ``apply_dto`` never touches
  them.
* Adjustments, payments and change log rows are append-only: ``apply_dto``
  only adds rows that are not yet persisted.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, MoneyAmount, TrackedBase
from billing_kernel.domain.claim import (
    AdjustmentCategory,
    ChangeLogEntry,
    Claim,
    ClaimAdjustment,
    ClaimLineItem,
    ClaimStatus,
    ClaimType,
    ExportFormat,
    ExportStatus,
    OracleExportState,
    Payment,
    PaymentMethod,
    SubmissionMethod,
)


# ---------------------------------------------------------------------------
# 1. ClaimModel
# ---------------------------------------------------------------------------


class ClaimModel(TrackedBase):
    """
    ORM model for an aggregated invoice.

    Maps to the ``Claim`` frozen dataclass.  Oracle export state is
    flattened into ``oracle_*`` columns; job ids are a JSON list.

    Guarantees:
        - claim_number unique across all companies.
        - status stored as string enum value.
        - children loaded eagerly (selectin) and deleted with the claim.
    """

    __tablename__ = "claims"

    __table_args__ = (
        UniqueConstraint("claim_number", name="uq_claims_claim_number"),
        Index("idx_claims_company_status", "company_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    claim_number: Mapped[str] = mapped_column(String(50), nullable=False)
    job_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    utility_id: Mapped[UUID | None] = mapped_column(nullable=True)
    job_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claim_type: Mapped[str] = mapped_column(String(30), default=ClaimType.PROGRESS.value)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    retention_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    retention_amount: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    retention_released: Mapped[bool] = mapped_column(Boolean, default=False)
    retention_released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    adjustment_total: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    amount_due: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    total_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    balance_due: Mapped[Decimal] = mapped_column(MoneyAmount(), default=Decimal("0"))
    line_item_count: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(30), default=ClaimStatus.DRAFT.value)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    submission_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    submission_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_in_full_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Oracle export state
    oracle_vendor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_vendor_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    oracle_vendor_site_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_vendor_site_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_business_unit: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_payment_terms: Mapped[str | None] = mapped_column(String(50), nullable=True)
    oracle_po_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_contract_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_project_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_task_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_expenditure_organization: Mapped[str | None] = mapped_column(String(255), nullable=True)
    oracle_exported_at: Mapped[datetime | None] = mapped_column(nullable=True)
    oracle_exported_by: Mapped[UUID | None] = mapped_column(nullable=True)
    oracle_export_format: Mapped[str | None] = mapped_column(String(20), nullable=True)
    oracle_export_status: Mapped[str] = mapped_column(String(20), default=ExportStatus.PENDING.value)
    oracle_external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    line_items: Mapped[list["ClaimLineItemModel"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimLineItemModel.line_number",
    )
    adjustments: Mapped[list["ClaimAdjustmentModel"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimAdjustmentModel.sequence",
    )
    payments: Mapped[list["ClaimPaymentModel"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimPaymentModel.sequence",
    )
    change_log: Mapped[list["ClaimChangeLogModel"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimChangeLogModel.sequence",
    )

    def to_dto(self) -> Claim:
        return Claim(
            id=self.id,
            company_id=self.company_id,
            claim_number=self.claim_number,
            created_by=self.created_by_id,
            created_at=self.created_at,
            line_items=tuple(li.to_dto() for li in self.line_items),
            job_ids=tuple(UUID(j) for j in self.job_ids or ()),
            utility_id=self.utility_id,
            job_number=self.job_number,
            claim_type=ClaimType(self.claim_type),
            period_start=self.period_start,
            period_end=self.period_end,
            description=self.description,
            adjustments=tuple(a.to_dto() for a in self.adjustments),
            subtotal=self.subtotal,
            retention_rate=self.retention_rate,
            retention_amount=self.retention_amount,
            retention_released=self.retention_released,
            retention_released_at=self.retention_released_at,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            adjustment_total=self.adjustment_total,
            total_amount=self.total_amount,
            amount_due=self.amount_due,
            payments=tuple(p.to_dto() for p in self.payments),
            total_paid=self.total_paid,
            balance_due=self.balance_due,
            line_item_count=self.line_item_count,
            status=ClaimStatus(self.status),
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            approval_notes=self.approval_notes,
            submitted_at=self.submitted_at,
            submitted_by=self.submitted_by,
            submission_method=(
                SubmissionMethod(self.submission_method) if self.submission_method else None
            ),
            submission_reference=self.submission_reference,
            due_date=self.due_date,
            paid_in_full_at=self.paid_in_full_at,
            oracle=OracleExportState(
                vendor_id=self.oracle_vendor_id,
                vendor_number=self.oracle_vendor_number,
                vendor_name=self.oracle_vendor_name,
                vendor_site_id=self.oracle_vendor_site_id,
                vendor_site_code=self.oracle_vendor_site_code,
                business_unit=self.oracle_business_unit,
                payment_terms=self.oracle_payment_terms,
                po_number=self.oracle_po_number,
                contract_number=self.oracle_contract_number,
                project_number=self.oracle_project_number,
                task_number=self.oracle_task_number,
                expenditure_organization=self.oracle_expenditure_organization,
                exported_at=self.oracle_exported_at,
                exported_by=self.oracle_exported_by,
                export_format=(
                    ExportFormat(self.oracle_export_format) if self.oracle_export_format else None
                ),
                export_status=ExportStatus(self.oracle_export_status),
                external_id=self.oracle_external_id,
            ),
            change_log=tuple(c.to_dto() for c in self.change_log),
        )

    @staticmethod
    def _columns(dto: Claim) -> dict[str, Any]:
        oracle = dto.oracle
        return {
            "company_id": dto.company_id,
            "claim_number": dto.claim_number,
            "job_ids": [str(j) for j in dto.job_ids],
            "utility_id": dto.utility_id,
            "job_number": dto.job_number,
            "claim_type": dto.claim_type.value,
            "period_start": dto.period_start,
            "period_end": dto.period_end,
            "description": dto.description,
            "subtotal": dto.subtotal,
            "retention_rate": dto.retention_rate,
            "retention_amount": dto.retention_amount,
            "retention_released": dto.retention_released,
            "retention_released_at": dto.retention_released_at,
            "tax_rate": dto.tax_rate,
            "tax_amount": dto.tax_amount,
            "adjustment_total": dto.adjustment_total,
            "total_amount": dto.total_amount,
            "amount_due": dto.amount_due,
            "total_paid": dto.total_paid,
            "balance_due": dto.balance_due,
            "line_item_count": dto.line_item_count,
            "status": dto.status.value,
            "approved_at": dto.approved_at,
            "approved_by": dto.approved_by,
            "approval_notes": dto.approval_notes,
            "submitted_at": dto.submitted_at,
            "submitted_by": dto.submitted_by,
            "submission_method": dto.submission_method.value if dto.submission_method else None,
            "submission_reference": dto.submission_reference,
            "due_date": dto.due_date,
            "paid_in_full_at": dto.paid_in_full_at,
            "oracle_vendor_id": oracle.vendor_id,
            "oracle_vendor_number": oracle.vendor_number,
            "oracle_vendor_name": oracle.vendor_name,
            "oracle_vendor_site_id": oracle.vendor_site_id,
            "oracle_vendor_site_code": oracle.vendor_site_code,
            "oracle_business_unit": oracle.business_unit,
            "oracle_payment_terms": oracle.payment_terms,
            "oracle_po_number": oracle.po_number,
            "oracle_contract_number": oracle.contract_number,
            "oracle_project_number": oracle.project_number,
            "oracle_task_number": oracle.task_number,
            "oracle_expenditure_organization": oracle.expenditure_organization,
            "oracle_exported_at": oracle.exported_at,
            "oracle_exported_by": oracle.exported_by,
            "oracle_export_format": oracle.export_format.value if oracle.export_format else None,
            "oracle_export_status": oracle.export_status.value,
            "oracle_external_id": oracle.external_id,
        }

    @classmethod
    def from_dto(cls, dto: Claim, created_by_id: UUID) -> "ClaimModel":
        model = cls(
            id=dto.id,
            created_by_id=created_by_id,
            created_at=dto.created_at,
            updated_at=dto.created_at,
            **cls._columns(dto),
        )
        model.line_items = [ClaimLineItemModel.from_dto(li) for li in dto.line_items]
        model.adjustments = [
            ClaimAdjustmentModel.from_dto(a, i) for i, a in enumerate(dto.adjustments)
        ]
        model.payments = [ClaimPaymentModel.from_dto(p, i) for i, p in enumerate(dto.payments)]
        model.change_log = [
            ClaimChangeLogModel.from_dto(c, i) for i, c in enumerate(dto.change_log)
        ]
        return model

    def apply_dto(self, dto: Claim, updated_by_id: UUID) -> None:
        """Write header columns back and append new child rows."""
        for name, value in self._columns(dto).items():
            setattr(self, name, value)
        self.updated_by_id = updated_by_id

        known_adjustments = {a.id for a in self.adjustments}
        for a in dto.adjustments:
            if a.id not in known_adjustments:
                self.adjustments.append(ClaimAdjustmentModel.from_dto(a, len(self.adjustments)))

        known_payments = {p.id for p in self.payments}
        for p in dto.payments:
            if p.id not in known_payments:
                self.payments.append(ClaimPaymentModel.from_dto(p, len(self.payments)))

        for entry in dto.change_log[len(self.change_log):]:
            self.change_log.append(ClaimChangeLogModel.from_dto(entry, len(self.change_log)))

    def __repr__(self) -> str:
        return f"<ClaimModel {self.claim_number} [{self.status}] due={self.amount_due}>"


# ---------------------------------------------------------------------------
# 2. ClaimLineItemModel
# ---------------------------------------------------------------------------


class ClaimLineItemModel(Base):
    """
    ORM model for an immutable claim line snapshot.

    Guarantees:
        - (claim_id, line_number) unique.
        - unit_entry_id references the unit as it was when billed; the
          snapshot columns are never refreshed.
    """

    __tablename__ = "claim_line_items"

    __table_args__ = (
        UniqueConstraint("claim_id", "line_number", name="uq_claim_line_items_number"),
        Index("idx_claim_line_items_unit", "unit_entry_id"),
    )

    claim_id: Mapped[UUID] = mapped_column(
        ForeignKey("claims.id", ondelete="CASCADE"), nullable=False
    )
    unit_entry_id: Mapped[UUID] = mapped_column(nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(10), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    work_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    photo_count: Mapped[int] = mapped_column(Integer, default=0)
    has_gps: Mapped[bool] = mapped_column(Boolean, default=False)
    gps_accuracy: Mapped[Decimal | None] = mapped_column(nullable=True)
    gps_quality: Mapped[str] = mapped_column(String(10), default="none")
    performed_by_tier: Mapped[str] = mapped_column(String(20), default="prime")
    sub_contractor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    sub_contractor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    work_category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    oracle_expenditure_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_project_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    oracle_task_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    claim: Mapped[ClaimModel] = relationship(back_populates="line_items")

    def to_dto(self) -> ClaimLineItem:
        return ClaimLineItem(
            unit_entry_id=self.unit_entry_id,
            line_number=self.line_number,
            item_code=self.item_code,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            total_amount=self.total_amount,
            work_date=self.work_date,
            photo_count=self.photo_count,
            has_gps=self.has_gps,
            gps_accuracy=self.gps_accuracy,
            gps_quality=self.gps_quality,
            performed_by_tier=self.performed_by_tier,
            sub_contractor_id=self.sub_contractor_id,
            sub_contractor_name=self.sub_contractor_name,
            work_category=self.work_category,
            oracle_expenditure_type=self.oracle_expenditure_type,
            oracle_project_number=self.oracle_project_number,
            oracle_task_number=self.oracle_task_number,
        )

    @classmethod
    def from_dto(cls, dto: ClaimLineItem) -> "ClaimLineItemModel":
        return cls(
            unit_entry_id=dto.unit_entry_id,
            line_number=dto.line_number,
            item_code=dto.item_code,
            description=dto.description,
            quantity=dto.quantity,
            unit=dto.unit,
            unit_price=dto.unit_price,
            total_amount=dto.total_amount,
            work_date=dto.work_date,
            photo_count=dto.photo_count,
            has_gps=dto.has_gps,
            gps_accuracy=dto.gps_accuracy,
            gps_quality=dto.gps_quality,
            performed_by_tier=dto.performed_by_tier,
            sub_contractor_id=dto.sub_contractor_id,
            sub_contractor_name=dto.sub_contractor_name,
            work_category=dto.work_category,
            oracle_expenditure_type=dto.oracle_expenditure_type,
            oracle_project_number=dto.oracle_project_number,
            oracle_task_number=dto.oracle_task_number,
        )


# ---------------------------------------------------------------------------
# 3. ClaimAdjustmentModel
# ---------------------------------------------------------------------------


class ClaimAdjustmentModel(Base):
    """ORM model for a signed claim adjustment."""

    __tablename__ = "claim_adjustments"

    claim_id: Mapped[UUID] = mapped_column(
        ForeignKey("claims.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(30), default=AdjustmentCategory.OTHER.value)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    claim: Mapped[ClaimModel] = relationship(back_populates="adjustments")

    def to_dto(self) -> ClaimAdjustment:
        return ClaimAdjustment(
            id=self.id,
            description=self.description,
            amount=self.amount,
            reason=self.reason,
            category=AdjustmentCategory(self.category),
            created_by=self.created_by,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: ClaimAdjustment, sequence: int) -> "ClaimAdjustmentModel":
        return cls(
            id=dto.id,
            sequence=sequence,
            description=dto.description,
            amount=dto.amount,
            reason=dto.reason,
            category=dto.category.value,
            created_by=dto.created_by,
            created_at=dto.created_at,
        )


# ---------------------------------------------------------------------------
# 4. ClaimPaymentModel
# ---------------------------------------------------------------------------


class ClaimPaymentModel(Base):
    """ORM model for a payment received against a claim."""

    __tablename__ = "claim_payments"

    __table_args__ = (
        Index("idx_claim_payments_claim", "claim_id"),
    )

    claim_id: Mapped[UUID] = mapped_column(
        ForeignKey("claims.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), default=PaymentMethod.ACH.value)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[UUID] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    claim: Mapped[ClaimModel] = relationship(back_populates="payments")

    def to_dto(self) -> Payment:
        return Payment(
            id=self.id,
            amount=self.amount,
            payment_date=self.payment_date,
            payment_method=PaymentMethod(self.payment_method),
            reference_number=self.reference_number,
            notes=self.notes,
            recorded_by=self.recorded_by,
            recorded_at=self.recorded_at,
        )

    @classmethod
    def from_dto(cls, dto: Payment, sequence: int) -> "ClaimPaymentModel":
        return cls(
            id=dto.id,
            sequence=sequence,
            amount=dto.amount,
            payment_date=dto.payment_date,
            payment_method=dto.payment_method.value,
            reference_number=dto.reference_number,
            notes=dto.notes,
            recorded_by=dto.recorded_by,
            recorded_at=dto.recorded_at,
        )


# ---------------------------------------------------------------------------
# 5. ClaimChangeLogModel
# ---------------------------------------------------------------------------


class ClaimChangeLogModel(Base):
    """ORM model for one append-only change log row."""

    __tablename__ = "claim_change_log"

    __table_args__ = (
        UniqueConstraint("claim_id", "sequence", name="uq_claim_change_log_sequence"),
    )

    claim_id: Mapped[UUID] = mapped_column(
        ForeignKey("claims.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    claim: Mapped[ClaimModel] = relationship(back_populates="change_log")

    def to_dto(self) -> ChangeLogEntry:
        return ChangeLogEntry(
            action=self.action,
            timestamp=self.timestamp,
            actor_id=self.actor_id,
            details=self.details,
            previous_status=self.previous_status,
            new_status=self.new_status,
        )

    @classmethod
    def from_dto(cls, dto: ChangeLogEntry, sequence: int) -> "ClaimChangeLogModel":
        return cls(
            sequence=sequence,
            action=dto.action,
            timestamp=dto.timestamp,
            actor_id=dto.actor_id,
            details=dto.details,
            previous_status=dto.previous_status,
            new_status=dto.new_status,
        )
