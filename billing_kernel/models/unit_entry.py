"""
Unit entry ORM model (``billing_kernel.models.unit_entry``).

Responsibility
--------------
Maps the ``UnitEntry`` frozen dataclass to the ``unit_entries`` table.
Location and performed-by are flattened into columns; photos and quantity
adjustments are small append-only lists kept as JSON documents.

Architecture position
---------------------
**Kernel persistence layer**.  Imports from ``billing_kernel.db.base`` and
``billing_kernel.domain``.  The conditional bulk update that links units to
a claim targets this table directly (``ClaimAggregator``).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import MoneyAmount, TrackedBase
from billing_kernel.domain.unit_entry import (
    DisputeCategory,
    GeoLocation,
    GpsQuality,
    PerformedBy,
    Photo,
    PhotoType,
    QuantityAdjustment,
    Tier,
    UnitEntry,
    UnitStatus,
    WorkCategory,
)


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def photo_to_json(photo: Photo) -> dict[str, Any]:
    return {
        "url": photo.url,
        "key": photo.key,
        "file_name": photo.file_name,
        "captured_at": photo.captured_at.isoformat() if photo.captured_at else None,
        "photo_type": photo.photo_type.value,
        "latitude": _str(photo.latitude),
        "longitude": _str(photo.longitude),
    }


def photo_from_json(data: dict[str, Any]) -> Photo:
    return Photo(
        url=data["url"],
        key=data.get("key"),
        file_name=data.get("file_name"),
        captured_at=_ts(data.get("captured_at")),
        photo_type=PhotoType(data.get("photo_type", PhotoType.DURING.value)),
        latitude=_dec(data.get("latitude")),
        longitude=_dec(data.get("longitude")),
    )


def adjustment_to_json(adj: QuantityAdjustment) -> dict[str, Any]:
    return {
        "adjusted_at": adj.adjusted_at.isoformat(),
        "adjusted_by": str(adj.adjusted_by),
        "reason": adj.reason,
        "original_quantity": str(adj.original_quantity),
        "new_quantity": str(adj.new_quantity),
        "original_total": str(adj.original_total),
        "new_total": str(adj.new_total),
    }


def adjustment_from_json(data: dict[str, Any]) -> QuantityAdjustment:
    return QuantityAdjustment(
        adjusted_at=datetime.fromisoformat(data["adjusted_at"]),
        adjusted_by=UUID(data["adjusted_by"]),
        reason=data["reason"],
        original_quantity=Decimal(data["original_quantity"]),
        new_quantity=Decimal(data["new_quantity"]),
        original_total=Decimal(data["original_total"]),
        new_total=Decimal(data["new_total"]),
    )


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class UnitEntryModel(TrackedBase):
    """
    ORM model for a unit ledger entry (digital receipt).

    Guarantees:
        - status / previous_status stored as string enum values.
        - rate snapshot columns (item_code, unit, unit_price, category) are
          written at creation and never refreshed from the catalog.
        - claim_id indexed; the unbilled query and the claim-link update
          both filter on (company_id, status, claim_id, is_deleted).
    """

    __tablename__ = "unit_entries"

    __table_args__ = (
        Index("idx_unit_entries_billable", "company_id", "status", "claim_id", "is_deleted"),
        Index("idx_unit_entries_job", "job_id"),
        Index("idx_unit_entries_claim", "claim_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    utility_id: Mapped[UUID | None] = mapped_column(nullable=True)
    job_id: Mapped[UUID] = mapped_column(nullable=False)
    catalog_id: Mapped[UUID] = mapped_column(nullable=False)
    rate_item_id: Mapped[UUID] = mapped_column(nullable=False)

    # Rate snapshot
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit: Mapped[str] = mapped_column(String(10), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    oracle_expenditure_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Location
    latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    gps_accuracy: Mapped[Decimal | None] = mapped_column(nullable=True)
    altitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    location_captured_at: Mapped[datetime | None] = mapped_column(nullable=True)
    location_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    gps_quality: Mapped[str] = mapped_column(String(10), default=GpsQuality.NONE.value)

    # Evidence
    photos: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    photo_waived: Mapped[bool] = mapped_column(Boolean, default=False)
    photo_waived_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Performed by
    tier: Mapped[str] = mapped_column(String(20), default=Tier.PRIME.value)
    work_category: Mapped[str] = mapped_column(String(30), default=WorkCategory.ELECTRICAL.value)
    sub_contractor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    sub_contractor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    crew_size: Mapped[int] = mapped_column(Integer, default=1)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Workflow
    status: Mapped[str] = mapped_column(String(20), default=UnitStatus.DRAFT.value)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    claim_id: Mapped[UUID | None] = mapped_column(ForeignKey("claims.id"), nullable=True)

    entered_by: Mapped[UUID] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verified_by: Mapped[UUID | None] = mapped_column(nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by: Mapped[UUID | None] = mapped_column(nullable=True)

    # Dispute
    is_disputed: Mapped[bool] = mapped_column(Boolean, default=False)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_category: Mapped[str | None] = mapped_column(String(20), nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    disputed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    dispute_resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dispute_resolved_by: Mapped[UUID | None] = mapped_column(nullable=True)

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    delete_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    adjustments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    def to_dto(self) -> UnitEntry:
        return UnitEntry(
            id=self.id,
            company_id=self.company_id,
            utility_id=self.utility_id,
            job_id=self.job_id,
            catalog_id=self.catalog_id,
            rate_item_id=self.rate_item_id,
            item_code=self.item_code,
            description=self.description,
            category=self.category,
            subcategory=self.subcategory,
            unit=self.unit,
            unit_price=self.unit_price,
            oracle_expenditure_type=self.oracle_expenditure_type,
            quantity=self.quantity,
            total_amount=self.total_amount,
            work_date=self.work_date,
            location=GeoLocation(
                latitude=self.latitude,
                longitude=self.longitude,
                accuracy=self.gps_accuracy,
                altitude=self.altitude,
                captured_at=self.location_captured_at,
                description=self.location_description,
            ),
            gps_quality=GpsQuality(self.gps_quality),
            photos=tuple(photo_from_json(p) for p in self.photos or ()),
            photo_waived=self.photo_waived,
            photo_waived_reason=self.photo_waived_reason,
            performed_by=PerformedBy(
                tier=Tier(self.tier),
                work_category=WorkCategory(self.work_category),
                sub_contractor_id=self.sub_contractor_id,
                sub_contractor_name=self.sub_contractor_name,
                crew_size=self.crew_size,
            ),
            notes=self.notes,
            status=UnitStatus(self.status),
            previous_status=UnitStatus(self.previous_status) if self.previous_status else None,
            claim_id=self.claim_id,
            entered_by=self.entered_by,
            submitted_at=self.submitted_at,
            submitted_by=self.submitted_by,
            verified_at=self.verified_at,
            verified_by=self.verified_by,
            verification_notes=self.verification_notes,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            paid_at=self.paid_at,
            paid_by=self.paid_by,
            is_disputed=self.is_disputed,
            dispute_reason=self.dispute_reason,
            dispute_category=(
                DisputeCategory(self.dispute_category) if self.dispute_category else None
            ),
            disputed_at=self.disputed_at,
            disputed_by=self.disputed_by,
            dispute_resolution=self.dispute_resolution,
            dispute_resolved_at=self.dispute_resolved_at,
            dispute_resolved_by=self.dispute_resolved_by,
            is_deleted=self.is_deleted,
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
            delete_reason=self.delete_reason,
            adjustments=tuple(adjustment_from_json(a) for a in self.adjustments or ()),
        )

    @staticmethod
    def _columns(dto: UnitEntry) -> dict[str, Any]:
        return {
            "company_id": dto.company_id,
            "utility_id": dto.utility_id,
            "job_id": dto.job_id,
            "catalog_id": dto.catalog_id,
            "rate_item_id": dto.rate_item_id,
            "item_code": dto.item_code,
            "description": dto.description,
            "category": dto.category,
            "subcategory": dto.subcategory,
            "unit": dto.unit,
            "unit_price": dto.unit_price,
            "oracle_expenditure_type": dto.oracle_expenditure_type,
            "quantity": dto.quantity,
            "total_amount": dto.total_amount,
            "work_date": dto.work_date,
            "latitude": dto.location.latitude,
            "longitude": dto.location.longitude,
            "gps_accuracy": dto.location.accuracy,
            "altitude": dto.location.altitude,
            "location_captured_at": dto.location.captured_at,
            "location_description": dto.location.description,
            "gps_quality": dto.gps_quality.value,
            "photos": [photo_to_json(p) for p in dto.photos],
            "photo_waived": dto.photo_waived,
            "photo_waived_reason": dto.photo_waived_reason,
            "tier": dto.performed_by.tier.value,
            "work_category": dto.performed_by.work_category.value,
            "sub_contractor_id": dto.performed_by.sub_contractor_id,
            "sub_contractor_name": dto.performed_by.sub_contractor_name,
            "crew_size": dto.performed_by.crew_size,
            "notes": dto.notes,
            "status": dto.status.value,
            "previous_status": dto.previous_status.value if dto.previous_status else None,
            "claim_id": dto.claim_id,
            "entered_by": dto.entered_by,
            "submitted_at": dto.submitted_at,
            "submitted_by": dto.submitted_by,
            "verified_at": dto.verified_at,
            "verified_by": dto.verified_by,
            "verification_notes": dto.verification_notes,
            "approved_at": dto.approved_at,
            "approved_by": dto.approved_by,
            "paid_at": dto.paid_at,
            "paid_by": dto.paid_by,
            "is_disputed": dto.is_disputed,
            "dispute_reason": dto.dispute_reason,
            "dispute_category": dto.dispute_category.value if dto.dispute_category else None,
            "disputed_at": dto.disputed_at,
            "disputed_by": dto.disputed_by,
            "dispute_resolution": dto.dispute_resolution,
            "dispute_resolved_at": dto.dispute_resolved_at,
            "dispute_resolved_by": dto.dispute_resolved_by,
            "is_deleted": dto.is_deleted,
            "deleted_at": dto.deleted_at,
            "deleted_by": dto.deleted_by,
            "delete_reason": dto.delete_reason,
            "adjustments": [adjustment_to_json(a) for a in dto.adjustments],
        }

    @classmethod
    def from_dto(
        cls,
        dto: UnitEntry,
        created_by_id: UUID,
        created_at: datetime | None = None,
    ) -> "UnitEntryModel":
        model = cls(id=dto.id, created_by_id=created_by_id, **cls._columns(dto))
        if created_at is not None:
            model.created_at = created_at
            model.updated_at = created_at
        return model

    def apply_dto(self, dto: UnitEntry, updated_by_id: UUID) -> None:
        """Write every column of ``dto`` back onto this row."""
        for name, value in self._columns(dto).items():
            setattr(self, name, value)
        self.updated_by_id = updated_by_id

    def __repr__(self) -> str:
        return f"<UnitEntryModel {self.item_code} x{self.quantity} [{self.status}]>"
