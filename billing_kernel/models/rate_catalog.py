"""
Rate catalog ORM models (``billing_kernel.models.rate_catalog``).

Maps ``RateCatalog`` / ``RateItem`` frozen dataclasses to the
``rate_catalogs`` and ``rate_items`` tables.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, TrackedBase
from billing_kernel.domain.rate_catalog import (
    CatalogStatus,
    RateCatalog,
    RateCategory,
    RateItem,
)


class RateCatalogModel(TrackedBase):
    """
    ORM model for a price book version.

    Guarantees:
        - status stored as string enum value.
        - items loaded eagerly (selectin) and deleted with the catalog.
    """

    __tablename__ = "rate_catalogs"

    __table_args__ = (
        Index("idx_rate_catalogs_scope_status", "company_id", "utility_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    utility_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1)
    contract_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=CatalogStatus.DRAFT.value)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    supersedes_id: Mapped[UUID | None] = mapped_column(nullable=True)
    superseded_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    activated_by: Mapped[UUID | None] = mapped_column(nullable=True)

    items: Mapped[list["RateItemModel"]] = relationship(
        back_populates="catalog",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RateItemModel.item_code",
    )

    def to_dto(self) -> RateCatalog:
        return RateCatalog(
            id=self.id,
            company_id=self.company_id,
            utility_id=self.utility_id,
            name=self.name,
            version=self.version,
            contract_number=self.contract_number,
            status=CatalogStatus(self.status),
            effective_date=self.effective_date,
            expiration_date=self.expiration_date,
            supersedes_id=self.supersedes_id,
            superseded_by_id=self.superseded_by_id,
            activated_at=self.activated_at,
            activated_by=self.activated_by,
            items=tuple(item.to_dto() for item in self.items),
        )

    @classmethod
    def from_dto(cls, dto: RateCatalog, created_by_id: UUID) -> "RateCatalogModel":
        model = cls(
            id=dto.id,
            company_id=dto.company_id,
            utility_id=dto.utility_id,
            name=dto.name,
            version=dto.version,
            contract_number=dto.contract_number,
            status=dto.status.value,
            effective_date=dto.effective_date,
            expiration_date=dto.expiration_date,
            supersedes_id=dto.supersedes_id,
            superseded_by_id=dto.superseded_by_id,
            activated_at=dto.activated_at,
            activated_by=dto.activated_by,
            created_by_id=created_by_id,
        )
        model.items = [RateItemModel.from_dto(item) for item in dto.items]
        return model

    def __repr__(self) -> str:
        return f"<RateCatalogModel {self.name} v{self.version} [{self.status}]>"


class RateItemModel(Base):
    """ORM model for one unit-priced item of a catalog."""

    __tablename__ = "rate_items"

    __table_args__ = (
        Index("idx_rate_items_catalog_code", "catalog_id", "item_code"),
    )

    catalog_id: Mapped[UUID] = mapped_column(
        ForeignKey("rate_catalogs.id", ondelete="CASCADE"), nullable=False
    )
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    short_description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit: Mapped[str] = mapped_column(String(10), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    labor_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    material_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    requires_photo: Mapped[bool] = mapped_column(Boolean, default=True)
    requires_gps: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    min_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    oracle_expenditure_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    catalog: Mapped[RateCatalogModel] = relationship(back_populates="items")

    def to_dto(self) -> RateItem:
        return RateItem(
            id=self.id,
            item_code=self.item_code,
            description=self.description,
            short_description=self.short_description,
            category=RateCategory(self.category),
            subcategory=self.subcategory,
            unit=self.unit,
            unit_price=self.unit_price,
            labor_rate=self.labor_rate,
            material_rate=self.material_rate,
            requires_photo=self.requires_photo,
            requires_gps=self.requires_gps,
            is_active=self.is_active,
            effective_date=self.effective_date,
            expiration_date=self.expiration_date,
            min_quantity=self.min_quantity,
            max_quantity=self.max_quantity,
            oracle_expenditure_type=self.oracle_expenditure_type,
        )

    @classmethod
    def from_dto(cls, dto: RateItem) -> "RateItemModel":
        return cls(
            id=dto.id,
            item_code=dto.item_code,
            description=dto.description,
            short_description=dto.short_description,
            category=dto.category.value,
            subcategory=dto.subcategory,
            unit=dto.unit,
            unit_price=dto.unit_price,
            labor_rate=dto.labor_rate,
            material_rate=dto.material_rate,
            requires_photo=dto.requires_photo,
            requires_gps=dto.requires_gps,
            is_active=dto.is_active,
            effective_date=dto.effective_date,
            expiration_date=dto.expiration_date,
            min_quantity=dto.min_quantity,
            max_quantity=dto.max_quantity,
            oracle_expenditure_type=dto.oracle_expenditure_type,
        )
