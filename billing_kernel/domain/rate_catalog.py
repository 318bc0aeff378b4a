"""
Rate catalog value objects (``billing_kernel.domain.rate_catalog``).

Responsibility
--------------
Frozen records for versioned contract price books: ``RateItem`` (one
unit-priced item) and ``RateCatalog`` (a version of the book for one
company and utility), the catalog lifecycle workflow, and the pure
effective-date checks used by rate resolution.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.  Consumed
by ``RateCatalogService`` and ``UnitEntryService``.

Invariants enforced
-------------------
* All rate fields are ``Decimal`` and non-negative.
* Catalog status changes only along ``CATALOG_WORKFLOW``.
* At most one ``active`` catalog per (company, utility) -- enforced by the
  service at activation time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from billing_kernel.domain.workflow import Transition, Workflow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RateCategory(str, Enum):
    CIVIL = "civil"
    ELECTRICAL = "electrical"
    OVERHEAD = "overhead"
    UNDERGROUND = "underground"
    TRAFFIC_CONTROL = "traffic_control"
    VEGETATION = "vegetation"
    EMERGENCY = "emergency"
    OTHER = "other"


class CatalogStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ARCHIVED = "archived"


_MANAGERS = frozenset({"pm", "admin"})

CATALOG_WORKFLOW = Workflow(
    name="rate_catalog",
    description="Price book version lifecycle",
    initial_state=CatalogStatus.DRAFT.value,
    states=tuple(s.value for s in CatalogStatus),
    transitions=(
        Transition("draft", "active", action="activate", allowed_roles=_MANAGERS),
        Transition("active", "superseded", action="supersede"),
        Transition("active", "archived", action="archive", allowed_roles=_MANAGERS),
        Transition("superseded", "archived", action="archive", allowed_roles=_MANAGERS),
        Transition("draft", "archived", action="archive", allowed_roles=_MANAGERS),
    ),
    terminal_states=("archived",),
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def _in_window(as_of: date, start: date | None, end: date | None) -> bool:
    if start is not None and as_of < start:
        return False
    if end is not None and as_of > end:
        return False
    return True


@dataclass(frozen=True)
class RateItem:
    """One unit-priced item of a price book."""
    item_code: str
    description: str
    category: RateCategory
    unit: str
    unit_price: Decimal
    short_description: str | None = None
    subcategory: str | None = None
    labor_rate: Decimal | None = None
    material_rate: Decimal | None = None
    requires_photo: bool = True
    requires_gps: bool = True
    is_active: bool = True
    effective_date: date | None = None
    expiration_date: date | None = None
    min_quantity: Decimal | None = None
    max_quantity: Decimal | None = None
    oracle_expenditure_type: str | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if not self.item_code or not self.item_code.strip():
            raise ValueError("item_code is required")
        if self.unit_price < Decimal("0"):
            raise ValueError(f"unit_price cannot be negative: {self.unit_price}")
        for name in ("labor_rate", "material_rate"):
            value = getattr(self, name)
            if value is not None and value < Decimal("0"):
                raise ValueError(f"{name} cannot be negative: {value}")
        if (
            self.min_quantity is not None
            and self.max_quantity is not None
            and self.min_quantity > self.max_quantity
        ):
            raise ValueError(
                f"min_quantity ({self.min_quantity}) exceeds max_quantity ({self.max_quantity})"
            )

    def is_effective(self, as_of: date) -> bool:
        """Active and inside its own effective window on ``as_of``."""
        return self.is_active and _in_window(as_of, self.effective_date, self.expiration_date)


@dataclass(frozen=True)
class RateCatalog:
    """A versioned price book for one (company, utility)."""
    company_id: UUID
    utility_id: UUID
    name: str
    effective_date: date
    items: tuple[RateItem, ...] = ()
    version: int = 1
    status: CatalogStatus = CatalogStatus.DRAFT
    contract_number: str | None = None
    expiration_date: date | None = None
    supersedes_id: UUID | None = None
    superseded_by_id: UUID | None = None
    activated_at: datetime | None = None
    activated_by: UUID | None = None
    id: UUID = field(default_factory=uuid4)

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def category_breakdown(self) -> dict[str, int]:
        breakdown: dict[str, int] = {}
        for item in self.items:
            key = item.category.value
            breakdown[key] = breakdown.get(key, 0) + 1
        return breakdown

    def is_effective(self, as_of: date) -> bool:
        """Active and ``effective_date <= as_of <= expiration_date|inf``."""
        return self.status == CatalogStatus.ACTIVE and _in_window(
            as_of, self.effective_date, self.expiration_date
        )

    def find_item(self, item_code: str, as_of: date) -> RateItem | None:
        """Return the effective item for ``item_code`` (case-insensitive), if any."""
        wanted = item_code.strip().upper()
        for item in self.items:
            if item.item_code.upper() == wanted and item.is_effective(as_of):
                return item
        return None
