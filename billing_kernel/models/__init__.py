"""SQLAlchemy ORM models. Importing this package registers every table on ``Base.metadata``."""

from billing_kernel.models.claim import (
    ClaimAdjustmentModel,
    ClaimChangeLogModel,
    ClaimLineItemModel,
    ClaimModel,
    ClaimPaymentModel,
)
from billing_kernel.models.rate_catalog import RateCatalogModel, RateItemModel
from billing_kernel.models.unit_entry import UnitEntryModel

__all__ = [
    "ClaimAdjustmentModel",
    "ClaimChangeLogModel",
    "ClaimLineItemModel",
    "ClaimModel",
    "ClaimPaymentModel",
    "RateCatalogModel",
    "RateItemModel",
    "UnitEntryModel",
]
