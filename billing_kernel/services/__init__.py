"""
billing_kernel.services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure domain and engines with a
    database session, an injected clock and the active configuration.
    This is the only layer that holds sessions.

Architecture position:
    Kernel > Services -- imperative shell.

    Dependency direction:
        services -> billing_engines, billing_kernel.domain, models  (allowed)
        billing_engines -> services                                  (FORBIDDEN)
        billing_kernel.domain -> services                            (FORBIDDEN)
"""

from billing_kernel.services.base import BaseService
from billing_kernel.services.claim_aggregator import AggregationPlan, ClaimAggregator
from billing_kernel.services.claim_service import ClaimService, PastDueClaim
from billing_kernel.services.dispute_resolver import DisputeResolver, ResolutionAction
from billing_kernel.services.export_service import (
    BulkExportResult,
    ExportArtifact,
    ExportService,
)
from billing_kernel.services.payment_ledger import PaymentLedger
from billing_kernel.services.rate_catalog_service import RateCatalogService
from billing_kernel.services.unit_entry_service import (
    BatchResult,
    UnbilledSummary,
    UnitEntryRequest,
    UnitEntryService,
)

__all__ = [
    "AggregationPlan",
    "BaseService",
    "BatchResult",
    "BulkExportResult",
    "ClaimAggregator",
    "ClaimService",
    "DisputeResolver",
    "ExportArtifact",
    "ExportService",
    "PastDueClaim",
    "PaymentLedger",
    "RateCatalogService",
    "ResolutionAction",
    "UnbilledSummary",
    "UnitEntryRequest",
    "UnitEntryService",
]
