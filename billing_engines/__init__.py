"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: claim financial derivation and ERP export
    rendering.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import billing_kernel.domain and billing_config.schema.
    MUST NOT import billing_kernel.services or billing_kernel.models.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Timestamps are passed in by the calling service.
    - Decimal-only arithmetic: all monetary amounts use ``Decimal``.
    - Determinism: identical inputs always produce identical outputs.
"""

from billing_engines.claim_financials import (
    ClaimTotals,
    VerificationMetrics,
    category_totals,
    days_past_due,
    derive_totals,
    rate_amount,
    recompute,
    subtotal_of,
    tier_totals,
    verification_metrics,
)
from billing_engines.erp_export import (
    FbdiDocument,
    render_bulk_fbdi,
    render_fbdi,
    to_csv,
    to_fbdi,
    to_oracle_payload,
)

__all__ = [
    "ClaimTotals",
    "FbdiDocument",
    "VerificationMetrics",
    "category_totals",
    "days_past_due",
    "derive_totals",
    "rate_amount",
    "recompute",
    "render_bulk_fbdi",
    "render_fbdi",
    "subtotal_of",
    "tier_totals",
    "to_csv",
    "to_fbdi",
    "to_oracle_payload",
    "verification_metrics",
]
