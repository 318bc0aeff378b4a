"""
Billing Configuration Schema (``billing_config.schema``).

Responsibility
--------------
Frozen dataclasses for every tunable of the billing engine: evidence
thresholds for auto-submission and GPS grading, claim numbering and due
dates, batch limits, and the Oracle Payables export defaults.  Default
values match the production configuration set.

Architecture position
---------------------
**Config layer** -- schema only.  Built by ``billing_config.loader`` and
handed out by ``billing_config.get_active_config()``; services receive an
instance by constructor injection.

Invariants enforced
-------------------
* Thresholds are ``Decimal`` (never ``float``) and non-negative.
* ``gps_high_accuracy_below < gps_medium_accuracy_below``.
* Attempt and batch limits are positive.

Failure modes
-------------
* ``ValueError`` at construction if any constraint is violated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from billing_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class EvidencePolicy:
    """Evidence gates applied when a unit entry is recorded.

    Contract: accuracies are metres, lower is better.
    """
    auto_submit_max_accuracy: Decimal = Decimal("100")
    gps_high_accuracy_below: Decimal = Decimal("10")
    gps_medium_accuracy_below: Decimal = Decimal("50")
    batch_limit: int = 50

    def __post_init__(self) -> None:
        for name in (
            "auto_submit_max_accuracy",
            "gps_high_accuracy_below",
            "gps_medium_accuracy_below",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.gps_high_accuracy_below >= self.gps_medium_accuracy_below:
            raise ValueError(
                "gps_high_accuracy_below must be below gps_medium_accuracy_below"
            )
        if self.batch_limit < 1:
            raise ValueError("batch_limit must be at least 1")
        logger.debug(
            "evidence_policy_initialized",
            extra={
                "auto_submit_max_accuracy": str(self.auto_submit_max_accuracy),
                "batch_limit": self.batch_limit,
            },
        )


@dataclass(frozen=True)
class ClaimPolicy:
    """Claim numbering and billing terms."""
    number_prefix: str = "CLM"
    number_max_attempts: int = 5
    due_days: int = 30

    def __post_init__(self) -> None:
        if not self.number_prefix or not self.number_prefix.strip():
            raise ValueError("number_prefix cannot be empty")
        if self.number_max_attempts < 1:
            raise ValueError("number_max_attempts must be at least 1")
        if self.due_days < 0:
            raise ValueError("due_days cannot be negative")


@dataclass(frozen=True)
class OracleDefaults:
    """Fallbacks used when a claim carries no ERP-side value of its own."""
    business_unit: str = "PG&E"
    payment_terms: str = "Net 30"
    expenditure_type: str = "Contract Labor"
    invoice_source: str = "FieldLedger"
    currency: str = "USD"
    unit_of_measure: str = "EA"

    def __post_init__(self) -> None:
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code: {self.currency!r}")


@dataclass(frozen=True)
class BillingConfig:
    """
    Configuration schema for the billing engine.

    Override at instantiation for tests or tenants:

        config = BillingConfig(
            evidence=EvidencePolicy(auto_submit_max_accuracy=Decimal("50")),
        )
    """
    name: str = "default"
    version: int = 1
    checksum: str = ""
    evidence: EvidencePolicy = field(default_factory=EvidencePolicy)
    claims: ClaimPolicy = field(default_factory=ClaimPolicy)
    oracle: OracleDefaults = field(default_factory=OracleDefaults)
