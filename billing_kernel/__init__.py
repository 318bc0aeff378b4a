"""
Billing Kernel - unit-price billing reconciliation and claim lifecycle.

- Rate locking against versioned contract catalogs
- Evidence-gated unit verification state machine
- All-or-nothing claim aggregation with two-phase persistence
- Payment settlement and dispute resolution with audit history
"""

__version__ = "0.1.0"
