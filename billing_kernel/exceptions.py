"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing errors reach three audiences: the field app that must tell a crew
what to fix, the PM console that must explain why a claim was refused, and
the logs. Each exception therefore carries:

  1. A TYPED class (catch by type, never by message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA (entity id, current status, requested transition)

Example:
    try:
        aggregator.create_claim(company_id, unit_ids, actor)
    except IneligibleUnitsError as e:
        api_response(code=e.code, missing=e.missing_ids)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- ValidationError
    +-- AuthorizationError
    |
    +-- NotFoundError
    |   +-- CatalogNotFoundError
    |   +-- UnitEntryNotFoundError
    |   +-- ClaimNotFoundError
    |
    +-- RateNotFoundError
    +-- TransitionError
    +-- IneligibleUnitsError
    +-- ClaimNumberCollisionError
    +-- PaymentError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                      | When Raised
--------------------------|------------------------------------------------
VALIDATION_ERROR          | Missing/invalid required field
AUTHORIZATION_ERROR       | Actor role may not perform the action
CATALOG_NOT_FOUND         | Rate catalog id does not exist
UNIT_ENTRY_NOT_FOUND      | Unit entry id does not exist for the company
CLAIM_NOT_FOUND           | Claim id does not exist for the company
RATE_NOT_FOUND            | No active rate item for company/utility/code
INVALID_TRANSITION        | Status change not in the transition table
INELIGIBLE_UNITS          | Claim creation matched fewer units than requested
CLAIM_NUMBER_COLLISION    | Claim number retries exhausted (transient)
PAYMENT_ERROR             | Non-positive amount or unpayable claim
"""

from __future__ import annotations

from typing import Any, Sequence


class BillingKernelError(Exception):
    """Base exception for all billing kernel errors."""

    code: str = "BILLING_KERNEL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Validation / authorization
# =============================================================================


class ValidationError(BillingKernelError):
    """A required field is missing or a value is out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message)


class AuthorizationError(BillingKernelError):
    """The actor's role does not permit the requested action."""

    code: str = "AUTHORIZATION_ERROR"

    def __init__(self, actor_id: Any, role: str, action: str, allowed_roles: Sequence[str]):
        self.actor_id = str(actor_id)
        self.role = role
        self.action = action
        self.allowed_roles = sorted(allowed_roles)
        super().__init__(
            f"Role '{role}' may not {action}; "
            f"requires one of: {', '.join(self.allowed_roles)}"
        )


# =============================================================================
# Lookup errors
# =============================================================================


class NotFoundError(BillingKernelError):
    """Base for missing entities."""

    code: str = "NOT_FOUND"
    entity: str = "entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity} not found: {entity_id}")


class CatalogNotFoundError(NotFoundError):
    code: str = "CATALOG_NOT_FOUND"
    entity: str = "Rate catalog"


class UnitEntryNotFoundError(NotFoundError):
    code: str = "UNIT_ENTRY_NOT_FOUND"
    entity: str = "Unit entry"


class ClaimNotFoundError(NotFoundError):
    code: str = "CLAIM_NOT_FOUND"
    entity: str = "Claim"


class RateNotFoundError(BillingKernelError):
    """No active rate item matches company/utility/item code.

    Terminal for entry creation: the kernel never defaults a price.
    """

    code: str = "RATE_NOT_FOUND"

    def __init__(self, company_id: Any, utility_id: Any, item_code: str, reason: str = ""):
        self.company_id = str(company_id)
        self.utility_id = str(utility_id) if utility_id is not None else None
        self.item_code = item_code
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"No active rate for item '{item_code}' "
            f"(company={company_id}, utility={utility_id}){detail}"
        )


# =============================================================================
# State machine
# =============================================================================


class TransitionError(BillingKernelError):
    """Requested status change is not an edge of the entity's transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        current_status: str,
        requested_status: str,
        action: str,
        expected: Sequence[str] = (),
    ):
        self.entity = entity
        self.entity_id = str(entity_id)
        self.current_status = current_status
        self.requested_status = requested_status
        self.action = action
        self.expected = list(expected)
        expected_txt = (
            f" (expected status: {', '.join(self.expected)})" if self.expected else ""
        )
        super().__init__(
            f"Cannot {action} {entity} {entity_id}: "
            f"{current_status} -> {requested_status} is not allowed{expected_txt}"
        )


# =============================================================================
# Aggregation
# =============================================================================


class IneligibleUnitsError(BillingKernelError):
    """Claim creation matched fewer eligible units than requested.

    The whole operation is aborted; no claim is left behind and no unit
    is mutated.
    """

    code: str = "INELIGIBLE_UNITS"

    def __init__(self, requested: int, found: int, missing_ids: Sequence[Any] = ()):
        self.requested = requested
        self.found = found
        self.missing_ids = [str(m) for m in missing_ids]
        super().__init__(
            f"Some units are not eligible for billing: "
            f"requested {requested}, eligible {found}"
        )


class ClaimNumberCollisionError(BillingKernelError):
    """Claim number generation kept colliding.

    Transient: callers may retry the whole operation.
    """

    code: str = "CLAIM_NUMBER_COLLISION"

    def __init__(self, attempts: int, last_number: str):
        self.attempts = attempts
        self.last_number = last_number
        super().__init__(
            f"Could not allocate a unique claim number after {attempts} attempts "
            f"(last tried {last_number})"
        )


# =============================================================================
# Payments
# =============================================================================


class PaymentError(BillingKernelError):
    """Payment rejected (non-positive amount or claim not payable)."""

    code: str = "PAYMENT_ERROR"

    def __init__(self, message: str, claim_id: Any = None, amount: Any = None):
        self.claim_id = str(claim_id) if claim_id is not None else None
        self.amount = str(amount) if amount is not None else None
        super().__init__(message)
