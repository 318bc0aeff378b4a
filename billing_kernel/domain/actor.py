"""
Actor identity and role gates (``billing_kernel.domain.actor``).

Every mutating operation receives an ``Actor``.  Role gates are enforced
inside the kernel, not delegated to the transport layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable
from uuid import UUID

from billing_kernel.exceptions import AuthorizationError


class Role(str, Enum):
    """Field and office roles."""

    CREW = "crew"
    FOREMAN = "foreman"
    GF = "gf"  # general foreman
    QA = "qa"
    PM = "pm"
    ADMIN = "admin"


# Role gates
VERIFY_ROLES: frozenset[str] = frozenset({"gf", "qa", "pm", "admin"})
APPROVE_ROLES: frozenset[str] = frozenset({"pm", "admin"})
RESOLVE_DISPUTE_ROLES: frozenset[str] = frozenset({"pm", "gf", "admin"})
CLAIM_MANAGER_ROLES: frozenset[str] = frozenset({"pm", "admin"})


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a kernel operation."""

    id: UUID
    role: Role
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def require(self, allowed: Iterable[str], action: str) -> None:
        """Raise ``AuthorizationError`` unless this actor's role is allowed."""
        allowed = frozenset(allowed)
        if self.role.value not in allowed:
            raise AuthorizationError(
                actor_id=self.id,
                role=self.role.value,
                action=action,
                allowed_roles=allowed,
            )
