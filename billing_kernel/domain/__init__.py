"""
Pure domain layer.

Frozen records, status workflows and money helpers with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (a Clock is injected)
- I/O
"""

from billing_kernel.domain.actor import Actor, Role
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Actor",
    "Clock",
    "DeterministicClock",
    "Guard",
    "Role",
    "SystemClock",
    "Transition",
    "Workflow",
]
