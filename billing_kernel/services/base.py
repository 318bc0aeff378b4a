"""
BaseService -- common constructor for billing services.

Responsibility:
    Holds the SQLAlchemy ``Session``, the injected ``Clock`` and the active
    ``BillingConfig`` that every concrete service needs, and the shared
    commit helper.

Architecture position:
    Kernel > Services -- imperative shell.  Every service in
    ``billing_kernel/services/`` extends this class.

Invariants enforced:
    - Each public mutating method owns its transaction boundary: commit on
      success, rollback and re-raise on any exception.
    - Time comes only from the injected clock.
"""

from abc import ABC

from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for billing services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller.  ``clock`` defaults
        to ``SystemClock``; ``config`` defaults to ``get_active_config()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> BillingConfig:
        return self._config

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
