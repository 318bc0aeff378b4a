"""
RateCatalogService -- versioned price books and rate resolution.

Responsibility:
    Owns the rate catalog lifecycle (create, activate with supersession,
    archive, delete) and ``resolve_active_rate``, the lookup every unit
    entry uses to lock its price.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ``UnitEntryService``
    at entry creation time.

Invariants enforced:
    - At most one ``active`` catalog per (company, utility): activation
      supersedes the prior active catalog in the same transaction and links
      both directions (``supersedes_id`` / ``superseded_by_id``).
    - No default price: resolution failures are terminal
      (``RateNotFoundError``).
    - Catalog status moves only along ``CATALOG_WORKFLOW``.

Failure modes:
    - CatalogNotFoundError: unknown id or another company's catalog.
    - TransitionError: activating a non-draft catalog, deleting a non-draft.
    - ValidationError: activating an empty catalog.
    - AuthorizationError: activation/archival by a role outside pm/admin.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.actor import Actor
from billing_kernel.domain.rate_catalog import (
    CATALOG_WORKFLOW,
    CatalogStatus,
    RateCatalog,
    RateItem,
)
from billing_kernel.exceptions import (
    CatalogNotFoundError,
    RateNotFoundError,
    TransitionError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.rate_catalog import RateCatalogModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.rate_catalog")


class RateCatalogService(BaseService):
    """
    Service for price book versions.

    Contract:
        Every mutating method commits on success and rolls back on failure.
    """

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_active_rate(
        self,
        company_id: UUID,
        utility_id: UUID | None,
        item_code: str,
        as_of: date | None = None,
    ) -> RateItem:
        """
        Resolve the rate item for ``item_code`` in effect on ``as_of``.

        A catalog matches when it is active and its effective window covers
        ``as_of``; when several match, the latest ``effective_date`` wins.

        Raises:
            RateNotFoundError: No active catalog, or no active effective item.
        """
        return self.resolve_catalog_item(company_id, utility_id, item_code, as_of)[1]

    def resolve_catalog_item(
        self,
        company_id: UUID,
        utility_id: UUID | None,
        item_code: str,
        as_of: date | None = None,
    ) -> tuple[RateCatalog, RateItem]:
        """
        Like ``resolve_active_rate`` but also returns the owning catalog.

        Returns:
            The matching catalog and item.

        Raises:
            RateNotFoundError: No active catalog, or no active effective item.
        """
        as_of = as_of or self._clock.today()
        if utility_id is None:
            raise RateNotFoundError(company_id, None, item_code, reason="no utility")

        catalog = self._find_effective_catalog(company_id, utility_id, as_of)
        if catalog is None:
            logger.warning(
                "rate_not_found",
                extra={
                    "company_id": str(company_id),
                    "utility_id": str(utility_id),
                    "item_code": item_code,
                    "reason": "no_active_catalog",
                },
            )
            raise RateNotFoundError(
                company_id, utility_id, item_code, reason="no active rate catalog"
            )

        item = catalog.find_item(item_code, as_of)
        if item is None:
            logger.warning(
                "rate_not_found",
                extra={
                    "company_id": str(company_id),
                    "catalog_id": str(catalog.id),
                    "item_code": item_code,
                    "reason": "no_active_item",
                },
            )
            raise RateNotFoundError(
                company_id, utility_id, item_code, reason=f"not in catalog {catalog.name}"
            )

        logger.debug(
            "rate_resolved",
            extra={
                "catalog_id": str(catalog.id),
                "item_code": item.item_code,
                "unit_price": str(item.unit_price),
            },
        )
        return catalog, item

    def _find_effective_catalog(
        self, company_id: UUID, utility_id: UUID, as_of: date
    ) -> RateCatalog | None:
        rows = self._session.execute(
            select(RateCatalogModel)
            .where(RateCatalogModel.company_id == company_id)
            .where(RateCatalogModel.utility_id == utility_id)
            .where(RateCatalogModel.status == CatalogStatus.ACTIVE.value)
            .order_by(RateCatalogModel.effective_date.desc())
        ).scalars().all()
        for row in rows:
            catalog = row.to_dto()
            if catalog.is_effective(as_of):
                return catalog
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_catalog(self, catalog: RateCatalog, actor: Actor) -> RateCatalog:
        """Persist ``catalog`` as a new draft version."""
        actor.require(CATALOG_WORKFLOW.roles_for("activate"), "create_catalog")
        try:
            draft = replace(catalog, status=CatalogStatus.DRAFT, activated_at=None, activated_by=None)
            codes = [item.item_code.upper() for item in draft.items]
            if len(codes) != len(set(codes)):
                raise ValidationError("Duplicate item codes in catalog", field="items")

            model = RateCatalogModel.from_dto(draft, created_by_id=actor.id)
            model.created_at = self._clock.now()
            model.updated_at = model.created_at
            self._session.add(model)
            self._commit()
            logger.info(
                "rate_catalog_created",
                extra={
                    "catalog_id": str(draft.id),
                    "company_id": str(draft.company_id),
                    "utility_id": str(draft.utility_id),
                    "item_count": draft.item_count,
                    "version": draft.version,
                },
            )
            return model.to_dto()
        except Exception:
            self._session.rollback()
            raise

    def activate_catalog(self, company_id: UUID, catalog_id: UUID, actor: Actor) -> RateCatalog:
        """
        Activate a draft catalog, superseding the current active one.

        Postconditions:
            - Exactly one active catalog for the (company, utility).
            - Prior active catalog is ``superseded`` with
              ``superseded_by_id`` pointing at the new one.
        """
        try:
            model = self._get_model(company_id, catalog_id)
            catalog = model.to_dto()
            edge = CATALOG_WORKFLOW.apply(
                catalog.id,
                catalog.status.value,
                "activate",
                role=actor.role.value,
                actor_id=actor.id,
            )
            if not catalog.items:
                raise ValidationError(
                    "Rate catalog must have at least one rate item", field="items"
                )

            now = self._clock.now()
            prior = self._session.execute(
                select(RateCatalogModel)
                .where(RateCatalogModel.company_id == company_id)
                .where(RateCatalogModel.utility_id == catalog.utility_id)
                .where(RateCatalogModel.status == CatalogStatus.ACTIVE.value)
                .where(RateCatalogModel.id != catalog.id)
            ).scalars().all()
            for old in prior:
                old_edge = CATALOG_WORKFLOW.apply(old.id, old.status, "supersede")
                old.status = old_edge.to_state
                old.superseded_by_id = catalog.id
                old.updated_by_id = actor.id
                model.supersedes_id = old.id

            model.status = edge.to_state
            model.activated_at = now
            model.activated_by = actor.id
            model.updated_by_id = actor.id
            self._commit()

            logger.info(
                "rate_catalog_activated",
                extra={
                    "catalog_id": str(catalog.id),
                    "company_id": str(company_id),
                    "superseded": [str(old.id) for old in prior],
                },
            )
            return model.to_dto()
        except Exception:
            self._session.rollback()
            raise

    def archive_catalog(self, company_id: UUID, catalog_id: UUID, actor: Actor) -> RateCatalog:
        try:
            model = self._get_model(company_id, catalog_id)
            edge = CATALOG_WORKFLOW.apply(
                model.id, model.status, "archive", role=actor.role.value, actor_id=actor.id
            )
            model.status = edge.to_state
            model.updated_by_id = actor.id
            self._commit()
            logger.info(
                "rate_catalog_archived",
                extra={"catalog_id": str(model.id), "from_status": edge.from_state},
            )
            return model.to_dto()
        except Exception:
            self._session.rollback()
            raise

    def delete_catalog(self, company_id: UUID, catalog_id: UUID, actor: Actor) -> None:
        """Hard-delete a draft catalog. Active ones are archived instead."""
        actor.require(CATALOG_WORKFLOW.roles_for("archive"), "delete_catalog")
        try:
            model = self._get_model(company_id, catalog_id)
            if model.status != CatalogStatus.DRAFT.value:
                raise TransitionError(
                    entity="rate_catalog",
                    entity_id=model.id,
                    current_status=model.status,
                    requested_status="deleted",
                    action="delete",
                    expected=(CatalogStatus.DRAFT.value,),
                )
            self._session.delete(model)
            self._commit()
            logger.info("rate_catalog_deleted", extra={"catalog_id": str(catalog_id)})
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_catalog(self, company_id: UUID, catalog_id: UUID) -> RateCatalog:
        return self._get_model(company_id, catalog_id).to_dto()

    def list_catalogs(
        self,
        company_id: UUID,
        utility_id: UUID | None = None,
        status: CatalogStatus | None = None,
    ) -> list[RateCatalog]:
        stmt = select(RateCatalogModel).where(RateCatalogModel.company_id == company_id)
        if utility_id is not None:
            stmt = stmt.where(RateCatalogModel.utility_id == utility_id)
        if status is not None:
            stmt = stmt.where(RateCatalogModel.status == status.value)
        stmt = stmt.order_by(RateCatalogModel.effective_date.desc(), RateCatalogModel.version.desc())
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def _get_model(self, company_id: UUID, catalog_id: UUID) -> RateCatalogModel:
        model = self._session.get(RateCatalogModel, catalog_id)
        if model is None or model.company_id != company_id:
            raise CatalogNotFoundError(catalog_id)
        return model
