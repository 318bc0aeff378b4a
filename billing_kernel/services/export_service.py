"""
ExportService -- renders claims for the ERP and stamps the export.

Responsibility:
    Calls the pure renderers in ``billing_engines.erp_export`` and records
    on each exported claim who exported it, when and in which format, plus
    a change-log entry.

Architecture position:
    Kernel > Services -- imperative shell.  Rendering is pure; this module
    only loads, stamps and commits.

Invariants enforced:
    - Renderers read the stored claim totals; nothing is re-derived here.
    - Every export, including a re-export, updates ``oracle.exported_at``
      and appends a change-log entry.
    - Bulk FBDI includes only claims in ``approved`` or ``submitted``.

Failure modes:
    - ClaimNotFoundError: unknown id or another company's claim.
    - ValidationError: bulk export with no exportable claim.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select

from billing_engines.erp_export import (
    BULK_EXPORTABLE_STATUSES,
    render_bulk_fbdi,
    render_fbdi,
    to_csv,
    to_fbdi,
    to_oracle_payload,
)
from billing_kernel.domain.actor import CLAIM_MANAGER_ROLES, Actor
from billing_kernel.domain.claim import Claim, ExportFormat, ExportStatus
from billing_kernel.exceptions import ValidationError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.claim import ClaimModel
from billing_kernel.services.base import BaseService
from billing_kernel.services.claim_service import load_claim_model

logger = get_logger("services.export")

_LOG_ACTIONS: dict[ExportFormat, str] = {
    ExportFormat.JSON: "oracle_export",
    ExportFormat.CSV: "csv_export",
    ExportFormat.FBDI: "oracle_export_fbdi",
    ExportFormat.FBDI_BULK: "oracle_bulk_export",
}


@dataclass(frozen=True)
class ExportArtifact:
    """A rendered export and the file name it should be saved under."""
    filename: str
    content_type: str
    body: str


@dataclass(frozen=True)
class BulkExportResult:
    artifact: ExportArtifact
    claim_numbers: tuple[str, ...]
    skipped: tuple[str, ...]
    total_lines: int


class ExportService(BaseService):
    """ERP exports of claims."""

    def export_json(self, company_id: UUID, claim_id: UUID, actor: Actor) -> dict[str, Any]:
        """Oracle Payables invoice payload."""
        _, payload = self._export_one(
            company_id,
            claim_id,
            actor,
            ExportFormat.JSON,
            lambda c: to_oracle_payload(c, self._config.oracle),
        )
        return payload

    def export_csv(self, company_id: UUID, claim_id: UUID, actor: Actor) -> ExportArtifact:
        claim, body = self._export_one(company_id, claim_id, actor, ExportFormat.CSV, to_csv)
        return ExportArtifact(
            filename=f"{claim.claim_number}.csv", content_type="text/csv", body=body
        )

    def export_fbdi(self, company_id: UUID, claim_id: UUID, actor: Actor) -> ExportArtifact:
        claim, body = self._export_one(
            company_id,
            claim_id,
            actor,
            ExportFormat.FBDI,
            lambda c: render_fbdi(to_fbdi(c, self._config.oracle)),
        )
        return ExportArtifact(
            filename=f"{claim.claim_number}_FBDI.csv", content_type="text/csv", body=body
        )

    def export_fbdi_bulk(
        self, company_id: UUID, claim_ids: Sequence[UUID], actor: Actor
    ) -> BulkExportResult:
        """
        One FBDI file for several claims.

        Claims outside ``approved``/``submitted`` are skipped and reported.

        Raises:
            ValidationError: no requested claim is exportable.
        """
        actor.require(CLAIM_MANAGER_ROLES, "export_fbdi_bulk")
        ids = list(dict.fromkeys(claim_ids or ()))
        if not ids:
            raise ValidationError("claim_ids must not be empty", field="claim_ids")

        try:
            rows = self._session.execute(
                select(ClaimModel)
                .where(ClaimModel.company_id == company_id)
                .where(ClaimModel.id.in_(ids))
                .order_by(ClaimModel.claim_number)
            ).scalars().all()
            exportable = [m for m in rows if m.status in BULK_EXPORTABLE_STATUSES]
            skipped = tuple(m.claim_number for m in rows if m.status not in BULK_EXPORTABLE_STATUSES)
            if not exportable:
                raise ValidationError(
                    "No approved or submitted claims to export", field="claim_ids"
                )

            now = self._clock.now()
            claims = [m.to_dto() for m in exportable]
            body = render_bulk_fbdi([to_fbdi(c, self._config.oracle) for c in claims], now)
            for model, claim in zip(exportable, claims):
                model.apply_dto(
                    self._stamp(claim, actor, now, ExportFormat.FBDI_BULK, f"{len(claims)} claims"),
                    updated_by_id=actor.id,
                )
            self._commit()
        except Exception:
            self._session.rollback()
            raise

        total_lines = sum(len(c.line_items) for c in claims)
        logger.info(
            "claims_bulk_exported",
            extra={
                "format": ExportFormat.FBDI_BULK.value,
                "claim_count": len(claims),
                "skipped": list(skipped),
                "total_lines": total_lines,
            },
        )
        return BulkExportResult(
            artifact=ExportArtifact(
                filename=f"FBDI_BULK_{now.strftime('%Y%m%d%H%M%S')}.csv",
                content_type="text/csv",
                body=body,
            ),
            claim_numbers=tuple(c.claim_number for c in claims),
            skipped=skipped,
            total_lines=total_lines,
        )

    # -------------------------------------------------------------------------

    def _export_one(self, company_id, claim_id, actor: Actor, fmt: ExportFormat, render):
        actor.require(CLAIM_MANAGER_ROLES, f"export_{fmt.value}")
        with LogContext.bind(company_id=company_id, claim_id=claim_id, actor_id=actor.id):
            try:
                model = load_claim_model(self._session, company_id, claim_id)
                claim = model.to_dto()
                body = render(claim)
                stamped = self._stamp(claim, actor, self._clock.now(), fmt)
                model.apply_dto(stamped, updated_by_id=actor.id)
                self._commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "claim_exported",
                extra={
                    "claim_number": claim.claim_number,
                    "format": fmt.value,
                    "line_count": len(claim.line_items),
                    "amount_due": str(claim.amount_due),
                    "reexport": claim.oracle.exported_at is not None,
                },
            )
            return stamped, body

    @staticmethod
    def _stamp(
        claim: Claim, actor: Actor, now: datetime, fmt: ExportFormat, details: str | None = None
    ) -> Claim:
        oracle = replace(
            claim.oracle,
            exported_at=now,
            exported_by=actor.id,
            export_format=fmt,
            export_status=ExportStatus.EXPORTED,
        )
        return replace(claim, oracle=oracle).with_log(
            _LOG_ACTIONS[fmt], now, actor.id, details=details or f"Exported as {fmt.value}"
        )
