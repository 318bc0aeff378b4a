"""
ERP Export Engine.

Pure functions with deterministic behavior. No I/O.

Renders a claim's current computed state into the shapes an ERP import
expects.  Totals are read from the claim as stored -- never re-derived
here -- so an export always matches what the claim says it is worth.

Formats:
- Oracle Payables invoice payload (``to_oracle_payload``; JSON-ready dict)
- Line-item CSV (``to_csv``)
- FBDI two-table file: AP_INVOICES_INTERFACE header row plus
  AP_INVOICE_LINES_INTERFACE line rows (``to_fbdi`` / ``render_fbdi``)
- Bulk FBDI: several claims under one column schema (``render_bulk_fbdi``)

Header and line schemas are separate column arrays so that either table can
gain columns without touching the other.

Usage:
    from billing_engines.erp_export import render_fbdi, to_csv, to_fbdi

    csv_text = to_csv(claim)
    fbdi_text = render_fbdi(to_fbdi(claim, defaults))
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Sequence

from billing_config.schema import OracleDefaults
from billing_kernel.domain.claim import Claim, ClaimLineItem
from billing_kernel.domain.money import fixed2, plain

# ============================================================================
# Constants
# ============================================================================

CSV_COLUMNS: tuple[str, ...] = (
    "Line#",
    "ItemCode",
    "Description",
    "Quantity",
    "Unit",
    "UnitPrice",
    "TotalAmount",
    "WorkDate",
    "PhotoCount",
    "HasGPS",
    "Tier",
    "SubContractor",
    "WorkCategory",
)

FBDI_HEADER_COLUMNS: tuple[str, ...] = (
    "INVOICE_NUM",
    "VENDOR_NUM",
    "VENDOR_SITE_CODE",
    "INVOICE_AMOUNT",
    "INVOICE_DATE",
    "INVOICE_TYPE_LOOKUP_CODE",
    "SOURCE",
    "ORG_ID",
    "DESCRIPTION",
    "TERMS_NAME",
    "GL_DATE",
    "INVOICE_CURRENCY_CODE",
    "EXCHANGE_RATE",
    "EXCHANGE_RATE_TYPE",
    "EXCHANGE_DATE",
    "PO_NUMBER",
    "ATTRIBUTE1",
    "ATTRIBUTE2",
    "ATTRIBUTE3",
    "ATTRIBUTE4",
    "ATTRIBUTE_CATEGORY",
)

FBDI_LINE_COLUMNS: tuple[str, ...] = (
    "INVOICE_NUM",
    "LINE_NUMBER",
    "LINE_TYPE_LOOKUP_CODE",
    "AMOUNT",
    "QUANTITY_INVOICED",
    "UNIT_PRICE",
    "DESCRIPTION",
    "DIST_CODE_COMBINATION_ID",
    "PROJECT_ID",
    "TASK_ID",
    "EXPENDITURE_TYPE",
    "EXPENDITURE_ITEM_DATE",
    "EXPENDITURE_ORGANIZATION_ID",
    "LINE_ATTRIBUTE1",
    "LINE_ATTRIBUTE2",
    "LINE_ATTRIBUTE3",
    "LINE_ATTRIBUTE4",
    "LINE_ATTRIBUTE5",
    "LINE_ATTRIBUTE6",
    "LINE_ATTRIBUTE_CATEGORY",
)

FBDI_HEADER_SECTION = "# AP_INVOICES_INTERFACE - Invoice Headers"
FBDI_LINE_SECTION = "# AP_INVOICE_LINES_INTERFACE - Invoice Lines"

INVOICE_TYPE = "Standard"
LINE_TYPE = "Item"
HEADER_ATTRIBUTE_CATEGORY = "CONTRACTOR_INVOICE"
LINE_ATTRIBUTE_CATEGORY = "UNIT_PRICE_ITEM"

BULK_EXPORTABLE_STATUSES: frozenset[str] = frozenset({"approved", "submitted"})

_ITEM_DESCRIPTION_MAX = 240


# ============================================================================
# Shared helpers
# ============================================================================


def _iso(d: date | datetime | None) -> str:
    if d is None:
        return ""
    if isinstance(d, datetime):
        d = d.date()
    return d.isoformat()


def iso_timestamp(ts: datetime) -> str:
    """``2024-01-01T12:00:00.000Z`` -- millisecond UTC timestamp."""
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def item_description(li: ClaimLineItem) -> str:
    return f"{li.item_code}: {li.description}"[:_ITEM_DESCRIPTION_MAX]


def _yn(flag: bool) -> str:
    return "Y" if flag else "N"


def digital_receipt_hash(line_items: Sequence[ClaimLineItem]) -> str:
    """SHA-256 over the billed line-item snapshot.

    Lets the ERP side prove the lines it imported are the lines that were
    verified in the field.
    """
    canonical = json.dumps(
        [
            {
                "unit_entry_id": str(li.unit_entry_id),
                "line_number": li.line_number,
                "item_code": li.item_code,
                "quantity": plain(li.quantity),
                "unit_price": fixed2(li.unit_price),
                "total_amount": fixed2(li.total_amount),
                "work_date": _iso(li.work_date),
            }
            for li in line_items
        ],
        sort_keys=True,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


# ============================================================================
# Oracle Payables payload
# ============================================================================


def to_oracle_payload(claim: Claim, defaults: OracleDefaults) -> dict[str, Any]:
    """Oracle Fusion Payables invoice payload for ``claim``."""
    oracle = claim.oracle
    invoice_date = _iso(claim.invoice_date)
    description = (
        f"Unit Price Claim: {claim.claim_number} | Job: {claim.job_number or 'N/A'} | "
        f"Period: {_iso(claim.period_start) or 'N/A'} to {_iso(claim.period_end) or 'N/A'}"
    )

    lines = [
        {
            "LineNumber": li.line_number or idx,
            "LineType": LINE_TYPE,
            "ItemDescription": item_description(li),
            "Quantity": plain(li.quantity),
            "UnitOfMeasure": li.unit or defaults.unit_of_measure,
            "UnitPrice": fixed2(li.unit_price),
            "Amount": fixed2(li.total_amount),
            "ProjectNumber": li.oracle_project_number or oracle.project_number,
            "TaskNumber": li.oracle_task_number or oracle.task_number,
            "ExpenditureType": li.oracle_expenditure_type or defaults.expenditure_type,
            "ExpenditureItemDate": _iso(li.work_date) or invoice_date,
            "ExpenditureOrganization": oracle.expenditure_organization,
            "LineAttributeCategory": LINE_ATTRIBUTE_CATEGORY,
            "LineAttribute1": li.item_code,
            "LineAttribute2": str(li.unit_entry_id),
            "LineAttribute3": li.performed_by_tier or "prime",
            "LineAttribute4": li.sub_contractor_name or "",
            "LineAttribute5": li.work_category or "electrical",
            "LineAttribute6": _yn(li.has_photo),
            "LineAttribute7": _yn(li.has_gps),
            "LineAttribute8": _iso(li.work_date),
        }
        for idx, li in enumerate(claim.line_items, start=1)
    ]

    return {
        "InvoiceNumber": claim.claim_number,
        "InvoiceAmount": fixed2(claim.amount_due),
        "InvoiceCurrencyCode": defaults.currency,
        "InvoiceDate": invoice_date,
        "InvoiceType": INVOICE_TYPE,
        "InvoiceSource": defaults.invoice_source,
        "VendorNumber": oracle.vendor_number,
        "VendorId": oracle.vendor_id,
        "VendorName": oracle.vendor_name,
        "VendorSiteCode": oracle.vendor_site_code,
        "VendorSiteId": oracle.vendor_site_id,
        "BusinessUnit": oracle.business_unit or defaults.business_unit,
        "PaymentTerms": oracle.payment_terms or defaults.payment_terms,
        "TermsDate": invoice_date,
        "GlDate": invoice_date,
        "PurchaseOrderNumber": oracle.po_number,
        "ContractNumber": oracle.contract_number,
        "Description": description,
        "AttributeCategory": HEADER_ATTRIBUTE_CATEGORY,
        "Attribute1": claim.job_number,
        "Attribute2": oracle.contract_number,
        "Attribute3": claim.claim_number,
        "Attribute4": digital_receipt_hash(claim.line_items),
        "invoiceLines": lines,
    }


# ============================================================================
# CSV
# ============================================================================


def _quote_always(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def to_csv(claim: Claim) -> str:
    """Line-item CSV; description always quoted, money to two places."""
    rows = [",".join(CSV_COLUMNS)]
    for li in claim.line_items:
        rows.append(
            ",".join(
                (
                    str(li.line_number),
                    li.item_code,
                    _quote_always(li.description),
                    plain(li.quantity),
                    li.unit,
                    fixed2(li.unit_price),
                    fixed2(li.total_amount),
                    _iso(li.work_date),
                    str(li.photo_count or 0),
                    "Yes" if li.has_gps else "No",
                    li.performed_by_tier or "prime",
                    li.sub_contractor_name or "",
                    li.work_category or "",
                )
            )
        )
    return "\n".join(rows)


# ============================================================================
# FBDI
# ============================================================================


@dataclass(frozen=True)
class FbdiDocument:
    """One claim in FBDI form: a header row and its line rows."""
    header: tuple[str, ...]
    lines: tuple[tuple[str, ...], ...]
    header_columns: tuple[str, ...] = FBDI_HEADER_COLUMNS
    line_columns: tuple[str, ...] = FBDI_LINE_COLUMNS


def to_fbdi(claim: Claim, defaults: OracleDefaults) -> FbdiDocument:
    oracle = claim.oracle
    invoice_date = _iso(claim.invoice_date)

    header = (
        claim.claim_number,
        oracle.vendor_number or "",
        oracle.vendor_site_code or "",
        fixed2(claim.amount_due),
        invoice_date,
        INVOICE_TYPE,
        defaults.invoice_source,
        oracle.business_unit or defaults.business_unit,
        f"Unit Price Claim {claim.claim_number}",
        oracle.payment_terms or defaults.payment_terms,
        invoice_date,
        defaults.currency,
        "",
        "",
        "",
        oracle.po_number or "",
        claim.job_number or "",
        oracle.contract_number or "",
        claim.claim_number,
        digital_receipt_hash(claim.line_items),
        HEADER_ATTRIBUTE_CATEGORY,
    )

    lines = tuple(
        (
            claim.claim_number,
            str(li.line_number or idx),
            LINE_TYPE,
            fixed2(li.total_amount),
            plain(li.quantity),
            fixed2(li.unit_price),
            item_description(li),
            "",
            li.oracle_project_number or oracle.project_number or "",
            li.oracle_task_number or oracle.task_number or "",
            li.oracle_expenditure_type or defaults.expenditure_type,
            _iso(li.work_date) or invoice_date,
            oracle.expenditure_organization or "",
            li.item_code,
            li.performed_by_tier or "prime",
            li.sub_contractor_name or "",
            li.work_category or "",
            _yn(li.has_photo),
            _yn(li.has_gps),
            LINE_ATTRIBUTE_CATEGORY,
        )
        for idx, li in enumerate(claim.line_items, start=1)
    )
    return FbdiDocument(header=header, lines=lines)


def _fbdi_cell(value: str) -> str:
    return f'"{value}"' if "," in value else value


def _fbdi_row(row: Sequence[str]) -> str:
    return ",".join(_fbdi_cell(v) for v in row)


def render_fbdi(doc: FbdiDocument) -> str:
    """Single-claim FBDI file: header table, blank line, line table."""
    return "\n".join(
        [
            FBDI_HEADER_SECTION,
            ",".join(doc.header_columns),
            _fbdi_row(doc.header),
            "",
            FBDI_LINE_SECTION,
            ",".join(doc.line_columns),
            *(_fbdi_row(row) for row in doc.lines),
        ]
    )


def render_bulk_fbdi(docs: Sequence[FbdiDocument], exported_at: datetime) -> str:
    """Several claims under one header schema and one line schema.

    The column arrays of the first document are used for all of them.
    """
    if not docs:
        raise ValueError("bulk FBDI export needs at least one claim")
    header_columns = docs[0].header_columns
    line_columns = docs[0].line_columns
    all_lines = [row for doc in docs for row in doc.lines]
    return "\n".join(
        [
            FBDI_HEADER_SECTION,
            f"# Exported: {iso_timestamp(exported_at)}",
            f"# Claims: {len(docs)}",
            ",".join(header_columns),
            *(_fbdi_row(doc.header) for doc in docs),
            "",
            FBDI_LINE_SECTION,
            f"# Total Lines: {len(all_lines)}",
            ",".join(line_columns),
            *(_fbdi_row(row) for row in all_lines),
        ]
    )
