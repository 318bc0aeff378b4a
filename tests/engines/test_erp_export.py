"""
Tests for the ERP Export Engine.

Exports are compared byte for byte: the ERP import side is unforgiving
about column order, quoting and number formatting.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from billing_config.schema import OracleDefaults
from billing_engines.claim_financials import recompute
from billing_engines.erp_export import (
    CSV_COLUMNS,
    FBDI_HEADER_COLUMNS,
    FBDI_HEADER_SECTION,
    FBDI_LINE_COLUMNS,
    FBDI_LINE_SECTION,
    digital_receipt_hash,
    iso_timestamp,
    item_description,
    render_bulk_fbdi,
    render_fbdi,
    to_csv,
    to_fbdi,
    to_oracle_payload,
)
from billing_kernel.domain.claim import Claim, ClaimLineItem, OracleExportState

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
UNIT_1 = UUID("11111111-1111-4111-8111-111111111111")
UNIT_2 = UUID("22222222-2222-4222-8222-222222222222")
NUMBER = "CLM-2024-00001-042"


@pytest.fixture
def defaults():
    return OracleDefaults()


@pytest.fixture
def claim():
    lines = (
        ClaimLineItem(
            unit_entry_id=UNIT_1,
            line_number=1,
            item_code="POLE-SET",
            description="Set distribution pole",
            quantity=Decimal("200.000000000"),
            unit="EA",
            unit_price=Decimal("25.000000000"),
            total_amount=Decimal("5000.000000000"),
            work_date=date(2024, 3, 14),
            photo_count=2,
            has_gps=True,
            gps_quality="high",
            performed_by_tier="prime",
            work_category="electrical",
        ),
        ClaimLineItem(
            unit_entry_id=UNIT_2,
            line_number=2,
            item_code="TC-DAY",
            description='Traffic control, "flagger" crew',
            quantity=Decimal("1.5"),
            unit="DAY",
            unit_price=Decimal("850"),
            total_amount=Decimal("1275"),
            work_date=date(2024, 3, 13),
            photo_count=0,
            has_gps=False,
            performed_by_tier="sub",
            sub_contractor_name="Acme Flagging, LLC",
            work_category="traffic_control",
            oracle_expenditure_type="Traffic Control",
        ),
    )
    return recompute(
        Claim(
            company_id=UUID("33333333-3333-4333-8333-333333333333"),
            claim_number=NUMBER,
            created_by=UUID("44444444-4444-4444-8444-444444444444"),
            created_at=NOW,
            line_items=lines,
            job_number="J-100",
            period_start=date(2024, 3, 1),
            period_end=date(2024, 3, 14),
            subtotal=Decimal("6275.00"),
            retention_rate=Decimal("0.10"),
            retention_amount=Decimal("627.50"),
            oracle=OracleExportState(
                vendor_id="300000001",
                vendor_number="V1001",
                vendor_name="Bright Line Electric",
                vendor_site_code="MAIN",
                po_number="PO-7788",
                contract_number="MSA-2024",
                project_number="P-55",
                task_number="T-1",
            ),
        )
    )


class TestCsv:

    def test_exact_output(self, claim):
        assert to_csv(claim) == "\n".join(
            [
                "Line#,ItemCode,Description,Quantity,Unit,UnitPrice,TotalAmount,WorkDate,"
                "PhotoCount,HasGPS,Tier,SubContractor,WorkCategory",
                '1,POLE-SET,"Set distribution pole",200,EA,25.00,5000.00,2024-03-14,2,Yes,prime,,electrical',
                '2,TC-DAY,"Traffic control, ""flagger"" crew",1.5,DAY,850.00,1275.00,2024-03-13,'
                "0,No,sub,Acme Flagging, LLC,traffic_control",
            ]
        )

    def test_header_only_for_empty_claim(self, claim):
        assert to_csv(replace(claim, line_items=())) == ",".join(CSV_COLUMNS)


class TestFbdi:

    def test_exact_output(self, claim, defaults):
        receipt = digital_receipt_hash(claim.line_items)
        text = render_fbdi(to_fbdi(claim, defaults))

        assert text.split("\n") == [
            FBDI_HEADER_SECTION,
            ",".join(FBDI_HEADER_COLUMNS),
            f"{NUMBER},V1001,MAIN,5647.50,2024-03-15,Standard,FieldLedger,PG&E,"
            f"Unit Price Claim {NUMBER},Net 30,2024-03-15,USD,,,,PO-7788,J-100,MSA-2024,"
            f"{NUMBER},{receipt},CONTRACTOR_INVOICE",
            "",
            FBDI_LINE_SECTION,
            ",".join(FBDI_LINE_COLUMNS),
            f"{NUMBER},1,Item,5000.00,200,25.00,POLE-SET: Set distribution pole,,P-55,T-1,"
            "Contract Labor,2024-03-14,,POLE-SET,prime,,electrical,Y,Y,UNIT_PRICE_ITEM",
            f'{NUMBER},2,Item,1275.00,1.5,850.00,"TC-DAY: Traffic control, "flagger" crew",,P-55,T-1,'
            'Traffic Control,2024-03-13,,TC-DAY,sub,"Acme Flagging, LLC",traffic_control,N,N,'
            "UNIT_PRICE_ITEM",
        ]

    def test_row_widths_match_columns(self, claim, defaults):
        doc = to_fbdi(claim, defaults)
        assert len(doc.header) == len(FBDI_HEADER_COLUMNS)
        assert all(len(row) == len(FBDI_LINE_COLUMNS) for row in doc.lines)

    def test_claim_values_override_defaults(self, claim, defaults):
        custom = replace(
            claim, oracle=replace(claim.oracle, business_unit="SCE", payment_terms="Net 45")
        )
        doc = to_fbdi(custom, defaults)
        assert doc.header[FBDI_HEADER_COLUMNS.index("ORG_ID")] == "SCE"
        assert doc.header[FBDI_HEADER_COLUMNS.index("TERMS_NAME")] == "Net 45"

    def test_bulk_output(self, claim, defaults):
        second = replace(claim, claim_number="CLM-2024-00002-007", line_items=claim.line_items[:1])
        docs = [to_fbdi(claim, defaults), to_fbdi(second, defaults)]

        lines = render_bulk_fbdi(docs, NOW).split("\n")

        assert lines[0] == FBDI_HEADER_SECTION
        assert lines[1] == "# Exported: 2024-03-15T12:00:00.000Z"
        assert lines[2] == "# Claims: 2"
        assert lines[3] == ",".join(FBDI_HEADER_COLUMNS)
        assert lines[4].startswith(f"{NUMBER},")
        assert lines[5].startswith("CLM-2024-00002-007,")
        assert lines[6] == ""
        assert lines[7] == FBDI_LINE_SECTION
        assert lines[8] == "# Total Lines: 3"
        assert lines[9] == ",".join(FBDI_LINE_COLUMNS)
        assert len(lines) == 13

    def test_bulk_needs_a_claim(self):
        with pytest.raises(ValueError):
            render_bulk_fbdi([], NOW)


class TestOraclePayload:

    def test_header(self, claim, defaults):
        payload = to_oracle_payload(claim, defaults)
        assert payload["InvoiceNumber"] == NUMBER
        assert payload["InvoiceAmount"] == "5647.50"
        assert payload["InvoiceCurrencyCode"] == "USD"
        assert payload["InvoiceDate"] == "2024-03-15"
        assert payload["InvoiceType"] == "Standard"
        assert payload["InvoiceSource"] == "FieldLedger"
        assert payload["VendorNumber"] == "V1001"
        assert payload["BusinessUnit"] == "PG&E"
        assert payload["PaymentTerms"] == "Net 30"
        assert payload["PurchaseOrderNumber"] == "PO-7788"
        assert payload["Description"] == (
            f"Unit Price Claim: {NUMBER} | Job: J-100 | Period: 2024-03-01 to 2024-03-14"
        )
        assert payload["AttributeCategory"] == "CONTRACTOR_INVOICE"
        assert payload["Attribute3"] == NUMBER

    def test_lines(self, claim, defaults):
        first, second = to_oracle_payload(claim, defaults)["invoiceLines"]
        assert first == {
            "LineNumber": 1,
            "LineType": "Item",
            "ItemDescription": "POLE-SET: Set distribution pole",
            "Quantity": "200",
            "UnitOfMeasure": "EA",
            "UnitPrice": "25.00",
            "Amount": "5000.00",
            "ProjectNumber": "P-55",
            "TaskNumber": "T-1",
            "ExpenditureType": "Contract Labor",
            "ExpenditureItemDate": "2024-03-14",
            "ExpenditureOrganization": None,
            "LineAttributeCategory": "UNIT_PRICE_ITEM",
            "LineAttribute1": "POLE-SET",
            "LineAttribute2": str(UNIT_1),
            "LineAttribute3": "prime",
            "LineAttribute4": "",
            "LineAttribute5": "electrical",
            "LineAttribute6": "Y",
            "LineAttribute7": "Y",
            "LineAttribute8": "2024-03-14",
        }
        assert second["ExpenditureType"] == "Traffic Control"
        assert second["LineAttribute4"] == "Acme Flagging, LLC"
        assert second["Quantity"] == "1.5"

    def test_amount_reads_stored_totals(self, claim, defaults):
        """The payload trusts amount_due as stored, even if stale."""
        stale = replace(claim, amount_due=Decimal("1.00"))
        assert to_oracle_payload(stale, defaults)["InvoiceAmount"] == "1.00"


class TestHelpers:

    def test_item_description_truncated(self, claim):
        long = replace(claim.line_items[0], description="x" * 300)
        assert len(item_description(long)) == 240

    def test_iso_timestamp_is_utc_millis(self):
        ts = datetime(2024, 3, 15, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert iso_timestamp(ts) == "2024-03-15T12:00:00.123Z"

    def test_receipt_hash_tracks_lines(self, claim):
        same = digital_receipt_hash(claim.line_items)
        changed = digital_receipt_hash(
            (replace(claim.line_items[0], quantity=Decimal("201")),) + claim.line_items[1:]
        )
        assert same == digital_receipt_hash(claim.line_items)
        assert same != changed
