"""
Tests for UnitEntryService.

Covers:
- Entry creation: rate lock, evidence rule, auto-submit, quantity limits
- Workflow: submit (original entrant), verify, approve, dispute
- Batch creation with per-entry failures
- Soft delete rules
- Listing, unbilled and disputed queries
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_config import BillingConfig, EvidencePolicy
from billing_kernel.domain.actor import Actor, Role
from billing_kernel.domain.unit_entry import (
    DisputeCategory,
    GpsQuality,
    Tier,
    UnitStatus,
    WorkCategory,
)
from billing_kernel.exceptions import (
    AuthorizationError,
    RateNotFoundError,
    TransitionError,
    UnitEntryNotFoundError,
    ValidationError,
)
from billing_kernel.services.unit_entry_service import UnitEntryService


class TestCreateEntry:

    def test_rate_locked_and_total_computed(self, unit_service, make_request, active_catalog, company_id, foreman):
        entry = unit_service.create_entry(company_id, make_request(quantity="200"), foreman)

        assert entry.unit_price == Decimal("25.00")
        assert entry.total_amount == Decimal("5000.00")
        assert entry.catalog_id == active_catalog.id
        assert entry.entered_by == foreman.id
        stored = unit_service.get_entry(company_id, entry.id)
        assert stored.total_amount == Decimal("5000.00")
        assert stored.description == "Set distribution pole"

    def test_auto_submit_with_evidence_and_good_fix(self, unit_service, make_request, active_catalog, company_id, foreman):
        entry = unit_service.create_entry(company_id, make_request(accuracy="5"), foreman)
        assert entry.status is UnitStatus.SUBMITTED
        assert entry.submitted_by == foreman.id
        assert entry.gps_quality is GpsQuality.HIGH

    def test_poor_fix_stays_draft(self, unit_service, make_request, active_catalog, company_id, foreman):
        entry = unit_service.create_entry(company_id, make_request(accuracy="150"), foreman)
        assert entry.status is UnitStatus.DRAFT
        assert entry.gps_quality is GpsQuality.LOW

    def test_no_fix_stays_draft(self, unit_service, make_request, active_catalog, company_id, foreman):
        entry = unit_service.create_entry(company_id, make_request(accuracy=None), foreman)
        assert entry.status is UnitStatus.DRAFT
        assert entry.gps_quality is GpsQuality.NONE
        assert not entry.has_gps

    def test_auto_submit_threshold_from_config(self, session, deterministic_clock, make_request, active_catalog, company_id, foreman):
        strict = BillingConfig(evidence=EvidencePolicy(auto_submit_max_accuracy=Decimal("3")))
        service = UnitEntryService(session, deterministic_clock, strict)
        entry = service.create_entry(company_id, make_request(accuracy="5"), foreman)
        assert entry.status is UnitStatus.DRAFT

    def test_waiver_with_reason_accepted(self, unit_service, make_request, active_catalog, company_id, foreman):
        request = make_request(photos=0, photo_waived=True, photo_waived_reason="Vault flooded")
        entry = unit_service.create_entry(company_id, request, foreman)
        assert entry.photo_waived
        assert entry.status is UnitStatus.SUBMITTED

    def test_missing_evidence_rejected(self, unit_service, make_request, active_catalog, company_id, foreman):
        with pytest.raises(ValidationError) as exc_info:
            unit_service.create_entry(company_id, make_request(photos=0), foreman)
        assert exc_info.value.field == "photos"

    def test_waiver_without_reason_rejected(self, unit_service, make_request, active_catalog, company_id, foreman):
        with pytest.raises(ValidationError):
            unit_service.create_entry(company_id, make_request(photos=0, photo_waived=True), foreman)

    @pytest.mark.parametrize("quantity", ["0", "-3"])
    def test_non_positive_quantity_rejected(self, unit_service, make_request, active_catalog, company_id, foreman, quantity):
        with pytest.raises(ValidationError) as exc_info:
            unit_service.create_entry(company_id, make_request(quantity=quantity), foreman)
        assert exc_info.value.field == "quantity"

    def test_max_quantity_enforced(self, unit_service, make_request, active_catalog, company_id, foreman):
        with pytest.raises(ValidationError):
            unit_service.create_entry(company_id, make_request(item_code="TRENCH-LF", quantity="5001"), foreman)

    def test_missing_fields_rejected(self, unit_service, make_request, active_catalog, company_id, foreman):
        with pytest.raises(ValidationError) as exc_info:
            unit_service.create_entry(company_id, make_request(work_date=None), foreman)
        assert exc_info.value.field == "work_date"

    def test_unknown_item_has_no_default_price(self, unit_service, make_request, active_catalog, company_id, foreman):
        with pytest.raises(RateNotFoundError):
            unit_service.create_entry(company_id, make_request(item_code="MYSTERY"), foreman)
        assert unit_service.list_entries(company_id, foreman) == []

    def test_back_dated_entry_prices_at_todays_catalog(
        self, unit_service, make_catalog, make_request, company_id, utility_id, foreman
    ):
        catalog = make_catalog(company_id, utility_id, effective_date=date(2024, 3, 15))

        entry = unit_service.create_entry(company_id, make_request(work_date=date(2024, 3, 1)), foreman)

        assert entry.catalog_id == catalog.id
        assert entry.work_date == date(2024, 3, 1)
        assert entry.unit_price == Decimal("25.00")

    def test_catalog_not_yet_effective_today(
        self, unit_service, make_catalog, make_request, company_id, utility_id, foreman
    ):
        make_catalog(company_id, utility_id, effective_date=date(2024, 3, 16))
        with pytest.raises(RateNotFoundError):
            unit_service.create_entry(company_id, make_request(work_date=date(2024, 3, 16)), foreman)

    def test_creation_logged(self, unit_service, make_request, active_catalog, company_id, foreman, captured_logs):
        entry = unit_service.create_entry(company_id, make_request(), foreman)
        events = [r for r in captured_logs() if r["message"] == "unit_entry_created"]
        assert events[0]["unit_id"] == str(entry.id)
        assert events[0]["auto_submitted"] is True


class TestWorkflow:

    def test_full_path_to_approved(self, make_unit, unit_service, company_id, pm):
        entry = make_unit()
        assert entry.status is UnitStatus.APPROVED
        assert entry.approved_by == pm.id
        assert entry.verified_at is not None

    def test_submit_only_by_original_entrant(self, make_unit, unit_service, company_id, crew):
        draft = make_unit(status=UnitStatus.DRAFT, accuracy=None)
        with pytest.raises(AuthorizationError):
            unit_service.submit(company_id, draft.id, crew)

    def test_verify_role_gate(self, make_unit, unit_service, company_id, foreman, qa):
        submitted = make_unit(status=UnitStatus.SUBMITTED)
        with pytest.raises(AuthorizationError):
            unit_service.verify(company_id, submitted.id, foreman)
        verified = unit_service.verify(company_id, submitted.id, qa, notes="Photos match")
        assert verified.verification_notes == "Photos match"

    def test_approve_role_gate(self, make_unit, unit_service, company_id, gf):
        verified = make_unit(status=UnitStatus.VERIFIED)
        with pytest.raises(AuthorizationError):
            unit_service.approve(company_id, verified.id, gf)

    def test_approve_requires_verification(self, make_unit, unit_service, company_id, pm):
        submitted = make_unit(status=UnitStatus.SUBMITTED)
        with pytest.raises(TransitionError):
            unit_service.approve(company_id, submitted.id, pm)
        assert unit_service.get_entry(company_id, submitted.id).status is UnitStatus.SUBMITTED

    def test_dispute_records_previous_status(self, make_unit, unit_service, company_id, pm):
        approved = make_unit()
        disputed = unit_service.dispute(
            company_id, approved.id, pm, reason="Count looks high", category="quantity"
        )
        assert disputed.status is UnitStatus.DISPUTED
        assert disputed.previous_status is UnitStatus.APPROVED
        assert disputed.is_disputed
        assert disputed.dispute_category is DisputeCategory.QUANTITY

    def test_dispute_draft_rejected(self, make_unit, unit_service, company_id, pm):
        draft = make_unit(status=UnitStatus.DRAFT, accuracy=None)
        with pytest.raises(TransitionError):
            unit_service.dispute(company_id, draft.id, pm, reason="x", category="other")

    def test_dispute_requires_reason(self, make_unit, unit_service, company_id, pm):
        approved = make_unit()
        with pytest.raises(ValidationError):
            unit_service.dispute(company_id, approved.id, pm, reason=" ", category="quantity")

    def test_other_company_cannot_see_entry(self, make_unit, unit_service, other_company_id, gf):
        entry = make_unit(status=UnitStatus.SUBMITTED)
        with pytest.raises(UnitEntryNotFoundError):
            unit_service.verify(other_company_id, entry.id, gf)


class TestBatchCreate:

    def test_partial_failure_reported(self, unit_service, make_request, active_catalog, company_id, foreman):
        result = unit_service.batch_create(
            company_id,
            [make_request(), make_request(item_code="MYSTERY"), make_request(photos=0)],
            foreman,
        )
        assert result.total == 3
        assert result.succeeded == 1
        assert result.failed == 2
        assert result.results[0].success
        assert result.results[1].error_code == "RATE_NOT_FOUND"
        assert result.results[2].error_code == "VALIDATION_ERROR"
        assert len(unit_service.list_entries(company_id, foreman)) == 1

    def test_limit_enforced(self, session, deterministic_clock, make_request, active_catalog, company_id, foreman):
        service = UnitEntryService(
            session, deterministic_clock, BillingConfig(evidence=EvidencePolicy(batch_limit=2))
        )
        with pytest.raises(ValidationError):
            service.batch_create(company_id, [make_request()] * 3, foreman)

    def test_empty_batch_rejected(self, unit_service, company_id, foreman):
        with pytest.raises(ValidationError):
            unit_service.batch_create(company_id, [], foreman)


class TestSoftDelete:

    def test_draft_deleted_with_default_reason(self, make_unit, unit_service, company_id, foreman):
        draft = make_unit(status=UnitStatus.DRAFT, accuracy=None)
        deleted = unit_service.soft_delete(company_id, draft.id, foreman)
        assert deleted.is_deleted
        assert deleted.delete_reason == "Deleted by user"
        with pytest.raises(UnitEntryNotFoundError):
            unit_service.get_entry(company_id, draft.id)

    def test_non_draft_needs_admin(self, make_unit, unit_service, company_id, pm, admin):
        approved = make_unit()
        with pytest.raises(TransitionError):
            unit_service.soft_delete(company_id, approved.id, pm)
        assert unit_service.soft_delete(company_id, approved.id, admin, reason="Duplicate").is_deleted

    def test_billed_never_deleted(self, make_unit, unit_service, aggregator, company_id, pm, admin):
        unit = make_unit()
        aggregator.create_claim(company_id, [unit.id], pm)
        with pytest.raises(TransitionError):
            unit_service.soft_delete(company_id, unit.id, admin)


class TestQueries:

    def test_list_filters(self, make_unit, unit_service, company_id, pm, job_id):
        other_job = uuid4()
        make_unit()
        make_unit(job=other_job, item_code="TRENCH-LF", quantity="10", work_category=WorkCategory.CIVIL)
        make_unit(status=UnitStatus.SUBMITTED, tier=Tier.SUB, sub_contractor_name="Acme")

        assert len(unit_service.list_entries(company_id, pm)) == 3
        assert len(unit_service.list_entries(company_id, pm, job_id=other_job)) == 1
        assert len(unit_service.list_entries(company_id, pm, status=UnitStatus.APPROVED)) == 2
        assert len(unit_service.list_entries(company_id, pm, work_category=WorkCategory.CIVIL)) == 1
        assert len(unit_service.list_entries(company_id, pm, tier=Tier.SUB)) == 1
        assert unit_service.list_entries(company_id, pm, start_date=date(2024, 3, 15)) == []
        assert len(unit_service.list_entries(company_id, pm, limit=2)) == 2

    def test_foreman_sees_own_entries(self, make_unit, unit_service, company_id, foreman):
        make_unit()
        other_foreman = Actor(id=uuid4(), role=Role.FOREMAN)
        assert len(unit_service.list_entries(company_id, foreman)) == 1
        assert unit_service.list_entries(company_id, other_foreman) == []

    def test_unbilled_grouped_by_job(self, make_unit, unit_service, aggregator, company_id, pm, job_id):
        other_job = uuid4()
        first = make_unit()
        make_unit(quantity="4")
        make_unit(job=other_job, item_code="TC-DAY", quantity="1")
        billed = make_unit()
        make_unit(status=UnitStatus.VERIFIED)
        aggregator.create_claim(company_id, [billed.id], pm)

        summary = unit_service.get_unbilled_by_company(company_id)

        assert summary.total_units == 3
        assert summary.total_amount == Decimal("5950.00")
        jobs = {job.job_id: job for job in summary.by_job}
        assert jobs[job_id].unit_count == 2
        assert jobs[job_id].total_amount == Decimal("5100.00")
        assert jobs[other_job].total_amount == Decimal("850.00")
        assert first.id in {u.id for u in jobs[job_id].units}

    def test_disputed_query(self, make_unit, unit_service, company_id, pm):
        unit = make_unit()
        make_unit()
        unit_service.dispute(company_id, unit.id, pm, reason="Wrong pole", category="location")
        assert [u.id for u in unit_service.get_disputed(company_id)] == [unit.id]
