"""
Two aggregators racing for the same approved units.

Both sessions prepare against the same file-backed SQLite database before
either commits; the conditional link UPDATE decides the winner.  The
loser must leave no claim behind and raise IneligibleUnitsError.

Run with: pytest tests/concurrency/test_aggregation_race.py -v
Skip with: pytest -m "not slow_locks"
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from billing_kernel.db.engine import build_engine, create_tables
from billing_kernel.domain.claim import ClaimStatus
from billing_kernel.domain.rate_catalog import RateCatalog, RateCategory, RateItem
from billing_kernel.domain.unit_entry import (
    GeoLocation,
    PerformedBy,
    Photo,
    UnitStatus,
)
from billing_kernel.exceptions import IneligibleUnitsError
from billing_kernel.models.claim import ClaimModel
from billing_kernel.services.claim_aggregator import ClaimAggregator
from billing_kernel.services.claim_service import ClaimService
from billing_kernel.services.rate_catalog_service import RateCatalogService
from billing_kernel.services.unit_entry_service import UnitEntryRequest, UnitEntryService

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def file_engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(file_engine):
    return sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
def seeded_units(session_factory, deterministic_clock, config, company_id, utility_id, foreman, gf, pm):
    """Three approved units committed to the shared database."""
    with session_factory() as session:
        rates = RateCatalogService(session, deterministic_clock, config)
        catalog = rates.create_catalog(
            RateCatalog(
                company_id=company_id,
                utility_id=utility_id,
                name="2024 Master Service Agreement",
                effective_date=date(2024, 1, 1),
                items=(
                    RateItem(
                        item_code="POLE-SET",
                        description="Set distribution pole",
                        category=RateCategory.ELECTRICAL,
                        unit="EA",
                        unit_price=Decimal("25.00"),
                    ),
                ),
            ),
            pm,
        )
        rates.activate_catalog(company_id, catalog.id, pm)

        units = UnitEntryService(session, deterministic_clock, config, rate_catalogs=rates)
        ids = []
        for _ in range(3):
            entry = units.create_entry(
                company_id,
                UnitEntryRequest(
                    job_id=uuid4(),
                    item_code="POLE-SET",
                    quantity="10",
                    utility_id=utility_id,
                    work_date=date(2024, 3, 14),
                    location=GeoLocation(
                        latitude=Decimal("37.7749"),
                        longitude=Decimal("-122.4194"),
                        accuracy=Decimal("5"),
                    ),
                    performed_by=PerformedBy(),
                    photos=(Photo(url="https://photos.example.com/pole.jpg"),),
                ),
                foreman,
            )
            if entry.status is UnitStatus.DRAFT:
                entry = units.submit(company_id, entry.id, foreman)
            units.verify(company_id, entry.id, gf)
            ids.append(units.approve(company_id, entry.id, pm).id)
        return ids


class TestAggregationRace:

    def test_loser_leaves_no_claim(
        self, session_factory, seeded_units, deterministic_clock, config, company_id, pm, captured_logs
    ):
        with session_factory() as session_a, session_factory() as session_b:
            aggregator_a = ClaimAggregator(session_a, deterministic_clock, config, suffix_source=lambda: 1)
            aggregator_b = ClaimAggregator(session_b, deterministic_clock, config, suffix_source=lambda: 2)

            plan_a = aggregator_a.prepare(company_id, seeded_units, pm)
            plan_b = aggregator_b.prepare(company_id, seeded_units, pm)

            winner = plan_a.commit()
            with pytest.raises(IneligibleUnitsError) as exc_info:
                plan_b.commit()

        assert exc_info.value.requested == 3
        assert exc_info.value.found == 0
        assert any(r["message"] == "claim_aggregation_lost_race" for r in captured_logs())
        assert any(r["message"] == "claim_compensated" for r in captured_logs())

        with session_factory() as check:
            numbers = check.execute(select(ClaimModel.claim_number)).scalars().all()
            assert numbers == [winner.claim_number]

            units = UnitEntryService(check, deterministic_clock, config)
            for unit_id in seeded_units:
                unit = units.get_entry(company_id, unit_id)
                assert unit.status is UnitStatus.INVOICED
                assert unit.claim_id == winner.id

    def test_partial_overlap_is_all_or_nothing(
        self, session_factory, seeded_units, deterministic_clock, config, company_id, pm
    ):
        first, second, third = seeded_units
        with session_factory() as session_a, session_factory() as session_b:
            plan_a = ClaimAggregator(session_a, deterministic_clock, config).prepare(
                company_id, [first, second], pm
            )
            plan_b = ClaimAggregator(session_b, deterministic_clock, config).prepare(
                company_id, [second, third], pm
            )
            winner = plan_a.commit()
            with pytest.raises(IneligibleUnitsError) as exc_info:
                plan_b.commit()

        assert exc_info.value.missing_ids == [str(second)]

        with session_factory() as check:
            units = UnitEntryService(check, deterministic_clock, config)
            assert units.get_entry(company_id, second).claim_id == winner.id
            untouched = units.get_entry(company_id, third)
            assert untouched.status is UnitStatus.APPROVED
            assert untouched.claim_id is None

            claims = ClaimService(check, deterministic_clock, config).list_claims(company_id)
            assert [c.id for c in claims] == [winner.id]
            assert claims[0].status is ClaimStatus.DRAFT
