"""
Pytest fixtures for the billing engine test suite.

Provides:
- In-memory SQLite engine and a per-test session (fresh schema per test)
- Deterministic clock, actors for every role, default configuration
- Service fixtures wired to the same session, clock and config
- Factories for an active rate catalog and for unit entries at each status
- ``captured_logs`` for asserting on structured log events
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_config import BillingConfig
from billing_kernel.db.engine import build_engine, create_tables, session_factory
from billing_kernel.domain.actor import Actor, Role
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.rate_catalog import RateCatalog, RateCategory, RateItem
from billing_kernel.domain.unit_entry import (
    GeoLocation,
    PerformedBy,
    Photo,
    Tier,
    UnitStatus,
    WorkCategory,
)
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.services.claim_aggregator import ClaimAggregator
from billing_kernel.services.claim_service import ClaimService
from billing_kernel.services.dispute_resolver import DisputeResolver
from billing_kernel.services.export_service import ExportService
from billing_kernel.services.payment_ledger import PaymentLedger
from billing_kernel.services.rate_catalog_service import RateCatalogService
from billing_kernel.services.unit_entry_service import UnitEntryRequest, UnitEntryService

FIXED_SUFFIX = 42
CLOCK_START = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
WORK_DATE = date(2024, 3, 14)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, aggregator):
            aggregator.create_claim(...)
            logs = captured_logs()
            assert any(r["message"] == "claim_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    sess = session_factory(engine)()
    yield sess
    sess.close()


# =============================================================================
# Clock, config, identities
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(CLOCK_START)


@pytest.fixture
def config():
    return BillingConfig()


@pytest.fixture
def company_id():
    return uuid4()


@pytest.fixture
def other_company_id():
    return uuid4()


@pytest.fixture
def utility_id():
    return uuid4()


@pytest.fixture
def job_id():
    return uuid4()


def _actor(role: Role, name: str) -> Actor:
    return Actor(id=uuid4(), role=role, name=name)


@pytest.fixture
def foreman():
    return _actor(Role.FOREMAN, "Field Foreman")


@pytest.fixture
def crew():
    return _actor(Role.CREW, "Lineman")


@pytest.fixture
def gf():
    return _actor(Role.GF, "General Foreman")


@pytest.fixture
def qa():
    return _actor(Role.QA, "QA Inspector")


@pytest.fixture
def pm():
    return _actor(Role.PM, "Project Manager")


@pytest.fixture
def admin():
    return _actor(Role.ADMIN, "Administrator")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def rate_service(session, deterministic_clock, config):
    return RateCatalogService(session, deterministic_clock, config)


@pytest.fixture
def unit_service(session, deterministic_clock, config, rate_service):
    return UnitEntryService(session, deterministic_clock, config, rate_catalogs=rate_service)


@pytest.fixture
def aggregator(session, deterministic_clock, config):
    return ClaimAggregator(session, deterministic_clock, config, suffix_source=lambda: FIXED_SUFFIX)


@pytest.fixture
def claim_service(session, deterministic_clock, config):
    return ClaimService(session, deterministic_clock, config)


@pytest.fixture
def payment_ledger(session, deterministic_clock, config):
    return PaymentLedger(session, deterministic_clock, config)


@pytest.fixture
def dispute_resolver(session, deterministic_clock, config):
    return DisputeResolver(session, deterministic_clock, config)


@pytest.fixture
def export_service(session, deterministic_clock, config):
    return ExportService(session, deterministic_clock, config)


# =============================================================================
# Seed data
# =============================================================================


def standard_items() -> tuple[RateItem, ...]:
    return (
        RateItem(
            item_code="POLE-SET",
            description="Set distribution pole",
            category=RateCategory.ELECTRICAL,
            unit="EA",
            unit_price=Decimal("25.00"),
        ),
        RateItem(
            item_code="TRENCH-LF",
            description="Trench, 24in depth",
            category=RateCategory.CIVIL,
            unit="LF",
            unit_price=Decimal("12.50"),
            max_quantity=Decimal("5000"),
        ),
        RateItem(
            item_code="TC-DAY",
            description='Traffic control, "flagger" crew',
            category=RateCategory.TRAFFIC_CONTROL,
            unit="DAY",
            unit_price=Decimal("850.00"),
            oracle_expenditure_type="Traffic Control",
        ),
    )


@pytest.fixture
def make_catalog(rate_service, pm):
    """Create (and by default activate) a rate catalog."""

    def _make(company_id, utility_id, items=None, activate=True, **kwargs):
        kwargs.setdefault("name", "2024 Master Service Agreement")
        kwargs.setdefault("effective_date", date(2024, 1, 1))
        catalog = RateCatalog(
            company_id=company_id,
            utility_id=utility_id,
            items=standard_items() if items is None else tuple(items),
            **kwargs,
        )
        created = rate_service.create_catalog(catalog, pm)
        if activate:
            return rate_service.activate_catalog(company_id, created.id, pm)
        return created

    return _make


@pytest.fixture
def active_catalog(make_catalog, company_id, utility_id):
    return make_catalog(company_id, utility_id)


@pytest.fixture
def make_request(utility_id, job_id):
    """Build a ``UnitEntryRequest`` with evidence and a high-quality GPS fix."""

    def _make(
        item_code="POLE-SET",
        quantity="200",
        job=None,
        accuracy="5",
        photos=1,
        tier=Tier.PRIME,
        work_category=WorkCategory.ELECTRICAL,
        sub_contractor_name=None,
        **kwargs,
    ):
        location = (
            GeoLocation(
                latitude=Decimal("37.7749"),
                longitude=Decimal("-122.4194"),
                accuracy=Decimal(accuracy),
            )
            if accuracy is not None
            else GeoLocation(description="Pole 114, Mission St")
        )
        kwargs.setdefault("utility_id", utility_id)
        kwargs.setdefault("work_date", WORK_DATE)
        return UnitEntryRequest(
            job_id=job or job_id,
            item_code=item_code,
            quantity=quantity,
            location=location,
            performed_by=PerformedBy(
                tier=tier,
                work_category=work_category,
                sub_contractor_id=uuid4() if sub_contractor_name else None,
                sub_contractor_name=sub_contractor_name,
            ),
            photos=tuple(
                Photo(url=f"https://photos.example.com/{uuid4()}.jpg") for _ in range(photos)
            ),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_unit(unit_service, make_request, company_id, foreman, gf, pm, active_catalog):
    """
    Create a unit entry and drive it to ``status`` (default approved).

    Extra keyword arguments go to ``make_request``.
    """

    def _make(status=UnitStatus.APPROVED, company=None, **kwargs):
        cid = company or company_id
        entry = unit_service.create_entry(cid, make_request(**kwargs), foreman)
        if status is UnitStatus.DRAFT:
            return entry
        if entry.status is UnitStatus.DRAFT:
            entry = unit_service.submit(cid, entry.id, foreman)
        if status is UnitStatus.SUBMITTED:
            return entry
        entry = unit_service.verify(cid, entry.id, gf)
        if status is UnitStatus.VERIFIED:
            return entry
        return unit_service.approve(cid, entry.id, pm)

    return _make


@pytest.fixture
def draft_claim(make_unit, aggregator, company_id, pm):
    """A draft claim over two approved units (200 x 25.00 and 100 x 12.50)."""
    first = make_unit()
    second = make_unit(item_code="TRENCH-LF", quantity="100", work_category=WorkCategory.CIVIL)
    return aggregator.create_claim(company_id, [first.id, second.id], pm)
