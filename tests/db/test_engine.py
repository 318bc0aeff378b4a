"""
Tests for billing_kernel.db.engine: pool selection per URL, the session
factory and session_scope's commit-or-rollback behaviour.
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.pool import StaticPool

from billing_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    session_factory,
    session_scope,
)
from billing_kernel.domain.rate_catalog import RateCatalog
from billing_kernel.models.rate_catalog import RateCatalogModel


def _catalog_model() -> RateCatalogModel:
    catalog = RateCatalog(
        company_id=uuid4(),
        utility_id=uuid4(),
        name="Scope test",
        effective_date=date(2024, 1, 1),
    )
    return RateCatalogModel.from_dto(catalog, created_by_id=uuid4())


class TestBuildEngine:

    def test_memory_database_shares_one_connection(self):
        engine = build_engine("sqlite://")
        try:
            assert isinstance(engine.pool, StaticPool)
            create_tables(engine)
            # A second connection sees the schema created through the first.
            assert "claims" in inspect(engine).get_table_names()
        finally:
            engine.dispose()

    def test_file_database_uses_default_pool(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'billing.db'}")
        try:
            assert not isinstance(engine.pool, StaticPool)
            assert engine.dialect.name == "sqlite"
        finally:
            engine.dispose()

    def test_build_logged(self, captured_logs):
        engine = build_engine("sqlite://")
        engine.dispose()
        event = [r for r in captured_logs() if r["message"] == "engine_built"][-1]
        assert event["dialect"] == "sqlite"
        assert event["pool"] == "StaticPool"

    def test_drop_tables(self, engine):
        drop_tables(engine)
        assert inspect(engine).get_table_names() == []


class TestSessionScope:

    def test_factory_keeps_state_after_commit(self, engine):
        session = session_factory(engine)()
        try:
            model = _catalog_model()
            session.add(model)
            session.commit()
            assert "name" in model.__dict__
        finally:
            session.close()

    def test_commits_on_success(self, engine):
        factory = session_factory(engine)
        model = _catalog_model()

        with session_scope(factory) as session:
            session.add(model)

        with factory() as check:
            assert check.get(RateCatalogModel, model.id) is not None

    def test_rolls_back_on_error(self, engine, captured_logs):
        factory = session_factory(engine)
        model = _catalog_model()

        with pytest.raises(RuntimeError):
            with session_scope(factory) as session:
                session.add(model)
                session.flush()
                raise RuntimeError("abort")

        with factory() as check:
            assert check.execute(select(RateCatalogModel)).scalars().all() == []
        assert any(r["message"] == "session_rolled_back" for r in captured_logs())
