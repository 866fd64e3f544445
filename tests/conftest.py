"""
Shared fixtures for the lifecycle engine test suite.

============================================================
PURPOSE
============================================================
Every test gets a fresh in-memory SQLite metadata store, a
manually driven clock, the testing configuration and an
in-memory storage engine.

Reference time is 2025-11-10 12:00 UTC throughout.

============================================================
"""

from datetime import date, datetime, timezone
from typing import Optional

import pytest

from core.clock import MockClock
from core.types import Dataset, Partition
from execution_engine.adapters.mock import InMemoryStorageEngine
from execution_engine.config import EngineConfig
from orchestrator.registry import Repositories, build_components
from storage.database import create_database_engine, create_session_factory, init_database
from tier_planner.templates import template_from_dict


NOW = datetime(2025, 11, 10, 12, 0, tzinfo=timezone.utc)

DATASET = "sales"

TEMPLATE_PAYLOAD = {
    "hot": {"age_months": 12, "interval": "MONTHLY", "location": "TBS_HOT", "codec": "LZ4"},
    "warm": {"age_months": 36, "interval": "YEARLY", "location": "TBS_WARM", "codec": "ZSTD"},
    "cold": {"age_months": 84, "interval": "YEARLY", "location": "TBS_COLD", "codec": "ARCHIVE_HIGH"},
}

MB = 1024 * 1024


# ============================================================
# DATABASE
# ============================================================

@pytest.fixture
def db_engine():
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    session = create_session_factory(db_engine)()
    yield session
    session.close()


@pytest.fixture
def repositories(session) -> Repositories:
    return Repositories.from_session(session)


# ============================================================
# ENGINE
# ============================================================

@pytest.fixture
def clock() -> MockClock:
    return MockClock(NOW)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig.for_testing()


@pytest.fixture
def storage_engine() -> InMemoryStorageEngine:
    return InMemoryStorageEngine()


@pytest.fixture
def template():
    return template_from_dict("standard", TEMPLATE_PAYLOAD)


@pytest.fixture
def components(session, storage_engine, config, clock, template):
    """Full component graph with the standard template and dataset registered."""
    built = build_components(session, storage_engine, config=config, clock=clock)
    built.template_service.save(template)
    built.repositories.datasets.register(
        Dataset(name=DATASET, partition_column="sale_date", template_name=template.name)
    )
    return built


# ============================================================
# PARTITIONS
# ============================================================

def make_partition(
    name: str,
    lower: date,
    upper: date,
    location: str = "TBS_HOT",
    codec: Optional[str] = None,
    size_mb: float = 100,
    dataset: str = DATASET,
    **kwargs,
) -> Partition:
    return Partition(
        dataset=dataset,
        name=name,
        lower_bound=lower,
        upper_bound=upper,
        high_value=upper.isoformat(),
        location=location,
        codec=codec,
        row_count=1000,
        byte_size=int(size_mb * MB),
        **kwargs,
    )


@pytest.fixture
def add_partition(components, storage_engine):
    """Register a partition in both the storage engine and the metadata store."""

    def _add(name: str, lower: date, upper: date, **kwargs) -> Partition:
        partition = make_partition(name, lower, upper, **kwargs)
        storage_engine.add_partition(partition)
        return components.repositories.partitions.upsert(partition)

    return _add
