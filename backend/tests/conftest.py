"""
Pytest fixtures for backend tests.

Provides a small Medicare reference dataset, in-memory and SQLite-backed
reference stores built from it, and an API client wired to them.
"""

import pytest
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.deps import (
    get_geo_resolver,
    get_mpfs_table,
    get_reference_resolver,
    get_reference_store,
)
from app.core.rate_limiter import limiter
from app.db.base import Base
from app.models.reference import (
    MpfsBenchmark,
    OppsAddendumB,
    DmeposFeeSchedule,
    DmepenFeeSchedule,
    ZipToLocality,
    GpciLocality,
    GpciStateAverage,
)
from app.services.geo_resolver import GeoResolver
from app.services.reference_resolver import ReferenceResolver
from app.services.reference_rows import (
    MpfsRow,
    OppsRow,
    DmeRow,
    ZipLocalityRow,
    GpciLocalityRow,
    GpciStateAverageRow,
)
from app.services.reference_store import InMemoryReferenceStore, SqlReferenceStore


CF_2026 = 33.4009

# ============================================
# Reference dataset
# ============================================

MPFS_RECORDS = [
    dict(hcpcs="99213", modifier="", year=2026, qp_status="nonQP", status="A",
         work_rvu=1.3, nonfac_pe_rvu=1.23, fac_pe_rvu=0.53, mp_rvu=0.1,
         nonfac_fee=91.01, fac_fee=66.78, conversion_factor=CF_2026),
    dict(hcpcs="71046", modifier="", year=2026, qp_status="nonQP", status="A",
         work_rvu=0.22, nonfac_pe_rvu=0.69, fac_pe_rvu=None, mp_rvu=0.02,
         nonfac_fee=31.06, fac_fee=None, conversion_factor=CF_2026),
    dict(hcpcs="71046", modifier="26", year=2026, qp_status="nonQP", status="A",
         work_rvu=0.22, nonfac_pe_rvu=0.09, fac_pe_rvu=0.09, mp_rvu=0.01,
         nonfac_fee=10.69, fac_fee=10.69, conversion_factor=CF_2026),
    dict(hcpcs="36415", modifier="", year=2026, qp_status="nonQP", status="X"),
    dict(hcpcs="G0008", modifier="", year=2026, qp_status="nonQP", status="A",
         nonfac_fee=30.0, fac_fee=25.0),
]

OPPS_RECORDS = [
    dict(hcpcs="71046", year=2025, apc="5521", status_indicator="Q3", payment_rate=100.04),
    dict(hcpcs="99213", year=2025, apc="5012", status_indicator="J2", payment_rate=136.81),
    dict(hcpcs="36415", year=2025, status_indicator="N"),
]

DMEPOS_RECORDS = [
    dict(hcpcs="E0114", year=2026, modifier="NU", state_abbr="NY", fee=38.46, ceiling=45.2),
    dict(hcpcs="E0114", year=2026, modifier="RR", state_abbr="NY", fee_rental=3.85),
    dict(hcpcs="E0114", year=2026, modifier="NU", state_abbr="", fee=37.97),
    dict(hcpcs="A4253", year=2026, modifier="NU", state_abbr="", fee=26.96),
]

DMEPEN_RECORDS = [
    dict(hcpcs="B4035", year=2026, modifier="", fee=10.41),
    dict(hcpcs="B4150", year=2026, modifier="BO", fee=0.82),
]

ZIP_RECORDS = [
    dict(zip5="10001", state_abbr="NY", locality_num="01", carrier_num="13202", county_name="New York"),
]

GPCI_RECORDS = [
    dict(locality_num="01", state_abbr="NY", locality_name="Manhattan", zip_code="10001",
         work_gpci=1.052, pe_gpci=1.307, mp_gpci=1.583),
    dict(locality_num="99", state_abbr="NY", locality_name="Rest of New York",
         work_gpci=1.0, pe_gpci=0.949, mp_gpci=0.628),
    dict(locality_num="18", state_abbr="CA", locality_name="Los Angeles", zip_code="90210",
         work_gpci=1.046, pe_gpci=1.194, mp_gpci=0.614),
]

STATE_AVG_RECORDS = [
    dict(state_abbr="NY", avg_work_gpci=1.026, avg_pe_gpci=1.128, avg_mp_gpci=1.1055, n_rows=2),
]


def build_memory_store(**overrides) -> InMemoryReferenceStore:
    """In-memory store over the sample dataset; keyword overrides replace whole tables."""
    tables = dict(
        mpfs=[MpfsRow.from_record(r) for r in MPFS_RECORDS],
        opps=[OppsRow.from_record(r) for r in OPPS_RECORDS],
        dmepos=[DmeRow.from_record(r) for r in DMEPOS_RECORDS],
        dmepen=[DmeRow.from_record(r) for r in DMEPEN_RECORDS],
        zip_localities=[ZipLocalityRow.from_record(r) for r in ZIP_RECORDS],
        gpci_localities=[GpciLocalityRow.from_record(r) for r in GPCI_RECORDS],
        gpci_state_averages=[GpciStateAverageRow.from_record(r) for r in STATE_AVG_RECORDS],
    )
    tables.update(overrides)
    return InMemoryReferenceStore(**tables)


@pytest.fixture
def store_factory():
    """Build a sample store with some tables replaced."""
    return build_memory_store


@pytest.fixture
def memory_store() -> InMemoryReferenceStore:
    return build_memory_store()


@pytest.fixture
def resolver(memory_store) -> Generator[ReferenceResolver, None, None]:
    """Resolver with generous limits so only explicit tests hit timeouts."""
    resolver = ReferenceResolver(
        memory_store,
        max_workers=4,
        lookup_timeout=5.0,
        lookup_retries=1,
        deadline_seconds=30.0,
        qp_status="nonQP",
    )
    yield resolver
    resolver.close()


# ============================================
# Database
# ============================================

@pytest.fixture
def db_engine():
    """In-memory SQLite shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def seeded_session_factory(db_session_factory) -> sessionmaker:
    """Session factory over a database loaded with the sample dataset."""
    session: Session = db_session_factory()
    try:
        session.add_all([MpfsBenchmark(**r) for r in MPFS_RECORDS])
        session.add_all([OppsAddendumB(**r) for r in OPPS_RECORDS])
        session.add_all([DmeposFeeSchedule(**r) for r in DMEPOS_RECORDS])
        session.add_all([DmepenFeeSchedule(**r) for r in DMEPEN_RECORDS])
        session.add_all([ZipToLocality(**r) for r in ZIP_RECORDS])
        session.add_all([GpciLocality(**r) for r in GPCI_RECORDS])
        session.add_all([GpciStateAverage(**r) for r in STATE_AVG_RECORDS])
        session.commit()
    finally:
        session.close()
    return db_session_factory


@pytest.fixture
def sql_store(seeded_session_factory) -> SqlReferenceStore:
    return SqlReferenceStore(seeded_session_factory)


# ============================================
# API client
# ============================================

@pytest.fixture
def client(memory_store, resolver) -> Generator[TestClient, None, None]:
    """
    Test client with the reference dependencies overridden.

    The client is not entered as a context manager, so the startup
    lifespan (which builds stores from settings) does not run.
    """
    app.dependency_overrides[get_reference_store] = lambda: memory_store
    app.dependency_overrides[get_reference_resolver] = lambda: resolver
    app.dependency_overrides[get_geo_resolver] = lambda: GeoResolver(memory_store)
    app.dependency_overrides[get_mpfs_table] = lambda: None
    limiter.enabled = False

    yield TestClient(app)

    limiter.enabled = True
    app.dependency_overrides.clear()
