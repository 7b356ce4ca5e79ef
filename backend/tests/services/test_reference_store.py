"""
Unit tests for the reference stores.

The in-memory and SQL stores are exercised against the same sample
dataset and must answer identically.
"""

import json

import pytest
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from app.services.reference_rows import GpciLocalityRow
from app.services.reference_store import (
    DMEPEN,
    DMEPOS,
    InMemoryReferenceStore,
    ReferenceLookupError,
    ReferenceStoreError,
    ReferenceStoreUnavailable,
    SqlReferenceStore,
)


@pytest.fixture(params=["memory", "sql"])
def store(request, memory_store, sql_store):
    return memory_store if request.param == "memory" else sql_store


class TestLookups:
    """Keyed lookups shared by both implementations."""

    def test_find_mpfs_exact_and_base(self, store):
        base = store.find_mpfs("71046", "", 2026, "nonQP")
        professional = store.find_mpfs("71046", "26", 2026, "nonQP")

        assert base.nonfac_pe_rvu == 0.69
        assert professional.nonfac_pe_rvu == 0.09
        assert store.find_mpfs("71046", "TC", 2026, "nonQP") is None

    def test_find_mpfs_respects_year_and_qp_status(self, store):
        assert store.find_mpfs("99213", "", 2025, "nonQP") is None
        assert store.find_mpfs("99213", "", 2026, "QP") is None

    def test_find_opps(self, store):
        row = store.find_opps("71046", 2025)

        assert row.payment_rate == 100.04
        assert row.status_indicator == "Q3"
        assert store.find_opps("71046", 2026) is None

    def test_find_dme_filters(self, store):
        assert store.find_dme(DMEPOS, "E0114", 2026, "NU", "NY").fee == 38.46
        assert store.find_dme(DMEPOS, "E0114", 2026, "NU", "").fee == 37.97
        assert store.find_dme(DMEPOS, "E0114", 2026, "", "") is None
        assert store.find_dme(DMEPOS, "E0114", 2026, "RR", None).fee_rental == 3.85
        assert store.find_dme(DMEPOS, "E0114", 2026).fee == 38.46

    def test_find_dmepen_blank_modifier(self, store):
        assert store.find_dme(DMEPEN, "B4035", 2026, "", None).fee == 10.41
        assert store.find_dme(DMEPEN, "B4150", 2026, "", None) is None

    def test_unknown_dme_schedule(self, store):
        with pytest.raises(ValueError):
            store.find_dme("dmexyz", "E0114", 2026)

    def test_zip_crosswalk(self, store):
        row = store.find_zip_locality("10001")

        assert row.locality_num == "01"
        assert row.state_abbr == "NY"
        assert store.find_zip_locality("99999") is None

    def test_gpci_lookups(self, store):
        assert store.find_gpci_by_locality("01").locality_name == "Manhattan"
        assert store.find_gpci_by_zip("90210").state_abbr == "CA"
        assert store.find_gpci_by_zip("14201") is None

    def test_gpci_state_average(self, store):
        row = store.find_gpci_state_average("NY")

        assert row.avg_pe_gpci == 1.128
        assert row.is_usable()
        assert store.find_gpci_state_average("TX") is None

    def test_list_gpci_for_state_sorted_by_locality(self, store):
        rows = store.list_gpci_for_state("NY")

        assert [r.locality_num for r in rows] == ["01", "99"]
        assert store.find_first_gpci_for_state("NY").locality_num == "01"
        assert store.list_gpci_for_state("TX") == []

    def test_coverage_metrics(self, store):
        coverage = store.coverage_metrics()

        assert coverage.mpfs.total_rows == 5
        assert coverage.mpfs.unique_hcpcs == 4
        assert coverage.opps.total_rows == 3
        assert coverage.dmepos.total_rows == 4
        assert coverage.dmepos.unique_hcpcs == 2
        assert coverage.dmepen.unique_hcpcs == 2


class TestGpciStateNames:
    """GPCI rows whose state column holds a full name."""

    def test_memory_store_abbreviates_names(self, store_factory):
        store = store_factory(gpci_localities=[
            GpciLocalityRow(locality_num="05", state_abbr="New Jersey", work_gpci=1.05, pe_gpci=1.1, mp_gpci=0.9),
        ])

        rows = store.list_gpci_for_state("NJ")
        assert len(rows) == 1
        assert rows[0].state_abbr == "NJ"
        assert store.find_gpci_by_locality("05").state_abbr == "NJ"

    def test_sql_store_matches_names(self, db_session_factory):
        from app.models.reference import GpciLocality

        with db_session_factory() as session:
            session.add(GpciLocality(
                locality_num="05", state_abbr=" new jersey ", work_gpci=1.05, pe_gpci=1.1, mp_gpci=0.9,
            ))
            session.commit()

        rows = SqlReferenceStore(db_session_factory).list_gpci_for_state("NJ")
        assert [r.state_abbr for r in rows] == ["NJ"]


class TestSqlStoreFailures:
    """SQL errors surface as store exceptions."""

    def _broken_factory(self):
        session = MagicMock()
        session.__enter__.return_value = session
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
        return MagicMock(return_value=session)

    def test_lookup_error(self):
        store = SqlReferenceStore(self._broken_factory())

        with pytest.raises(ReferenceLookupError):
            store.find_opps("71046", 2025)

    def test_ping_unavailable(self):
        store = SqlReferenceStore(self._broken_factory())

        with pytest.raises(ReferenceStoreUnavailable):
            store.ping()

    def test_ping_ok(self, sql_store):
        assert sql_store.ping() is None


class TestFromDirectory:
    """Loading JSON snapshots."""

    def test_loads_snapshots(self, tmp_path):
        (tmp_path / "opps_addendum_b.json").write_text(json.dumps([
            {"hcpcs": "71046", "year": 2025, "status_indicator": "Q3", "payment_rate": 100.04},
        ]))
        (tmp_path / "gpci_localities.json").write_text(json.dumps([
            {"locality_num": "01", "state_abbr": "NY", "work_gpci": 1.0, "pe_gpci": 1.0, "mp_gpci": 1.0},
        ]))

        store = InMemoryReferenceStore.from_directory(tmp_path)

        assert store.find_opps("71046", 2025).payment_rate == 100.04
        assert store.find_gpci_by_locality("01") is not None
        # Missing snapshot files are empty tables
        assert store.coverage_metrics().mpfs.total_rows == 0

    def test_invalid_snapshot_raises(self, tmp_path):
        (tmp_path / "mpfs_benchmarks.json").write_text("{not json")

        with pytest.raises(ReferenceStoreError):
            InMemoryReferenceStore.from_directory(tmp_path)

    def test_record_missing_required_field_raises(self, tmp_path):
        (tmp_path / "opps_addendum_b.json").write_text(json.dumps([{"hcpcs": "71046"}]))

        with pytest.raises(ReferenceStoreError):
            InMemoryReferenceStore.from_directory(tmp_path)

    def test_bundled_sample_snapshots_load(self):
        from app.core.paths import resolve_data_path

        store = InMemoryReferenceStore.from_directory(resolve_data_path("data/reference"))

        assert store.find_mpfs("99213", "", 2026, "nonQP") is not None
        assert store.find_zip_locality("10001").locality_num == "01"
