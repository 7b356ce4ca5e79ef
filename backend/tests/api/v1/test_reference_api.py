"""
Tests for the Medicare reference API endpoints.
"""

import pytest
from unittest.mock import patch

from app.main import app
from app.api.deps import get_mpfs_table
from app.config import settings
from app.services.mpfs_parser import parse_pfrev4_content
from app.services.mpfs_table import MpfsLocalityTable
from app.services.reference_store import ReferenceLookupError, ReferenceStoreUnavailable


RESOLVE_URL = "/api/v1/reference/resolve"


def pfrev4_line(carrier, locality, code, nonfac, fac) -> str:
    fields = [
        "2026", carrier, locality, code, "", nonfac, fac, "", "0", "A",
        "2", "0000000.00", "0000000.00", "0", "0000000.00", "0000000.00",
    ]
    return ",".join(f'"{field}"' for field in fields)


class TestResolveEndpoint:
    """Tests for POST /reference/resolve."""

    def test_resolve_batch(self, client):
        response = client.post(RESOLVE_URL, json={
            "codes": [
                {"hcpcs": "99213", "billed_amount": 250},
                {"hcpcs": "E0114", "modifier": "NU"},
                {"hcpcs": "99999"},
            ],
            "care_setting": "office",
            "zip": "10001",
        })

        assert response.status_code == 200
        data = response.json()

        assert [r["hcpcs"] for r in data["resolutions"]] == ["99213", "E0114", "99999"]
        office_visit, crutches, unknown = data["resolutions"]

        assert office_visit["reference_source"] == "mpfs_rvu_local"
        assert office_visit["reference_price"] == 104.66
        assert office_visit["confidence"] == "high"
        assert office_visit["debug"]["billed_amount"] == 250
        assert crutches["reference_source"] == "dmepos_fee"
        assert crutches["debug"]["fallback_type"] == "exact_state_modifier"
        assert unknown["match_status"] == "missing_from_dataset"
        assert unknown["reference_price"] is None
        assert office_visit["source_label"] == "MPFS (location-adjusted)"
        assert unknown["match_status_label"] == "Missing from datasets"

        assert data["summary"]["total_priced"] == 2
        assert data["summary"]["total_reference_price"] == 143.12
        assert data["geo_resolution"]["method"] == "zip_exact"
        assert data["metadata"]["opps_year"] == 2025

    def test_facility_setting(self, client):
        response = client.post(RESOLVE_URL, json={
            "codes": [{"hcpcs": "71046"}],
            "care_setting": "facility",
        })

        assert response.status_code == 200
        resolution = response.json()["resolutions"][0]
        assert resolution["reference_source"] == "opps_payment"
        assert resolution["reference_price"] == 100.04

    def test_bad_location_is_not_an_error(self, client):
        response = client.post(RESOLVE_URL, json={
            "codes": [{"hcpcs": "99213"}],
            "zip": "ABC",
            "state": "ZZ",
        })

        assert response.status_code == 200
        assert response.json()["geo_resolution"]["method"] == "national_default"

    def test_empty_codes_rejected(self, client):
        response = client.post(RESOLVE_URL, json={"codes": []})
        assert response.status_code == 422

    def test_invalid_care_setting_rejected(self, client):
        response = client.post(RESOLVE_URL, json={"codes": [{"hcpcs": "99213"}], "care_setting": "home"})
        assert response.status_code == 422

    def test_too_many_codes(self, client):
        with patch.object(settings, "MAX_CODES_PER_REQUEST", 2):
            response = client.post(RESOLVE_URL, json={
                "codes": [{"hcpcs": "99213"}, {"hcpcs": "99214"}, {"hcpcs": "99215"}],
            })

        assert response.status_code == 400

    def test_store_unavailable_is_503(self, client, memory_store):
        with patch.object(memory_store, "ping", side_effect=ReferenceStoreUnavailable("down")):
            response = client.post(RESOLVE_URL, json={"codes": [{"hcpcs": "99213"}]})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"


class TestGeoEndpoint:
    """Tests for GET /reference/geo."""

    def test_zip_lookup(self, client):
        response = client.get("/api/v1/reference/geo", params={"zip": "10001-4321"})

        assert response.status_code == 200
        data = response.json()
        assert data["geo_resolution"]["method"] == "zip_exact"
        assert data["geo_resolution"]["resolved_zip"] == "10001"
        assert data["badge"] == {"label": "Adjusted by ZIP", "variant": "success"}

    def test_state_lookup(self, client):
        response = client.get("/api/v1/reference/geo", params={"state": "ny"})

        assert response.json()["geo_resolution"]["method"] == "state_avg"

    def test_no_params(self, client):
        response = client.get("/api/v1/reference/geo")

        assert response.status_code == 200
        assert response.json()["badge"]["label"] == "National average"


class TestCoverageEndpoint:

    def test_coverage(self, client):
        response = client.get("/api/v1/reference/coverage")

        assert response.status_code == 200
        data = response.json()
        assert data["mpfs"] == {"total_rows": 5, "unique_hcpcs": 4}
        assert data["dmepen"]["total_rows"] == 2

    def test_coverage_failure_is_503(self, client, memory_store):
        with patch.object(memory_store, "coverage_metrics", side_effect=ReferenceLookupError("down")):
            response = client.get("/api/v1/reference/coverage")

        assert response.status_code == 503


class TestStateMedianEndpoint:

    @pytest.fixture
    def mpfs_table(self):
        feed = "\n".join([
            pfrev4_line("13202", "01", "99213", "0000110.00", "0000080.00"),
            pfrev4_line("13282", "99", "99213", "0000090.00", "0000060.00"),
        ])
        return MpfsLocalityTable.from_rows(parse_pfrev4_content(feed))

    def test_not_configured(self, client):
        response = client.get("/api/v1/reference/mpfs/state-median", params={"code": "99213", "state": "NY"})
        assert response.status_code == 404

    def test_state_median(self, client, mpfs_table):
        app.dependency_overrides[get_mpfs_table] = lambda: mpfs_table

        response = client.get(
            "/api/v1/reference/mpfs/state-median",
            params={"code": "99213", "state": "ny", "year": 2026, "modifier": ""},
        )

        assert response.status_code == 200
        assert response.json() == {
            "code": "99213",
            "state": "NY",
            "year": 2026,
            "modifier": "",
            "locality_count": 2,
            "nonfacility_median": 100.0,
            "facility_median": 70.0,
        }

    def test_unknown_state(self, client, mpfs_table):
        app.dependency_overrides[get_mpfs_table] = lambda: mpfs_table

        response = client.get("/api/v1/reference/mpfs/state-median", params={"code": "99213", "state": "ZZ"})
        assert response.status_code == 400

    def test_medicare_allowed(self, client, mpfs_table):
        app.dependency_overrides[get_mpfs_table] = lambda: mpfs_table

        response = client.get(
            "/api/v1/reference/mpfs/allowed",
            params={"code": "99213", "state": "NY", "site_of_service": "facility", "year": 2026},
        )

        assert response.status_code == 200
        assert response.json() == {
            "code": "99213",
            "state": "NY",
            "year": 2026,
            "site_of_service": "facility",
            "allowed_amount": 70.0,
        }

    def test_medicare_allowed_defaults_to_nonfacility(self, client, mpfs_table):
        app.dependency_overrides[get_mpfs_table] = lambda: mpfs_table

        response = client.get(
            "/api/v1/reference/mpfs/allowed",
            params={"code": "99213", "state": "NY", "year": 2026},
        )

        assert response.json()["allowed_amount"] == 100.0

    def test_medicare_allowed_not_configured(self, client):
        response = client.get("/api/v1/reference/mpfs/allowed", params={"code": "99213", "state": "NY"})
        assert response.status_code == 404


class TestOperationalEndpoints:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_metrics_exposed(self, client):
        client.post(RESOLVE_URL, json={"codes": [{"hcpcs": "99213"}]})
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "reference_lookups_total" in response.text
        assert "code_resolutions_total" in response.text
