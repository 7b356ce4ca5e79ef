"""
Unit tests for the MPFS locality table.
"""

import pytest

from app.schemas.reference import SiteOfService
from app.services.mpfs_parser import parse_pfrev4_content
from app.services.mpfs_table import MpfsLocalityTable


def pfrev4_line(carrier, locality, code, nonfac, fac, status="A", modifier="", year="2025") -> str:
    fields = [
        year, carrier, locality, code, modifier, nonfac, fac, "", "0", status,
        "2", "0000000.00", "0000000.00", "0", "0000000.00", "0000000.00",
    ]
    return ",".join(f'"{field}"' for field in fields)


SAMPLE_FEED = "\n".join([
    pfrev4_line("13202", "01", "99213", "0000110.00", "0000080.00"),
    pfrev4_line("13202", "02", "99213", "0000100.00", "0000000.00"),
    pfrev4_line("13282", "99", "99213", "0000080.00", "0000060.00"),
    pfrev4_line("13282", "99", "99213", "0000040.00", "0000030.00", modifier="26"),
    pfrev4_line("13202", "01", "0001U", "0000500.00", "0000500.00", status="I"),
    pfrev4_line("99999", "01", "99213", "0000999.00", "0000999.00"),
    pfrev4_line("01182", "18", "99213", "0000120.00", "0000090.00"),
])


@pytest.fixture
def table() -> MpfsLocalityTable:
    return MpfsLocalityTable.from_rows(parse_pfrev4_content(SAMPLE_FEED))


class TestMpfsLocalityTable:

    def test_drops_non_payable_and_unknown_carriers(self, table):
        assert table.row_count == 5

    def test_rows_carry_geography(self, table):
        rows = table.rows_for_code(2025, "NY", "99213", "")

        assert len(rows) == 3
        manhattan = next(r for r in rows if r.locality == "01")
        assert manhattan.state_name == "NEW YORK"
        assert manhattan.locality_name == "MANHATTAN, NY"

    def test_unknown_locality_of_known_carrier_gets_generic_name(self):
        table = MpfsLocalityTable.from_rows(parse_pfrev4_content(
            pfrev4_line("13202", "77", "99213", "0000100.00", "0000090.00"),
        ))

        assert table.rows_for_code(2025, "ny", "99213")[0].locality_name == "Locality 77"

    def test_modifier_filter(self, table):
        assert len(table.rows_for_code(2025, "NY", "99213")) == 4
        assert len(table.rows_for_code(2025, "NY", "99213", "26")) == 1
        assert table.rows_for_code(2025, "NY", "99213", "TC") == []
        assert table.rows_for_code(2024, "NY", "99213") == []

    def test_state_median_ignores_absent_fees(self, table):
        median = table.state_median_allowed(2025, "NY", "99213", "")

        assert median.locality_count == 3
        assert median.nonfacility_median == pytest.approx(100.0)
        assert median.facility_median == pytest.approx(70.0)

    def test_state_median_without_rows(self, table):
        median = table.state_median_allowed(2025, "TX", "99213")

        assert median.locality_count == 0
        assert median.nonfacility_median is None
        assert median.facility_median is None

    def test_medicare_allowed_for_code(self, table):
        assert table.medicare_allowed_for_code("99213", "CA") == pytest.approx(120.0)
        assert table.medicare_allowed_for_code("99213", "CA", site_of_service=SiteOfService.FACILITY) == pytest.approx(90.0)

    def test_from_file(self, tmp_path):
        path = tmp_path / "PF25PD.txt"
        path.write_text(SAMPLE_FEED + '\n"TRL","7"\n', encoding="latin-1")

        assert MpfsLocalityTable.from_file(path).row_count == 5
