"""
MPFS Locality Table.

Repository over parsed PFREV4 rows, built once at startup and passed to
whoever needs it. Rows are indexed year -> state -> code -> modifier so
per-state medians across localities are cheap to compute.
"""

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from app.schemas.reference import SiteOfService
from app.services.mpfs_parser import (
    NON_PAYABLE_STATUS_CODES,
    PAYABLE_STATUS_CODES,
    Pfrev4Row,
    parse_pfrev4_lines,
)
from app.services.reference_assets import CarrierGeography, load_carrier_geography

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalityFee:
    """Payable MPFS fee for one code in one locality."""
    year: int
    state: str
    state_name: str
    locality: str
    locality_name: str
    carrier_number: str
    hcpcs: str
    modifier: str
    status_code: str
    pc_tc_indicator: str
    nonfacility_fee: Optional[float]
    facility_fee: Optional[float]


@dataclass(frozen=True)
class StateMedian:
    locality_count: int
    nonfacility_median: Optional[float]
    facility_median: Optional[float]


def _median(values: List[float]) -> Optional[float]:
    positive = [v for v in values if v is not None and v > 0]
    if not positive:
        return None
    return statistics.median(positive)


class MpfsLocalityTable:
    """Indexed, read-only view of payable PFREV4 locality fees."""

    def __init__(self, fees: Iterable[LocalityFee]):
        index: Dict[int, Dict[str, Dict[str, Dict[str, List[LocalityFee]]]]] = defaultdict(
            lambda: defaultdict(lambda: defaultdict(lambda: defaultdict(list)))
        )
        count = 0
        for fee in fees:
            index[fee.year][fee.state][fee.hcpcs][fee.modifier].append(fee)
            count += 1

        # Freeze into plain dicts so lookups never create entries
        self._index = {
            year: {
                state: {
                    code: {mod: tuple(rows) for mod, rows in mods.items()}
                    for code, mods in codes.items()
                }
                for state, codes in states.items()
            }
            for year, states in index.items()
        }
        self.row_count = count

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Pfrev4Row],
        geography: Optional[CarrierGeography] = None,
    ) -> "MpfsLocalityTable":
        """
        Build the table from parsed rows.

        Non-payable rows and rows whose carrier has no known state are
        dropped.
        """
        geography = geography or load_carrier_geography()
        fees = []
        non_payable = unknown_carrier = 0

        for row in rows:
            if row.status_code not in PAYABLE_STATUS_CODES:
                if row.status_code in NON_PAYABLE_STATUS_CODES:
                    non_payable += 1
                continue

            geo = geography.lookup(row.carrier_number, row.locality_code)
            if geo is None:
                unknown_carrier += 1
                continue

            fees.append(LocalityFee(
                year=row.year,
                state=geo.state_abbrev,
                state_name=geo.state_name,
                locality=row.locality_code,
                locality_name=geo.locality_name,
                carrier_number=row.carrier_number,
                hcpcs=row.hcpcs,
                modifier=row.modifier,
                status_code=row.status_code,
                pc_tc_indicator=row.pc_tc_indicator,
                nonfacility_fee=row.nonfacility_fee,
                facility_fee=row.facility_fee,
            ))

        table = cls(fees)
        logger.info(
            f"Built MPFS locality table with {table.row_count} payable rows "
            f"({non_payable} non-payable, {unknown_carrier} unknown carrier)"
        )
        return table

    @classmethod
    def from_file(cls, path: Path, geography: Optional[CarrierGeography] = None) -> "MpfsLocalityTable":
        """Parse a PFREV4 file and build the table."""
        with open(path, "r", encoding="latin-1") as f:
            rows = parse_pfrev4_lines(f)
        return cls.from_rows(rows, geography)

    def rows_for_code(
        self,
        year: int,
        state: str,
        code: str,
        modifier: Optional[str] = None,
    ) -> List[LocalityFee]:
        """
        Locality fees for a code in a state.

        Args:
            modifier: Exact modifier ("" for the base code), or None for
                rows with any modifier.
        """
        by_modifier = self._index.get(year, {}).get(state.upper(), {}).get(code.upper(), {})
        if modifier is None:
            return [fee for rows in by_modifier.values() for fee in rows]
        return list(by_modifier.get(modifier.upper(), ()))

    def state_median_allowed(
        self,
        year: int,
        state: str,
        code: str,
        modifier: Optional[str] = None,
    ) -> StateMedian:
        """Median of the positive non-facility and facility fees across localities."""
        rows = self.rows_for_code(year, state, code, modifier)
        return StateMedian(
            locality_count=len(rows),
            nonfacility_median=_median([r.nonfacility_fee for r in rows]),
            facility_median=_median([r.facility_fee for r in rows]),
        )

    def medicare_allowed_for_code(
        self,
        code: str,
        state: str,
        site_of_service: SiteOfService = SiteOfService.NONFACILITY,
        year: int = 2025,
    ) -> Optional[float]:
        """State median allowed amount for the site of service."""
        median = self.state_median_allowed(year, state, code)
        if site_of_service == SiteOfService.FACILITY:
            return median.facility_median
        return median.nonfacility_median
