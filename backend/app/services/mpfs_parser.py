"""
MPFS PFREV4 Parser.

Parses the CMS PFREV4 locality fee file (quoted CSV, PF25PD layout).

Field order:
    0  year                      8  PC/TC indicator
    1  carrier number (5)        9  status code
    2  locality (2)             10  multiple surgery indicator
    3  HCPCS/CPT code (5)       11  50% therapy non-facility fee
    4  modifier (2)             12  50% therapy facility fee
    5  non-facility fee         13  OPPS indicator
    6  facility fee             14  OPPS capped non-facility fee
    7  filler                   15  OPPS capped facility fee

Monetary fields use the 9(7).99 format ("0000077.78"). A blank or
all-zero amount means the fee is absent, not zero dollars.
"""

import csv
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

MIN_FIELDS = 16

# A = active, R = restricted coverage, T = injections (conditionally paid)
PAYABLE_STATUS_CODES = frozenset({"A", "R", "T"})

NON_PAYABLE_STATUS_CODES = frozenset({
    "B", "N", "P", "E", "X", "D", "F", "G", "H", "I", "J", "M", "C",
})

_TRAILER_MARKERS = ("TRL", "Copyright")


@dataclass(frozen=True)
class Pfrev4Row:
    """One carrier/locality fee record."""
    year: int
    carrier_number: str
    locality_code: str
    hcpcs: str
    modifier: str
    nonfacility_fee: Optional[float]
    facility_fee: Optional[float]
    pc_tc_indicator: str
    status_code: str
    multiple_surgery_indicator: str
    therapy_nonfacility_fee: Optional[float]
    therapy_facility_fee: Optional[float]
    opps_indicator: str
    opps_nonfacility_fee: Optional[float]
    opps_facility_fee: Optional[float]


def parse_money(value: Optional[str]) -> Optional[float]:
    """Parse a 9(7).99 amount; blank, zero, non-finite or invalid amounts are None."""
    if value is None:
        return None
    cleaned = value.replace('"', "").replace("'", "").strip()
    if not cleaned:
        return None
    try:
        amount = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(amount) or amount == 0:
        return None
    return amount


def _split(line: str) -> List[str]:
    return [field.strip() for field in next(csv.reader([line], skipinitialspace=True), [])]


def parse_pfrev4_line(line: str) -> Optional[Pfrev4Row]:
    """
    Parse one PFREV4 line.

    Returns:
        Pfrev4Row, or None for blank lines, trailer/copyright records,
        short records and records missing a required field.
    """
    if not line or not line.strip():
        return None
    if any(marker in line for marker in _TRAILER_MARKERS):
        return None

    fields = _split(line.rstrip("\r\n"))
    if len(fields) < MIN_FIELDS:
        return None

    year, carrier, locality, hcpcs = fields[0], fields[1], fields[2], fields[3]
    if not (year and carrier and locality and hcpcs):
        return None
    try:
        year_value = int(year)
    except ValueError:
        return None

    return Pfrev4Row(
        year=year_value,
        carrier_number=carrier,
        locality_code=locality,
        hcpcs=hcpcs.upper(),
        modifier=fields[4].upper(),
        nonfacility_fee=parse_money(fields[5]),
        facility_fee=parse_money(fields[6]),
        pc_tc_indicator=fields[8],
        status_code=fields[9].upper(),
        multiple_surgery_indicator=fields[10],
        therapy_nonfacility_fee=parse_money(fields[11]),
        therapy_facility_fee=parse_money(fields[12]),
        opps_indicator=fields[13],
        opps_nonfacility_fee=parse_money(fields[14]),
        opps_facility_fee=parse_money(fields[15]),
    )


def parse_pfrev4_lines(lines: Iterable[str]) -> List[Pfrev4Row]:
    rows = []
    skipped = 0
    for line in lines:
        row = parse_pfrev4_line(line)
        if row is None:
            if line.strip():
                skipped += 1
            continue
        rows.append(row)

    logger.info(f"Parsed {len(rows)} PFREV4 rows ({skipped} non-data lines skipped)")
    return rows


def parse_pfrev4_content(content: str) -> List[Pfrev4Row]:
    """Parse a whole PFREV4 file body."""
    return parse_pfrev4_lines(content.splitlines())


def filter_payable_rows(rows: Iterable[Pfrev4Row]) -> List[Pfrev4Row]:
    """Keep rows whose status code is payable (A, R, T)."""
    return [row for row in rows if row.status_code in PAYABLE_STATUS_CODES]
