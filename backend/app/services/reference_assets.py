"""
Static Reference Assets.

Loads the small lookup tables bundled with the package:
- opps_ed_fallback.json: OPPS rates for emergency department visit levels
- mpfs_carriers.json: MPFS carrier to state map and locality names
- zip3_states.json: three-digit ZIP prefix ranges by state

Each asset is parsed once and returned as an immutable view.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from app.core.paths import ASSETS_DIR
from app.services.reference_rows import OppsRow

logger = logging.getLogger(__name__)

OPPS_ED_FALLBACK_FILE = "opps_ed_fallback.json"
MPFS_CARRIERS_FILE = "mpfs_carriers.json"
ZIP3_STATES_FILE = "zip3_states.json"


def _load_json(name: str, assets_dir: Optional[Path] = None) -> dict:
    path = (assets_dir or ASSETS_DIR) / name
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    logger.debug(f"Loaded reference asset {path}")
    return data


# ============================================
# Emergency Department OPPS Fallback
# ============================================

class EdFallbackTable:
    """
    Secondary OPPS source for well-known ED visit codes.

    Kept apart from the primary OPPS store; the resolver consults it
    only after the primary store has no row for the code.
    """

    TABLE_NAME = "opps_ed_fallback"

    def __init__(self, rates: Mapping[str, dict]):
        self._rates = MappingProxyType({code.upper(): dict(rate) for code, rate in rates.items()})

    def __contains__(self, hcpcs: str) -> bool:
        return hcpcs.upper() in self._rates

    def __len__(self) -> int:
        return len(self._rates)

    def lookup(self, hcpcs: str, year: int) -> Optional[OppsRow]:
        """Return a synthetic OPPS row for the code, or None."""
        rate = self._rates.get(hcpcs.upper())
        if rate is None:
            return None
        return OppsRow(
            hcpcs=hcpcs.upper(),
            year=year,
            apc=rate.get("apc"),
            status_indicator=rate.get("status_indicator"),
            payment_rate=rate.get("payment_rate"),
            short_desc=rate.get("short_desc"),
        )


@lru_cache()
def load_ed_fallback() -> EdFallbackTable:
    data = _load_json(OPPS_ED_FALLBACK_FILE)
    return EdFallbackTable(data["rates"])


# ============================================
# MPFS Carrier Geography
# ============================================

@dataclass(frozen=True)
class CarrierLocality:
    """Geography of one MPFS carrier/locality pair."""
    carrier_number: str
    locality_code: str
    state_abbrev: str
    state_name: str
    locality_name: str


class CarrierGeography:
    """Carrier to state map plus locality names keyed by "<carrier>_<locality>"."""

    def __init__(self, carriers: Mapping[str, dict], localities: Mapping[str, str]):
        self._carriers = MappingProxyType(dict(carriers))
        self._localities = MappingProxyType(dict(localities))

    def lookup(self, carrier_number: str, locality_code: str) -> Optional[CarrierLocality]:
        """
        Resolve a carrier/locality pair.

        Returns:
            CarrierLocality, or None when the carrier is unknown. Unknown
            localities of a known carrier get a generic name.
        """
        info = self._carriers.get(carrier_number)
        if info is None:
            return None

        key = f"{carrier_number}_{locality_code}"
        return CarrierLocality(
            carrier_number=carrier_number,
            locality_code=locality_code,
            state_abbrev=info["abbrev"],
            state_name=info["name"],
            locality_name=self._localities.get(key, f"Locality {locality_code}"),
        )


@lru_cache()
def load_carrier_geography() -> CarrierGeography:
    data = _load_json(MPFS_CARRIERS_FILE)
    return CarrierGeography(data["carriers"], data.get("localities", {}))


# ============================================
# ZIP3 Prefix Ranges
# ============================================

@lru_cache()
def load_zip3_ranges() -> Tuple[Tuple[int, int, str], ...]:
    """Return (low, high, state) prefix ranges sorted by low bound."""
    data = _load_json(ZIP3_STATES_FILE)
    ranges = [(int(low), int(high), state) for low, high, state in data["ranges"]]
    return tuple(sorted(ranges))
