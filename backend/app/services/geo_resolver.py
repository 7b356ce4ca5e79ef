"""
Geographic Locality Resolver.

Resolves a caller's ZIP and/or state to a GPCI triple through a strict
fallback chain; the first tier that produces a usable GPCI wins:

1. zip_exact         ZIP -> crosswalk -> locality GPCI, or a direct ZIP
                     match in the GPCI table
2. zip_to_state_avg  ZIP known but unmapped; state derived from the ZIP
3. state_avg         no ZIP, state supplied
4. national_default  GPCI 1.0/1.0/1.0

If the caller supplied a ZIP, the result always says so, even when it
falls through to national rates.
"""

import logging
from typing import List, Optional, Tuple

from app.config import settings
from app.core.metrics import track_geo_resolution
from app.schemas.reference import (
    ConfidenceBadge,
    ConfidenceLevel,
    GeoMethod,
    GeoResolution,
    GpciIndices,
)
from app.services.location import normalize_state, normalize_zip, state_for_zip_prefix
from app.services.lookup_guard import LookupGuard
from app.services.reference_rows import GpciLocalityRow, ZipLocalityRow
from app.services.reference_store import ReferenceStore

logger = logging.getLogger(__name__)


CONFIDENCE_BADGES = {
    GeoMethod.ZIP_EXACT: ConfidenceBadge(label="Adjusted by ZIP", variant="success"),
    GeoMethod.ZIP_TO_STATE_AVG: ConfidenceBadge(label="ZIP provided, state estimate", variant="warning"),
    GeoMethod.STATE_AVG: ConfidenceBadge(label="State estimate", variant="warning"),
    GeoMethod.NATIONAL_DEFAULT: ConfidenceBadge(label="National average", variant="default"),
}


def confidence_badge(resolution: GeoResolution) -> ConfidenceBadge:
    """Short label/variant pair describing how the location was resolved."""
    return CONFIDENCE_BADGES[resolution.method]


def _gpci_from_row(row: GpciLocalityRow) -> GpciIndices:
    return GpciIndices(work=row.work_gpci, pe=row.pe_gpci, mp=row.mp_gpci)


class _StateEstimate:
    """GPCI chosen for a state, with how it was chosen."""

    def __init__(
        self,
        gpci: GpciIndices,
        is_average: bool,
        locality_num: Optional[str] = None,
        locality_name: Optional[str] = None,
    ):
        self.gpci = gpci
        self.is_average = is_average
        self.locality_num = locality_num
        self.locality_name = locality_name


class GeoResolver:
    """
    Resolve ZIP/state input to a GeoResolution.

    Stateless apart from its collaborators; identical inputs against an
    unchanged store give identical results.
    """

    def __init__(self, store: ReferenceStore, guard: Optional[LookupGuard] = None):
        self.store = store
        self.guard = guard or LookupGuard(
            timeout=settings.LOOKUP_TIMEOUT_SECONDS,
            retries=settings.LOOKUP_RETRIES,
        )

    def _lookup(self, table: str, label: str, notes: List[str], fn, *args):
        result = self.guard.call(table, fn, *args)
        if not result.ok:
            notes.append(f"{label} unavailable ({result.reason})")
            return None
        return result.value

    # ============================================
    # State-level estimate
    # ============================================

    def _state_estimate(self, state: str, notes: List[str]) -> Optional[_StateEstimate]:
        """
        Precomputed state average, else an average over the state's
        localities, else the state's first listed locality.
        """
        avg = self._lookup(
            "gpci_state_avg", "State average lookup", notes,
            self.store.find_gpci_state_average, state,
        )
        if avg is not None and avg.is_usable():
            notes.append(f"Using {state} state average GPCI")
            return _StateEstimate(
                gpci=GpciIndices(work=avg.avg_work_gpci, pe=avg.avg_pe_gpci, mp=avg.avg_mp_gpci),
                is_average=True,
                locality_name=f"{state} state average",
            )

        localities = self._lookup(
            "gpci_localities", "State locality lookup", notes,
            self.store.list_gpci_for_state, state,
        ) or []
        usable = [row for row in localities if row.is_usable()]
        if usable:
            n = len(usable)
            notes.append(f"Computed {state} state average GPCI from {n} localities")
            return _StateEstimate(
                gpci=GpciIndices(
                    work=sum(r.work_gpci for r in usable) / n,
                    pe=sum(r.pe_gpci for r in usable) / n,
                    mp=sum(r.mp_gpci for r in usable) / n,
                ),
                is_average=True,
                locality_name=f"{state} state average",
            )

        first = self._lookup(
            "gpci_localities", "First locality lookup", notes,
            self.store.find_first_gpci_for_state, state,
        )
        if first is not None and first.is_usable():
            notes.append(f"Using first locality for {state}")
            return _StateEstimate(
                gpci=_gpci_from_row(first),
                is_average=False,
                locality_num=first.locality_num,
                locality_name=first.locality_name,
            )

        notes.append(f"No GPCI data found for state {state}")
        return None

    def _derive_state(
        self,
        zip5: str,
        crosswalk: Optional[ZipLocalityRow],
        zip_gpci: Optional[GpciLocalityRow],
        state_abbr: Optional[str],
        notes: List[str],
    ) -> Optional[str]:
        candidates: List[Tuple[Optional[str], str]] = [
            (crosswalk.state_abbr if crosswalk else None, "ZIP crosswalk"),
            (zip_gpci.state_abbr if zip_gpci else None, "GPCI table"),
            (state_for_zip_prefix(zip5), f"ZIP prefix {zip5[:3]}"),
        ]
        for value, origin in candidates:
            state = normalize_state(value)
            if state:
                notes.append(f"State {state} derived from {origin}")
                return state

        if state_abbr:
            notes.append(f"Using provided state {state_abbr}")
        return state_abbr

    # ============================================
    # Main resolver
    # ============================================

    def resolve(self, zip_input: Optional[str] = None, state_input: Optional[str] = None) -> GeoResolution:
        """
        Resolve location input to GPCI indices.

        Args:
            zip_input: Raw ZIP or ZIP+4 as supplied by the caller.
            state_input: Raw two-letter state as supplied by the caller.

        Returns:
            GeoResolution; never raises for bad input or failed lookups.
        """
        resolution = self._resolve(zip_input, state_input)
        track_geo_resolution(resolution.method.value)
        logger.info(
            f"Geo resolved zip={zip_input!r} state={state_input!r} -> "
            f"{resolution.method.value} ({resolution.locality_name or resolution.resolved_state or 'national'})"
        )
        return resolution

    def _resolve(self, zip_input: Optional[str], state_input: Optional[str]) -> GeoResolution:
        notes: List[str] = []
        raw_zip = zip_input.strip() if isinstance(zip_input, str) and zip_input.strip() else None
        raw_state = state_input.strip() if isinstance(state_input, str) and state_input.strip() else None

        zip5 = normalize_zip(raw_zip)
        state_abbr = normalize_state(raw_state)

        if zip5:
            notes.append(f"ZIP normalized: {zip5}")
        elif raw_zip:
            notes.append(f"ZIP {raw_zip!r} could not be normalized")
        if state_abbr:
            notes.append(f"State normalized: {state_abbr}")
        elif raw_state:
            notes.append(f"State {raw_state!r} is not a recognized US state")

        base = {
            "input_zip": raw_zip,
            "input_state": raw_state,
        }

        if zip5:
            return self._resolve_zip(zip5, state_abbr, notes, base)

        if state_abbr:
            estimate = self._state_estimate(state_abbr, notes)
            if estimate:
                if raw_zip:
                    message = f"ZIP {raw_zip} not recognized, using {state_abbr} state-level estimate"
                elif estimate.is_average:
                    message = f"Using {state_abbr} state-level estimate (no ZIP provided)"
                else:
                    message = f"Using {state_abbr} estimate (no ZIP provided)"
                return GeoResolution(
                    **base,
                    resolved_state=state_abbr,
                    resolved_locality=None if estimate.is_average else estimate.locality_name,
                    locality_num=estimate.locality_num,
                    locality_name=estimate.locality_name,
                    method=GeoMethod.STATE_AVG,
                    confidence=ConfidenceLevel.MEDIUM,
                    gpci=estimate.gpci,
                    notes=notes,
                    user_message=message,
                )

        if raw_zip:
            notes.append("Using national default GPCI (ZIP not recognized)")
            message = f"ZIP {raw_zip} provided but not recognized, using national average rates"
        else:
            notes.append("Using national default GPCI (no location info)")
            message = "Using national average rates (no location provided)"

        return GeoResolution(
            **base,
            resolved_state=state_abbr,
            method=GeoMethod.NATIONAL_DEFAULT,
            confidence=ConfidenceLevel.LOW,
            gpci=GpciIndices.national(),
            notes=notes,
            user_message=message,
        )

    def _resolve_zip(self, zip5: str, state_abbr: Optional[str], notes: List[str], base: dict) -> GeoResolution:
        # 1a. Crosswalk -> locality -> GPCI
        crosswalk = self._lookup(
            "zip_to_locality", "ZIP crosswalk lookup", notes,
            self.store.find_zip_locality, zip5,
        )
        if crosswalk is not None:
            notes.append(f"Found in crosswalk: locality {crosswalk.locality_num}")
            gpci_row = self._lookup(
                "gpci_localities", "Locality GPCI lookup", notes,
                self.store.find_gpci_by_locality, crosswalk.locality_num,
            )
            if gpci_row is not None and gpci_row.is_usable():
                area = gpci_row.locality_name or crosswalk.county_name or gpci_row.state_abbr
                return GeoResolution(
                    **base,
                    resolved_zip=zip5,
                    resolved_state=normalize_state(crosswalk.state_abbr) or normalize_state(gpci_row.state_abbr),
                    resolved_locality=gpci_row.locality_name,
                    locality_num=gpci_row.locality_num,
                    locality_name=gpci_row.locality_name,
                    method=GeoMethod.ZIP_EXACT,
                    confidence=ConfidenceLevel.HIGH,
                    gpci=_gpci_from_row(gpci_row),
                    notes=notes,
                    user_message=f"Adjusted for your area ({area})",
                )
            if gpci_row is not None:
                notes.append(f"GPCI row for locality {crosswalk.locality_num} has non-positive indices")
            else:
                notes.append(f"No GPCI row for locality {crosswalk.locality_num}")

        # 1b. Direct ZIP match in the GPCI table
        zip_gpci = self._lookup(
            "gpci_localities", "GPCI ZIP lookup", notes,
            self.store.find_gpci_by_zip, zip5,
        )
        if zip_gpci is not None and zip_gpci.is_usable():
            notes.append("Direct ZIP match in GPCI table")
            return GeoResolution(
                **base,
                resolved_zip=zip5,
                resolved_state=normalize_state(zip_gpci.state_abbr),
                resolved_locality=zip_gpci.locality_name,
                locality_num=zip_gpci.locality_num,
                locality_name=zip_gpci.locality_name,
                method=GeoMethod.ZIP_EXACT,
                confidence=ConfidenceLevel.HIGH,
                gpci=_gpci_from_row(zip_gpci),
                notes=notes,
                user_message=f"Adjusted for your area ({zip_gpci.locality_name or zip_gpci.state_abbr})",
            )

        # 2. State derived from the ZIP
        notes.append(f"ZIP {zip5} not mapped to a locality, deriving state")
        derived_state = self._derive_state(zip5, crosswalk, zip_gpci, state_abbr, notes)

        if derived_state:
            estimate = self._state_estimate(derived_state, notes)
            if estimate:
                if estimate.is_average:
                    message = f"ZIP {zip5} provided, using {derived_state} state average (exact locality not yet mapped)"
                else:
                    message = f"ZIP {zip5} provided, using {derived_state} estimate (exact locality not yet mapped)"
                return GeoResolution(
                    **base,
                    resolved_zip=zip5,
                    resolved_state=derived_state,
                    resolved_locality=None if estimate.is_average else estimate.locality_name,
                    locality_num=estimate.locality_num,
                    locality_name=estimate.locality_name,
                    method=GeoMethod.ZIP_TO_STATE_AVG,
                    confidence=ConfidenceLevel.MEDIUM,
                    gpci=estimate.gpci,
                    notes=notes,
                    user_message=message,
                )

        # 4. ZIP supplied but nothing resolvable
        notes.append(f"Could not resolve ZIP {zip5} to any state or locality")
        return GeoResolution(
            **base,
            resolved_zip=zip5,
            resolved_state=derived_state,
            method=GeoMethod.NATIONAL_DEFAULT,
            confidence=ConfidenceLevel.LOW,
            gpci=GpciIndices.national(),
            notes=notes,
            user_message=f"ZIP {zip5} provided, using national average (locality mapping coming soon)",
        )
