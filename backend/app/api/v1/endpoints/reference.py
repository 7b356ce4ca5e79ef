"""
Medicare Reference API Endpoints.

Public APIs for:
- Batch reference price resolution
- Geographic locality lookups
- Reference dataset coverage
- Per-state MPFS medians and allowed amounts from the PFREV4 locality feed
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import (
    get_geo_resolver,
    get_mpfs_table,
    get_reference_resolver,
    get_reference_store,
)
from app.config import settings
from app.core.exceptions import (
    BadRequestException,
    NotFoundException,
    ServiceUnavailableException,
)
from app.core.rate_limiter import limit_default, limit_lookup, limit_resolve
from app.schemas.reference import (
    CoverageMetrics,
    GeoLookupResponse,
    MedicareAllowedResponse,
    ResolverInput,
    ResolverOutput,
    SiteOfService,
    StateMedianResponse,
)
from app.services.geo_resolver import GeoResolver, confidence_badge
from app.services.location import normalize_state
from app.services.mpfs_table import MpfsLocalityTable
from app.services.reference_resolver import ReferenceResolver
from app.services.reference_store import (
    ReferenceStore,
    ReferenceStoreError,
    ReferenceStoreUnavailable,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Resolution
# ============================================

@router.post("/resolve", response_model=ResolverOutput)
@limit_resolve
def resolve_reference_prices(
    request: Request,
    payload: ResolverInput,
    resolver: ReferenceResolver = Depends(get_reference_resolver),
):
    """
    Resolve Medicare reference prices for a batch of billing codes.

    Every code gets a resolution with its ladder path, even when it could
    not be priced. Returns 503 only when the reference data store cannot
    be reached at all.
    """
    if len(payload.codes) > settings.MAX_CODES_PER_REQUEST:
        raise BadRequestException(
            f"At most {settings.MAX_CODES_PER_REQUEST} codes per request "
            f"({len(payload.codes)} given)"
        )

    try:
        return resolver.resolve(payload)
    except ReferenceStoreUnavailable as e:
        logger.error(f"Reference store unavailable: {e}")
        raise ServiceUnavailableException()


# ============================================
# Geography
# ============================================

@router.get("/geo", response_model=GeoLookupResponse)
@limit_lookup
def lookup_geography(
    request: Request,
    zip: Optional[str] = Query(None, description="5-digit ZIP (ZIP+4 accepted)"),
    state: Optional[str] = Query(None, description="Two-letter state code"),
    geo_resolver: GeoResolver = Depends(get_geo_resolver),
):
    """
    Resolve a ZIP and/or state to a GPCI locality.

    Malformed input never fails the request; it falls through to a
    state estimate or the national default.
    """
    resolution = geo_resolver.resolve(zip, state)
    return GeoLookupResponse(geo_resolution=resolution, badge=confidence_badge(resolution))


# ============================================
# Dataset coverage
# ============================================

@router.get("/coverage", response_model=CoverageMetrics)
@limit_default
def get_coverage(
    request: Request,
    store: ReferenceStore = Depends(get_reference_store),
):
    """Row and distinct-code counts for each fee schedule."""
    try:
        return store.coverage_metrics()
    except ReferenceStoreError as e:
        logger.error(f"Coverage query failed: {e}")
        raise ServiceUnavailableException()


# ============================================
# MPFS locality medians
# ============================================

@router.get("/mpfs/state-median", response_model=StateMedianResponse)
@limit_lookup
def get_state_median(
    request: Request,
    code: str = Query(..., min_length=1, max_length=10),
    state: str = Query(..., min_length=2, max_length=2),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    modifier: Optional[str] = Query(None, max_length=4),
    mpfs_table: Optional[MpfsLocalityTable] = Depends(get_mpfs_table),
):
    """Median allowed amounts across a state's localities for one code."""
    if mpfs_table is None:
        raise NotFoundException("MPFS locality feed is not configured")

    state_abbr = normalize_state(state)
    if state_abbr is None:
        raise BadRequestException(f"Unknown state: {state}")

    year = year or settings.DEFAULT_MPFS_YEAR
    code = code.strip().upper()
    modifier = modifier.strip().upper() if modifier is not None else None

    median = mpfs_table.state_median_allowed(year, state_abbr, code, modifier)
    return StateMedianResponse(
        code=code,
        state=state_abbr,
        year=year,
        modifier=modifier,
        locality_count=median.locality_count,
        nonfacility_median=median.nonfacility_median,
        facility_median=median.facility_median,
    )


@router.get("/mpfs/allowed", response_model=MedicareAllowedResponse)
@limit_lookup
def get_medicare_allowed(
    request: Request,
    code: str = Query(..., min_length=1, max_length=10),
    state: str = Query(..., min_length=2, max_length=2),
    site_of_service: SiteOfService = Query(SiteOfService.NONFACILITY),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    mpfs_table: Optional[MpfsLocalityTable] = Depends(get_mpfs_table),
):
    """State median allowed amount for a code at one site of service."""
    if mpfs_table is None:
        raise NotFoundException("MPFS locality feed is not configured")

    state_abbr = normalize_state(state)
    if state_abbr is None:
        raise BadRequestException(f"Unknown state: {state}")

    year = year or settings.DEFAULT_MPFS_YEAR
    code = code.strip().upper()

    return MedicareAllowedResponse(
        code=code,
        state=state_abbr,
        year=year,
        site_of_service=site_of_service,
        allowed_amount=mpfs_table.medicare_allowed_for_code(code, state_abbr, site_of_service, year),
    )
