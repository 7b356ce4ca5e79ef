"""
Reference Price Schemas.

Pydantic models for geographic resolution, per-code reference price
resolution and the aggregated resolver report. Result models are frozen:
they are built once per resolve call and never mutated afterwards.
"""

from typing import Optional, List, Dict
from pydantic import BaseModel, Field, field_validator
from enum import Enum


# ============================================
# Enums
# ============================================

class GeoMethod(str, Enum):
    ZIP_EXACT = "zip_exact"
    ZIP_TO_STATE_AVG = "zip_to_state_avg"
    STATE_AVG = "state_avg"
    NATIONAL_DEFAULT = "national_default"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReferenceSource(str, Enum):
    MPFS_RVU_LOCAL = "mpfs_rvu_local"
    MPFS_FEE_NATIONAL = "mpfs_fee_national"
    OPPS_PAYMENT = "opps_payment"
    DMEPOS_FEE = "dmepos_fee"
    DMEPEN_FEE = "dmepen_fee"
    NONE = "none"


class MatchStatus(str, Enum):
    PRICED = "priced"
    EXISTS_NOT_PRICED = "exists_not_priced"
    MISSING_FROM_DATASET = "missing_from_dataset"


class CareSetting(str, Enum):
    OFFICE = "office"
    FACILITY = "facility"


class SiteOfService(str, Enum):
    """MPFS fee column for locality medians."""
    NONFACILITY = "nonfacility"
    FACILITY = "facility"


# ============================================
# Geography
# ============================================

class GpciIndices(BaseModel):
    """Work, practice expense and malpractice cost multipliers."""
    work: float
    pe: float
    mp: float

    class Config:
        frozen = True

    @classmethod
    def national(cls) -> "GpciIndices":
        return cls(work=1.0, pe=1.0, mp=1.0)

    def is_usable(self) -> bool:
        """True when every index is a positive real locality multiplier."""
        return self.work > 0 and self.pe > 0 and self.mp > 0


class GeoResolution(BaseModel):
    """Outcome of resolving a caller's ZIP/state to a GPCI triple."""
    input_zip: Optional[str] = Field(None, description="ZIP as supplied by the caller")
    input_state: Optional[str] = Field(None, description="State as supplied by the caller")
    resolved_zip: Optional[str] = None
    resolved_state: Optional[str] = None
    resolved_locality: Optional[str] = None
    locality_num: Optional[str] = None
    locality_name: Optional[str] = None
    method: GeoMethod
    confidence: ConfidenceLevel
    gpci: GpciIndices
    notes: List[str] = Field(default_factory=list)
    user_message: str

    class Config:
        frozen = True


class ConfidenceBadge(BaseModel):
    """Short label shown next to a geographic resolution."""
    label: str
    variant: str

    class Config:
        frozen = True


class GeoLookupResponse(BaseModel):
    geo_resolution: GeoResolution
    badge: ConfidenceBadge


# ============================================
# Per-code Resolution
# ============================================

class LadderStep(BaseModel):
    """One attempted lookup against a fee-schedule source."""
    source: ReferenceSource
    attempted: bool = True
    found_row: bool = False
    has_fee: bool = False
    reason: Optional[str] = None

    class Config:
        frozen = True


class ResolutionDebug(BaseModel):
    """Audit details for how a resolution's number was derived."""
    table_matched: Optional[str] = None
    column_used: Optional[str] = None
    status_indicator: Optional[str] = None
    modifier_logic: Optional[str] = None
    fallback_type: Optional[str] = None
    geo_method: Optional[GeoMethod] = None
    year_used: Optional[int] = None
    raw_fee: Optional[float] = None
    gpci_applied: bool = False
    apc: Optional[str] = None
    billed_amount: Optional[float] = None

    class Config:
        frozen = True


class CodeResolution(BaseModel):
    """Reference price outcome for a single billing code."""
    hcpcs: str
    modifier: str = ""
    reference_price: Optional[float] = None
    reference_source: ReferenceSource = ReferenceSource.NONE
    match_status: MatchStatus
    confidence: ConfidenceLevel
    explanation: str
    ladder_path: List[LadderStep] = Field(default_factory=list)
    debug: ResolutionDebug = Field(default_factory=ResolutionDebug)
    source_label: Optional[str] = Field(None, description="Display name of the reference source")
    match_status_label: Optional[str] = Field(None, description="Display name of the match status")
    status_detail: Optional[str] = Field(None, description="Why the code is unpriced, empty when priced")

    class Config:
        frozen = True


# ============================================
# Resolver Input / Output
# ============================================

class CodeInput(BaseModel):
    """A billing code to price."""
    hcpcs: str = Field(..., min_length=1, max_length=10, description="HCPCS or CPT code")
    modifier: Optional[str] = Field(None, max_length=4)
    billed_amount: Optional[float] = Field(None, ge=0)
    is_facility: Optional[bool] = Field(None, description="Prices MPFS off the facility column in the office setting")

    @field_validator("hcpcs")
    @classmethod
    def normalize_hcpcs(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("modifier")
    @classmethod
    def normalize_modifier(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().upper() or None


class ResolverInput(BaseModel):
    """Request to resolve reference prices for a batch of codes."""
    codes: List[CodeInput] = Field(..., min_length=1)
    care_setting: CareSetting = CareSetting.OFFICE
    zip: Optional[str] = Field(None, description="Patient ZIP or ZIP+4")
    state: Optional[str] = Field(None, description="Two-letter state abbreviation")
    year: Optional[int] = Field(None, ge=2000, le=2100, description="MPFS/DMEPOS schedule year")


class ResolutionSummary(BaseModel):
    total_priced: int = 0
    total_exists_not_priced: int = 0
    total_missing: int = 0
    total_reference_price: Optional[float] = None
    primary_source: ReferenceSource = ReferenceSource.NONE
    primary_source_label: Optional[str] = None
    source_counts: Dict[str, int] = Field(default_factory=dict)

    class Config:
        frozen = True


class ResolverMetadata(BaseModel):
    mpfs_year: int
    opps_year: int
    dmepos_year: int
    care_setting: CareSetting
    timed_out_codes: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class ResolverOutput(BaseModel):
    """Complete report of one resolve call."""
    resolutions: List[CodeResolution]
    summary: ResolutionSummary
    geo_resolution: GeoResolution
    metadata: ResolverMetadata

    class Config:
        frozen = True


# ============================================
# Coverage / MPFS Locality Schemas
# ============================================

class ScheduleCoverage(BaseModel):
    total_rows: int = 0
    unique_hcpcs: int = 0


class CoverageMetrics(BaseModel):
    """Row and distinct-code counts per fee schedule."""
    mpfs: ScheduleCoverage
    opps: ScheduleCoverage
    dmepos: ScheduleCoverage
    dmepen: ScheduleCoverage


class StateMedianResponse(BaseModel):
    code: str
    state: str
    year: int
    modifier: Optional[str] = None
    locality_count: int = 0
    nonfacility_median: Optional[float] = None
    facility_median: Optional[float] = None


class MedicareAllowedResponse(BaseModel):
    code: str
    state: str
    year: int
    site_of_service: SiteOfService
    allowed_amount: Optional[float] = None
