"""
Fee Calculator Module.

Turns reference rows into payable amounts:
- MPFS: locality-adjusted or national RVU formula, else the published fee
- OPPS: payment rate unless the status indicator marks the code packaged
- DMEPOS/DMEPEN: purchase fee, then ceiling, then rental fee

All amounts are rounded half-up to cents. Non-finite or non-positive
results mean "no fee".
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

from app.config import settings
from app.schemas.reference import GpciIndices, ReferenceSource
from app.services.reference_rows import MpfsRow, OppsRow, DmeRow

logger = logging.getLogger(__name__)

# ============================================
# Constants
# ============================================

# Equipment, supplies, orthotics and prosthetics
DME_PREFIXES = frozenset({"A", "B", "E", "K", "L"})

# OPPS status indicators for packaged / not separately payable codes
OPPS_NOT_PAYABLE_SI = frozenset({"N", "B", "P", "X", "Y"})

# MPFS status codes without a payable amount
MPFS_NOT_PAYABLE_STATUS = frozenset({"B", "I", "N", "R", "X"})

RVU_COLUMN = "RVU calculation"

_CENT = Decimal("0.01")


def round_cents(value: Optional[float]) -> Optional[float]:
    """Round half-up to cents; None for missing or non-finite values."""
    if value is None:
        return None
    try:
        if not math.isfinite(value):
            return None
        return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))
    except (TypeError, ValueError, InvalidOperation):
        return None


def _positive(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) and value > 0 else 0.0


def is_dme_code(hcpcs: str) -> bool:
    """True when the code's leading character is a DME-style prefix."""
    return bool(hcpcs) and hcpcs[0].upper() in DME_PREFIXES


# ============================================
# MPFS
# ============================================

@dataclass(frozen=True)
class MpfsFee:
    """Result of pricing an MPFS row."""
    fee: Optional[float]
    source: ReferenceSource
    gpci_applied: bool = False
    column_used: Optional[str] = None
    raw_fee: Optional[float] = None
    reason: Optional[str] = None


def calculate_mpfs_fee(
    row: MpfsRow,
    gpci: Optional[GpciIndices],
    is_facility: bool,
    default_conversion_factor: Optional[float] = None,
) -> MpfsFee:
    """
    Compute the MPFS fee for a row.

    Args:
        row: MPFS benchmark row.
        gpci: Real locality GPCI, or None when only national rates apply.
        is_facility: Selects the facility PE RVU and published fee column.
        default_conversion_factor: CF used when the row carries none.

    Returns:
        MpfsFee with ``fee`` None when no payable amount can be produced.
    """
    fee_column = "fac_fee" if is_facility else "nonfac_fee"
    raw_fee = row.fac_fee if is_facility else row.nonfac_fee

    status = (row.status or "").strip().upper()
    if status in MPFS_NOT_PAYABLE_STATUS:
        return MpfsFee(
            fee=None,
            source=ReferenceSource.MPFS_FEE_NATIONAL,
            raw_fee=raw_fee,
            reason=f'Status code "{status}" has no separately payable amount',
        )

    work = _positive(row.work_rvu)
    pe = _positive(row.fac_pe_rvu if is_facility else row.nonfac_pe_rvu)
    mp = _positive(row.mp_rvu)
    cf = _positive(row.conversion_factor) or (
        default_conversion_factor or settings.DEFAULT_CONVERSION_FACTOR
    )

    if work > 0 or pe > 0 or mp > 0:
        if gpci is not None and gpci.is_usable():
            fee = round_cents((work * gpci.work + pe * gpci.pe + mp * gpci.mp) * cf)
            if fee is not None and fee > 0:
                return MpfsFee(
                    fee=fee,
                    source=ReferenceSource.MPFS_RVU_LOCAL,
                    gpci_applied=True,
                    column_used=RVU_COLUMN,
                    raw_fee=raw_fee,
                )
        else:
            fee = round_cents((work + pe + mp) * cf)
            if fee is not None and fee > 0:
                return MpfsFee(
                    fee=fee,
                    source=ReferenceSource.MPFS_FEE_NATIONAL,
                    column_used=RVU_COLUMN,
                    raw_fee=raw_fee,
                )
        logger.debug(f"MPFS RVU calculation for {row.hcpcs} produced no usable fee")

    direct = round_cents(_positive(raw_fee))
    if direct:
        return MpfsFee(
            fee=direct,
            source=ReferenceSource.MPFS_FEE_NATIONAL,
            column_used=fee_column,
            raw_fee=raw_fee,
        )

    return MpfsFee(
        fee=None,
        source=ReferenceSource.MPFS_FEE_NATIONAL,
        raw_fee=raw_fee,
        reason="Row exists but no payable amount",
    )


# ============================================
# OPPS
# ============================================

@dataclass(frozen=True)
class OppsPayment:
    fee: Optional[float]
    reason: Optional[str] = None


def opps_payment(row: OppsRow) -> OppsPayment:
    """Payment rate for an OPPS row, honoring packaged status indicators."""
    si = (row.status_indicator or "").strip().upper()
    if si in OPPS_NOT_PAYABLE_SI:
        return OppsPayment(
            fee=None,
            reason=f'Status indicator "{si}" indicates packaged/not separately payable',
        )

    fee = round_cents(_positive(row.payment_rate))
    if fee:
        return OppsPayment(fee=fee)
    return OppsPayment(fee=None, reason="No payment rate available")


# ============================================
# DMEPOS / DMEPEN
# ============================================

@dataclass(frozen=True)
class DmeFee:
    fee: Optional[float]
    column_used: Optional[str] = None


def dme_fee(row: DmeRow) -> DmeFee:
    """Prefer the purchase fee, then the ceiling, then the rental fee."""
    for column in ("fee", "ceiling", "fee_rental"):
        fee = round_cents(_positive(getattr(row, column)))
        if fee:
            return DmeFee(fee=fee, column_used=column)
    return DmeFee(fee=None)
