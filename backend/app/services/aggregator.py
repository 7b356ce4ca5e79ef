"""
Resolution Aggregator.

Summarizes per-code resolutions into batch totals and provides the
display labels used for sources and match statuses.
"""

from collections import Counter
from decimal import Decimal
from typing import Dict, Iterable

from app.schemas.reference import (
    CodeResolution,
    MatchStatus,
    ReferenceSource,
    ResolutionSummary,
)
from app.services.fee_calculator import round_cents

# Ties for the most-used source break in this order
SOURCE_PRIORITY = (
    ReferenceSource.OPPS_PAYMENT,
    ReferenceSource.MPFS_RVU_LOCAL,
    ReferenceSource.MPFS_FEE_NATIONAL,
    ReferenceSource.DMEPOS_FEE,
    ReferenceSource.DMEPEN_FEE,
)

SOURCE_LABELS = {
    ReferenceSource.MPFS_RVU_LOCAL: "MPFS (location-adjusted)",
    ReferenceSource.MPFS_FEE_NATIONAL: "MPFS (national)",
    ReferenceSource.OPPS_PAYMENT: "OPPS (hospital outpatient)",
    ReferenceSource.DMEPOS_FEE: "DMEPOS",
    ReferenceSource.DMEPEN_FEE: "DMEPEN",
    ReferenceSource.NONE: "N/A",
}

MATCH_STATUS_LABELS = {
    MatchStatus.PRICED: "Priced",
    MatchStatus.EXISTS_NOT_PRICED: "Exists (not priced)",
    MatchStatus.MISSING_FROM_DATASET: "Missing from datasets",
}

MISSING_EXPLANATION = (
    "We couldn't find this code in our current Medicare datasets (MPFS/OPPS/DMEPOS). "
    "Some specialized services may be billed under other schedules (CLFS, etc.)"
)


def summarize(resolutions: Iterable[CodeResolution]) -> ResolutionSummary:
    """
    Count statuses, total the priced amounts and pick the dominant source.

    Only ``priced`` resolutions contribute to the total; the total is None
    when nothing was priced.
    """
    status_counts: Counter = Counter()
    source_counts: Counter = Counter()
    total = Decimal("0")

    for resolution in resolutions:
        status_counts[resolution.match_status] += 1
        source_counts[resolution.reference_source] += 1
        if resolution.match_status == MatchStatus.PRICED and resolution.reference_price is not None:
            total += Decimal(str(resolution.reference_price))

    total_priced = status_counts[MatchStatus.PRICED]
    primary = primary_source(source_counts)

    return ResolutionSummary(
        total_priced=total_priced,
        total_exists_not_priced=status_counts[MatchStatus.EXISTS_NOT_PRICED],
        total_missing=status_counts[MatchStatus.MISSING_FROM_DATASET],
        total_reference_price=round_cents(float(total)) if total_priced > 0 else None,
        primary_source=primary,
        primary_source_label=source_label(primary),
        source_counts={source.value: count for source, count in source_counts.items()},
    )


def label_resolution(resolution: CodeResolution) -> CodeResolution:
    """
    Copy of a resolution with its display labels filled in.

    Unpriced codes keep ``reference_source`` none, so the status detail is
    taken from the first source that listed the code.
    """
    listed_by = next(
        (step.source for step in resolution.ladder_path if step.found_row),
        resolution.reference_source,
    )
    return resolution.model_copy(update={
        "source_label": source_label(resolution.reference_source),
        "match_status_label": match_status_label(resolution.match_status),
        "status_detail": match_status_explanation(resolution.match_status, listed_by),
    })


def primary_source(source_counts: Dict[ReferenceSource, int]) -> ReferenceSource:
    """Most-used source other than ``none``; ties go to the earlier SOURCE_PRIORITY entry."""
    best = ReferenceSource.NONE
    best_count = 0
    for source in SOURCE_PRIORITY:
        count = source_counts.get(source, 0)
        if count > best_count:
            best, best_count = source, count
    return best


def source_label(source: ReferenceSource) -> str:
    return SOURCE_LABELS[ReferenceSource(source)]


def match_status_label(status: MatchStatus) -> str:
    return MATCH_STATUS_LABELS[MatchStatus(status)]


def match_status_explanation(status: MatchStatus, source: ReferenceSource) -> str:
    """User-facing explanation of a match status for the source that found the row."""
    status = MatchStatus(status)
    source = ReferenceSource(source)

    if status == MatchStatus.PRICED:
        return ""

    if status == MatchStatus.EXISTS_NOT_PRICED:
        if source in (ReferenceSource.MPFS_RVU_LOCAL, ReferenceSource.MPFS_FEE_NATIONAL):
            return "Code exists but Medicare doesn't publish a payable amount in MPFS"
        if source == ReferenceSource.OPPS_PAYMENT:
            return "Packaged or not separately payable under OPPS"
        if source in (ReferenceSource.DMEPOS_FEE, ReferenceSource.DMEPEN_FEE):
            return "Listed but no fee available for this code/modifier/year"
        return "Code exists but not priced in this schedule"

    return MISSING_EXPLANATION
