"""
Medicare Reference Resolver.

Prices a batch of billing codes against the Medicare fee schedules.

Source ladder per care setting:
- office:   MPFS -> DMEPOS (DME-style codes) -> DMEPEN (no DMEPOS row)
- facility: OPPS -> ED fallback table (no payable OPPS rate) -> MPFS -> DMEPOS,
  stopping at an OPPS row whose status indicator marks the code packaged

Geography is resolved once per call and shared by every code. Each
code's ladder runs on a worker pool and every store query goes through
a LookupGuard, so a failed or slow lookup only degrades its own rung.
"""

import concurrent.futures
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from app.config import settings
from app.core.metrics import track_code_resolution, track_resolve
from app.core.sentry import capture_exception
from app.schemas.reference import (
    CareSetting,
    CodeInput,
    CodeResolution,
    ConfidenceLevel,
    GeoMethod,
    GeoResolution,
    GpciIndices,
    LadderStep,
    MatchStatus,
    ReferenceSource,
    ResolutionDebug,
    ResolverInput,
    ResolverMetadata,
    ResolverOutput,
)
from app.services.aggregator import label_resolution, summarize
from app.services.fee_calculator import (
    OPPS_NOT_PAYABLE_SI,
    calculate_mpfs_fee,
    dme_fee,
    is_dme_code,
    opps_payment,
)
from app.services.geo_resolver import GeoResolver
from app.services.lookup_guard import LookupGuard
from app.services.reference_assets import EdFallbackTable, load_ed_fallback
from app.services.reference_rows import OppsRow
from app.services.reference_store import DMEPEN, DMEPOS, ReferenceStore

logger = logging.getLogger(__name__)

MPFS_TABLE = "mpfs_benchmarks"
OPPS_TABLE = "opps_addendum_b"
DME_TABLES = {
    DMEPOS: "dmepos_fee_schedule",
    DMEPEN: "dmepen_fee_schedule",
}
DME_SOURCES = {
    DMEPOS: ReferenceSource.DMEPOS_FEE,
    DMEPEN: ReferenceSource.DMEPEN_FEE,
}
DME_EXPLANATIONS = {
    DMEPOS: "Medicare reference from DMEPOS fee schedule",
    DMEPEN: "Medicare reference from DMEPEN (enteral/parenteral) fee schedule",
}

MISSING_EXPLANATION = "We couldn't find this code in our current Medicare datasets (MPFS/OPPS/DMEPOS)"
DEADLINE_REASON = "request deadline exceeded"
DEADLINE_EXPLANATION = "Reference lookup did not finish before the request deadline"


# ============================================
# Ladder bookkeeping
# ============================================

@dataclass(frozen=True)
class LadderContext:
    """Per-call inputs shared read-only by every code's ladder."""
    geo: GeoResolution
    gpci: Optional[GpciIndices]
    guard: LookupGuard
    care_setting: CareSetting
    mpfs_year: int
    opps_year: int
    dmepos_year: int


@dataclass
class RungOutcome:
    """What one source contributed to a code's ladder."""
    step: LadderStep
    price: Optional[float] = None
    source: ReferenceSource = ReferenceSource.NONE
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    explanation: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def priced(self) -> bool:
        return self.price is not None

    @property
    def found_row(self) -> bool:
        return self.step.found_row

    @property
    def packaged(self) -> bool:
        """OPPS row whose status indicator marks the code packaged."""
        si = (self.debug.get("status_indicator") or "").strip().upper()
        return (
            self.found_row
            and self.debug.get("table_matched") == OPPS_TABLE
            and si in OPPS_NOT_PAYABLE_SI
        )


def _not_found_reason(failures: List[str], default: str) -> str:
    return failures[0] if failures else default


class ReferenceResolver:
    """
    Resolve Medicare reference prices for a batch of codes.

    The resolver owns two long-lived worker pools shared by every call:
    one for code ladders and one for store lookups. The lookup pool size
    is the most store queries in flight at once across all callers.
    Call ``close()`` when the resolver is no longer needed.

    Args:
        store: Reference store queried for every rung.
        ed_fallback: Secondary OPPS table for ED visit codes.
        max_workers: Concurrent code ladders.
        lookup_workers: Concurrent store lookups (default: twice max_workers).
        lookup_timeout: Seconds allowed per store lookup attempt.
        lookup_retries: Extra attempts after a failed lookup.
        deadline_seconds: Overall time budget for one call.
    """

    def __init__(
        self,
        store: ReferenceStore,
        ed_fallback: Optional[EdFallbackTable] = None,
        max_workers: Optional[int] = None,
        lookup_workers: Optional[int] = None,
        lookup_timeout: Optional[float] = None,
        lookup_retries: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
        qp_status: Optional[str] = None,
        conversion_factor: Optional[float] = None,
    ):
        self.store = store
        self.ed_fallback = ed_fallback if ed_fallback is not None else load_ed_fallback()
        self.max_workers = max(1, max_workers or settings.RESOLVER_MAX_WORKERS)
        self.lookup_workers = max(1, lookup_workers or self.max_workers * 2)
        self.lookup_timeout = lookup_timeout if lookup_timeout is not None else settings.LOOKUP_TIMEOUT_SECONDS
        self.lookup_retries = lookup_retries if lookup_retries is not None else settings.LOOKUP_RETRIES
        self.deadline_seconds = deadline_seconds if deadline_seconds is not None else settings.REQUEST_DEADLINE_SECONDS
        self.qp_status = qp_status or settings.MPFS_QP_STATUS
        self.conversion_factor = conversion_factor or settings.DEFAULT_CONVERSION_FACTOR

        self.lookup_pool = ThreadPoolExecutor(
            max_workers=self.lookup_workers,
            thread_name_prefix="reference-lookup",
        )
        self.code_pool = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="reference-code",
        )

    def build_guard(self, deadline: Optional[float] = None) -> LookupGuard:
        """LookupGuard running on the shared lookup pool."""
        return LookupGuard(
            executor=self.lookup_pool,
            timeout=self.lookup_timeout,
            retries=self.lookup_retries,
            deadline=deadline,
        )

    def close(self) -> None:
        """Shut down the worker pools; queued work is cancelled."""
        self.code_pool.shutdown(wait=False, cancel_futures=True)
        self.lookup_pool.shutdown(wait=False, cancel_futures=True)
        logger.info("Reference resolver worker pools shut down")

    # ============================================
    # Entry point
    # ============================================

    def resolve(self, request: ResolverInput) -> ResolverOutput:
        """
        Resolve every code in the request.

        Returns:
            ResolverOutput with one resolution per input code, in input order.

        Raises:
            ReferenceStoreUnavailable: If the store cannot serve this call at all.
        """
        started = time.perf_counter()
        deadline = time.monotonic() + self.deadline_seconds

        self.store.ping()

        mpfs_year = request.year or settings.DEFAULT_MPFS_YEAR
        dmepos_year = request.year or settings.DEFAULT_DMEPOS_YEAR
        opps_year = settings.DEFAULT_OPPS_YEAR

        logger.info(
            f"Resolving {len(request.codes)} codes (care_setting={request.care_setting.value}, "
            f"zip={request.zip!r}, state={request.state!r})"
        )

        guard = self.build_guard(deadline)
        geo = GeoResolver(self.store, guard).resolve(request.zip, request.state)

        context = LadderContext(
            geo=geo,
            gpci=geo.gpci if geo.method != GeoMethod.NATIONAL_DEFAULT else None,
            guard=guard,
            care_setting=request.care_setting,
            mpfs_year=mpfs_year,
            opps_year=opps_year,
            dmepos_year=dmepos_year,
        )
        resolutions, timed_out = self._run_ladders(request.codes, context, deadline)
        resolutions = [label_resolution(r) for r in resolutions]

        for resolution in resolutions:
            track_code_resolution(resolution.match_status.value, resolution.reference_source.value)

        summary = summarize(resolutions)
        duration = time.perf_counter() - started
        track_resolve(duration, len(timed_out))
        logger.info(
            f"Resolved {len(resolutions)} codes in {duration:.3f}s: "
            f"priced={summary.total_priced} not_priced={summary.total_exists_not_priced} "
            f"missing={summary.total_missing} timed_out={len(timed_out)}"
        )

        return ResolverOutput(
            resolutions=resolutions,
            summary=summary,
            geo_resolution=geo,
            metadata=ResolverMetadata(
                mpfs_year=mpfs_year,
                opps_year=opps_year,
                dmepos_year=dmepos_year,
                care_setting=request.care_setting,
                timed_out_codes=timed_out,
            ),
        )

    def _run_ladders(
        self,
        codes: List[CodeInput],
        context: LadderContext,
        deadline: float,
    ) -> Tuple[List[CodeResolution], List[str]]:
        """Fan the ladders out over the code pool and collect them by input index."""
        futures = {self.code_pool.submit(self.resolve_code, code, context): idx for idx, code in enumerate(codes)}
        done, not_done = concurrent.futures.wait(
            futures,
            timeout=max(0.0, deadline - time.monotonic()),
        )

        results: List[Optional[CodeResolution]] = [None] * len(codes)
        for future in done:
            idx = futures[future]
            try:
                results[idx] = future.result()
            except Exception as e:
                logger.exception(f"Ladder for {codes[idx].hcpcs} failed")
                capture_exception(
                    e,
                    context={"ladder": {"hcpcs": codes[idx].hcpcs, "care_setting": context.care_setting.value}},
                    tags={"component": "reference_resolver"},
                )
                results[idx] = self._unresolved(codes[idx], f"resolution failed: {e}", MISSING_EXPLANATION)

        timed_out = []
        for future in not_done:
            future.cancel()
            idx = futures[future]
            timed_out.append(codes[idx].hcpcs)
            results[idx] = self._unresolved(codes[idx], DEADLINE_REASON, DEADLINE_EXPLANATION)

        if timed_out:
            logger.warning(f"Request deadline exceeded; {len(timed_out)} codes unresolved: {timed_out}")

        return results, timed_out

    @staticmethod
    def _unresolved(code: CodeInput, reason: str, explanation: str) -> CodeResolution:
        return CodeResolution(
            hcpcs=code.hcpcs,
            modifier=code.modifier or "",
            match_status=MatchStatus.MISSING_FROM_DATASET,
            confidence=ConfidenceLevel.LOW,
            explanation=explanation,
            ladder_path=[LadderStep(source=ReferenceSource.NONE, attempted=False, reason=reason)],
            debug=ResolutionDebug(billed_amount=code.billed_amount),
        )

    # ============================================
    # Per-code ladder
    # ============================================

    def resolve_code(self, code: CodeInput, context: LadderContext) -> CodeResolution:
        """Walk the source ladder for one code."""
        hcpcs = code.hcpcs.strip().upper()
        modifier = (code.modifier or "").strip().upper()

        rungs: List[RungOutcome] = []

        def priced() -> bool:
            return any(r.priced for r in rungs)

        if context.care_setting == CareSetting.OFFICE:
            # The per-code flag only picks the MPFS fee column here
            is_facility = bool(code.is_facility)
            rungs.append(self._mpfs_rung(hcpcs, modifier, is_facility, context))

            if not priced() and is_dme_code(hcpcs):
                dmepos = self._dme_rung(DMEPOS, hcpcs, modifier, context)
                rungs.append(dmepos)
                if not dmepos.found_row:
                    rungs.append(self._dme_rung(DMEPEN, hcpcs, modifier, context))
        else:
            opps = self._opps_rung(hcpcs, context)
            rungs.append(opps)

            # A packaged OPPS code has no separate payment under any schedule
            if not opps.packaged:
                if not opps.priced:
                    rungs.append(self._ed_fallback_rung(hcpcs, context))

                if not priced():
                    rungs.append(self._mpfs_rung(hcpcs, modifier, True, context, opps_fallback=True))

                if not priced() and is_dme_code(hcpcs):
                    rungs.append(self._dme_rung(DMEPOS, hcpcs, modifier, context))

        resolution = self._finalize(hcpcs, modifier, code.billed_amount, rungs)
        logger.debug(
            f"{hcpcs}{'-' + modifier if modifier else ''}: {resolution.match_status.value} "
            f"via {resolution.reference_source.value} "
            f"({' -> '.join(s.source.value for s in resolution.ladder_path)})"
        )
        return resolution

    def _finalize(
        self,
        hcpcs: str,
        modifier: str,
        billed_amount: Optional[float],
        rungs: List[RungOutcome],
    ) -> CodeResolution:
        ladder_path = [r.step for r in rungs]

        winner = next((r for r in rungs if r.priced), None)
        if winner is not None:
            return CodeResolution(
                hcpcs=hcpcs,
                modifier=modifier,
                reference_price=winner.price,
                reference_source=winner.source,
                match_status=MatchStatus.PRICED,
                confidence=winner.confidence,
                explanation=winner.explanation,
                ladder_path=ladder_path,
                debug=ResolutionDebug(**winner.debug, billed_amount=billed_amount),
            )

        listed = next((r for r in rungs if r.found_row), None)
        if listed is not None:
            return CodeResolution(
                hcpcs=hcpcs,
                modifier=modifier,
                match_status=MatchStatus.EXISTS_NOT_PRICED,
                confidence=ConfidenceLevel.LOW,
                explanation=listed.explanation,
                ladder_path=ladder_path,
                debug=ResolutionDebug(**listed.debug, billed_amount=billed_amount),
            )

        return CodeResolution(
            hcpcs=hcpcs,
            modifier=modifier,
            match_status=MatchStatus.MISSING_FROM_DATASET,
            confidence=ConfidenceLevel.LOW,
            explanation=MISSING_EXPLANATION,
            ladder_path=ladder_path,
            debug=ResolutionDebug(billed_amount=billed_amount),
        )

    # ============================================
    # MPFS
    # ============================================

    def _mpfs_rung(
        self,
        hcpcs: str,
        modifier: str,
        is_facility: bool,
        context: LadderContext,
        opps_fallback: bool = False,
    ) -> RungOutcome:
        """Exact (code, modifier) row first, then the base code row."""
        guard = context.guard
        year = context.mpfs_year
        failures: List[str] = []
        row = None
        modifier_logic = "base_code"

        if modifier:
            result = guard.call(MPFS_TABLE, self.store.find_mpfs, hcpcs, modifier, year, self.qp_status)
            if result.ok and result.value is not None:
                row = result.value
                modifier_logic = "exact_match"
            elif not result.ok:
                failures.append(result.reason)

        if row is None:
            result = guard.call(MPFS_TABLE, self.store.find_mpfs, hcpcs, "", year, self.qp_status)
            if result.ok and result.value is not None:
                row = result.value
                modifier_logic = "base_code_fallback" if modifier else "base_code"
            elif not result.ok:
                failures.append(result.reason)

        if row is None:
            return RungOutcome(
                step=LadderStep(
                    source=ReferenceSource.MPFS_RVU_LOCAL,
                    reason=_not_found_reason(failures, f"Not found in MPFS {year}"),
                ),
            )

        fee = calculate_mpfs_fee(row, context.gpci, is_facility, self.conversion_factor)
        debug = {
            "table_matched": MPFS_TABLE,
            "column_used": fee.column_used,
            "status_indicator": row.status,
            "modifier_logic": modifier_logic,
            "geo_method": context.geo.method,
            "year_used": year,
            "raw_fee": fee.raw_fee,
            "gpci_applied": fee.gpci_applied,
        }

        if fee.fee is None:
            return RungOutcome(
                step=LadderStep(
                    source=ReferenceSource.MPFS_RVU_LOCAL,
                    found_row=True,
                    reason=fee.reason,
                ),
                explanation="Code exists in MPFS but Medicare doesn't publish a payable amount",
                debug=debug,
            )

        if opps_fallback:
            explanation = "Medicare reference from MPFS (physician fee) as OPPS fallback"
        elif fee.gpci_applied:
            explanation = "Medicare reference from MPFS, adjusted for your location"
        else:
            explanation = "Medicare reference from MPFS (national rate)"

        if fee.gpci_applied and context.geo.method == GeoMethod.ZIP_EXACT:
            confidence = ConfidenceLevel.HIGH
        else:
            confidence = ConfidenceLevel.MEDIUM

        return RungOutcome(
            step=LadderStep(source=fee.source, found_row=True, has_fee=True),
            price=fee.fee,
            source=fee.source,
            confidence=confidence,
            explanation=explanation,
            debug=debug,
        )

    # ============================================
    # OPPS
    # ============================================

    def _opps_rung(self, hcpcs: str, context: LadderContext) -> RungOutcome:
        year = context.opps_year
        result = context.guard.call(OPPS_TABLE, self.store.find_opps, hcpcs, year)

        if not result.ok or result.value is None:
            return RungOutcome(
                step=LadderStep(
                    source=ReferenceSource.OPPS_PAYMENT,
                    reason=result.reason if not result.ok else f"Not found in OPPS Addendum B {year}",
                ),
            )

        return self._price_opps_row(result.value, OPPS_TABLE, context)

    def _ed_fallback_rung(self, hcpcs: str, context: LadderContext) -> RungOutcome:
        """Secondary OPPS source, consulted when the primary OPPS table has no payable rate."""
        row = self.ed_fallback.lookup(hcpcs, context.opps_year)
        if row is None:
            return RungOutcome(
                step=LadderStep(
                    source=ReferenceSource.OPPS_PAYMENT,
                    reason="Not in emergency department fallback table",
                ),
            )

        logger.info(f"{hcpcs} priced from the emergency department fallback table")
        return self._price_opps_row(row, EdFallbackTable.TABLE_NAME, context)

    def _price_opps_row(self, row: OppsRow, table: str, context: LadderContext) -> RungOutcome:
        payment = opps_payment(row)
        debug = {
            "table_matched": table,
            "column_used": "payment_rate",
            "status_indicator": row.status_indicator,
            "year_used": context.opps_year,
            "raw_fee": row.payment_rate,
            "apc": row.apc,
        }
        is_fallback = table != OPPS_TABLE

        if payment.fee is None:
            return RungOutcome(
                step=LadderStep(
                    source=ReferenceSource.OPPS_PAYMENT,
                    found_row=True,
                    reason=payment.reason,
                ),
                explanation=payment.reason or "Packaged or not separately payable under OPPS",
                debug=debug,
            )

        explanation = "Medicare reference from OPPS (hospital outpatient), national rate"
        if is_fallback:
            explanation += " (emergency department fallback table)"

        return RungOutcome(
            step=LadderStep(
                source=ReferenceSource.OPPS_PAYMENT,
                found_row=True,
                has_fee=True,
                reason="Priced from emergency department fallback table" if is_fallback else None,
            ),
            price=payment.fee,
            source=ReferenceSource.OPPS_PAYMENT,
            confidence=ConfidenceLevel.HIGH,
            explanation=explanation,
            debug=debug,
        )

    # ============================================
    # DMEPOS / DMEPEN
    # ============================================

    @staticmethod
    def _dme_attempts(schedule: str, modifier: str, state: Optional[str]):
        """
        (modifier, state, modifier_logic, fallback_type) filters in order.

        For the filters, "" means blank/national and None means any value.
        """
        if schedule == DMEPEN:
            attempts = []
            if modifier:
                attempts.append((modifier, state, "exact_match", "exact_match"))
            attempts.append((None, None, "first_available", "first_available"))
            return attempts

        attempts = []
        if modifier and state:
            attempts.append((modifier, state, "exact_match", "exact_state_modifier"))
        if modifier:
            attempts.append((modifier, "", "exact_modifier", "national_with_modifier"))
        if state:
            attempts.append(("", state, "no_modifier_fallback", "state_no_modifier"))
        attempts.append(("", "", "no_modifier_fallback", "national_no_modifier"))
        attempts.append((None, None, "first_available", "first_available"))
        return attempts

    def _dme_rung(self, schedule: str, hcpcs: str, modifier: str, context: LadderContext) -> RungOutcome:
        table = DME_TABLES[schedule]
        source = DME_SOURCES[schedule]
        year = context.dmepos_year
        state = context.geo.resolved_state
        failures: List[str] = []

        row = None
        modifier_logic = fallback_type = "not_found"
        for mod_filter, state_filter, logic, fallback in self._dme_attempts(schedule, modifier, state):
            result = context.guard.call(
                table, self.store.find_dme, schedule, hcpcs, year, mod_filter, state_filter,
            )
            if not result.ok:
                failures.append(result.reason)
                continue
            if result.value is not None:
                row, modifier_logic, fallback_type = result.value, logic, fallback
                break

        if row is None:
            return RungOutcome(
                step=LadderStep(
                    source=source,
                    reason=_not_found_reason(failures, f"Not found in {schedule.upper()} fee schedule {year}"),
                ),
            )

        fee = dme_fee(row)
        debug = {
            "table_matched": table,
            "column_used": fee.column_used,
            "modifier_logic": modifier_logic,
            "fallback_type": fallback_type,
            "year_used": year,
            "raw_fee": row.fee,
        }

        if fee.fee is None:
            return RungOutcome(
                step=LadderStep(source=source, found_row=True, reason="Row exists but no fee available"),
                explanation=f"Code listed in {schedule.upper()} but no fee available for this code/modifier/year",
                debug=debug,
            )

        return RungOutcome(
            step=LadderStep(source=source, found_row=True, has_fee=True),
            price=fee.fee,
            source=source,
            confidence=ConfidenceLevel.MEDIUM,
            explanation=DME_EXPLANATIONS[schedule],
            debug=debug,
        )
