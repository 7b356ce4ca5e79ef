"""
Reference Store Module.

Read-only query boundary over the Medicare reference tables. Two
implementations share one interface:
- SqlReferenceStore: SQLAlchemy queries, one session per lookup
- InMemoryReferenceStore: dict indexes built once from JSON snapshots

Lookups return frozen row dataclasses (see reference_rows) or None.
Infrastructure failures raise ReferenceLookupError; the resolver decides
how to degrade.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy import distinct, func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.reference import (
    MpfsBenchmark,
    OppsAddendumB,
    DmeposFeeSchedule,
    DmepenFeeSchedule,
    ZipToLocality,
    GpciLocality,
    GpciStateAverage,
)
from app.schemas.reference import CoverageMetrics, ScheduleCoverage
from app.services.location import STATE_NAME_TO_ABBR, normalize_state_name
from app.services.reference_rows import (
    MpfsRow,
    OppsRow,
    DmeRow,
    ZipLocalityRow,
    GpciLocalityRow,
    GpciStateAverageRow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DMEPOS = "dmepos"
DMEPEN = "dmepen"
DME_SCHEDULES = (DMEPOS, DMEPEN)

# Snapshot file per table for the in-memory store
SNAPSHOT_FILES = {
    "mpfs": "mpfs_benchmarks.json",
    "opps": "opps_addendum_b.json",
    DMEPOS: "dmepos_fee_schedule.json",
    DMEPEN: "dmepen_fee_schedule.json",
    "zip_localities": "zip_to_locality.json",
    "gpci_localities": "gpci_localities.json",
    "gpci_state_averages": "gpci_state_avg.json",
}


# ============================================
# Exceptions
# ============================================

class ReferenceStoreError(Exception):
    """Base exception for reference store errors."""
    pass


class ReferenceLookupError(ReferenceStoreError):
    """Raised when a single lookup fails for infrastructure reasons."""
    pass


class ReferenceStoreUnavailable(ReferenceStoreError):
    """Raised when the store cannot serve any lookups."""
    pass


def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def _matches(column_value: Optional[str], wanted: Optional[str]) -> bool:
    """
    Match a DME modifier/state column.

    ``wanted`` of None is unconstrained, "" requires a blank column and
    any other value requires equality.
    """
    if wanted is None:
        return True
    if wanted == "":
        return _blank(column_value)
    return (column_value or "").strip().upper() == wanted


def _with_state_abbr(row: GpciLocalityRow) -> GpciLocalityRow:
    """Return the row with its free-text state column abbreviated."""
    state = normalize_state_name(row.state_abbr)
    if state and state != row.state_abbr:
        return replace(row, state_abbr=state)
    return row


def _state_aliases(state_abbr: str) -> List[str]:
    """Uppercase spellings a GPCI row may use for a state."""
    aliases = [state_abbr.upper()]
    aliases.extend(name.upper() for name, abbr in STATE_NAME_TO_ABBR.items() if abbr == state_abbr.upper())
    return aliases


# ============================================
# Interface
# ============================================

class ReferenceStore(ABC):
    """Read-only, keyed query interface over the reference tables."""

    name = "reference"

    @abstractmethod
    def ping(self) -> None:
        """Raise ReferenceStoreUnavailable if the store cannot serve lookups."""

    @abstractmethod
    def find_mpfs(self, hcpcs: str, modifier: str, year: int, qp_status: str) -> Optional[MpfsRow]:
        """Exact MPFS match; modifier "" selects the base code row."""

    @abstractmethod
    def find_opps(self, hcpcs: str, year: int) -> Optional[OppsRow]:
        pass

    @abstractmethod
    def find_dme(
        self,
        schedule: str,
        hcpcs: str,
        year: int,
        modifier: Optional[str] = None,
        state_abbr: Optional[str] = None,
    ) -> Optional[DmeRow]:
        """
        First DMEPOS/DMEPEN row for the code and year.

        Args:
            schedule: "dmepos" or "dmepen".
            modifier: Exact modifier, "" for blank, None for any.
            state_abbr: Exact state, "" for national (blank), None for any.
        """

    @abstractmethod
    def find_zip_locality(self, zip5: str) -> Optional[ZipLocalityRow]:
        pass

    @abstractmethod
    def find_gpci_by_locality(self, locality_num: str) -> Optional[GpciLocalityRow]:
        pass

    @abstractmethod
    def find_gpci_by_zip(self, zip5: str) -> Optional[GpciLocalityRow]:
        pass

    @abstractmethod
    def find_gpci_state_average(self, state_abbr: str) -> Optional[GpciStateAverageRow]:
        """Precomputed state average only."""

    @abstractmethod
    def list_gpci_for_state(self, state_abbr: str) -> List[GpciLocalityRow]:
        """All localities of a state, ordered by locality number."""

    @abstractmethod
    def coverage_metrics(self) -> CoverageMetrics:
        pass

    def find_first_gpci_for_state(self, state_abbr: str) -> Optional[GpciLocalityRow]:
        rows = self.list_gpci_for_state(state_abbr)
        return rows[0] if rows else None


# ============================================
# SQL Implementation
# ============================================

DME_MODELS = {
    DMEPOS: DmeposFeeSchedule,
    DMEPEN: DmepenFeeSchedule,
}


class SqlReferenceStore(ReferenceStore):
    """
    Reference store backed by the SQLAlchemy models.

    Opens a short-lived session per lookup so concurrent lookups from
    worker threads never share a session.
    """

    name = "database"

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _run(self, table: str, query: Callable[[Session], T]) -> T:
        try:
            with self.session_factory() as session:
                return query(session)
        except SQLAlchemyError as e:
            logger.error(f"{table} lookup failed: {e}")
            raise ReferenceLookupError(f"{table} lookup failed: {e}") from e

    def ping(self) -> None:
        try:
            with self.session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Reference database unavailable: {e}")
            raise ReferenceStoreUnavailable(f"Reference database unavailable: {e}") from e

    def find_mpfs(self, hcpcs: str, modifier: str, year: int, qp_status: str) -> Optional[MpfsRow]:
        if modifier:
            modifier_clause = MpfsBenchmark.modifier == modifier
        else:
            modifier_clause = or_(MpfsBenchmark.modifier.is_(None), MpfsBenchmark.modifier == "")

        stmt = (
            select(MpfsBenchmark)
            .where(
                MpfsBenchmark.hcpcs == hcpcs,
                MpfsBenchmark.year == year,
                MpfsBenchmark.qp_status == qp_status,
                modifier_clause,
            )
            .order_by(MpfsBenchmark.id)
            .limit(1)
        )

        def query(session: Session) -> Optional[MpfsRow]:
            row = session.execute(stmt).scalars().first()
            return MpfsRow.from_record(row) if row else None

        return self._run(MpfsBenchmark.__tablename__, query)

    def find_opps(self, hcpcs: str, year: int) -> Optional[OppsRow]:
        stmt = (
            select(OppsAddendumB)
            .where(OppsAddendumB.hcpcs == hcpcs, OppsAddendumB.year == year)
            .order_by(OppsAddendumB.id)
            .limit(1)
        )

        def query(session: Session) -> Optional[OppsRow]:
            row = session.execute(stmt).scalars().first()
            return OppsRow.from_record(row) if row else None

        return self._run(OppsAddendumB.__tablename__, query)

    def find_dme(
        self,
        schedule: str,
        hcpcs: str,
        year: int,
        modifier: Optional[str] = None,
        state_abbr: Optional[str] = None,
    ) -> Optional[DmeRow]:
        model = DME_MODELS.get(schedule)
        if model is None:
            raise ValueError(f"Unknown DME schedule: {schedule}")

        stmt = select(model).where(model.hcpcs == hcpcs, model.year == year)
        for column, wanted in ((model.modifier, modifier), (model.state_abbr, state_abbr)):
            if wanted is None:
                continue
            if wanted == "":
                stmt = stmt.where(or_(column.is_(None), column == ""))
            else:
                stmt = stmt.where(column == wanted)
        stmt = stmt.order_by(model.id).limit(1)

        def query(session: Session) -> Optional[DmeRow]:
            row = session.execute(stmt).scalars().first()
            return DmeRow.from_record(row) if row else None

        return self._run(model.__tablename__, query)

    def find_zip_locality(self, zip5: str) -> Optional[ZipLocalityRow]:
        stmt = select(ZipToLocality).where(ZipToLocality.zip5 == zip5).order_by(ZipToLocality.id).limit(1)

        def query(session: Session) -> Optional[ZipLocalityRow]:
            row = session.execute(stmt).scalars().first()
            return ZipLocalityRow.from_record(row) if row else None

        return self._run(ZipToLocality.__tablename__, query)

    def find_gpci_by_locality(self, locality_num: str) -> Optional[GpciLocalityRow]:
        stmt = (
            select(GpciLocality)
            .where(GpciLocality.locality_num == locality_num)
            .order_by(GpciLocality.id)
            .limit(1)
        )
        return self._run(GpciLocality.__tablename__, lambda s: self._gpci_row(s.execute(stmt).scalars().first()))

    def find_gpci_by_zip(self, zip5: str) -> Optional[GpciLocalityRow]:
        stmt = (
            select(GpciLocality)
            .where(GpciLocality.zip_code == zip5)
            .order_by(GpciLocality.id)
            .limit(1)
        )
        return self._run(GpciLocality.__tablename__, lambda s: self._gpci_row(s.execute(stmt).scalars().first()))

    def find_gpci_state_average(self, state_abbr: str) -> Optional[GpciStateAverageRow]:
        stmt = select(GpciStateAverage).where(GpciStateAverage.state_abbr == state_abbr).limit(1)

        def query(session: Session) -> Optional[GpciStateAverageRow]:
            row = session.execute(stmt).scalars().first()
            return GpciStateAverageRow.from_record(row) if row else None

        return self._run(GpciStateAverage.__tablename__, query)

    def list_gpci_for_state(self, state_abbr: str) -> List[GpciLocalityRow]:
        stmt = (
            select(GpciLocality)
            .where(func.upper(func.trim(GpciLocality.state_abbr)).in_(_state_aliases(state_abbr)))
            .order_by(GpciLocality.locality_num, GpciLocality.id)
        )

        def query(session: Session) -> List[GpciLocalityRow]:
            return [self._gpci_row(row) for row in session.execute(stmt).scalars().all()]

        return self._run(GpciLocality.__tablename__, query)

    def coverage_metrics(self) -> CoverageMetrics:
        def counts(session: Session, model) -> ScheduleCoverage:
            total, unique = session.execute(
                select(func.count(model.id), func.count(distinct(model.hcpcs)))
            ).one()
            return ScheduleCoverage(total_rows=total or 0, unique_hcpcs=unique or 0)

        def query(session: Session) -> CoverageMetrics:
            return CoverageMetrics(
                mpfs=counts(session, MpfsBenchmark),
                opps=counts(session, OppsAddendumB),
                dmepos=counts(session, DmeposFeeSchedule),
                dmepen=counts(session, DmepenFeeSchedule),
            )

        return self._run("coverage", query)

    @staticmethod
    def _gpci_row(row: Optional[GpciLocality]) -> Optional[GpciLocalityRow]:
        if row is None:
            return None
        return _with_state_abbr(GpciLocalityRow.from_record(row))


# ============================================
# In-Memory Implementation
# ============================================

class InMemoryReferenceStore(ReferenceStore):
    """
    Reference store over dict indexes built once at construction.

    The indexes are never mutated after construction, so the store is
    safe to share across worker threads.
    """

    name = "memory"

    def __init__(
        self,
        mpfs: Iterable[MpfsRow] = (),
        opps: Iterable[OppsRow] = (),
        dmepos: Iterable[DmeRow] = (),
        dmepen: Iterable[DmeRow] = (),
        zip_localities: Iterable[ZipLocalityRow] = (),
        gpci_localities: Iterable[GpciLocalityRow] = (),
        gpci_state_averages: Iterable[GpciStateAverageRow] = (),
    ):
        self._mpfs: Dict[Tuple[str, str, int, str], MpfsRow] = {}
        for row in mpfs:
            key = (row.hcpcs.upper(), (row.modifier or "").upper(), row.year, row.qp_status)
            self._mpfs.setdefault(key, row)

        self._opps: Dict[Tuple[str, int], OppsRow] = {}
        for row in opps:
            self._opps.setdefault((row.hcpcs.upper(), row.year), row)

        self._dme: Dict[str, Dict[Tuple[str, int], List[DmeRow]]] = {}
        for schedule, rows in ((DMEPOS, dmepos), (DMEPEN, dmepen)):
            index = defaultdict(list)
            for row in rows:
                index[(row.hcpcs.upper(), row.year)].append(row)
            self._dme[schedule] = dict(index)

        self._zip: Dict[str, ZipLocalityRow] = {}
        for row in zip_localities:
            self._zip.setdefault(row.zip5, row)

        self._gpci_by_locality: Dict[str, GpciLocalityRow] = {}
        self._gpci_by_zip: Dict[str, GpciLocalityRow] = {}
        by_state = defaultdict(list)
        for row in gpci_localities:
            row = _with_state_abbr(row)
            self._gpci_by_locality.setdefault(row.locality_num, row)
            if row.zip_code:
                self._gpci_by_zip.setdefault(row.zip_code, row)
            if normalize_state_name(row.state_abbr):
                by_state[row.state_abbr].append(row)
        self._gpci_by_state = {
            state: sorted(rows, key=lambda r: r.locality_num)
            for state, rows in by_state.items()
        }

        self._state_avg: Dict[str, GpciStateAverageRow] = {}
        for row in gpci_state_averages:
            self._state_avg.setdefault(row.state_abbr.upper(), row)

    @classmethod
    def from_directory(cls, directory: Path) -> "InMemoryReferenceStore":
        """
        Build a store from JSON snapshot files.

        Each file holds a list of records named after its table
        (mpfs_benchmarks.json, gpci_localities.json, ...). Missing files
        yield empty tables.

        Raises:
            ReferenceStoreError: If a snapshot cannot be parsed.
        """
        directory = Path(directory)
        row_types = {
            "mpfs": MpfsRow,
            "opps": OppsRow,
            DMEPOS: DmeRow,
            DMEPEN: DmeRow,
            "zip_localities": ZipLocalityRow,
            "gpci_localities": GpciLocalityRow,
            "gpci_state_averages": GpciStateAverageRow,
        }

        tables = {}
        for key, filename in SNAPSHOT_FILES.items():
            path = directory / filename
            if not path.exists():
                logger.warning(f"Reference snapshot not found: {path}")
                tables[key] = []
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    records = json.load(f)
                tables[key] = [row_types[key].from_record(record) for record in records]
            except (OSError, ValueError, TypeError) as e:
                raise ReferenceStoreError(f"Invalid reference snapshot {path}: {e}") from e

        logger.info(
            f"Loaded reference snapshots from {directory}: "
            + ", ".join(f"{key}={len(rows)}" for key, rows in tables.items())
        )
        return cls(**tables)

    def ping(self) -> None:
        return None

    def find_mpfs(self, hcpcs: str, modifier: str, year: int, qp_status: str) -> Optional[MpfsRow]:
        return self._mpfs.get((hcpcs.upper(), modifier.upper(), year, qp_status))

    def find_opps(self, hcpcs: str, year: int) -> Optional[OppsRow]:
        return self._opps.get((hcpcs.upper(), year))

    def find_dme(
        self,
        schedule: str,
        hcpcs: str,
        year: int,
        modifier: Optional[str] = None,
        state_abbr: Optional[str] = None,
    ) -> Optional[DmeRow]:
        if schedule not in self._dme:
            raise ValueError(f"Unknown DME schedule: {schedule}")

        for row in self._dme[schedule].get((hcpcs.upper(), year), []):
            if _matches(row.modifier, modifier) and _matches(row.state_abbr, state_abbr):
                return row
        return None

    def find_zip_locality(self, zip5: str) -> Optional[ZipLocalityRow]:
        return self._zip.get(zip5)

    def find_gpci_by_locality(self, locality_num: str) -> Optional[GpciLocalityRow]:
        return self._gpci_by_locality.get(locality_num)

    def find_gpci_by_zip(self, zip5: str) -> Optional[GpciLocalityRow]:
        return self._gpci_by_zip.get(zip5)

    def find_gpci_state_average(self, state_abbr: str) -> Optional[GpciStateAverageRow]:
        return self._state_avg.get(state_abbr.upper())

    def list_gpci_for_state(self, state_abbr: str) -> List[GpciLocalityRow]:
        return list(self._gpci_by_state.get(state_abbr.upper(), []))

    def coverage_metrics(self) -> CoverageMetrics:
        def counts(keys: Iterable[tuple], total: int) -> ScheduleCoverage:
            return ScheduleCoverage(total_rows=total, unique_hcpcs=len({key[0] for key in keys}))

        return CoverageMetrics(
            mpfs=counts(self._mpfs.keys(), len(self._mpfs)),
            opps=counts(self._opps.keys(), len(self._opps)),
            dmepos=counts(self._dme[DMEPOS].keys(), sum(len(r) for r in self._dme[DMEPOS].values())),
            dmepen=counts(self._dme[DMEPEN].keys(), sum(len(r) for r in self._dme[DMEPEN].values())),
        )
