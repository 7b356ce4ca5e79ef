"""
Medicare Reference Table Models.

Read-only reference data consumed by the price resolver:
- mpfs_benchmarks: Physician Fee Schedule RVUs and national fees
- opps_addendum_b: Hospital outpatient payment rates
- dmepos_fee_schedule / dmepen_fee_schedule: Equipment and nutrition fees
- zip_to_locality: ZIP5 to CMS locality crosswalk
- gpci_localities / gpci_state_avg: Geographic practice cost indices

The tables are populated by the import tooling; the resolver never writes them.
"""

from typing import Optional

from sqlalchemy import String, Integer, Float, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, IDMixin, ScheduleCodeMixin


class MpfsBenchmark(Base, IDMixin, ScheduleCodeMixin):
    """
    One MPFS row per (hcpcs, modifier, year, qp_status).

    Empty-string modifier denotes the base code.
    """
    __tablename__ = "mpfs_benchmarks"

    modifier: Mapped[str] = mapped_column(String(2), nullable=False, default="")
    qp_status: Mapped[str] = mapped_column(String(10), nullable=False, default="nonQP")
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)

    # RVUs
    work_rvu: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    nonfac_pe_rvu: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fac_pe_rvu: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    mp_rvu: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Published national amounts
    nonfac_fee: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fac_fee: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    conversion_factor: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_mpfs_lookup", "hcpcs", "modifier", "year", "qp_status"),
    )

    def __repr__(self) -> str:
        return f"<MpfsBenchmark(hcpcs={self.hcpcs}, modifier={self.modifier!r}, year={self.year})>"


class OppsAddendumB(Base, IDMixin, ScheduleCodeMixin):
    """OPPS Addendum B payment rate for a code and year."""
    __tablename__ = "opps_addendum_b"

    apc: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    status_indicator: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    payment_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    relative_weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    short_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_opps_lookup", "hcpcs", "year"),
    )

    def __repr__(self) -> str:
        return f"<OppsAddendumB(hcpcs={self.hcpcs}, year={self.year}, si={self.status_indicator})>"


class DmeFeeColumns(ScheduleCodeMixin):
    """
    Columns shared by the DMEPOS and DMEPEN fee schedules.

    NULL or empty modifier/state_abbr both mean "not specified"
    (base code / national row).
    """

    modifier: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    modifier2: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    state_abbr: Mapped[Optional[str]] = mapped_column(String(2), nullable=True, index=True)
    fee: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fee_rental: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ceiling: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    floor: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    short_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class DmeposFeeSchedule(Base, IDMixin, DmeFeeColumns):
    """DMEPOS fee schedule row."""
    __tablename__ = "dmepos_fee_schedule"

    __table_args__ = (
        Index("ix_dmepos_lookup", "hcpcs", "year", "modifier", "state_abbr"),
    )


class DmepenFeeSchedule(Base, IDMixin, DmeFeeColumns):
    """DMEPEN (enteral/parenteral nutrition) fee schedule row."""
    __tablename__ = "dmepen_fee_schedule"

    __table_args__ = (
        Index("ix_dmepen_lookup", "hcpcs", "year", "modifier", "state_abbr"),
    )


class ZipToLocality(Base, IDMixin):
    """ZIP5 to CMS payment locality crosswalk."""
    __tablename__ = "zip_to_locality"

    zip5: Mapped[str] = mapped_column(String(5), nullable=False, index=True)
    state_abbr: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    locality_num: Mapped[str] = mapped_column(String(10), nullable=False)
    carrier_num: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    county_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    effective_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<ZipToLocality(zip5={self.zip5}, locality={self.locality_num})>"


class GpciLocality(Base, IDMixin):
    """GPCI triple for one CMS locality."""
    __tablename__ = "gpci_localities"

    locality_num: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    state_abbr: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    locality_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(5), nullable=True, index=True)
    work_gpci: Mapped[float] = mapped_column(Float, nullable=False)
    pe_gpci: Mapped[float] = mapped_column(Float, nullable=False)
    mp_gpci: Mapped[float] = mapped_column(Float, nullable=False)

    def __repr__(self) -> str:
        return f"<GpciLocality(locality={self.locality_num}, state={self.state_abbr})>"


class GpciStateAverage(Base, IDMixin):
    """Precomputed per-state average of the locality GPCIs."""
    __tablename__ = "gpci_state_avg"

    state_abbr: Mapped[str] = mapped_column(String(2), nullable=False)
    avg_work_gpci: Mapped[float] = mapped_column(Float, nullable=False)
    avg_pe_gpci: Mapped[float] = mapped_column(Float, nullable=False)
    avg_mp_gpci: Mapped[float] = mapped_column(Float, nullable=False)
    n_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("state_abbr", name="uq_gpci_state_avg_state"),
    )
