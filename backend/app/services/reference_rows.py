"""
Reference Row Types.

Immutable row shapes returned by every reference store. Rows are built
from ORM objects or JSON snapshot records and carry only the fields the
resolver consumes.
"""

from dataclasses import MISSING, dataclass, fields
from typing import Any, Mapping, Optional, Type, TypeVar

T = TypeVar("T")


def _coerce(cls: Type[T], record: Any) -> T:
    """
    Build a row dataclass from a mapping or an attribute-bearing object.

    Raises:
        ValueError: If a field without a default is absent from the record.
    """
    values = {}
    for field in fields(cls):
        if isinstance(record, Mapping):
            value = record.get(field.name, MISSING)
        else:
            value = getattr(record, field.name, MISSING)

        if value is MISSING:
            if field.default is MISSING:
                raise ValueError(f"{cls.__name__} record is missing '{field.name}'")
            value = field.default
        values[field.name] = value
    return cls(**values)


class RowMixin:
    @classmethod
    def from_record(cls, record: Any):
        return _coerce(cls, record)


@dataclass(frozen=True)
class MpfsRow(RowMixin):
    """Physician Fee Schedule row."""
    hcpcs: str
    year: int
    modifier: str = ""
    qp_status: str = "nonQP"
    description: Optional[str] = None
    status: Optional[str] = None
    work_rvu: Optional[float] = None
    nonfac_pe_rvu: Optional[float] = None
    fac_pe_rvu: Optional[float] = None
    mp_rvu: Optional[float] = None
    nonfac_fee: Optional[float] = None
    fac_fee: Optional[float] = None
    conversion_factor: Optional[float] = None


@dataclass(frozen=True)
class OppsRow(RowMixin):
    """OPPS Addendum B row."""
    hcpcs: str
    year: int
    apc: Optional[str] = None
    status_indicator: Optional[str] = None
    payment_rate: Optional[float] = None
    relative_weight: Optional[float] = None
    short_desc: Optional[str] = None


@dataclass(frozen=True)
class DmeRow(RowMixin):
    """DMEPOS or DMEPEN fee schedule row."""
    hcpcs: str
    year: int
    modifier: Optional[str] = None
    modifier2: Optional[str] = None
    state_abbr: Optional[str] = None
    fee: Optional[float] = None
    fee_rental: Optional[float] = None
    ceiling: Optional[float] = None
    floor: Optional[float] = None
    category: Optional[str] = None
    short_desc: Optional[str] = None


@dataclass(frozen=True)
class ZipLocalityRow(RowMixin):
    """ZIP5 to locality crosswalk row."""
    zip5: str
    locality_num: str
    state_abbr: Optional[str] = None
    carrier_num: Optional[str] = None
    county_name: Optional[str] = None
    effective_year: Optional[int] = None


@dataclass(frozen=True)
class GpciLocalityRow(RowMixin):
    """GPCI triple for a locality."""
    locality_num: str
    state_abbr: str
    work_gpci: float
    pe_gpci: float
    mp_gpci: float
    locality_name: Optional[str] = None
    zip_code: Optional[str] = None

    def is_usable(self) -> bool:
        return all(
            value is not None and value > 0
            for value in (self.work_gpci, self.pe_gpci, self.mp_gpci)
        )


@dataclass(frozen=True)
class GpciStateAverageRow(RowMixin):
    """Average GPCI across a state's localities."""
    state_abbr: str
    avg_work_gpci: float
    avg_pe_gpci: float
    avg_mp_gpci: float
    n_rows: int = 0

    def is_usable(self) -> bool:
        return all(
            value is not None and value > 0
            for value in (self.avg_work_gpci, self.avg_pe_gpci, self.avg_mp_gpci)
        )
