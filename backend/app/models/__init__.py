"""
SQLAlchemy ORM models.

Import all models here so ``Base.metadata`` knows every table.
"""

from app.models.reference import (
    MpfsBenchmark,
    OppsAddendumB,
    DmeposFeeSchedule,
    DmepenFeeSchedule,
    ZipToLocality,
    GpciLocality,
    GpciStateAverage,
)

__all__ = [
    "MpfsBenchmark",
    "OppsAddendumB",
    "DmeposFeeSchedule",
    "DmepenFeeSchedule",
    "ZipToLocality",
    "GpciLocality",
    "GpciStateAverage",
]
