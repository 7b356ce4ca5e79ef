"""
SQLAlchemy declarative base and common model mixins.

Provides the base class for the reference-table models.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class IDMixin:
    """Mixin that adds an auto-incrementing primary key ID column."""

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        index=True,
    )


class ScheduleCodeMixin:
    """Mixin for fee-schedule rows keyed by HCPCS code and schedule year."""

    hcpcs: Mapped[str] = mapped_column(String(5), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
