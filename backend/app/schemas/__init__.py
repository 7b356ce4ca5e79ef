"""
Pydantic schemas for request/response validation.
"""

from app.schemas.reference import (
    GpciIndices,
    GeoResolution,
    LadderStep,
    CodeResolution,
    CodeInput,
    ResolverInput,
    ResolverOutput,
    CoverageMetrics,
)

__all__ = [
    "GpciIndices",
    "GeoResolution",
    "LadderStep",
    "CodeResolution",
    "CodeInput",
    "ResolverInput",
    "ResolverOutput",
    "CoverageMetrics",
]
