"""
API dependencies for dependency injection.

The reference store, resolvers and the optional MPFS locality table are
built once at startup (see ``app.main``) and kept on ``app.state``.
"""

from typing import Optional

from fastapi import Request

from app.services.geo_resolver import GeoResolver
from app.services.mpfs_table import MpfsLocalityTable
from app.services.reference_resolver import ReferenceResolver
from app.services.reference_store import ReferenceStore


def get_reference_store(request: Request) -> ReferenceStore:
    return request.app.state.reference_store


def get_reference_resolver(request: Request) -> ReferenceResolver:
    return request.app.state.reference_resolver


def get_geo_resolver(request: Request) -> GeoResolver:
    return request.app.state.geo_resolver


def get_mpfs_table(request: Request) -> Optional[MpfsLocalityTable]:
    """PFREV4 locality table, or None when no feed is configured."""
    return getattr(request.app.state, "mpfs_table", None)
