"""
Centralized Path Configuration

Locations of bundled data assets and reference snapshots.
"""

import os
from pathlib import Path

# backend/app/core/paths.py -> backend/app/core -> backend/app -> backend -> project root
_current_file = Path(__file__).resolve()
PROJECT_ROOT = _current_file.parent.parent.parent.parent

# Override with env var if set
if os.environ.get("PROJECT_ROOT"):
    PROJECT_ROOT = Path(os.environ["PROJECT_ROOT"])

# Static tables shipped inside the package (carrier map, ZIP3 ranges, ED rates)
ASSETS_DIR = _current_file.parent.parent / "data"


def resolve_data_path(path: str) -> Path:
    """
    Resolve a configured data path.

    Absolute paths are returned unchanged; relative paths are taken from
    the project root so the service behaves the same from any working
    directory.
    """
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return PROJECT_ROOT / candidate
