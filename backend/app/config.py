"""
Application configuration using Pydantic Settings.

Loads environment variables and provides typed configuration access
for the reference store, fee schedule defaults and resolver limits.
"""

import os
from pydantic_settings import BaseSettings
from typing import Optional, Literal


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Medicare Reference Price Resolver"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Reference store - "database" queries the tables below through SQLAlchemy,
    # "memory" indexes the JSON snapshots in REFERENCE_DATA_DIR at startup
    REFERENCE_BACKEND: Literal["database", "memory"] = "database"
    DATABASE_URL: str = os.environ.get(
        "DATABASE_URL",
        "postgresql://localhost:5432/medicare_reference_db" if os.environ.get("USE_POSTGRES") else "sqlite:///./data/reference.db"
    )
    REFERENCE_DATA_DIR: str = "data/reference"

    # Raw PFREV4 feed used for per-locality state medians (optional)
    MPFS_PFREV4_PATH: Optional[str] = None

    # Fee schedule defaults
    DEFAULT_MPFS_YEAR: int = 2026
    DEFAULT_OPPS_YEAR: int = 2025
    DEFAULT_DMEPOS_YEAR: int = 2026
    DEFAULT_CONVERSION_FACTOR: float = 34.6062
    MPFS_QP_STATUS: str = "nonQP"

    # Resolver limits
    RESOLVER_MAX_WORKERS: int = 8
    LOOKUP_TIMEOUT_SECONDS: float = 2.0
    LOOKUP_RETRIES: int = 1
    REQUEST_DEADLINE_SECONDS: float = 15.0
    MAX_CODES_PER_REQUEST: int = 200

    # Error tracking
    SENTRY_DSN: Optional[str] = None
    ENVIRONMENT: str = "development"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
