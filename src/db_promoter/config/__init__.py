"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_promoter.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from db_promoter.config.loader import load_db_config
from db_promoter.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    DeployDefaults,
    StoreSettings,
    TimeoutSettings,
)

__all__ = [
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "DeployDefaults",
    "TimeoutSettings",
    "StoreSettings",
]
