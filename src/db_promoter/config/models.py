"""Pydantic models for db.toml configuration."""

from typing import Literal

from pydantic import BaseModel, Field

from db_promoter.deploy.models import DEFAULT_BATCH_SIZE


class DatabaseProfile(BaseModel):
    """Connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: Literal["postgres", "mongodb"] = "postgres"
    database: str | None = None  # MongoDB database name


class DeployDefaults(BaseModel):
    """``[deploy]`` section: defaults for DeploymentOptions."""

    batch_size: int = DEFAULT_BATCH_SIZE
    continue_on_error: bool = False
    validate_references: bool = True
    skip_existing: bool = False
    update_existing: bool = False
    rebuild_indexes: bool = False


class TimeoutSettings(BaseModel):
    """``[timeouts]`` section, in seconds."""

    batch: float = 30.0
    references: float = 60.0
    indexes: float = 30.0
    rollback: float = 60.0


class StoreSettings(BaseModel):
    """``[store]`` section."""

    directory: str = "packages"


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    deploy: DeployDefaults = Field(default_factory=DeployDefaults)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
