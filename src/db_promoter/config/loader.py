"""Load db.toml into DatabaseConfig."""

import tomllib
from pathlib import Path

from db_promoter.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    DeployDefaults,
    StoreSettings,
    TimeoutSettings,
)


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to db.toml (default: ``db.toml`` in the current
            working directory)

    Returns:
        DatabaseConfig with all profiles and section defaults

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If a section has invalid values
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    return DatabaseConfig(
        profiles=profiles,
        deploy=DeployDefaults(**data.get("deploy", {})),
        timeouts=TimeoutSettings(**data.get("timeouts", {})),
        store=StoreSettings(**data.get("store", {})),
    )
