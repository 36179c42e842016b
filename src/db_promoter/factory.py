"""Store client factory.

Resolves the active profile from db.toml (env var first, then the
``.db-profile`` lock file written by ``db-promoter connect``) and builds
the matching adapter.  Adapters are never cached: each call returns a new
instance and the caller owns ``close()``.

Usage:
    from db_promoter.factory import get_adapter, get_document_adapter

    adapter = await get_adapter("dev")
    documents = await get_document_adapter("docs")
"""

import os
from pathlib import Path
from urllib.parse import quote

from db_promoter.adapters.mongo import AsyncMongoAdapter
from db_promoter.adapters.postgres import AsyncPostgresAdapter
from db_promoter.config.loader import load_db_config
from db_promoter.config.models import DatabaseProfile
from db_promoter.schema.introspector import SchemaIntrospector
from db_promoter.schema.models import ConnectionResult

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no profile is configured or the named one does not exist."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful connection check.
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``{env_prefix}DB_PROFILE`` env var
    2. .db-profile file (profile from a previous connect)
    3. Raise ProfileNotFoundError

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_prefix}DB_PROFILE=<name> db-promoter connect\n"
        "Or pass --profile <name>."
    )


def resolve_profile(profile_name: str | None = None, env_prefix: str = "") -> tuple[str, DatabaseProfile]:
    """Look up a profile by name, or the active profile when *profile_name* is None.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is
            not in db.toml
        FileNotFoundError: If db.toml does not exist
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    config = load_db_config()

    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Connection check
# ============================================================================


async def connect_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    validate_only: bool = False,
) -> ConnectionResult:
    """Check that a profile's store is reachable and remember the profile.

    PostgreSQL profiles are checked by introspecting the catalog, MongoDB
    profiles with a ``ping``.  On success the lock file is written unless
    *validate_only* is set.

    Example:
        >>> result = await connect_profile("dev")
        >>> if not result.success:
        ...     print(result.error)
    """
    try:
        profile_name, profile = resolve_profile(profile_name, env_prefix)
    except (ProfileNotFoundError, FileNotFoundError) as e:
        return ConnectionResult(success=False, profile_name=profile_name, error=str(e))

    url = resolve_url(profile)
    try:
        if profile.provider == "mongodb":
            adapter = AsyncMongoAdapter(url, profile.database or "")
            try:
                await adapter.ping()
            finally:
                await adapter.close()
        else:
            async with SchemaIntrospector(url) as introspector:
                await introspector.get_tables()
    except Exception as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            provider=profile.provider,
            error=f"Failed to connect to {profile.provider}: {e}",
        )

    if not validate_only:
        write_profile_lock(profile_name)

    return ConnectionResult(success=True, profile_name=profile_name, provider=profile.provider)


# ============================================================================
# Adapter Factory
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    jsonb_columns: list[str] | None = None,
) -> AsyncPostgresAdapter:
    """Create a relational adapter from a direct URL or a postgres profile.

    Raises:
        ProfileNotFoundError: If no profile is configured or found
        ValueError: If the profile is not a postgres profile
    """
    if database_url is not None:
        return AsyncPostgresAdapter(database_url=database_url, jsonb_columns=jsonb_columns)

    profile_name, profile = resolve_profile(profile_name, env_prefix)
    if profile.provider != "postgres":
        raise ValueError(f"Profile '{profile_name}' is a {profile.provider} profile, not postgres")
    return AsyncPostgresAdapter(database_url=resolve_url(profile), jsonb_columns=jsonb_columns)


async def get_document_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
) -> AsyncMongoAdapter:
    """Create a document adapter from a mongodb profile.

    Raises:
        ProfileNotFoundError: If no profile is configured or found
        ValueError: If the profile is not a mongodb profile or names no database
    """
    profile_name, profile = resolve_profile(profile_name, env_prefix)
    if profile.provider != "mongodb":
        raise ValueError(f"Profile '{profile_name}' is a {profile.provider} profile, not mongodb")
    if not profile.database:
        raise ValueError(f"Profile '{profile_name}' has no 'database' setting")
    return AsyncMongoAdapter(resolve_url(profile), profile.database)
