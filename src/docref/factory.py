"""Store adapter factory.

Profiles live in ``docref.toml`` in the working directory.  The active
profile comes from the ``{env_prefix}DOCREF_PROFILE`` environment
variable, falling back to the ``.docref-profile`` lock file written by
``docref connect``.

Usage:
    from docref.factory import connect

    db = await connect("local", schema="schema.json")
    books = db.collection("books")
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import quote

from docref.adapters.base import DocumentStore
from docref.adapters.memory import AsyncMemoryAdapter
from docref.adapters.mongo import AsyncMongoAdapter
from docref.config.loader import load_schema_file, load_store_config
from docref.config.models import StoreProfile
from docref.database import Database
from docref.errors import ProfileNotFoundError
from docref.graph.models import SchemaDefinition

logger = logging.getLogger(__name__)

# Profile lock file name, resolved against the working directory on each use
_PROFILE_LOCK_NAME = ".docref-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


def _profile_lock_file() -> Path:
    return Path.cwd() / _PROFILE_LOCK_NAME


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    lock_file = _profile_lock_file()
    if lock_file.exists():
        return lock_file.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful connection test.
    """
    _profile_lock_file().write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    _profile_lock_file().unlink(missing_ok=True)


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. {env_prefix}DOCREF_PROFILE env var
    2. .docref-profile file (profile from a previous connect)
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the environment variable, e.g. ``"MYAPP_"``
            reads ``MYAPP_DOCREF_PROFILE``.

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DOCREF_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No store profile configured.\n"
        f"Run: {env_prefix}DOCREF_PROFILE=<name> docref connect"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, StoreProfile]:
    """Get profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile configured
        KeyError: If profile not found in docref.toml
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    config = load_store_config(config_path)

    if profile_name not in config.profiles:
        raise KeyError(
            f"Profile '{profile_name}' not found in docref.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


# ============================================================================
# Adapter Construction
# ============================================================================


def resolve_url(profile: StoreProfile) -> str:
    """Resolve profile URL with password substitution.

    Example:
        >>> resolve_url(StoreProfile(url="mongodb://app:[YOUR-PASSWORD]@db/lib", db_password="p@ss"))
        'mongodb://app:p%40ss@db/lib'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def create_adapter(profile: StoreProfile) -> DocumentStore:
    """Build the adapter a profile describes."""
    if profile.provider == "memory":
        return AsyncMemoryAdapter()
    return AsyncMongoAdapter(database_url=resolve_url(profile))


def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> DocumentStore:
    """Get a store adapter for a profile.

    Args:
        profile_name: Profile name from docref.toml. If None, uses the
            ``{env_prefix}DOCREF_PROFILE`` env var or the lock file.
        env_prefix: Prefix for the profile environment variable.
        config_path: Path to docref.toml (default: ./docref.toml).

    Raises:
        ProfileNotFoundError: If no profile is configured
        KeyError: If the profile is not in docref.toml
        ValueError: If a MongoDB URL lacks a database name
    """
    name, profile = get_active_profile(profile_name, env_prefix, config_path)
    logger.debug(f"Creating {profile.provider} adapter for profile {name}")
    return create_adapter(profile)


async def connect(
    profile_name: str | None = None,
    schema: SchemaDefinition | Mapping[str, Any] | str | Path | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> Database:
    """Open a ``Database`` for a profile.

    Args:
        profile_name: Profile name from docref.toml (see ``get_adapter``).
        schema: Schema definition, mapping, or path to a schema file.
            When omitted, the ``[schema] file`` of docref.toml is used if
            configured.
        env_prefix: Prefix for the profile environment variable.
        config_path: Path to docref.toml (default: ./docref.toml).

    Raises:
        SchemaError: If the schema does not compile.
    """
    if schema is None:
        schema = load_store_config(config_path).schema_file
    if isinstance(schema, (str, Path)):
        schema = load_schema_file(schema)

    store = get_adapter(profile_name, env_prefix, config_path)
    try:
        return Database(store, schema)
    except Exception:
        await store.close()
        raise
