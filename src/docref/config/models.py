"""Pydantic models for store configuration."""

from typing import Literal

from pydantic import BaseModel


# ============================================================================
# Configuration Models
# ============================================================================


class StoreProfile(BaseModel):
    """Store connection profile from docref.toml."""

    url: str = ""
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: Literal["mongodb", "memory"] = "mongodb"


class StoreConfig(BaseModel):
    """Complete store configuration from docref.toml."""

    profiles: dict[str, StoreProfile]
    schema_file: str | None = None
