"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from docref.config import load_store_config, StoreProfile, StoreConfig
"""

from docref.config.loader import load_schema_file, load_store_config
from docref.config.models import StoreConfig, StoreProfile

__all__ = ["load_store_config", "load_schema_file", "StoreConfig", "StoreProfile"]
