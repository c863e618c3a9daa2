"""TOML loaders for store profiles and foreign-key schema files."""

import json
import tomllib
from pathlib import Path

from docref.config.models import StoreConfig, StoreProfile
from docref.graph.compiler import coerce_schema
from docref.graph.models import SchemaDefinition


def load_store_config(config_path: Path | None = None) -> StoreConfig:
    """Load store configuration from TOML file.

    Args:
        config_path: Path to docref.toml (default: ./docref.toml)

    Returns:
        StoreConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "docref.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Store config not found: {config_path}\n"
            f"Create docref.toml with at least one [profiles.<name>] table."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = StoreProfile(**profile_data)

    schema_settings = data.get("schema", {})

    return StoreConfig(
        profiles=profiles,
        schema_file=schema_settings.get("file"),
    )


def load_schema_file(schema_path: str | Path) -> SchemaDefinition:
    """Load a foreign-key schema from a JSON or TOML file.

    Both the list form (``{"collections": [...]}``) and the mapping form
    (``{"books": {"foreign_keys": {...}}}``) are accepted.

    Raises:
        FileNotFoundError: If the schema file doesn't exist
        SchemaError: If the content is not a valid schema definition
    """
    schema_path = Path(schema_path)
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_path}")

    if schema_path.suffix == ".toml":
        with open(schema_path, "rb") as f:
            data = tomllib.load(f)
    else:
        data = json.loads(schema_path.read_text())

    return coerce_schema(data)
