"""Foreign-key graph models.

Two layers live here:

- Declarative schema models (pydantic), which is what callers write or
  load from a JSON/TOML file: ``SchemaDefinition``, ``CollectionDef``,
  ``ForeignKeyDef``.
- Compiled, immutable configuration produced by ``compile_graph()``:
  ``Graph``, ``CollectionConfig``, ``ForeignKeyConfig``,
  ``ReferenceConfig``.

Usage:
    from docref.graph.models import (
        CollectionDef, DeletePolicy, ForeignKeyDef, SchemaDefinition,
    )

    schema = SchemaDefinition(collections=[
        CollectionDef(name="authors"),
        CollectionDef(name="books", foreign_keys=[
            ForeignKeyDef(path="author", collection="authors",
                          on_delete=DeletePolicy.CASCADE),
        ]),
    ])
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from docref.transform import to_query_path

DEFAULT_KEY = "_id"


class DeletePolicy(str, Enum):
    """What happens to referencing documents when their target is deleted."""

    BYPASS = "bypass"       # leave the dangling key in place
    REJECT = "reject"       # refuse the deletion
    CASCADE = "cascade"     # delete referencing documents transitively
    UNSET = "unset"         # remove the foreign-key field
    NULLIFY = "nullify"     # set the foreign-key field to null
    PULL = "pull"           # remove the key from an array field


# ============================================================================
# Declarative schema
# ============================================================================


class ForeignKeyDef(BaseModel):
    """A foreign key declared at ``path`` pointing to ``collection``."""

    path: str
    collection: str
    on_delete: DeletePolicy = Field(
        default=DeletePolicy.REJECT,
        validation_alias=AliasChoices("on_delete", "onDelete"),
    )


class CollectionDef(BaseModel):
    """A collection taking part in the reference graph."""

    name: str
    key: str = Field(
        default=DEFAULT_KEY,
        validation_alias=AliasChoices("key", "primary_key", "primaryKey"),
    )
    foreign_keys: list[ForeignKeyDef] = Field(
        default_factory=list,
        validation_alias=AliasChoices("foreign_keys", "foreignKeys"),
    )

    @field_validator("foreign_keys", mode="before")
    @classmethod
    def _foreign_keys_from_mapping(cls, value: Any) -> Any:
        # {"author": {"collection": "authors"}} -> [{"path": "author", ...}]
        if isinstance(value, Mapping):
            return [{"path": path, **dict(config)} for path, config in value.items()]
        return value


class SchemaDefinition(BaseModel):
    """Declarative schema: every collection and its foreign keys."""

    collections: list[CollectionDef] = Field(default_factory=list)

    @field_validator("collections", mode="before")
    @classmethod
    def _collections_from_mapping(cls, value: Any) -> Any:
        # {"books": {...}} -> [{"name": "books", ...}]
        if isinstance(value, Mapping):
            return [{"name": name, **dict(config or {})} for name, config in value.items()]
        return value


# ============================================================================
# Compiled graph
# ============================================================================


@dataclass(frozen=True)
class ForeignKeyConfig:
    """Outgoing foreign key of a collection."""

    path: str
    collection: str
    on_delete: DeletePolicy

    @property
    def query_path(self) -> str:
        return to_query_path(self.path)


@dataclass(frozen=True)
class ReferenceConfig:
    """Incoming reference: ``collection.path`` points at the owning collection."""

    collection: str
    path: str
    on_delete: DeletePolicy

    @property
    def query_path(self) -> str:
        return to_query_path(self.path)


@dataclass(frozen=True)
class CollectionConfig:
    """Compiled configuration of one collection."""

    key: str = DEFAULT_KEY
    foreign_keys: Mapping[str, ForeignKeyConfig] = field(
        default_factory=lambda: MappingProxyType({})
    )
    references: tuple[ReferenceConfig, ...] = ()

    def foreign_key_for_query_path(self, query_path: str) -> ForeignKeyConfig | None:
        """Find the foreign key a filter query path (no ``$`` segments) refers to."""
        for foreign_key in self.foreign_keys.values():
            if foreign_key.query_path == query_path:
                return foreign_key
        return None


DEFAULT_CONFIG = CollectionConfig()


@dataclass(frozen=True)
class Graph:
    """Immutable mapping of collection name to ``CollectionConfig``.

    A graph is never edited in place: loading a new schema builds a new
    ``Graph`` and swaps it in.
    """

    collections: Mapping[str, CollectionConfig] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def lookup(self, name: str) -> CollectionConfig | None:
        """Return the configuration of ``name``, or ``None`` if uncontrolled."""
        return self.collections.get(name)

    def config(self, name: str) -> CollectionConfig:
        """Return the configuration of ``name`` (default for uncontrolled collections)."""
        return self.collections.get(name, DEFAULT_CONFIG)

    def __contains__(self, name: object) -> bool:
        return name in self.collections

    @property
    def names(self) -> list[str]:
        return sorted(self.collections)
