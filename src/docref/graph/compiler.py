"""Compile a declarative schema into an immutable reference graph.

Pure logic -- no I/O, no store access.  The Reference Index (incoming
references per collection) is derived from the foreign keys, so every
``ForeignKeyConfig`` has exactly one matching ``ReferenceConfig``.

Usage:
    from docref.graph.compiler import compile_graph

    graph = compile_graph({
        "authors": {},
        "books": {"foreign_keys": {"author": {"collection": "authors",
                                              "on_delete": "cascade"}}},
    })
    graph.config("authors").references
    # (ReferenceConfig(collection='books', path='author', on_delete=...),)
"""

from collections import defaultdict
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from docref.errors import SchemaError
from docref.graph.models import (
    CollectionConfig,
    DeletePolicy,
    ForeignKeyConfig,
    Graph,
    ReferenceConfig,
    SchemaDefinition,
)
from docref.transform import ARRAY_SEGMENT, normalize_path, split_path


def coerce_schema(schema: SchemaDefinition | Mapping[str, Any]) -> SchemaDefinition:
    """Accept a ``SchemaDefinition`` or its mapping form.

    A mapping without a top-level ``collections`` key is read as
    ``{collection_name: collection_config}``.

    Raises:
        SchemaError: If the mapping does not validate.
    """
    if isinstance(schema, SchemaDefinition):
        return schema
    data = schema if "collections" in schema else {"collections": schema}
    try:
        return SchemaDefinition.model_validate(data)
    except PydanticValidationError as e:
        raise SchemaError(f"Invalid schema definition: {e}") from e


def _check_path(collection: str, path: str, policy: DeletePolicy) -> str:
    """Validate a foreign-key path against its delete policy; return it normalised."""
    segments = split_path(path)
    if not path or any(not s for s in segments):
        raise SchemaError(f"Empty segment in foreign key path <{path}> of <{collection}>")
    if segments[0] == ARRAY_SEGMENT:
        raise SchemaError(
            f"Foreign key path <{path}> of <{collection}> must start with a field name"
        )

    if policy == DeletePolicy.PULL and segments[-1] != ARRAY_SEGMENT:
        raise SchemaError(
            f"onDelete=pull requires an array path ending in '$': "
            f"<{collection}.{path}>"
        )
    if policy in (DeletePolicy.UNSET, DeletePolicy.NULLIFY) and ARRAY_SEGMENT in segments:
        raise SchemaError(
            f"onDelete={policy.value} is not supported inside arrays: "
            f"<{collection}.{path}> (use pull or cascade)"
        )
    return normalize_path(path)


def compile_graph(schema: SchemaDefinition | Mapping[str, Any]) -> Graph:
    """Compile ``schema`` into a ``Graph``.

    Deterministic: the same schema always yields an equal graph, with
    foreign keys and references sorted by collection name then path.

    Args:
        schema: ``SchemaDefinition`` or its mapping form.

    Returns:
        The compiled ``Graph``.

    Raises:
        SchemaError: If a foreign key targets an undeclared collection,
            a path is declared twice with different targets or policies,
            a collection is declared twice with different keys, or a
            policy does not fit its path shape.
    """
    definition = coerce_schema(schema)

    keys: dict[str, str] = {}
    foreign_keys: dict[str, dict[str, ForeignKeyConfig]] = {}

    # Collections first, so targets can be checked regardless of order
    for collection_def in definition.collections:
        previous = keys.get(collection_def.name)
        if previous is not None and previous != collection_def.key:
            raise SchemaError(
                f"Collection <{collection_def.name}> declared with conflicting keys: "
                f"<{previous}> and <{collection_def.key}>"
            )
        keys[collection_def.name] = collection_def.key
        foreign_keys.setdefault(collection_def.name, {})

    for collection_def in definition.collections:
        name = collection_def.name
        for fk_def in collection_def.foreign_keys:
            if fk_def.collection not in keys:
                raise SchemaError(
                    f"Foreign key <{name}.{fk_def.path}> references undeclared "
                    f"collection <{fk_def.collection}>"
                )
            path = _check_path(name, fk_def.path, fk_def.on_delete)
            config = ForeignKeyConfig(
                path=path, collection=fk_def.collection, on_delete=fk_def.on_delete
            )

            existing = foreign_keys[name].get(path)
            if existing is not None and existing != config:
                raise SchemaError(
                    f"Foreign key <{name}.{path}> declared twice with conflicting "
                    f"definitions ({existing.collection}/{existing.on_delete.value} "
                    f"vs {config.collection}/{config.on_delete.value})"
                )

            # Filter queries address a.$.b as a.b -- the two must not collide
            for other in foreign_keys[name].values():
                if other.path != path and other.query_path == config.query_path:
                    raise SchemaError(
                        f"Foreign keys <{name}.{other.path}> and <{name}.{path}> "
                        f"share the query path <{config.query_path}>"
                    )
            foreign_keys[name][path] = config

    references: dict[str, list[ReferenceConfig]] = defaultdict(list)
    for name in sorted(foreign_keys):
        for path in sorted(foreign_keys[name]):
            config = foreign_keys[name][path]
            references[config.collection].append(
                ReferenceConfig(collection=name, path=path, on_delete=config.on_delete)
            )

    collections = {
        name: CollectionConfig(
            key=keys[name],
            foreign_keys=MappingProxyType(
                {path: foreign_keys[name][path] for path in sorted(foreign_keys[name])}
            ),
            references=tuple(references.get(name, ())),
        )
        for name in sorted(keys)
    }
    return Graph(collections=MappingProxyType(collections))
