"""Foreign-key graph: declarative schema models and the compiled graph.

Usage:
    from docref.graph import compile_graph, DeletePolicy, SchemaDefinition
"""

from docref.graph.compiler import coerce_schema, compile_graph
from docref.graph.models import (
    DEFAULT_KEY,
    CollectionConfig,
    CollectionDef,
    DeletePolicy,
    ForeignKeyConfig,
    ForeignKeyDef,
    Graph,
    ReferenceConfig,
    SchemaDefinition,
)

__all__ = [
    "compile_graph",
    "coerce_schema",
    "DEFAULT_KEY",
    "DeletePolicy",
    "ForeignKeyDef",
    "CollectionDef",
    "SchemaDefinition",
    "ForeignKeyConfig",
    "ReferenceConfig",
    "CollectionConfig",
    "Graph",
]
