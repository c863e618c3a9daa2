"""docref: referential integrity for schemaless document stores.

Declares foreign keys between collections and enforces them in
application code: embedded foreign documents are inserted on the fly,
filter queries can join across foreign keys, deletions cascade according
to per-key policies, and a scanner reports dangling keys.

Usage:
    from docref import Database, AsyncMemoryAdapter, connect
    from docref import DeletePolicy, SchemaDefinition, compile_graph
    from docref import ReferentialIntegrityViolation, SchemaError
"""

__version__ = "0.1.0"

# Adapters
from docref.adapters.base import DocumentStore
from docref.adapters.memory import AsyncMemoryAdapter
from docref.adapters.mongo import AsyncMongoAdapter

# Core
from docref.collection import Collection
from docref.database import Database
from docref.selector import Selector, parse_selector

# Graph
from docref.graph.compiler import compile_graph
from docref.graph.models import (
    CollectionDef,
    DeletePolicy,
    ForeignKeyDef,
    Graph,
    SchemaDefinition,
)

# Integrity
from docref.integrity.cascade import DeletionPlan, DeletionResult, execute_plan, plan_deletion
from docref.integrity.dangling import DanglingKey, find_dangling_keys
from docref.integrity.dependencies import CompensationReport, DependencyCollector

# Config
from docref.config.loader import load_schema_file, load_store_config
from docref.config.models import StoreConfig, StoreProfile

# Factory
from docref.factory import connect, get_adapter, resolve_url

# Errors
from docref.errors import (
    DocRefError,
    InvalidSelectorError,
    ProfileNotFoundError,
    ReferentialIntegrityViolation,
    SchemaError,
    ValidationError,
)

__all__ = [
    # Adapters
    "DocumentStore",
    "AsyncMemoryAdapter",
    "AsyncMongoAdapter",
    # Core
    "Collection",
    "Database",
    "Selector",
    "parse_selector",
    # Graph
    "compile_graph",
    "CollectionDef",
    "DeletePolicy",
    "ForeignKeyDef",
    "Graph",
    "SchemaDefinition",
    # Integrity
    "DeletionPlan",
    "DeletionResult",
    "execute_plan",
    "plan_deletion",
    "DanglingKey",
    "find_dangling_keys",
    "CompensationReport",
    "DependencyCollector",
    # Config
    "load_schema_file",
    "load_store_config",
    "StoreConfig",
    "StoreProfile",
    # Factory
    "connect",
    "get_adapter",
    "resolve_url",
    # Errors
    "DocRefError",
    "InvalidSelectorError",
    "ProfileNotFoundError",
    "ReferentialIntegrityViolation",
    "SchemaError",
    "ValidationError",
]
