"""Error taxonomy for the integrity engine.

Usage:
    from docref.errors import ReferentialIntegrityViolation

    try:
        await authors.delete_by_key(author_id)
    except ReferentialIntegrityViolation as e:
        print(f"{e.collection}.{e.path} still references {e.key!r}")
"""

from typing import Any


class DocRefError(Exception):
    """Base class for all docref errors."""

    pass


class SchemaError(DocRefError):
    """Raised when a schema definition cannot be compiled into a graph.

    The previously loaded graph (if any) stays active.
    """

    pass


class ValidationError(DocRefError):
    """Raised when the store rejects a document on insert or replace."""

    def __init__(self, message: str, collection: str | None = None) -> None:
        self.collection = collection
        super().__init__(message)


class InvalidSelectorError(DocRefError):
    """Raised when a ``$in``/``$nin`` value at a foreign key is neither
    a list of keys nor a foreign filter query."""

    def __init__(self, collection: str, path: str) -> None:
        self.collection = collection
        self.path = path
        super().__init__(
            f"Invalid query selector for foreign key <{path}> in collection "
            f"<{collection}>: <$in> and <$nin> selectors must be arrays or "
            f"foreign filter queries"
        )


class ReferentialIntegrityViolation(DocRefError):
    """Raised when a ``reject`` foreign key still has referents at delete time."""

    def __init__(self, collection: str, path: str, key: Any, target: str) -> None:
        self.collection = collection
        self.path = path
        self.key = key
        self.target = target
        super().__init__(
            f"Cannot delete {target} document {key!r}: still referenced by "
            f"{collection}.{path} (onDelete=reject)"
        )


class ProfileNotFoundError(DocRefError):
    """Raised when no store profile is configured."""

    pass
