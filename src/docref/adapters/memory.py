"""In-process document store adapter.

Provides ``AsyncMemoryAdapter``, an async ``DocumentStore`` that keeps
collections in memory.  It implements the subset of MongoDB query and
update semantics the integrity engine and typical callers rely on, so
the engine can be exercised without a live server.

Supported query operators: equality, ``$eq $ne $gt $gte $lt $lte $in
$nin $exists $all $size $regex $not $elemMatch``, logical ``$and $or
$nor``, and dotted paths that traverse arrays.  Supported update
operators: ``$set $unset $inc $push $pull`` (``$[]`` all-positional
segments allowed for ``$set``/``$unset``/``$pull``).  ``$expr`` is not
interpreted and raises ``NotImplementedError``.

Projections are applied per top-level field: projecting ``"a.b"``
returns the whole ``a`` field.

Optional validation: pass pydantic models per collection; a document
that fails ``model_validate`` is rejected with ``ValidationError``.

Usage:
    from pydantic import BaseModel
    from docref.adapters.memory import AsyncMemoryAdapter

    class Author(BaseModel):
        name: str

    store = AsyncMemoryAdapter(validators={"authors": Author})
    doc = await store.insert("authors", {"name": "Alice"})
"""

import asyncio
import copy
import re
from collections.abc import Mapping
from typing import Any

from bson import ObjectId
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

from docref.errors import ValidationError

_MISSING = object()

LOGICAL_OPERATORS = {"$and", "$or", "$nor"}


# ============================================================================
# Query matching
# ============================================================================


def _candidates(node: Any, segments: list[str]) -> list[Any]:
    """Values reachable at ``segments``; arrays are traversed like MongoDB does."""
    if not segments:
        return [node]
    head, rest = segments[0], segments[1:]
    if isinstance(node, Mapping):
        if head in node:
            return _candidates(node[head], rest)
        return [_MISSING]
    if isinstance(node, list):
        if head.isdigit():
            index = int(head)
            return _candidates(node[index], rest) if index < len(node) else [_MISSING]
        found: list[Any] = []
        for element in node:
            if isinstance(element, (Mapping, list)):
                found.extend(c for c in _candidates(element, segments) if c is not _MISSING)
        return found or [_MISSING]
    return [_MISSING]


def _expand(candidates: list[Any]) -> list[Any]:
    """Each candidate plus, for arrays, each of its elements."""
    values: list[Any] = []
    for candidate in candidates:
        values.append(candidate)
        if isinstance(candidate, list):
            values.extend(candidate)
    return values


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    return value == expected


def _compare(value: Any, operator: str, argument: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    try:
        if operator == "$gt":
            return value > argument
        if operator == "$gte":
            return value >= argument
        if operator == "$lt":
            return value < argument
        return value <= argument
    except TypeError:
        return False


def _is_operator_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def _match_condition(candidates: list[Any], condition: Any) -> bool:
    """Match the values found at a field against a condition."""
    if not _is_operator_mapping(condition):
        return any(_equals(v, condition) for v in _expand(candidates))

    for operator, argument in condition.items():
        values = _expand(candidates)
        if operator == "$eq":
            matched = any(_equals(v, argument) for v in values)
        elif operator == "$ne":
            matched = not any(_equals(v, argument) for v in values)
        elif operator in ("$gt", "$gte", "$lt", "$lte"):
            matched = any(_compare(v, operator, argument) for v in values)
        elif operator == "$in":
            matched = any(_equals(v, item) for v in values for item in argument)
        elif operator == "$nin":
            matched = not any(_equals(v, item) for v in values for item in argument)
        elif operator == "$exists":
            present = any(c is not _MISSING for c in candidates)
            matched = present if argument else not present
        elif operator == "$all":
            matched = all(any(_equals(v, item) for v in values) for item in argument)
        elif operator == "$size":
            matched = any(isinstance(c, list) and len(c) == argument for c in candidates)
        elif operator == "$regex":
            pattern = re.compile(argument) if isinstance(argument, str) else argument
            matched = any(isinstance(v, str) and pattern.search(v) for v in values)
        elif operator == "$not":
            matched = not _match_condition(candidates, argument)
        elif operator == "$elemMatch":
            matched = any(
                _match_element(element, argument)
                for c in candidates
                if isinstance(c, list)
                for element in c
            )
        elif operator == "$expr":
            raise NotImplementedError("$expr is not supported by the memory adapter")
        else:
            raise ValueError(f"Unsupported query operator: {operator}")
        if not matched:
            return False
    return True


def _match_element(element: Any, condition: Any) -> bool:
    if _is_operator_mapping(condition):
        return _match_condition([element], condition)
    if isinstance(element, Mapping) and isinstance(condition, Mapping):
        return match_query(element, condition)
    return _equals(element, condition)


def match_query(document: Mapping[str, Any], query: Mapping[str, Any] | None) -> bool:
    """True when ``document`` satisfies the filter ``query``."""
    for key, condition in (query or {}).items():
        if key == "$and":
            if not all(match_query(document, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(match_query(document, clause) for clause in condition):
                return False
        elif key == "$nor":
            if any(match_query(document, clause) for clause in condition):
                return False
        elif key == "$expr":
            raise NotImplementedError("$expr is not supported by the memory adapter")
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level query operator: {key}")
        elif not _match_condition(_candidates(document, key.split(".")), condition):
            return False
    return True


# ============================================================================
# Update operators
# ============================================================================


def _targets(node: Any, segments: list[str], create: bool) -> list[tuple[Any, str | int]]:
    """(container, key) pairs addressed by ``segments``; ``$[]`` fans out."""
    head, rest = segments[0], segments[1:]
    if head == "$[]":
        if not isinstance(node, list):
            return []
        if not rest:
            return [(node, index) for index in range(len(node))]
        pairs: list[tuple[Any, str | int]] = []
        for element in node:
            pairs.extend(_targets(element, rest, create))
        return pairs

    if isinstance(node, list) and head.isdigit():
        key: str | int = int(head)
        if key >= len(node):
            return []
    elif isinstance(node, dict):
        key = head
    else:
        return []

    if not rest:
        return [(node, key)]
    if isinstance(node, dict) and key not in node:
        if not create:
            return []
        node[key] = {}
    return _targets(node[key], rest, create)


def _remove_matching(array: list[Any], condition: Any) -> list[Any]:
    return [element for element in array if not _match_element(element, condition)]


def apply_update(document: dict, update: Mapping[str, Any]) -> None:
    """Apply MongoDB update operators to ``document`` in place."""
    for operator, fields in update.items():
        for path, argument in fields.items():
            segments = path.split(".")
            if operator == "$set":
                for container, key in _targets(document, segments, create=True):
                    container[key] = copy.deepcopy(argument)
            elif operator == "$unset":
                for container, key in _targets(document, segments, create=False):
                    if isinstance(container, dict):
                        container.pop(key, None)
                    else:
                        container[key] = None
            elif operator == "$inc":
                for container, key in _targets(document, segments, create=True):
                    if isinstance(container, dict):
                        container[key] = container.get(key, 0) + argument
                    else:
                        container[key] += argument
            elif operator == "$push":
                for container, key in _targets(document, segments, create=True):
                    if isinstance(container, dict):
                        container.setdefault(key, []).append(copy.deepcopy(argument))
                    else:
                        container[key].append(copy.deepcopy(argument))
            elif operator == "$pull":
                for container, key in _targets(document, segments, create=False):
                    if isinstance(container, dict) and key not in container:
                        continue
                    if isinstance(container[key], list):
                        container[key] = _remove_matching(container[key], argument)
            else:
                raise ValueError(f"Unsupported update operator: {operator}")


# ============================================================================
# Sorting and projection
# ============================================================================


def _sort_value(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (3, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, ObjectId):
        return (4, str(value))
    return (5, repr(value))


def _project(document: dict, projection: list[str] | None) -> dict:
    if not projection:
        return document
    fields = {path.split(".")[0] for path in projection} | {"_id"}
    return {k: v for k, v in document.items() if k in fields}


# ============================================================================
# Adapter
# ============================================================================


class AsyncMemoryAdapter:
    """In-memory implementation of the ``DocumentStore`` protocol.

    Every call yields to the event loop once before touching data, so
    concurrent operations interleave the way they would against a real
    server.  Documents are deep-copied on the way in and out.

    Args:
        validators: Optional mapping of collection name to a pydantic
            model used to validate documents on insert, replace and
            update.

    Example:
        store = AsyncMemoryAdapter()
        author = await store.insert("authors", {"name": "Alice"})
        await store.count("authors")
        # 1
    """

    def __init__(self, validators: dict[str, type[BaseModel]] | None = None) -> None:
        self._collections: dict[str, list[dict]] = {}
        self._validators: dict[str, type[BaseModel]] = dict(validators or {})

    def set_validator(self, collection: str, model: type[BaseModel] | None) -> None:
        """Install (or remove, with ``None``) the validator of ``collection``."""
        if model is None:
            self._validators.pop(collection, None)
        else:
            self._validators[collection] = model

    def _validate(self, collection: str, document: dict) -> None:
        model = self._validators.get(collection)
        if model is None:
            return
        try:
            model.model_validate(document)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Document failed validation in <{collection}>: {e}",
                collection=collection,
            ) from e

    def _matching(self, collection: str, query: dict[str, Any] | None) -> list[dict]:
        return [d for d in self._collections.get(collection, []) if match_query(d, query)]

    # ------------------------------------------------------------------
    # Read Methods
    # ------------------------------------------------------------------

    async def find(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        projection: list[str] | None = None,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int = 0,
    ) -> list[dict]:
        """Find documents matching ``query``."""
        await asyncio.sleep(0)
        documents = self._matching(collection, query)
        for field, direction in reversed(sort or []):
            documents = sorted(
                documents,
                key=lambda d: _sort_value(_candidates(d, field.split("."))[0]),
                reverse=direction < 0,
            )
        if skip:
            documents = documents[skip:]
        if limit:
            documents = documents[:limit]
        return [copy.deepcopy(_project(d, projection)) for d in documents]

    async def find_one(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        projection: list[str] | None = None,
    ) -> dict | None:
        """Return the first document matching ``query``."""
        documents = await self.find(collection, query, projection, limit=1)
        return documents[0] if documents else None

    async def count(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        limit: int = 0,
    ) -> int:
        """Count documents matching ``query``."""
        await asyncio.sleep(0)
        total = len(self._matching(collection, query))
        return min(total, limit) if limit else total

    async def distinct(
        self,
        collection: str,
        field: str,
        query: dict[str, Any] | None = None,
    ) -> list[Any]:
        """Distinct values of ``field``; array elements count individually."""
        await asyncio.sleep(0)
        values: list[Any] = []
        for document in self._matching(collection, query):
            for candidate in _candidates(document, field.split(".")):
                if candidate is _MISSING:
                    continue
                elements = candidate if isinstance(candidate, list) else [candidate]
                for value in elements:
                    if value not in values:
                        values.append(copy.deepcopy(value))
        return values

    # ------------------------------------------------------------------
    # Write Methods
    # ------------------------------------------------------------------

    def _insert_now(self, collection: str, document: dict) -> dict:
        stored = copy.deepcopy(dict(document))
        stored.setdefault("_id", ObjectId())
        self._validate(collection, stored)
        documents = self._collections.setdefault(collection, [])
        if any(d["_id"] == stored["_id"] for d in documents):
            raise DuplicateKeyError(
                f"Duplicate _id {stored['_id']!r} in <{collection}>", code=11000
            )
        documents.append(stored)
        return copy.deepcopy(stored)

    async def insert(self, collection: str, document: dict) -> dict:
        """Insert a document and return it with its ``_id``."""
        await asyncio.sleep(0)
        return self._insert_now(collection, document)

    async def insert_many(self, collection: str, documents: list[dict]) -> list[dict]:
        """Insert documents in order; stops at the first failure."""
        await asyncio.sleep(0)
        return [self._insert_now(collection, document) for document in documents]

    def _replace_now(self, collection: str, current: dict, document: dict) -> dict:
        replacement = copy.deepcopy(dict(document))
        if "_id" in replacement and replacement["_id"] != current["_id"]:
            raise ValueError("The _id field cannot be changed by a replacement")
        replacement["_id"] = current["_id"]
        self._validate(collection, replacement)
        documents = self._collections[collection]
        documents[documents.index(current)] = replacement
        return replacement

    async def replace(self, collection: str, query: dict[str, Any], document: dict) -> int:
        """Replace the first document matching ``query`` (``_id`` is kept)."""
        await asyncio.sleep(0)
        matching = self._matching(collection, query)
        if not matching:
            return 0
        self._replace_now(collection, matching[0], document)
        return 1

    async def find_one_and_replace(
        self,
        collection: str,
        query: dict[str, Any],
        document: dict,
        return_new: bool = False,
    ) -> dict | None:
        """Replace the first document matching ``query``; return the old or new one."""
        await asyncio.sleep(0)
        matching = self._matching(collection, query)
        if not matching:
            return None
        current = matching[0]
        replacement = self._replace_now(collection, current, document)
        return copy.deepcopy(replacement if return_new else current)

    async def update(
        self,
        collection: str,
        query: dict[str, Any],
        update: dict[str, Any],
        multi: bool = False,
    ) -> int:
        """Apply update operators to one or all matching documents.

        All updated documents are validated before any of them is stored.
        """
        await asyncio.sleep(0)
        matching = self._matching(collection, query)
        if not multi:
            matching = matching[:1]
        updated = []
        for current in matching:
            candidate = copy.deepcopy(current)
            apply_update(candidate, update)
            self._validate(collection, candidate)
            updated.append((current, candidate))
        documents = self._collections.get(collection, [])
        for current, candidate in updated:
            documents[documents.index(current)] = candidate
        return len(updated)

    async def find_one_and_update(
        self,
        collection: str,
        query: dict[str, Any],
        update: dict[str, Any],
        return_new: bool = False,
    ) -> dict | None:
        """Update the first document matching ``query``; return the old or new one."""
        await asyncio.sleep(0)
        matching = self._matching(collection, query)
        if not matching:
            return None
        current = matching[0]
        candidate = copy.deepcopy(current)
        apply_update(candidate, update)
        self._validate(collection, candidate)
        documents = self._collections[collection]
        documents[documents.index(current)] = candidate
        return copy.deepcopy(candidate if return_new else current)

    async def delete(
        self,
        collection: str,
        query: dict[str, Any],
        single: bool = False,
    ) -> int:
        """Delete one or all matching documents."""
        await asyncio.sleep(0)
        matching = self._matching(collection, query)
        if single:
            matching = matching[:1]
        doomed = {id(d) for d in matching}
        self._collections[collection] = [
            d for d in self._collections.get(collection, []) if id(d) not in doomed
        ]
        return len(matching)

    async def drop(self, collection: str) -> None:
        """Drop a collection."""
        await asyncio.sleep(0)
        self._collections.pop(collection, None)

    async def close(self) -> None:
        """Nothing to release; present for protocol compatibility."""
        return None

    async def test_connection(self) -> bool:
        """Always reachable."""
        return True
