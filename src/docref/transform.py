"""Recursive, asynchronous, structure-preserving tree transform.

Every other part of the engine locates and rewrites values inside nested
documents through ``map_deep``.  A visitor is offered each mapping node
(root included) before its children.  Returning ``Replace(value)`` makes
``value`` the node's result and stops the descent into that subtree;
returning ``CONTINUE`` (or ``None``) copies the node and visits its
children.

Sibling nodes are visited concurrently, but a parent is only rebuilt once
every child has settled.  When several children fail, the first failure
(in document order) is raised after all of them have finished, so no
side effect started by a sibling is still in flight when the caller
reacts to the error.

Usage:
    from docref.transform import CONTINUE, Replace, map_deep, stack_to_path

    async def visit(node, stack, parent):
        if stack_to_path(stack) == "author":
            return Replace(node["_id"])
        return CONTINUE

    plain = await map_deep(doc, visit)
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

PathStack = tuple[str | int, ...]

ARRAY_SEGMENT = "$"


@dataclass(frozen=True)
class Replace:
    """Visitor outcome: use ``value`` for this node, do not descend."""

    value: Any


class _Continue:
    """Visitor outcome: keep the node and descend into its children."""

    def __repr__(self) -> str:
        return "CONTINUE"


CONTINUE = _Continue()

Visitor = Callable[[Mapping[str, Any], PathStack, Any], Awaitable["Replace | _Continue | None"]]


def is_sequence(value: Any) -> bool:
    """True for list/tuple values (strings and bytes are scalars here)."""
    return isinstance(value, (list, tuple))


async def map_deep(
    value: Any,
    visit: Visitor,
    stack: PathStack = (),
    parent: Any = None,
) -> Any:
    """Rebuild ``value`` with every mapping node offered to ``visit``.

    Args:
        value: Arbitrary nested value (mappings, lists/tuples, scalars).
            Inputs are assumed acyclic.
        visit: Async callable ``visit(node, stack, parent)``.
        stack: Path of ``value`` from the root (keys and list indices).
        parent: Container holding ``value``, ``None`` for the root.

    Returns:
        A new value of the same shape.  Scalars are returned as-is.
    """
    if isinstance(value, Mapping):
        outcome = await visit(value, stack, parent)
        if isinstance(outcome, Replace):
            return outcome.value
        keys = list(value.keys())
        children = await _join(
            map_deep(value[key], visit, stack + (key,), value) for key in keys
        )
        return dict(zip(keys, children))

    if is_sequence(value):
        children = await _join(
            map_deep(item, visit, stack + (index,), value)
            for index, item in enumerate(value)
        )
        return tuple(children) if isinstance(value, tuple) else children

    return value


async def _join(coroutines: Iterable[Awaitable[Any]]) -> list[Any]:
    """Await all coroutines; raise the first failure once all have settled."""
    results = await asyncio.gather(*coroutines, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


# ------------------------------------------------------------------
# Path helpers
# ------------------------------------------------------------------


def split_path(path: str) -> list[str]:
    """Split a dotted path, normalising array segments to ``$``.

    Example:
        >>> split_path("chapters.0.author")
        ['chapters', '$', 'author']
        >>> split_path("tags.[]")
        ['tags', '$']
    """
    segments = []
    for segment in path.split("."):
        if segment.isdigit() or segment in ("$", "[]", "$[]"):
            segments.append(ARRAY_SEGMENT)
        else:
            segments.append(segment)
    return segments


def normalize_path(path: str) -> str:
    """Canonical form of a foreign-key path (array segments as ``$``)."""
    return ".".join(split_path(path))


def stack_to_path(stack: PathStack) -> str:
    """Convert a document path stack into a canonical foreign-key path.

    Example:
        >>> stack_to_path(("chapters", 2, "author"))
        'chapters.$.author'
    """
    segments: list[str] = []
    for item in stack:
        if isinstance(item, int):
            segments.append(ARRAY_SEGMENT)
        else:
            segments.extend(split_path(item))
    return ".".join(segments)


def to_query_path(path: str) -> str:
    """Drop array segments: the dotted path a filter query uses.

    Example:
        >>> to_query_path("chapters.$.author")
        'chapters.author'
    """
    return ".".join(s for s in split_path(path) if s != ARRAY_SEGMENT)


def stack_to_query_path(stack: PathStack) -> str:
    """Field path of a node inside a filter query.

    List indices and operator segments (``$and``, ``$or``, ``$not``,
    ``$elemMatch``, ...) are dropped, dotted keys are split.

    Example:
        >>> stack_to_query_path(("$or", 1, "owner.ref", "$not"))
        'owner.ref'
    """
    segments: list[str] = []
    for item in stack:
        if isinstance(item, int):
            continue
        for segment in item.split("."):
            if segment.startswith("$") or segment.isdigit():
                continue
            segments.append(segment)
    return ".".join(segments)


def get_path_values(document: Any, path: str) -> list[Any]:
    """Collect every value found at ``path`` in ``document``.

    ``$`` segments expand array elements.  Missing fields contribute
    nothing; a ``None`` stored at the path is returned as ``None``.

    Example:
        >>> get_path_values({"tags": ["a", "b"]}, "tags.$")
        ['a', 'b']
    """
    current = [document]
    for segment in split_path(path):
        following: list[Any] = []
        for node in current:
            if segment == ARRAY_SEGMENT:
                if is_sequence(node):
                    following.extend(node)
            elif isinstance(node, Mapping) and segment in node:
                following.append(node[segment])
        current = following
    return current
