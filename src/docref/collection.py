"""Collection surface wired to the integrity engine.

Every operation takes one graph snapshot from the ``Database`` and runs
the matching resolver before handing a plain request to the store:
filter queries are normalised (virtual joins), insertion documents are
normalised (embedded foreign documents inserted first), and deletions
are planned and executed with their cascades.

Usage:
    books = db.collection("books")

    book = await books.insert({"title": "Dune", "author": {"name": "Frank Herbert"}})
    found = await books.find({"author": {"$in": {"name": "Frank Herbert"}}})
    result = await books.delete_by_key(book["_id"])
"""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from docref.adapters.base import DocumentStore
from docref.graph.models import CollectionConfig, ForeignKeyConfig, Graph, ReferenceConfig
from docref.integrity.cascade import DeletionResult, execute_plan, plan_deletion
from docref.integrity.dependencies import DependencyCollector
from docref.integrity.filters import normalize_filter_query
from docref.integrity.insertion import insert_safely, normalize_insertion_doc
from docref.integrity.references import find_references
from docref.selector import Selector, parse_selector

if TYPE_CHECKING:
    from docref.database import Database

logger = logging.getLogger(__name__)


class Collection:
    """One collection of a ``Database``."""

    def __init__(self, database: "Database", name: str) -> None:
        self.database = database
        self.name = name

    def __repr__(self) -> str:
        return f"Collection({self.name!r})"

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @property
    def store(self) -> DocumentStore:
        return self.database.store

    @property
    def config(self) -> CollectionConfig:
        return self.database.graph.config(self.name)

    @property
    def key(self) -> str:
        return self.config.key

    @property
    def foreign_keys(self) -> Mapping[str, ForeignKeyConfig]:
        return self.config.foreign_keys

    @property
    def references(self) -> tuple[ReferenceConfig, ...]:
        return self.config.references

    async def _filter(self, graph: Graph, query: Mapping[str, Any] | None, base_query: bool) -> dict:
        if base_query:
            return dict(query or {})
        return await normalize_filter_query(self.store, graph, self.name, query)

    async def _compensate(self, dependencies: DependencyCollector, error: BaseException) -> None:
        report = await dependencies.compensate()
        if not report.success:
            error.add_note(
                f"Compensation left {len(report.failures)} dependent documents behind: "
                + ", ".join(f"{f.collection} {f.key!r}" for f in report.failures)
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find(
        self,
        query: Mapping[str, Any] | None = None,
        projection: list[str] | None = None,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int = 0,
        base_query: bool = False,
    ) -> list[dict]:
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        return await self.store.find(
            self.name, normalized, projection=projection, sort=sort, skip=skip, limit=limit
        )

    async def find_one(
        self,
        query: Mapping[str, Any] | None = None,
        projection: list[str] | None = None,
        base_query: bool = False,
    ) -> dict | None:
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        return await self.store.find_one(self.name, normalized, projection=projection)

    async def find_by_key(self, key: Any, projection: list[str] | None = None) -> dict | None:
        return await self.find_one({self.key: key}, projection=projection, base_query=True)

    async def count(
        self,
        query: Mapping[str, Any] | None = None,
        limit: int = 0,
        base_query: bool = False,
    ) -> int:
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        return await self.store.count(self.name, normalized, limit=limit)

    async def has(self, query: Mapping[str, Any] | None = None, base_query: bool = False) -> bool:
        return await self.count(query, limit=1, base_query=base_query) > 0

    async def has_key(self, key: Any) -> bool:
        return await self.has({self.key: key}, base_query=True)

    async def has_all_keys(self, keys: list[Any]) -> bool:
        unique = list(dict.fromkeys(keys))
        count = await self.count({self.key: {"$in": unique}}, base_query=True)
        return count == len(unique)

    async def distinct(
        self,
        field: str,
        query: Mapping[str, Any] | None = None,
        base_query: bool = False,
    ) -> list[Any]:
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        return await self.store.distinct(self.name, field, normalized)

    async def find_references(
        self, key: Any | list[Any], keys_only: bool = False
    ) -> dict[str, list[Any]]:
        """Documents of other collections whose foreign keys point at ``key``."""
        keys = list(key) if isinstance(key, (list, tuple)) else [key]
        return await find_references(
            self.store, self.database.graph, self.name, keys, keys_only=keys_only
        )

    async def select(self, selector: str | Selector, value: Any) -> Any:
        """Resolve a selector (e.g. ``"author.name"``) against documents of this collection."""
        if isinstance(selector, str):
            selector = parse_selector(selector)
        return await selector.resolve(self.store, self.database.graph, self.name, value)

    # ------------------------------------------------------------------
    # Insert and replace
    # ------------------------------------------------------------------

    async def insert(
        self,
        doc: Mapping[str, Any] | list[Mapping[str, Any]],
        base_document: bool = False,
    ) -> dict | list[dict]:
        """Insert one document or a list of documents.

        Embedded foreign documents are inserted first.  If anything
        fails, every document inserted by this call is deleted again and
        the original error is re-raised.

        Raises:
            ValidationError: If the store rejects a document.
        """
        graph = self.database.graph
        if base_document:
            if isinstance(doc, (list, tuple)):
                return await self.store.insert_many(self.name, [dict(d) for d in doc])
            return await self.store.insert(self.name, dict(doc))

        dependencies = DependencyCollector(self.store, graph)
        try:
            return await insert_safely(self.store, graph, self.name, doc, dependencies)
        except BaseException as e:
            await self._compensate(dependencies, e)
            raise

    async def replace_one(
        self,
        query: Mapping[str, Any],
        doc: Mapping[str, Any],
        base_query: bool = False,
        base_document: bool = False,
    ) -> int:
        """Replace the first document matching ``query``.

        Returns:
            Number of matched documents (0 or 1).
        """
        graph = self.database.graph
        normalized_query = await self._filter(graph, query, base_query)
        if base_document:
            return await self.store.replace(self.name, normalized_query, dict(doc))

        dependencies = DependencyCollector(self.store, graph)
        try:
            normalized = await normalize_insertion_doc(
                self.store, graph, self.name, doc, dependencies
            )
            return await self.store.replace(self.name, normalized_query, normalized)
        except BaseException as e:
            await self._compensate(dependencies, e)
            raise

    async def replace_by_key(self, key: Any, doc: Mapping[str, Any], base_document: bool = False) -> int:
        return await self.replace_one(
            {self.key: key}, doc, base_query=True, base_document=base_document
        )

    async def find_one_and_replace(
        self,
        query: Mapping[str, Any],
        doc: Mapping[str, Any],
        return_new: bool = False,
        base_query: bool = False,
        base_document: bool = False,
    ) -> dict | None:
        """Replace the first document matching ``query`` and return it.

        Embedded foreign documents in ``doc`` are inserted first and
        deleted again if the replacement fails.

        Returns:
            The replaced document (the new one when ``return_new``), or
            ``None`` if nothing matched.
        """
        graph = self.database.graph
        normalized_query = await self._filter(graph, query, base_query)
        if base_document:
            return await self.store.find_one_and_replace(
                self.name, normalized_query, dict(doc), return_new=return_new
            )

        dependencies = DependencyCollector(self.store, graph)
        try:
            normalized = await normalize_insertion_doc(
                self.store, graph, self.name, doc, dependencies
            )
            return await self.store.find_one_and_replace(
                self.name, normalized_query, normalized, return_new=return_new
            )
        except BaseException as e:
            await self._compensate(dependencies, e)
            raise

    async def find_by_key_and_replace(
        self,
        key: Any,
        doc: Mapping[str, Any],
        return_new: bool = False,
        base_document: bool = False,
    ) -> dict | None:
        return await self.find_one_and_replace(
            {self.key: key},
            doc,
            return_new=return_new,
            base_query=True,
            base_document=base_document,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(
        self,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        multi: bool = False,
        base_query: bool = False,
    ) -> int:
        """Apply update operators to the matching document(s).

        The update document is passed to the store as-is.

        Returns:
            Number of modified documents.
        """
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        return await self.store.update(self.name, normalized, dict(update), multi=multi)

    async def update_by_key(self, key: Any, update: Mapping[str, Any]) -> int:
        return await self.update({self.key: key}, update, base_query=True)

    async def find_one_and_update(
        self,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        return_new: bool = False,
        base_query: bool = False,
    ) -> dict | None:
        """Update the first matching document and return it (before or after)."""
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        return await self.store.find_one_and_update(
            self.name, normalized, dict(update), return_new=return_new
        )

    async def find_by_key_and_update(
        self, key: Any, update: Mapping[str, Any], return_new: bool = False
    ) -> dict | None:
        return await self.find_one_and_update(
            {self.key: key}, update, return_new=return_new, base_query=True
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(
        self,
        query: Mapping[str, Any] | None = None,
        single: bool = False,
        propagate: bool = True,
        base_query: bool = False,
    ) -> DeletionResult:
        """Delete the matching document(s) and apply every delete policy.

        Raises:
            ReferentialIntegrityViolation: If a ``reject`` foreign key
                still references a document to delete.  Nothing is
                mutated in that case.
        """
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        plan = await plan_deletion(
            self.store, graph, self.name, normalized, single=single, propagate=propagate
        )
        return await execute_plan(self.store, plan)

    async def delete_by_key(self, key: Any, propagate: bool = True) -> DeletionResult:
        return await self.delete({self.key: key}, single=True, propagate=propagate, base_query=True)

    async def find_one_and_delete(
        self,
        query: Mapping[str, Any] | None = None,
        propagate: bool = True,
        base_query: bool = False,
    ) -> dict | None:
        """Delete the first matching document with its cascades; return it.

        Raises:
            ReferentialIntegrityViolation: If a ``reject`` foreign key
                still references the document.  Nothing is deleted.
        """
        graph = self.database.graph
        normalized = await self._filter(graph, query, base_query)
        document = await self.store.find_one(self.name, normalized)
        if document is None:
            return None
        # Delete exactly the document that was read
        target = {self.key: document[self.key]} if self.key in document else normalized
        await self.delete(target, single=True, propagate=propagate, base_query=True)
        return document

    async def find_by_key_and_delete(self, key: Any, propagate: bool = True) -> dict | None:
        return await self.find_one_and_delete({self.key: key}, propagate=propagate, base_query=True)

    async def drop(self, propagate: bool = True) -> DeletionResult:
        """Delete every document (with policies applied), then drop the collection."""
        result = await self.delete({}, propagate=propagate, base_query=True)
        await self.store.drop(self.name)
        logger.debug(f"Dropped {self.name}")
        return result
