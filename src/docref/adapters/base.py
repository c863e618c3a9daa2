"""Document store protocol definition.

Defines the ``DocumentStore`` Protocol that all adapters must implement.
All methods are ``async def`` -- the library is async-first.

The integrity engine only ever hands plain MongoDB-style filter queries
and documents to this boundary: foreign filter queries and embedded
foreign documents are resolved before a call reaches the store.

Usage:
    from docref.adapters.base import DocumentStore

    async def do_work(store: DocumentStore) -> None:
        doc = await store.insert("authors", {"name": "Alice"})
        rows = await store.find("authors", {"name": "Alice"})
        await store.delete("authors", {"_id": doc["_id"]}, single=True)
        await store.close()
"""

from typing import Any, Protocol


class DocumentStore(Protocol):
    """Document store interface that all adapters must implement.

    Store-side validation failures must be raised as
    ``docref.errors.ValidationError``; every other store error
    (connectivity, timeouts, duplicate keys) propagates unchanged.
    """

    async def find(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        projection: list[str] | None = None,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int = 0,
    ) -> list[dict]:
        """Find documents matching ``query``.

        Args:
            collection: Collection name.
            query: Plain filter query.  ``None`` matches everything.
            projection: Optional list of field paths to include.
            sort: Optional list of ``(field, direction)`` pairs.
            skip: Number of matching documents to skip.
            limit: Maximum number of documents (0 means no limit).

        Returns:
            List of documents.  Empty list if no matches.

        Example:
            rows = await store.find(
                "books",
                {"author": {"$in": [author_id]}},
                projection=["_id"],
            )
        """
        ...

    async def find_one(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        projection: list[str] | None = None,
    ) -> dict | None:
        """Return the first document matching ``query`` or ``None``."""
        ...

    async def count(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        limit: int = 0,
    ) -> int:
        """Count documents matching ``query`` (up to ``limit`` when non-zero)."""
        ...

    async def distinct(
        self,
        collection: str,
        field: str,
        query: dict[str, Any] | None = None,
    ) -> list[Any]:
        """Distinct values of ``field`` among documents matching ``query``.

        Array values contribute their elements, as in MongoDB.
        """
        ...

    async def insert(self, collection: str, document: dict) -> dict:
        """Insert a document and return it as stored.

        The store assigns ``_id`` when the document has none.

        Raises:
            ValidationError: If the store rejects the document.
        """
        ...

    async def insert_many(self, collection: str, documents: list[dict]) -> list[dict]:
        """Insert several documents and return them as stored, in order."""
        ...

    async def replace(self, collection: str, query: dict[str, Any], document: dict) -> int:
        """Replace the first document matching ``query``.

        Returns:
            Number of matched documents (0 or 1).

        Raises:
            ValidationError: If the store rejects the replacement.
        """
        ...

    async def update(
        self,
        collection: str,
        query: dict[str, Any],
        update: dict[str, Any],
        multi: bool = False,
    ) -> int:
        """Apply MongoDB update operators to matching documents.

        Returns:
            Number of matched documents.

        Example:
            await store.update(
                "books",
                {"author": {"$in": [author_id]}},
                {"$unset": {"author": ""}},
                multi=True,
            )
        """
        ...

    async def find_one_and_replace(
        self,
        collection: str,
        query: dict[str, Any],
        document: dict,
        return_new: bool = False,
    ) -> dict | None:
        """Replace the first document matching ``query`` and return it.

        Returns:
            The document before the replacement (after it when
            ``return_new``), or ``None`` if nothing matched.

        Raises:
            ValidationError: If the store rejects the replacement.
        """
        ...

    async def find_one_and_update(
        self,
        collection: str,
        query: dict[str, Any],
        update: dict[str, Any],
        return_new: bool = False,
    ) -> dict | None:
        """Apply update operators to the first matching document and return it.

        Returns:
            The document before the update (after it when ``return_new``),
            or ``None`` if nothing matched.
        """
        ...

    async def delete(
        self,
        collection: str,
        query: dict[str, Any],
        single: bool = False,
    ) -> int:
        """Delete matching documents (only the first when ``single``).

        Returns:
            Number of deleted documents.
        """
        ...

    async def drop(self, collection: str) -> None:
        """Drop a whole collection."""
        ...

    async def close(self) -> None:
        """Close the store connection and clean up resources."""
        ...
