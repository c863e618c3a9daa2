"""Tests for AsyncMongoAdapter.

The Motor client is mocked: these tests check the calls the adapter
makes and how driver errors are translated, not a live server.
"""

import inspect
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, ConfigurationError, OperationFailure, WriteError

from docref.adapters.base import DocumentStore
from docref.adapters.mongo import (
    DOCUMENT_VALIDATION_FAILURE,
    AsyncMongoAdapter,
    _validation_error,
    create_motor_client,
)
from docref.errors import ValidationError


def _adapter() -> tuple[AsyncMongoAdapter, MagicMock]:
    """Build an adapter over a mocked database; return both."""
    database = MagicMock()
    client = MagicMock()
    client.get_default_database.return_value = database
    with patch("docref.adapters.mongo.AsyncIOMotorClient", return_value=client):
        adapter = AsyncMongoAdapter("mongodb://localhost:27017/library")
    return adapter, database


# ============================================================================
# Test: client construction
# ============================================================================


class TestCreateMotorClient:
    """create_motor_client() merges pooling defaults with caller kwargs."""

    def test_defaults(self) -> None:
        with patch("docref.adapters.mongo.AsyncIOMotorClient") as client_cls:
            create_motor_client("mongodb://localhost/library")
        client_cls.assert_called_once_with(
            "mongodb://localhost/library",
            maxPoolSize=10,
            serverSelectionTimeoutMS=5000,
            tz_aware=True,
        )

    def test_caller_overrides(self) -> None:
        with patch("docref.adapters.mongo.AsyncIOMotorClient") as client_cls:
            create_motor_client("mongodb://localhost/library", maxPoolSize=50, appname="docref")
        kwargs = client_cls.call_args.kwargs
        assert kwargs["maxPoolSize"] == 50
        assert kwargs["appname"] == "docref"
        assert kwargs["tz_aware"] is True

    def test_url_without_database_rejected(self) -> None:
        client = MagicMock()
        client.get_default_database.side_effect = ConfigurationError("No default database")
        with patch("docref.adapters.mongo.AsyncIOMotorClient", return_value=client):
            with pytest.raises(ValueError, match="database name"):
                AsyncMongoAdapter("mongodb://localhost:27017")
        client.close.assert_called_once()

    @pytest.mark.parametrize(
        "method",
        [name for name, member in inspect.getmembers(DocumentStore) if inspect.iscoroutinefunction(member)],
    )
    def test_protocol_methods_are_async(self, method: str) -> None:
        assert inspect.iscoroutinefunction(getattr(AsyncMongoAdapter, method))


# ============================================================================
# Test: store calls
# ============================================================================


class TestStoreCalls:
    """Protocol methods map onto the Motor collection API."""

    async def test_find_applies_cursor_options(self) -> None:
        adapter, database = _adapter()
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[{"_id": 1}])
        database.__getitem__.return_value.find.return_value = cursor

        rows = await adapter.find("books", {"a": 1}, ["title"], [("title", 1)], skip=2, limit=5)

        assert rows == [{"_id": 1}]
        database.__getitem__.assert_called_with("books")
        database["books"].find.assert_called_once_with({"a": 1}, ["title"])
        cursor.sort.assert_called_once_with([("title", 1)])
        cursor.skip.assert_called_once_with(2)
        cursor.limit.assert_called_once_with(5)

    async def test_find_without_options(self) -> None:
        adapter, database = _adapter()
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[])
        database["books"].find.return_value = cursor

        await adapter.find("books")

        database["books"].find.assert_called_once_with({}, None)
        cursor.sort.assert_not_called()
        cursor.skip.assert_not_called()
        cursor.limit.assert_not_called()

    async def test_count_limit(self) -> None:
        adapter, database = _adapter()
        database["books"].count_documents = AsyncMock(return_value=1)

        assert await adapter.count("books", {"a": 1}, limit=1) == 1
        database["books"].count_documents.assert_awaited_once_with({"a": 1}, limit=1)

    async def test_insert_returns_id_without_mutating_input(self) -> None:
        adapter, database = _adapter()
        database["authors"].insert_one = AsyncMock(return_value=MagicMock(inserted_id="oid"))
        document = {"name": "Lem"}

        stored = await adapter.insert("authors", document)

        assert stored == {"name": "Lem", "_id": "oid"}
        assert document == {"name": "Lem"}

    async def test_insert_many_ordered(self) -> None:
        adapter, database = _adapter()
        database["authors"].insert_many = AsyncMock(return_value=MagicMock(inserted_ids=[1, 2]))

        stored = await adapter.insert_many("authors", [{"n": "a"}, {"n": "b"}])

        assert [d["_id"] for d in stored] == [1, 2]
        assert database["authors"].insert_many.await_args.kwargs == {"ordered": True}
        assert await adapter.insert_many("authors", []) == []

    async def test_update_multi(self) -> None:
        adapter, database = _adapter()
        col = database["books"]
        col.update_many = AsyncMock(return_value=MagicMock(matched_count=3))
        col.update_one = AsyncMock(return_value=MagicMock(matched_count=1))

        assert await adapter.update("books", {}, {"$set": {"a": 1}}, multi=True) == 3
        assert await adapter.update("books", {}, {"$set": {"a": 1}}) == 1
        col.update_many.assert_awaited_once()
        col.update_one.assert_awaited_once()

    async def test_delete_single_and_many(self) -> None:
        adapter, database = _adapter()
        col = database["books"]
        col.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        col.delete_many = AsyncMock(return_value=MagicMock(deleted_count=4))

        assert await adapter.delete("books", {"a": 1}, single=True) == 1
        assert await adapter.delete("books", {"a": 1}) == 4

    async def test_distinct_defaults_query(self) -> None:
        adapter, database = _adapter()
        database["books"].distinct = AsyncMock(return_value=[1, 2])

        assert await adapter.distinct("books", "author") == [1, 2]
        database["books"].distinct.assert_awaited_once_with("author", {})

    async def test_find_one_and_replace_return_document(self) -> None:
        adapter, database = _adapter()
        col = database["books"]
        col.find_one_and_replace = AsyncMock(return_value={"_id": 1})

        await adapter.find_one_and_replace("books", {"_id": 1}, {"title": "Dune"})
        await adapter.find_one_and_replace("books", {"_id": 1}, {"title": "Dune"}, return_new=True)

        first, second = col.find_one_and_replace.await_args_list
        assert first.args == ({"_id": 1}, {"title": "Dune"})
        assert first.kwargs == {"return_document": ReturnDocument.BEFORE}
        assert second.kwargs == {"return_document": ReturnDocument.AFTER}

    async def test_find_one_and_update_return_document(self) -> None:
        adapter, database = _adapter()
        col = database["books"]
        col.find_one_and_update = AsyncMock(return_value=None)

        assert await adapter.find_one_and_update("books", {}, {"$set": {"a": 1}}, return_new=True) is None
        col.find_one_and_update.assert_awaited_once_with(
            {}, {"$set": {"a": 1}}, return_document=ReturnDocument.AFTER
        )


# ============================================================================
# Test: validation errors
# ============================================================================


class TestValidationErrors:
    """DocumentValidationFailure is translated to ValidationError."""

    def test_write_error_translated(self) -> None:
        error = WriteError("Document failed validation", DOCUMENT_VALIDATION_FAILURE, {})
        translated = _validation_error(error, "books")
        assert isinstance(translated, ValidationError)
        assert translated.collection == "books"

    def test_bulk_write_error_translated(self) -> None:
        error = BulkWriteError(
            {"writeErrors": [{"code": DOCUMENT_VALIDATION_FAILURE, "errmsg": "bad title"}]}
        )
        translated = _validation_error(error, "books")
        assert "bad title" in str(translated)

    def test_other_errors_untouched(self) -> None:
        assert _validation_error(WriteError("duplicate key", 11000, {}), "books") is None
        assert _validation_error(BulkWriteError({"writeErrors": []}), "books") is None

    async def test_insert_raises_validation_error(self) -> None:
        adapter, database = _adapter()
        database["books"].insert_one = AsyncMock(
            side_effect=WriteError("Document failed validation", DOCUMENT_VALIDATION_FAILURE, {})
        )

        with pytest.raises(ValidationError) as exc_info:
            await adapter.insert("books", {})

        assert isinstance(exc_info.value.__cause__, WriteError)

    async def test_insert_other_write_error_propagates(self) -> None:
        adapter, database = _adapter()
        database["books"].insert_one = AsyncMock(side_effect=WriteError("duplicate key", 11000, {}))

        with pytest.raises(WriteError):
            await adapter.insert("books", {})

    async def test_set_validator_creates_missing_collection(self) -> None:
        adapter, database = _adapter()
        database.command = AsyncMock(side_effect=OperationFailure("ns not found", code=26))
        database.create_collection = AsyncMock()
        schema = {"bsonType": "object", "required": ["title"]}

        await adapter.set_validator("books", schema)

        database.create_collection.assert_awaited_once_with(
            "books", validator={"$jsonSchema": schema}
        )

    async def test_set_validator_other_failures_propagate(self) -> None:
        adapter, database = _adapter()
        database.command = AsyncMock(side_effect=OperationFailure("unauthorized", code=13))

        with pytest.raises(OperationFailure):
            await adapter.set_validator("books", {})

    def test_operation_failure_translated(self) -> None:
        error = OperationFailure("Document failed validation", code=DOCUMENT_VALIDATION_FAILURE)
        assert isinstance(_validation_error(error, "books"), ValidationError)
        assert _validation_error(OperationFailure("unauthorized", code=13), "books") is None

    async def test_find_one_and_replace_raises_validation_error(self) -> None:
        adapter, database = _adapter()
        database["books"].find_one_and_replace = AsyncMock(
            side_effect=OperationFailure("Document failed validation", code=DOCUMENT_VALIDATION_FAILURE)
        )

        with pytest.raises(ValidationError) as exc_info:
            await adapter.find_one_and_replace("books", {"_id": 1}, {})

        assert isinstance(exc_info.value.__cause__, OperationFailure)

    async def test_find_one_and_update_other_failure_propagates(self) -> None:
        adapter, database = _adapter()
        database["books"].find_one_and_update = AsyncMock(
            side_effect=OperationFailure("unauthorized", code=13)
        )

        with pytest.raises(OperationFailure):
            await adapter.find_one_and_update("books", {}, {"$set": {"a": 1}})
