"""Async MongoDB document adapter.

Provides ``AsyncMongoAdapter``, an implementation of the ``DocumentClient``
protocol over pymongo's native asyncio client.

Usage:
    from db_promoter.adapters.mongo import AsyncMongoAdapter

    adapter = AsyncMongoAdapter("mongodb://localhost:27017", "iac")
    async for doc in adapter.find("Workflow", {"status": "active"}):
        print(doc["_id"])
    await adapter.close()
"""

from collections.abc import AsyncIterator
from typing import Any

from pymongo import AsyncMongoClient


class AsyncMongoAdapter:
    """Async MongoDB implementation of the ``DocumentClient`` protocol.

    Args:
        url: MongoDB connection URL.
        database_name: Database to operate on.
        **client_kwargs: Forwarded to ``AsyncMongoClient``.
    """

    def __init__(self, url: str, database_name: str, **client_kwargs: Any) -> None:
        defaults: dict[str, Any] = {"serverSelectionTimeoutMS": 5000, "tz_aware": True}
        self._client: AsyncMongoClient = AsyncMongoClient(url, **{**defaults, **client_kwargs})
        self._database_name = database_name
        self._db = self._client[database_name]

    @property
    def database_name(self) -> str:
        return self._database_name

    async def find(
        self, collection: str, query: dict[str, Any] | None = None
    ) -> AsyncIterator[dict]:
        """Stream matching documents without materializing the cursor."""
        cursor = self._db[collection].find(query or {})
        async for doc in cursor:
            yield doc

    async def list_indexes(self, collection: str) -> list[dict]:
        cursor = await self._db[collection].list_indexes()
        return [dict(index) async for index in cursor]

    async def count_documents(self, collection: str, query: dict[str, Any]) -> int:
        return await self._db[collection].count_documents(query)

    async def insert_one(self, collection: str, document: dict) -> Any:
        result = await self._db[collection].insert_one(document)
        return result.inserted_id

    async def update_one(self, collection: str, query: dict[str, Any], update: dict) -> int:
        result = await self._db[collection].update_one(query, update)
        return result.modified_count

    async def update_many(
        self,
        collection: str,
        query: dict[str, Any],
        update: dict,
        array_filters: list[dict] | None = None,
    ) -> int:
        result = await self._db[collection].update_many(
            query, update, array_filters=array_filters
        )
        return result.modified_count

    async def delete_many(self, collection: str, query: dict[str, Any]) -> int:
        result = await self._db[collection].delete_many(query)
        return result.deleted_count

    async def create_index(
        self,
        collection: str,
        keys: list[tuple[str, Any]],
        unique: bool = False,
        name: str | None = None,
    ) -> str:
        options: dict[str, Any] = {"unique": unique}
        if name:
            options["name"] = name
        return await self._db[collection].create_index(keys, **options)

    async def ping(self) -> bool:
        """Run the ``ping`` admin command.

        Raises:
            Exception: If the server cannot be reached.
        """
        result = await self._client.admin.command("ping")
        return bool(result.get("ok"))

    async def close(self) -> None:
        await self._client.close()
