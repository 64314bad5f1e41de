"""
Metadata Store
==============
Read-only access to the application's MongoDB database.

The index classifier is the only consumer: index names are opaque
ObjectId strings, and the collection holding a document with that id
tells what the index contains.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from loguru import logger
from pymongo import AsyncMongoClient

from esupgrade.core.exceptions import StoreConnectionError, wrap_store_exception


class MetadataStore(ABC):
    """Interface of the secondary metadata store."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def find_one(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document whose _id is the ObjectId `doc_id`, or None."""

    async def close(self) -> None:
        return None


def parse_object_id(value: str) -> Optional[ObjectId]:
    """Return the ObjectId spelled by `value`, or None when it is not one."""
    # ObjectId(None) would mint a fresh id
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except InvalidId:
        return None


class MongoMetadataStore(MetadataStore):
    """MetadataStore backed by PyMongo's asyncio client."""

    backend = "mongodb"

    def __init__(
        self,
        uri: str,
        database: str,
        server_selection_timeout_ms: int = 5000,
        client: Optional[AsyncMongoClient] = None,
    ):
        self.uri = uri
        self.database_name = database
        self._client = client or AsyncMongoClient(
            uri, serverSelectionTimeoutMS=server_selection_timeout_ms
        )
        self.db = self._client[database]

    async def ping(self) -> bool:
        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"MongoDB at {self.uri} is unreachable: {e}")
            raise StoreConnectionError(self.backend, str(e)) from e

    async def find_one(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        object_id = parse_object_id(doc_id)
        if object_id is None:
            return None
        try:
            return await self.db[collection].find_one({"_id": object_id})
        except Exception as e:
            raise wrap_store_exception(self.backend, f"find_one({collection})", e) from e

    async def close(self) -> None:
        await self._client.close()
