#!/usr/bin/env python3
"""
Query executor.

The builder and the model layer never talk to the driver directly; they call
a QueryExecutor. MotorQueryExecutor is the production implementation, tests
substitute recording executors or point this one at an in-memory client.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from ..config import DEFAULT_PER_PAGE
from ..log_manager import get_logger
from .session import session_kwargs

Document = Dict[str, Any]


class QueryExecutor(ABC):
    """Primitive collection operations used by mongolayer."""

    per_page: int = DEFAULT_PER_PAGE

    @abstractmethod
    async def aggregate(self, collection: str, pipeline: List[Document]) -> List[Document]:
        """Run an aggregation pipeline and return every resulting document."""

    @abstractmethod
    async def explain(self, collection: str, pipeline: List[Document]) -> Document:
        """Get the query plan of an aggregation pipeline."""

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> Any:
        """Insert one document and return its _id."""

    @abstractmethod
    async def insert_many(self, collection: str, documents: List[Document]) -> List[Any]:
        """Insert documents and return their _ids."""

    @abstractmethod
    async def replace_one(self, collection: str, filter: Document, document: Document,
                          upsert: bool = False) -> int:
        """Replace one document and return the modified count."""

    @abstractmethod
    async def update_one(self, collection: str, filter: Document, update: Any,
                         upsert: bool = False) -> int:
        """Update one document and return the modified count."""

    @abstractmethod
    async def update_many(self, collection: str, filter: Document, update: Any) -> int:
        """Update documents (update document or pipeline) and return the modified count."""

    @abstractmethod
    async def find_one_and_update(self, collection: str, filter: Document, update: Any,
                                  upsert: bool = False) -> Optional[Document]:
        """Atomically update one document and return it as it is after the update."""

    @abstractmethod
    async def delete_one(self, collection: str, filter: Document) -> int:
        """Delete one document and return the deleted count."""

    @abstractmethod
    async def delete_many(self, collection: str, filter: Document) -> int:
        """Delete documents and return the deleted count."""

    @abstractmethod
    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        """Get the first matching document or None."""

    @abstractmethod
    async def find_many(self, collection: str, filter: Document,
                        sort: Optional[Dict[str, int]] = None,
                        limit: Optional[int] = None) -> List[Document]:
        """Get matching documents."""

    @abstractmethod
    async def count(self, collection: str, filter: Optional[Document] = None) -> int:
        """Count matching documents."""

    @abstractmethod
    async def distinct(self, collection: str, key: str,
                       filter: Optional[Document] = None) -> List[Any]:
        """Get distinct values of key among matching documents."""


class MotorQueryExecutor(QueryExecutor):
    """
    QueryExecutor backed by a Motor database.

    Every call joins the ambient transaction session when one is active.
    """

    def __init__(self, database, per_page: int = DEFAULT_PER_PAGE):
        """
        Args:
            database: AsyncIOMotorDatabase (or a compatible in-memory database)
            per_page: Default page size for paginate()
        """
        self.database = database
        self.per_page = per_page
        self.logger = get_logger('MotorQueryExecutor', component='query')

    def _collection(self, name: str):
        return self.database[name]

    async def aggregate(self, collection: str, pipeline: List[Document]) -> List[Document]:
        self.logger.debug(f"aggregate {collection}: {pipeline}")
        cursor = self._collection(collection).aggregate(pipeline, **session_kwargs())
        return await cursor.to_list(length=None)

    async def explain(self, collection: str, pipeline: List[Document]) -> Document:
        return await self.database.command(
            'aggregate', collection, pipeline=pipeline, explain=True, **session_kwargs()
        )

    async def insert_one(self, collection: str, document: Document) -> Any:
        result = await self._collection(collection).insert_one(document, **session_kwargs())
        return result.inserted_id

    async def insert_many(self, collection: str, documents: List[Document]) -> List[Any]:
        if not documents:
            return []
        result = await self._collection(collection).insert_many(documents, **session_kwargs())
        return result.inserted_ids

    async def replace_one(self, collection: str, filter: Document, document: Document,
                          upsert: bool = False) -> int:
        result = await self._collection(collection).replace_one(
            filter, document, upsert=upsert, **session_kwargs()
        )
        return result.modified_count

    async def update_one(self, collection: str, filter: Document, update: Any,
                         upsert: bool = False) -> int:
        result = await self._collection(collection).update_one(
            filter, update, upsert=upsert, **session_kwargs()
        )
        return result.modified_count

    async def update_many(self, collection: str, filter: Document, update: Any) -> int:
        self.logger.debug(f"update_many {collection}: {filter} -> {update}")
        result = await self._collection(collection).update_many(filter, update, **session_kwargs())
        return result.modified_count

    async def find_one_and_update(self, collection: str, filter: Document, update: Any,
                                  upsert: bool = False) -> Optional[Document]:
        return await self._collection(collection).find_one_and_update(
            filter, update, upsert=upsert, return_document=ReturnDocument.AFTER, **session_kwargs()
        )

    async def delete_one(self, collection: str, filter: Document) -> int:
        result = await self._collection(collection).delete_one(filter, **session_kwargs())
        return result.deleted_count

    async def delete_many(self, collection: str, filter: Document) -> int:
        result = await self._collection(collection).delete_many(filter, **session_kwargs())
        return result.deleted_count

    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        return await self._collection(collection).find_one(filter, **session_kwargs())

    async def find_many(self, collection: str, filter: Document,
                        sort: Optional[Dict[str, int]] = None,
                        limit: Optional[int] = None) -> List[Document]:
        options = session_kwargs()
        if sort:
            options['sort'] = list(sort.items())
        if limit:
            options['limit'] = limit
        cursor = self._collection(collection).find(filter, **options)
        return await cursor.to_list(length=None)

    async def count(self, collection: str, filter: Optional[Document] = None) -> int:
        return await self._collection(collection).count_documents(filter or {}, **session_kwargs())

    async def distinct(self, collection: str, key: str,
                       filter: Optional[Document] = None) -> List[Any]:
        return await self._collection(collection).distinct(key, filter or {}, **session_kwargs())
