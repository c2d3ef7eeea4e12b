"""
Generic Repository Base Class
DRY foundation for async CRUD operations on MongoDB collections.
"""
from typing import Generic, TypeVar, Type, Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorCollection, AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
import datetime as dt

from ..models.base import MongoBaseModel
from ..utils.observability import logger

# Generic type for domain models
T = TypeVar("T", bound=MongoBaseModel)


def to_object_id(document_id: str) -> Optional[ObjectId]:
    """Parse a string id; None if it is not a valid ObjectId."""
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return None


class BaseRepository(Generic[T]):
    """
    Generic async repository for MongoDB collections.
    Provides type-safe CRUD operations for domain models.

    Every write accepts an optional `session` so callers can group writes
    in a multi-document transaction.

    Usage:
        class OrderRepository(BaseRepository[ProcessedOrderMarker]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "processed_orders", ProcessedOrderMarker)
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        collection_name: str,
        model_class: Type[T]
    ):
        """
        Initialize repository with database connection and model type.

        Args:
            database: Motor database instance
            collection_name: MongoDB collection name
            model_class: Pydantic model class for type safety
        """
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.model_class = model_class
        self.collection_name = collection_name

    def _to_document(self, document: T) -> Dict[str, Any]:
        """Model -> MongoDB dict with a freshly assigned ObjectId."""
        doc_dict = document.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)
        doc_dict["_id"] = to_object_id(document.id) if document.id else ObjectId()
        return doc_dict

    async def create(
        self,
        document: T,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> T:
        """
        Insert a new document into the collection.

        `created_at` is kept as given so callers can backdate rows;
        `updated_at` is stamped now.

        Args:
            document: Domain model instance to persist
            session: Optional transaction session

        Returns:
            The created document with `_id` populated

        Raises:
            pymongo.errors.DuplicateKeyError: If unique constraint violated
        """
        document.updated_at = dt.datetime.now(dt.UTC)
        doc_dict = self._to_document(document)

        result = await self.collection.insert_one(doc_dict, session=session)

        logger.debug(
            f"Created document in {self.collection_name}",
            extra={"document_id": str(result.inserted_id)}
        )

        document.id = str(result.inserted_id)
        return document

    async def find_by_id(self, document_id: str) -> Optional[T]:
        """
        Retrieve a document by its MongoDB ObjectId.

        Args:
            document_id: String representation of ObjectId

        Returns:
            Domain model instance or None if not found
        """
        object_id = to_object_id(document_id)
        if object_id is None:
            return None

        doc = await self.collection.find_one({"_id": object_id})
        if doc is None:
            return None

        return self._to_model(doc)

    async def find_one(self, filter_dict: Dict[str, Any], sort: Optional[List[tuple]] = None) -> Optional[T]:
        """
        Retrieve the first document matching the filter.

        Args:
            filter_dict: MongoDB query filter
            sort: Optional (field, direction) tuples

        Returns:
            Domain model instance or None if not found
        """
        doc = await self.collection.find_one(filter_dict, sort=sort)

        if doc is None:
            return None

        return self._to_model(doc)

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        limit: int = 100,
        sort: Optional[List[tuple]] = None
    ) -> List[T]:
        """
        Retrieve multiple documents matching the filter.

        Args:
            filter_dict: MongoDB query filter
            limit: Maximum number of documents to return
            sort: List of (field, direction) tuples for sorting

        Returns:
            List of domain model instances
        """
        cursor = self.collection.find(filter_dict)

        if sort:
            cursor = cursor.sort(sort)

        cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=limit)

        return [self._to_model(doc) for doc in docs]

    async def update_fields(
        self,
        filter_dict: Dict[str, Any],
        fields: Dict[str, Any],
        inc: Optional[Dict[str, int]] = None,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> bool:
        """
        Partially update the first document matching the filter.

        Args:
            filter_dict: MongoDB query filter (guards go here)
            fields: Fields to $set
            inc: Fields to $inc
            session: Optional transaction session

        Returns:
            True if a document matched
        """
        update: Dict[str, Any] = {"$set": {**fields, "updated_at": dt.datetime.now(dt.UTC)}}
        if inc:
            update["$inc"] = inc

        result = await self.collection.update_one(filter_dict, update, session=session)
        return result.matched_count > 0

    async def count(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """
        Count documents matching the filter.

        Args:
            filter_dict: MongoDB query filter (None for all documents)

        Returns:
            Number of matching documents
        """
        filter_dict = filter_dict or {}
        return await self.collection.count_documents(filter_dict)

    async def bulk_create(
        self,
        documents: List[T],
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[T]:
        """
        Insert multiple documents in a single operation.

        Ids are assigned before the write, so a partially failed batch can
        still be identified and cleaned up by the caller.

        Args:
            documents: List of domain model instances
            session: Optional transaction session

        Returns:
            List of created documents with `_id` populated
        """
        if not documents:
            return []

        now = dt.datetime.now(dt.UTC)

        doc_dicts = []
        for doc in documents:
            doc.updated_at = now
            doc_dict = self._to_document(doc)
            doc.id = str(doc_dict["_id"])
            doc_dicts.append(doc_dict)

        await self.collection.insert_many(doc_dicts, session=session)

        logger.debug(
            f"Bulk created documents in {self.collection_name}",
            extra={"count": len(documents)}
        )

        return documents

    async def delete_by_ids(self, document_ids: List[str]) -> int:
        """Delete every document whose id is listed. Returns count deleted."""
        object_ids = [oid for oid in (to_object_id(i) for i in document_ids) if oid is not None]
        if not object_ids:
            return 0
        result = await self.collection.delete_many({"_id": {"$in": object_ids}})
        return result.deleted_count

    def _to_model(self, doc: Dict[str, Any]) -> T:
        """
        Convert MongoDB document to Pydantic model instance.

        Args:
            doc: Raw MongoDB document dict

        Returns:
            Domain model instance
        """
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])

        model_fields = self.model_class.model_fields.keys()

        cleaned_doc = {
            k: v for k, v in doc.items()
            if k in model_fields or k == "_id"
        }

        return self.model_class.model_validate(cleaned_doc)
