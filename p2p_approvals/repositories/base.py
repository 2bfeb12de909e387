import logging
from typing import Generic, TypeVar, Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorCollection
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError
from p2p_approvals.exceptions import StoreError
from p2p_approvals.models.base import MongoModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=MongoModel)

def to_object_id(id: str) -> Optional[ObjectId]:
    """Parse a string id; None when it is not a valid ObjectId."""
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        return None

class BaseRepository(Generic[T]):
    def __init__(self, collection: AsyncIOMotorCollection, model_cls: type[T]):
        self.collection = collection
        self.model_cls = model_cls

    async def get(self, id: str) -> Optional[T]:
        """Get a document by ID."""
        oid = to_object_id(id)
        if oid is None:
            return None
        try:
            doc = await self.collection.find_one({"_id": oid})
        except PyMongoError as e:
            raise StoreError(f"Failed to read {self.collection.name} {id}") from e
        return self.model_cls.from_mongo(doc) if doc else None

    async def find_one(self, filter: Dict[str, Any]) -> Optional[T]:
        try:
            doc = await self.collection.find_one(filter)
        except PyMongoError as e:
            raise StoreError(f"Failed to query {self.collection.name}") from e
        return self.model_cls.from_mongo(doc) if doc else None

    async def list(self, filter: Dict[str, Any] = None, skip: int = 0, limit: int = 100, sort=None) -> List[T]:
        """List documents with optional filter and pagination."""
        try:
            cursor = self.collection.find(filter or {}).skip(skip).limit(limit)
            if sort:
                cursor = cursor.sort(sort)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise StoreError(f"Failed to list {self.collection.name}") from e
        return [self.model_cls.from_mongo(doc) for doc in docs]

    async def create(self, model: T) -> T:
        """Create a new document."""
        try:
            result = await self.collection.insert_one(model.to_mongo())
        except PyMongoError as e:
            raise StoreError(f"Failed to insert into {self.collection.name}") from e
        model.id = str(result.inserted_id)
        return model

    async def set_fields(self, id: str, values: Dict[str, Any]) -> bool:
        """Apply one atomic $set to a document. Returns False when it does not exist."""
        oid = to_object_id(id)
        if oid is None:
            return False
        try:
            result = await self.collection.update_one({"_id": oid}, {"$set": values})
        except PyMongoError as e:
            raise StoreError(f"Failed to update {self.collection.name} {id}") from e
        return result.matched_count > 0
