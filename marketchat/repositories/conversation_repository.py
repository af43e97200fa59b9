from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketchat.database.connection import MongoStoreBase, mongo_guard
from marketchat.models.conversation import ConversationDocument
from marketchat.repositories.base import ConversationStore


def _normalize(doc: Optional[Dict[str, Any]]) -> Optional[ConversationDocument]:
    if doc is None:
        return None
    doc["_id"] = str(doc["_id"])
    return doc  # type: ignore[return-value]


class ConversationRepository(MongoStoreBase, ConversationStore):

    name = "conversations"

    def __init__(self, db: AsyncIOMotorDatabase, migration_check: bool = True) -> None:
        super().__init__(db, migration_check)

    @mongo_guard
    async def ensure_schema(self) -> None:
        await self._create_collection()
        await self.collection.create_index(
            [("initiator_id", ASCENDING), ("counterpart_key", ASCENDING)], unique=True
        )
        await self.collection.create_index([("counterpart_key", ASCENDING)])
        await self.collection.create_index([("updated_at", DESCENDING)])

    @mongo_guard
    async def find_between(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        await self._require()
        query = {
            "$or": [
                {"initiator_id": user_a, "counterpart_key": user_b},
                {"initiator_id": user_b, "counterpart_key": user_a},
            ]
        }
        cur = self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)]).limit(1)
        items = await cur.to_list(length=1)
        return _normalize(items[0]) if items else None

    @mongo_guard
    async def get_or_create(self, initiator_id: str, counterpart_id: str, external: bool) -> ConversationDocument:
        existing = await self.find_between(initiator_id, counterpart_id)
        if existing:
            return existing
        now = datetime.now(timezone.utc)
        key = {"initiator_id": initiator_id, "counterpart_key": counterpart_id}
        on_insert: Dict[str, Any] = {
            "_id": ObjectId(),
            "counterpart_id": None if external else counterpart_id,
            "counterpart_external_id": counterpart_id if external else None,
            "created_at": now,
            "updated_at": now,
            "last_message": None,
            "last_message_at": None,
        }
        try:
            doc = await self.collection.find_one_and_update(
                key,
                {"$setOnInsert": on_insert},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost the upsert race; the winner's row is there now
            doc = await self.collection.find_one(key)
        return _normalize(doc)  # type: ignore[return-value]

    @mongo_guard
    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        await self._require()
        if not ObjectId.is_valid(conversation_id):
            return None
        return _normalize(await self.collection.find_one({"_id": ObjectId(conversation_id)}))

    @mongo_guard
    async def list_for_user(self, user_id: str, limit: int = 50) -> List[ConversationDocument]:
        await self._require()
        query = {"$or": [{"initiator_id": user_id}, {"counterpart_key": user_id}]}
        sort = [("updated_at", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        return [_normalize(it) for it in items]  # type: ignore[misc]

    @mongo_guard
    async def touch(self, conversation_id: str, preview: str, at: datetime) -> None:
        await self._require()
        if not ObjectId.is_valid(conversation_id):
            return
        await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {"$set": {"last_message": preview, "last_message_at": at, "updated_at": at}},
        )
