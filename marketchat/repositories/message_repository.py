from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from marketchat.database.connection import MongoStoreBase, mongo_guard
from marketchat.models.message import ContentKind, MessageContentDocument, MessageDocument
from marketchat.repositories.base import MessageStore


def _normalize(doc: Dict[str, Any]) -> MessageDocument:
    doc["_id"] = str(doc.get("_id"))
    return doc  # type: ignore[return-value]


class MessageRepository(MongoStoreBase, MessageStore):

    name = "messages"

    def __init__(self, db: AsyncIOMotorDatabase, migration_check: bool = True) -> None:
        super().__init__(db, migration_check)

    @mongo_guard
    async def ensure_schema(self) -> None:
        await self._create_collection()
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("recipient_id", ASCENDING), ("read", ASCENDING)])

    @mongo_guard
    async def insert(
        self,
        conversation_id: str,
        sender_id: str,
        recipient_id: str,
        content: MessageContentDocument,
        kind: ContentKind,
    ) -> MessageDocument:
        await self._require()
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": dict(content),
            "kind": kind,
            "read": False,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc  # type: ignore[return-value]

    @mongo_guard
    async def list_page(self, conversation_id: str, offset: int, limit: int) -> List[MessageDocument]:
        await self._require()
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find({"conversation_id": conversation_id}).sort(sort).skip(offset).limit(limit)
        items = await cur.to_list(length=limit)
        return [_normalize(it) for it in items]

    def _unread_query(
        self,
        recipient_id: str,
        conversation_id: Optional[str] = None,
        message_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {"recipient_id": recipient_id, "read": False}
        if conversation_id:
            query["conversation_id"] = conversation_id
        if message_ids is not None:
            query["_id"] = {"$in": [ObjectId(m) for m in message_ids if ObjectId.is_valid(m)]}
        return query

    @mongo_guard
    async def mark_read(
        self,
        recipient_id: str,
        conversation_id: Optional[str] = None,
        message_ids: Optional[Sequence[str]] = None,
    ) -> List[MessageDocument]:
        await self._require()
        query = self._unread_query(recipient_id, conversation_id, message_ids)
        items = await self.collection.find(query).to_list(length=None)
        if not items:
            return []
        ids = [it["_id"] for it in items]
        # read only ever moves false -> true, so a concurrent flip is harmless
        await self.collection.update_many({"_id": {"$in": ids}, "read": False}, {"$set": {"read": True}})
        for it in items:
            it["read"] = True
        return [_normalize(it) for it in items]

    @mongo_guard
    async def count_unread(self, recipient_id: str, conversation_id: Optional[str] = None) -> int:
        await self._require()
        return await self.collection.count_documents(self._unread_query(recipient_id, conversation_id))

    @mongo_guard
    async def unread_by_conversation(self, recipient_id: str) -> Dict[str, int]:
        await self._require()
        pipeline = [
            {"$match": {"recipient_id": recipient_id, "read": False}},
            {"$group": {"_id": "$conversation_id", "count": {"$sum": 1}}},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)
        return {str(row["_id"]): int(row["count"]) for row in rows}
