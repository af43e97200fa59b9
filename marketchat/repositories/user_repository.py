from datetime import datetime
from typing import Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from marketchat.database.connection import MongoStoreBase, mongo_guard
from marketchat.models.user import ProfileDocument
from marketchat.repositories.base import ProfileStore


class UserRepository(MongoStoreBase, ProfileStore):
    """Profiles mirrored from the auth provider, plus presence fields."""

    name = "profiles"

    def __init__(self, db: AsyncIOMotorDatabase, migration_check: bool = True) -> None:
        super().__init__(db, migration_check)

    @mongo_guard
    async def ensure_schema(self) -> None:
        await self._create_collection()

    @mongo_guard
    async def get(self, user_id: str) -> Optional[ProfileDocument]:
        await self._require()
        return await self.collection.find_one({"_id": user_id})

    @mongo_guard
    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, ProfileDocument]:
        await self._require()
        ids = list(set(user_ids))
        if not ids:
            return {}
        cur = self.collection.find({"_id": {"$in": ids}})
        return {doc["_id"]: doc async for doc in cur}

    @mongo_guard
    async def upsert(self, user_id: str, full_name: Optional[str], avatar_url: Optional[str] = None) -> None:
        await self._require()
        await self.collection.update_one(
            {"_id": user_id},
            {
                "$set": {"full_name": full_name, "avatar_url": avatar_url},
                "$setOnInsert": {"is_online": False, "last_seen": None},
            },
            upsert=True,
        )

    @mongo_guard
    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        await self._require()
        result = await self.collection.update_one(
            {"_id": user_id},
            {"$set": {"is_online": is_online, "last_seen": last_seen}},
        )
        return bool(result.matched_count)
