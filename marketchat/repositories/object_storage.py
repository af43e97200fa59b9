from typing import Optional
from urllib.parse import quote

from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket

from marketchat.database.connection import mongo_guard
from marketchat.repositories.base import ObjectStore, StoredObject


DEFAULT_CONTENT_TYPE = "application/octet-stream"


class GridFSObjectStore(ObjectStore):
    """Attachments kept in a GridFS bucket, served back through ``/files``."""

    def __init__(self, db: AsyncIOMotorDatabase, public_base_url: str, bucket_name: str = "attachments") -> None:
        self._db = db
        self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)
        self._base_url = public_base_url.rstrip("/")
        self.name = bucket_name

    async def ensure_schema(self) -> None:
        # GridFS creates its files/chunks collections on first write
        return

    @mongo_guard
    async def put(self, path: str, data: bytes, content_type: str) -> None:
        await self._bucket.upload_from_stream(path, data, metadata={"content_type": content_type})

    @mongo_guard
    async def open(self, path: str) -> Optional[StoredObject]:
        try:
            stream = await self._bucket.open_download_stream_by_name(path)
        except NoFile:
            return None
        data = await stream.read()
        metadata = stream.metadata or {}
        return StoredObject(path=path, data=data, content_type=metadata.get("content_type", DEFAULT_CONTENT_TYPE))

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/files/{quote(path)}"
