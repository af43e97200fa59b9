import functools
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

from marketchat.config import Settings
from marketchat.errors import ChatError, NotAvailable, Unauthorized, Unknown, ValidationError


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

# server error codes worth telling apart
UNAUTHORIZED_CODES = {13, 8000}
NAMESPACE_NOT_FOUND = 26
DOCUMENT_VALIDATION_FAILURE = 121


async def connect_to_mongo(settings: Settings) -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is not None:
        return _db
    _client = AsyncIOMotorClient(
        settings.mongodb_url,
        tz_aware=True,
        serverSelectionTimeoutMS=int(settings.request_timeout_seconds * 1000),
    )
    _db = _client[settings.mongodb_db]
    logger.info("Connected to MongoDB database %s", settings.mongodb_db)
    return _db


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def translate_mongo_error(exc: PyMongoError) -> ChatError:
    if isinstance(exc, OperationFailure):
        if exc.code in UNAUTHORIZED_CODES:
            return Unauthorized(str(exc))
        if exc.code == NAMESPACE_NOT_FOUND:
            return NotAvailable(str(exc))
        if exc.code == DOCUMENT_VALIDATION_FAILURE:
            return ValidationError(str(exc))
    return Unknown(f"{type(exc).__name__}: {exc}")


F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def mongo_guard(func: F) -> F:
    """Re-raise driver errors from an adapter method as ``ChatError`` kinds."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except PyMongoError as exc:
            raise translate_mongo_error(exc) from exc

    return wrapper  # type: ignore[return-value]


class MongoStoreBase:
    """Shared collection plumbing for the Mongo adapters."""

    name = ""

    def __init__(self, db: AsyncIOMotorDatabase, migration_check: bool = True) -> None:
        self._db = db
        self._migration_check = migration_check
        self._provisioned = False

    @property
    def collection(self):
        return self._db[self.name]

    async def _require(self) -> None:
        # a missing collection means the environment was never migrated
        if self._provisioned or not self._migration_check:
            return
        names = await self._db.list_collection_names()
        if self.name not in names:
            raise NotAvailable(f"collection '{self.name}' does not exist")
        self._provisioned = True

    async def _create_collection(self) -> None:
        names = await self._db.list_collection_names()
        if self.name not in names:
            try:
                await self._db.create_collection(self.name)
                logger.info("Created collection %s", self.name)
            except CollectionInvalid:
                # created concurrently by another worker
                pass
        self._provisioned = True
