"""In-process adapters for every store port, used by the ``memory`` backend."""
import copy
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

from bson import ObjectId

from marketchat.errors import NotAvailable
from marketchat.models.conversation import ConversationDocument
from marketchat.models.message import ContentKind, MessageContentDocument, MessageDocument
from marketchat.models.user import ProfileDocument
from marketchat.repositories.base import (
    ConversationStore,
    MessageStore,
    ObjectStore,
    ProfileStore,
    StoredObject,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _MemoryStoreBase:

    name = ""

    def __init__(self, provisioned: bool = True) -> None:
        # False mimics an environment whose migrations have not run
        self.provisioned = provisioned

    async def ensure_schema(self) -> None:
        self.provisioned = True

    def _require(self) -> None:
        if not self.provisioned:
            raise NotAvailable(f"collection '{self.name}' does not exist")


class InMemoryConversationStore(_MemoryStoreBase, ConversationStore):

    name = "conversations"

    def __init__(self, provisioned: bool = True) -> None:
        super().__init__(provisioned)
        self._items: Dict[str, ConversationDocument] = {}
        self._seq = itertools.count()
        self._order: Dict[str, int] = {}

    def _find(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        matches = [
            doc
            for doc in self._items.values()
            if (doc["initiator_id"], doc["counterpart_key"]) in ((user_a, user_b), (user_b, user_a))
        ]
        if not matches:
            return None
        return min(matches, key=lambda d: self._order[d["_id"]])

    async def find_between(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        self._require()
        found = self._find(user_a, user_b)
        return copy.deepcopy(found) if found else None

    async def get_or_create(self, initiator_id: str, counterpart_id: str, external: bool) -> ConversationDocument:
        self._require()
        # no await between lookup and insert, so this is atomic on the loop
        found = self._find(initiator_id, counterpart_id)
        if found is None:
            now = _now()
            found = {
                "_id": str(ObjectId()),
                "initiator_id": initiator_id,
                "counterpart_id": None if external else counterpart_id,
                "counterpart_external_id": counterpart_id if external else None,
                "counterpart_key": counterpart_id,
                "created_at": now,
                "updated_at": now,
                "last_message": None,
                "last_message_at": None,
            }
            self._items[found["_id"]] = found
            self._order[found["_id"]] = next(self._seq)
        return copy.deepcopy(found)

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        self._require()
        found = self._items.get(conversation_id)
        return copy.deepcopy(found) if found else None

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[ConversationDocument]:
        self._require()
        mine = [
            doc for doc in self._items.values()
            if user_id in (doc["initiator_id"], doc["counterpart_key"])
        ]
        mine.sort(key=lambda d: (d["updated_at"], self._order[d["_id"]]), reverse=True)
        return [copy.deepcopy(d) for d in mine[:limit]]

    async def touch(self, conversation_id: str, preview: str, at: datetime) -> None:
        self._require()
        doc = self._items.get(conversation_id)
        if doc is None:
            return
        doc["last_message"] = preview
        doc["last_message_at"] = at
        doc["updated_at"] = at


class InMemoryMessageStore(_MemoryStoreBase, MessageStore):

    name = "messages"

    def __init__(self, provisioned: bool = True) -> None:
        super().__init__(provisioned)
        self._items: List[Tuple[int, MessageDocument]] = []
        self._seq = itertools.count()
        self.insert_calls = 0

    async def insert(
        self,
        conversation_id: str,
        sender_id: str,
        recipient_id: str,
        content: MessageContentDocument,
        kind: ContentKind,
    ) -> MessageDocument:
        self._require()
        self.insert_calls += 1
        doc: MessageDocument = {
            "_id": str(ObjectId()),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": dict(content),  # type: ignore[typeddict-item]
            "kind": kind,
            "read": False,
            "created_at": _now(),
        }
        self._items.append((next(self._seq), doc))
        return copy.deepcopy(doc)

    async def list_page(self, conversation_id: str, offset: int, limit: int) -> List[MessageDocument]:
        self._require()
        rows = [(seq, doc) for seq, doc in self._items if doc["conversation_id"] == conversation_id]
        rows.sort(key=lambda r: (r[1]["created_at"], r[0]), reverse=True)
        return [copy.deepcopy(doc) for _, doc in rows[offset:offset + limit]]

    def _unread(
        self,
        recipient_id: str,
        conversation_id: Optional[str] = None,
        message_ids: Optional[Sequence[str]] = None,
    ) -> List[MessageDocument]:
        wanted = set(message_ids) if message_ids is not None else None
        return [
            doc
            for _, doc in self._items
            if doc["recipient_id"] == recipient_id
            and not doc["read"]
            and (conversation_id is None or doc["conversation_id"] == conversation_id)
            and (wanted is None or doc["_id"] in wanted)
        ]

    async def mark_read(
        self,
        recipient_id: str,
        conversation_id: Optional[str] = None,
        message_ids: Optional[Sequence[str]] = None,
    ) -> List[MessageDocument]:
        self._require()
        changed = self._unread(recipient_id, conversation_id, message_ids)
        for doc in changed:
            doc["read"] = True
        return [copy.deepcopy(doc) for doc in changed]

    async def count_unread(self, recipient_id: str, conversation_id: Optional[str] = None) -> int:
        self._require()
        return len(self._unread(recipient_id, conversation_id))

    async def unread_by_conversation(self, recipient_id: str) -> Dict[str, int]:
        self._require()
        counts: Dict[str, int] = {}
        for doc in self._unread(recipient_id):
            counts[doc["conversation_id"]] = counts.get(doc["conversation_id"], 0) + 1
        return counts


class InMemoryProfileStore(_MemoryStoreBase, ProfileStore):

    name = "profiles"

    def __init__(self, provisioned: bool = True) -> None:
        super().__init__(provisioned)
        self._items: Dict[str, ProfileDocument] = {}
        self.presence_writes: List[Tuple[str, bool]] = []

    async def get(self, user_id: str) -> Optional[ProfileDocument]:
        self._require()
        found = self._items.get(user_id)
        return copy.deepcopy(found) if found else None

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, ProfileDocument]:
        self._require()
        return {uid: copy.deepcopy(self._items[uid]) for uid in set(user_ids) if uid in self._items}

    async def upsert(self, user_id: str, full_name: Optional[str], avatar_url: Optional[str] = None) -> None:
        self._require()
        doc = self._items.setdefault(user_id, {"_id": user_id, "is_online": False, "last_seen": None})
        doc["full_name"] = full_name
        doc["avatar_url"] = avatar_url

    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        self._require()
        self.presence_writes.append((user_id, is_online))
        doc = self._items.get(user_id)
        if doc is None:
            return False
        doc["is_online"] = is_online
        doc["last_seen"] = last_seen
        return True


class InMemoryObjectStore(_MemoryStoreBase, ObjectStore):

    name = "attachments"

    def __init__(self, public_base_url: str = "http://localhost:8000", provisioned: bool = True) -> None:
        super().__init__(provisioned)
        self._base_url = public_base_url.rstrip("/")
        self._items: Dict[str, StoredObject] = {}
        self.put_calls = 0

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        self.put_calls += 1
        self._require()
        self._items[path] = StoredObject(path=path, data=bytes(data), content_type=content_type)

    async def open(self, path: str) -> Optional[StoredObject]:
        self._require()
        return self._items.get(path)

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/files/{quote(path)}"

    def paths(self) -> List[str]:
        return sorted(self._items)


def memory_stores(public_base_url: str = "http://localhost:8000", provisioned: bool = True) -> Dict[str, Any]:
    return {
        "conversations": InMemoryConversationStore(provisioned),
        "messages": InMemoryMessageStore(provisioned),
        "profiles": InMemoryProfileStore(provisioned),
        "objects": InMemoryObjectStore(public_base_url, provisioned),
    }
