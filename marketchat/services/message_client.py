import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as SchemaError

from marketchat.errors import NotAvailable, Unknown, ValidationError
from marketchat.repositories.base import ConversationStore, MessageStore
from marketchat.schemas.chat import Message, MessageContent
from marketchat.utils.calls import bounded
from marketchat.utils.identifiers import IdentifierPolicy
from marketchat.utils.realtime_bus import Subscription, message_channel, read_channel


logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message], Union[Awaitable[None], None]]
ReadHandler = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]


async def _call(handler: Callable[[Any], Any], value: Any) -> None:
    result = handler(value)
    if inspect.isawaitable(result):
        await result


class MessageStoreClient:
    """
    Append, page, mark-read and live delivery for conversation messages.

    Live delivery goes through the bus on one channel per recipient. It is
    at-most-once per connection; anything missed is still returned by ``list``.
    """

    def __init__(
        self,
        messages: MessageStore,
        conversations: ConversationStore,
        bus: Any,
        identifiers: IdentifierPolicy,
        timeout: float = 10.0,
        page_size: int = 20,
    ) -> None:
        self._messages = messages
        self._conversations = conversations
        self._bus = bus
        self._identifiers = identifiers
        self._timeout = timeout
        self.page_size = page_size

    @staticmethod
    def _coerce_content(content: Union[str, MessageContent, Dict[str, Any]], kind: Optional[str]) -> MessageContent:
        try:
            if isinstance(content, MessageContent):
                payload = content
            elif isinstance(content, dict):
                payload = MessageContent.model_validate(content)
            elif not isinstance(content, str):
                raise ValidationError("message content must be text or a tagged payload", field="content")
            elif kind in (None, "text"):
                payload = MessageContent.of_text(content)
            elif kind == "image":
                payload = MessageContent.of_image(content)
            else:
                raise ValidationError("file messages need a file name and url payload", field="content")
        except SchemaError as exc:
            raise ValidationError(f"invalid message content: {exc.errors()[0]['msg']}", field="content") from exc
        if kind is not None and payload.kind != kind:
            raise ValidationError(f"content does not match kind {kind!r}", field="kind")
        return payload

    async def _publish(self, channel: str, event: Dict[str, Any]) -> None:
        try:
            await self._bus.publish(channel, json.dumps(event, default=str))
        except Unknown as exc:
            # stored already; the recipient picks it up on the next list()
            logger.warning("Live delivery on %s failed: %s", channel, exc)

    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        recipient_id: str,
        content: Union[str, MessageContent, Dict[str, Any]],
        kind: Optional[str] = None,
    ) -> Message:
        """
        Store a message and push it to the recipient's live channel.

        Plain strings are text unless ``kind`` says "image"; tagged payloads
        carry their own kind. Identifiers and content are validated before
        anything reaches the store.
        """
        sender_id = self._identifiers.require(sender_id, "sender_id")
        recipient_id = self._identifiers.require(recipient_id, "recipient_id")
        if not conversation_id:
            raise ValidationError("conversation id is required", field="conversation_id")
        if sender_id == recipient_id:
            raise ValidationError("sender and recipient must differ", field="recipient_id")
        payload = self._coerce_content(content, kind)

        saved = await bounded(
            self._messages.insert(
                conversation_id, sender_id, recipient_id, payload.model_dump(), payload.kind
            ),
            self._timeout,
        )
        message = Message.from_document(saved)
        try:
            await bounded(
                self._conversations.touch(conversation_id, payload.preview(), message.created_at),
                self._timeout,
            )
        except NotAvailable as exc:
            logger.warning("Conversation preview not updated for %s: %s", conversation_id, exc)

        await self._publish(message_channel(recipient_id), {"type": "message", "message": message.model_dump(mode="json")})
        logger.debug("Message %s sent in %s", message.id, conversation_id)
        return message

    async def list(self, conversation_id: str, page: int = 0, page_size: Optional[int] = None) -> List[Message]:
        """One page of messages, oldest first; page 0 holds the most recent ones."""
        page_size = page_size or self.page_size
        if page < 0 or page_size < 1:
            raise ValidationError("page must be >= 0 and page_size >= 1", field="page")
        try:
            docs = await bounded(
                self._messages.list_page(conversation_id, offset=page * page_size, limit=page_size),
                self._timeout,
            )
        except NotAvailable as exc:
            logger.warning("Messages unavailable for %s: %s", conversation_id, exc)
            return []
        return [Message.from_document(doc) for doc in reversed(docs)]

    async def mark_read(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
        message_ids: Optional[Sequence[str]] = None,
    ) -> int:
        user_id = self._identifiers.require(user_id, "user_id")
        if conversation_id is None and message_ids is None:
            raise ValidationError("conversation id or message ids are required", field="conversation_id")
        try:
            changed = await bounded(
                self._messages.mark_read(user_id, conversation_id=conversation_id, message_ids=message_ids),
                self._timeout,
            )
        except NotAvailable as exc:
            logger.warning("Read state not updated for %s: %s", user_id, exc)
            return 0

        by_sender: Dict[str, List[Dict[str, Any]]] = {}
        for doc in changed:
            by_sender.setdefault(doc["sender_id"], []).append(doc)
        for sender_id, docs in by_sender.items():
            await self._publish(
                read_channel(sender_id),
                {
                    "type": "read",
                    "reader_id": user_id,
                    "conversation_ids": sorted({d["conversation_id"] for d in docs}),
                    "message_ids": [d["_id"] for d in docs],
                },
            )
        return len(changed)

    async def count_unread(self, user_id: str, conversation_id: Optional[str] = None) -> int:
        user_id = self._identifiers.require(user_id, "user_id")
        try:
            return await bounded(self._messages.count_unread(user_id, conversation_id), self._timeout)
        except NotAvailable as exc:
            logger.warning("Unread count unavailable for %s: %s", user_id, exc)
            return 0

    async def subscribe(self, user_id: str, on_message: MessageHandler) -> Subscription:
        """Call ``on_message`` once per new message addressed to ``user_id``."""
        user_id = self._identifiers.require(user_id, "user_id")

        async def deliver(raw: str) -> None:
            event = json.loads(raw)
            if event.get("type") != "message":
                return
            message = Message.model_validate(event["message"])
            if message.recipient_id != user_id:
                return
            await _call(on_message, message)

        return await self._bus.subscribe(message_channel(user_id), deliver)

    async def subscribe_reads(self, user_id: str, on_read: ReadHandler) -> Subscription:
        """Read receipts for messages ``user_id`` sent."""
        user_id = self._identifiers.require(user_id, "user_id")

        async def deliver(raw: str) -> None:
            event = json.loads(raw)
            if event.get("type") == "read":
                await _call(on_read, event)

        return await self._bus.subscribe(read_channel(user_id), deliver)
