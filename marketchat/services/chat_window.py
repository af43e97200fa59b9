import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

from marketchat.errors import ChatError, NotAvailable
from marketchat.schemas.chat import Message
from marketchat.services.attachment_uploader import AttachmentUploader, UploadSource
from marketchat.services.conversation_directory import ConversationDirectory
from marketchat.services.message_client import MessageStoreClient
from marketchat.services.presence_tracker import PresenceTracker
from marketchat.utils.notifications import LoggingNotifier, report_failure
from marketchat.utils.realtime_bus import Subscription


logger = logging.getLogger(__name__)

Callback = Callable[[], Union[Awaitable[None], None]]


async def _fire(callback: Optional[Callback]) -> None:
    if callback is None:
        return
    result = callback()
    if inspect.isawaitable(result):
        await result


class ChatWindow:
    """
    One open conversation: its message list, the compose box and the live feed.

    ``mount`` loads history and subscribes; ``unmount`` always releases the
    subscription. Use ``async with window:`` to get both on every exit path.
    """

    def __init__(
        self,
        user_id: str,
        counterpart_id: str,
        counterpart_name: str,
        *,
        directory: ConversationDirectory,
        messages: MessageStoreClient,
        uploader: AttachmentUploader,
        presence: PresenceTracker,
        notifier: LoggingNotifier,
        is_online: bool = False,
        page_size: Optional[int] = None,
        on_scroll: Optional[Callback] = None,
        on_read: Optional[Callback] = None,
        session: Optional[Any] = None,
    ) -> None:
        self.user_id = user_id
        self.counterpart_id = counterpart_id
        self.counterpart_name = counterpart_name
        self.is_online = is_online
        self._directory = directory
        self._messages = messages
        self._uploader = uploader
        self._presence = presence
        self._notifier = notifier
        self._page_size = page_size or messages.page_size
        self._on_scroll = on_scroll
        self._on_read = on_read
        self._session = session

        self.conversation_id: Optional[str] = None
        self.messages: List[Message] = []
        self.draft = ""
        self.loading = False
        self.sending = False
        self.available = True
        self.has_more = True
        self.last_activity: Optional[str] = None
        self._page = 0
        self._subscription: Optional[Subscription] = None

    @property
    def mounted(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def __aenter__(self) -> "ChatWindow":
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unmount()

    async def mount(self) -> None:
        if self.mounted:
            return
        self.loading = True
        try:
            if self.conversation_id is None:
                self.conversation_id = await self._directory.get_or_create(self.user_id, self.counterpart_id)
            self.messages = []
            # subscribe first; the page merge drops duplicates
            self._subscription = await self._messages.subscribe(self.user_id, self._on_live_message)
            page = await self._messages.list(self.conversation_id, 0, self._page_size)
            known = {m.id for m in page}
            self.messages = page + [m for m in self.messages if m.id not in known]
            self._page = 0
            self.has_more = len(page) == self._page_size
            await self._mark_incoming_read()
        except NotAvailable as exc:
            self.available = False
            report_failure(self._notifier, exc, "open the chat")
            await self.unmount()
            return
        except ChatError as exc:
            report_failure(self._notifier, exc, "open the chat")
            await self.unmount()
            return
        finally:
            self.loading = False
        await self._refresh_last_seen()
        await _fire(self._on_scroll)

    async def _refresh_last_seen(self) -> None:
        if self.is_online:
            return
        try:
            self.last_activity = await self._presence.get_last_seen(self.counterpart_id)
        except ChatError as exc:
            logger.warning("Could not read last seen of %s: %s", self.counterpart_id, exc)

    async def unmount(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.cancel()
            logger.debug("Chat window %s -> %s unmounted", self.user_id, self.counterpart_id)

    def _append(self, message: Message) -> bool:
        if any(m.id == message.id for m in self.messages):
            return False
        self.messages.append(message)
        return True

    async def _on_live_message(self, message: Message) -> None:
        if message.sender_id != self.counterpart_id or message.conversation_id != self.conversation_id:
            return
        if self._append(message):
            await _fire(self._on_scroll)
            await self._mark_incoming_read()

    async def _mark_incoming_read(self) -> None:
        if not self.conversation_id:
            return
        if not any(m.recipient_id == self.user_id and not m.read for m in self.messages):
            return
        try:
            updated = await self._messages.mark_read(self.user_id, conversation_id=self.conversation_id)
        except ChatError as exc:
            # read state is cosmetic here; the next mount retries it
            logger.warning("Could not mark messages read in %s: %s", self.conversation_id, exc)
            return
        self.messages = [
            m.model_copy(update={"read": True}) if m.recipient_id == self.user_id else m
            for m in self.messages
        ]
        if updated:
            await _fire(self._on_read)

    async def _deliver(self, content: Any, kind: Optional[str] = None) -> Optional[Message]:
        if self.conversation_id is None or not self.available:
            return None
        self.sending = True
        try:
            message = await self._messages.send(self.conversation_id, self.user_id, self.counterpart_id, content, kind)
        except NotAvailable as exc:
            self.available = False
            logger.warning("Could not send the message, backing store unavailable: %s", exc)
            # a failed send is always shown
            self._notifier.error(exc.user_message)
            return None
        except ChatError as exc:
            report_failure(self._notifier, exc, "send the message")
            return None
        finally:
            self.sending = False
        self._append(message)
        await _fire(self._on_scroll)
        return message

    async def send_text(self, text: Optional[str] = None) -> Optional[Message]:
        """Send ``text`` (or the current draft); blank input is ignored."""
        body = (self.draft if text is None else text).strip()
        if not body:
            return None
        message = await self._deliver(body, "text")
        if message is not None and text is None:
            self.draft = ""
        return message

    async def send_attachment(self, file: Union[UploadSource, str]) -> Optional[Message]:
        if self.conversation_id is None or not self.available:
            return None
        try:
            source = self._uploader.normalize(file)
            # reject oversized files before any upload starts
            self._uploader.ensure_size(source.size)
        except ChatError as exc:
            report_failure(self._notifier, exc, "attach the file")
            return None
        content = await self._uploader.upload_attachment(source, f"chat/{self.conversation_id}")
        if content is None:
            return None
        return await self._deliver(content)

    async def load_older(self) -> int:
        """Prepend the next page of history; returns how many messages were added."""
        if self.conversation_id is None or not self.has_more:
            return 0
        try:
            older = await self._messages.list(self.conversation_id, self._page + 1, self._page_size)
        except ChatError as exc:
            report_failure(self._notifier, exc, "load older messages")
            return 0
        self._page += 1
        self.has_more = len(older) == self._page_size
        known = {m.id for m in self.messages}
        fresh = [m for m in older if m.id not in known]
        self.messages = fresh + self.messages
        return len(fresh)

    def toggle_expand(self) -> None:
        if self._session is not None:
            self._session.toggle_expand(self.counterpart_id)
