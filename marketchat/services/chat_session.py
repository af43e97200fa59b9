import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from marketchat.errors import ChatError
from marketchat.schemas.chat import ActiveChat, Position
from marketchat.services.attachment_uploader import AttachmentUploader
from marketchat.services.chat_window import ChatWindow
from marketchat.services.conversation_directory import ConversationDirectory
from marketchat.services.message_client import MessageStoreClient
from marketchat.services.presence_tracker import PresenceTracker
from marketchat.utils.notifications import LoggingNotifier
from marketchat.utils.realtime_bus import Subscription


logger = logging.getLogger(__name__)

DEFAULT_ORIGIN = (785, 315)
CASCADE_OFFSET = 30


class SessionStorage:
    """Open-window list persisted as one JSON file per user."""

    def __init__(self, directory: str) -> None:
        self.directory = directory

    def path_for(self, user_id: str) -> str:
        return os.path.join(self.directory, f"active_chats_{user_id}.json")

    def save(self, user_id: str, chats: List[ActiveChat]) -> None:
        os.makedirs(self.directory, exist_ok=True)
        with open(self.path_for(user_id), "w", encoding="utf-8") as f:
            json.dump([chat.model_dump() for chat in chats], f)

    def load(self, user_id: str) -> List[ActiveChat]:
        path = self.path_for(user_id)
        if not os.path.exists(path):
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return [ActiveChat.model_validate(item) for item in raw]
        except (OSError, ValueError, TypeError, SchemaError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", path, exc)
            return []

    def clear(self, user_id: str) -> None:
        try:
            os.remove(self.path_for(user_id))
        except FileNotFoundError:
            pass


@dataclass(frozen=True)
class SessionSnapshot:

    chats: Tuple[ActiveChat, ...]
    unread_count: int = 0

    @property
    def has_unread(self) -> bool:
        return self.unread_count > 0


Listener = Callable[[SessionSnapshot], None]


class ChatSessionManager:
    """
    The set of open chat windows for one signed-in user.

    All state changes go through the named actions below and happen between
    awaits, so listeners always see a consistent snapshot. Presence is written
    only when the window count goes 0 -> 1 or 1 -> 0.
    """

    def __init__(
        self,
        user_id: str,
        *,
        presence: PresenceTracker,
        messages: MessageStoreClient,
        directory: ConversationDirectory,
        uploader: AttachmentUploader,
        notifier: LoggingNotifier,
        storage: Optional[SessionStorage] = None,
        restore_on_load: bool = False,
        origin: Tuple[int, int] = DEFAULT_ORIGIN,
        cascade_offset: int = CASCADE_OFFSET,
    ) -> None:
        self.user_id = user_id
        self._presence = presence
        self._messages = messages
        self._directory = directory
        self._uploader = uploader
        self._notifier = notifier
        self._storage = storage
        self._restore_on_load = restore_on_load
        self._origin = Position(x=origin[0], y=origin[1])
        self._cascade_offset = cascade_offset

        self._chats: List[ActiveChat] = []
        self._windows: Dict[str, ChatWindow] = {}
        self._listeners: List[Listener] = []
        self._subscription: Optional[Subscription] = None
        self.unread_count = 0

    @property
    def chats(self) -> Tuple[ActiveChat, ...]:
        return tuple(self._chats)

    @property
    def has_unread(self) -> bool:
        return self.unread_count > 0

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(chats=tuple(self._chats), unread_count=self.unread_count)

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")

    def _commit(self, chats: List[ActiveChat]) -> None:
        self._chats = chats
        if self._storage is not None:
            try:
                self._storage.save(self.user_id, chats)
            except OSError as exc:
                logger.warning("Could not persist open chats for %s: %s", self.user_id, exc)
        self._emit()

    def _index(self, counterpart_id: str) -> int:
        for i, chat in enumerate(self._chats):
            if chat.counterpart_id == counterpart_id:
                return i
        return -1

    async def _set_presence(self, online: bool) -> None:
        try:
            await self._presence.set_online(self.user_id, online)
        except ChatError as exc:
            logger.warning("Presence update for %s failed: %s", self.user_id, exc)

    async def open(self, counterpart_id: str, name: str, is_online: bool = False) -> ActiveChat:
        i = self._index(counterpart_id)
        if i >= 0:
            chats = list(self._chats)
            current = chats[i]
            # nudging the position brings the window back to the front
            chats[i] = current.model_copy(update={"position": current.position.shifted(1, 1)})
            self._commit(chats)
            return chats[i]

        step = len(self._chats) * self._cascade_offset
        chat = ActiveChat(
            counterpart_id=counterpart_id,
            name=name,
            is_online=is_online,
            position=self._origin.shifted(step, step),
        )
        was_empty = not self._chats
        self._commit(self._chats + [chat])
        if was_empty:
            await self._set_presence(True)
        return chat

    async def close(self, counterpart_id: str) -> None:
        if self._index(counterpart_id) < 0:
            return
        self._commit([c for c in self._chats if c.counterpart_id != counterpart_id])
        window = self._windows.pop(counterpart_id, None)
        if window is not None:
            await window.unmount()
        if not self._chats:
            await self._set_presence(False)

    def toggle_expand(self, counterpart_id: str) -> None:
        i = self._index(counterpart_id)
        if i < 0:
            return
        chats = list(self._chats)
        chats[i] = chats[i].model_copy(update={"expanded": not chats[i].expanded})
        self._commit(chats)

    async def minimize_all(self) -> None:
        if not self._chats:
            return
        self._commit([])
        windows, self._windows = list(self._windows.values()), {}
        for window in windows:
            await window.unmount()
        # a chat opened while the windows were closing keeps the user online
        if not self._chats:
            await self._set_presence(False)

    async def refresh_unread(self) -> int:
        try:
            count = await self._messages.count_unread(self.user_id)
        except ChatError as exc:
            logger.warning("Unread badge not refreshed for %s: %s", self.user_id, exc)
            return self.unread_count
        if count != self.unread_count:
            self.unread_count = count
            self._emit()
        return count

    async def _on_insert(self, message: Any) -> None:
        await self.refresh_unread()

    async def load(self) -> None:
        """Restore the previous session's windows when restoring is switched on."""
        if not self._restore_on_load or self._storage is None or self._chats:
            return
        chats = self._storage.load(self.user_id)
        if not chats:
            return
        logger.info("Restoring %d chat windows for %s", len(chats), self.user_id)
        self._commit(chats)
        await self._set_presence(True)

    async def start(self) -> None:
        if self._subscription is None:
            self._subscription = await self._messages.subscribe(self.user_id, self._on_insert)
        await self.refresh_unread()

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.cancel()
        windows, self._windows = list(self._windows.values()), {}
        for window in windows:
            await window.unmount()

    async def __aenter__(self) -> "ChatSessionManager":
        await self.load()
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def window_for(self, counterpart_id: str) -> Optional[ChatWindow]:
        """The window controller for an open chat, created on first use."""
        i = self._index(counterpart_id)
        if i < 0:
            return None
        window = self._windows.get(counterpart_id)
        if window is None:
            chat = self._chats[i]
            window = ChatWindow(
                self.user_id,
                chat.counterpart_id,
                chat.name,
                directory=self._directory,
                messages=self._messages,
                uploader=self._uploader,
                presence=self._presence,
                notifier=self._notifier,
                is_online=chat.is_online,
                on_read=self.refresh_unread,
                session=self,
            )
            self._windows[counterpart_id] = window
        return window
