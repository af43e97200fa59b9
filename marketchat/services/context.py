from dataclasses import dataclass
from typing import Optional

from marketchat.config import Settings
from marketchat.database.backend import Backend
from marketchat.services.attachment_uploader import AttachmentUploader
from marketchat.services.chat_session import ChatSessionManager, SessionStorage
from marketchat.services.conversation_directory import ConversationDirectory
from marketchat.services.message_client import MessageStoreClient
from marketchat.services.presence_tracker import PresenceTracker
from marketchat.utils.identifiers import IdentifierPolicy
from marketchat.utils.notifications import LoggingNotifier


@dataclass
class ChatContext:
    """Every service wired to one backend; built once at startup."""

    settings: Settings
    backend: Backend
    notifier: LoggingNotifier
    identifiers: IdentifierPolicy
    presence: PresenceTracker
    directory: ConversationDirectory
    messages: MessageStoreClient
    uploader: AttachmentUploader
    storage: SessionStorage

    def session_for(self, user_id: str) -> ChatSessionManager:
        user_id = self.identifiers.require(user_id, "user_id")
        return ChatSessionManager(
            user_id,
            presence=self.presence,
            messages=self.messages,
            directory=self.directory,
            uploader=self.uploader,
            notifier=self.notifier,
            storage=self.storage,
            restore_on_load=self.settings.restore_session_on_load,
            origin=self.settings.window_origin,
            cascade_offset=self.settings.window_cascade_offset,
        )


def build_context(settings: Settings, backend: Backend, notifier: Optional[LoggingNotifier] = None) -> ChatContext:
    notifier = notifier or LoggingNotifier()
    timeout = settings.request_timeout_seconds
    identifiers = IdentifierPolicy.from_settings(settings)
    return ChatContext(
        settings=settings,
        backend=backend,
        notifier=notifier,
        identifiers=identifiers,
        presence=PresenceTracker(backend.profiles, timeout=timeout),
        directory=ConversationDirectory(
            backend.conversations,
            backend.messages,
            backend.profiles,
            identifiers,
            timeout=timeout,
            list_limit=settings.conversation_list_limit,
        ),
        messages=MessageStoreClient(
            backend.messages,
            backend.conversations,
            backend.bus,
            identifiers,
            timeout=timeout,
            page_size=settings.message_page_size,
        ),
        uploader=AttachmentUploader(
            backend.objects,
            notifier,
            max_bytes=settings.max_upload_bytes,
            # uploads get more room than single document calls
            timeout=timeout * 3,
        ),
        storage=SessionStorage(settings.session_storage_dir),
    )
