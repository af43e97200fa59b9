import logging
from typing import Dict, List, Optional

from marketchat.errors import NotAvailable, ValidationError
from marketchat.models.conversation import ConversationDocument
from marketchat.models.user import ProfileDocument
from marketchat.repositories.base import ConversationStore, MessageStore, ProfileStore
from marketchat.schemas.chat import ConversationSummary
from marketchat.utils.calls import bounded
from marketchat.utils.identifiers import IdentifierPolicy


logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown user"
EXTERNAL_NAME = "Provider {id}"


def counterpart_of(convo: ConversationDocument, user_id: str) -> str:
    if convo["initiator_id"] == user_id:
        return convo["counterpart_key"]
    return convo["initiator_id"]


class ConversationDirectory:

    def __init__(
        self,
        conversations: ConversationStore,
        messages: MessageStore,
        profiles: ProfileStore,
        identifiers: IdentifierPolicy,
        timeout: float = 10.0,
        list_limit: int = 50,
    ) -> None:
        self._conversations = conversations
        self._messages = messages
        self._profiles = profiles
        self._identifiers = identifiers
        self._timeout = timeout
        self._list_limit = list_limit

    async def _is_external(self, counterpart_id: str) -> bool:
        try:
            profile = await bounded(self._profiles.get(counterpart_id), self._timeout)
        except NotAvailable as exc:
            logger.warning("Profile lookup for %s skipped: %s", counterpart_id, exc)
            return True
        return profile is None

    async def get_or_create(self, current_user_id: str, counterpart_id: str, external: Optional[bool] = None) -> str:
        """
        Resolve (current user, counterpart) to a conversation id, creating it on first contact.

        Raises ``NotAvailable`` when the conversations collection is not provisioned,
        so callers can switch the chat feature off instead of crashing.
        """
        current_user_id = self._identifiers.require(current_user_id, "current_user_id")
        counterpart_id = self._identifiers.require(counterpart_id, "counterpart_id")
        if current_user_id == counterpart_id:
            raise ValidationError("Cannot start a conversation with yourself", field="counterpart_id")
        if external is None:
            external = await self._is_external(counterpart_id)
        convo = await bounded(
            self._conversations.get_or_create(current_user_id, counterpart_id, external=external),
            self._timeout,
        )
        logger.debug("Conversation %s resolved for %s -> %s", convo["_id"], current_user_id, counterpart_id)
        return convo["_id"]

    async def _profiles_for(self, user_ids: List[str]) -> Dict[str, ProfileDocument]:
        if not user_ids:
            return {}
        try:
            return await bounded(self._profiles.get_many(user_ids), self._timeout)
        except NotAvailable as exc:
            logger.warning("Profiles unavailable, listing without names: %s", exc)
            return {}

    def _summarize(
        self,
        convo: ConversationDocument,
        user_id: str,
        profiles: Dict[str, ProfileDocument],
        unread: int,
    ) -> ConversationSummary:
        other = counterpart_of(convo, user_id)
        profile = profiles.get(other)
        external = profile is None and convo.get("counterpart_external_id") == other
        if profile:
            name = profile.get("full_name") or UNKNOWN_NAME
        elif external:
            name = EXTERNAL_NAME.format(id=other)
        else:
            name = UNKNOWN_NAME
        return ConversationSummary(
            conversation_id=convo["_id"],
            counterpart_id=other,
            counterpart_name=name,
            counterpart_avatar=profile.get("avatar_url") if profile else None,
            counterpart_external=external,
            is_online=bool(profile.get("is_online")) if profile else False,
            last_message=convo.get("last_message"),
            last_message_at=convo.get("last_message_at"),
            unread_count=unread,
            created_at=convo.get("created_at"),
            updated_at=convo.get("updated_at"),
        )

    async def list(self, user_id: str) -> List[ConversationSummary]:
        """Recent conversations for ``user_id``; empty when the store is not provisioned."""
        try:
            convos = await bounded(self._conversations.list_for_user(user_id, self._list_limit), self._timeout)
            unread = await bounded(self._messages.unread_by_conversation(user_id), self._timeout)
        except NotAvailable as exc:
            logger.warning("Conversation list unavailable for %s: %s", user_id, exc)
            return []
        profiles = await self._profiles_for([counterpart_of(c, user_id) for c in convos])
        summaries = [self._summarize(c, user_id, profiles, unread.get(c["_id"], 0)) for c in convos]
        summaries.sort(key=lambda s: s.last_activity.timestamp() if s.last_activity else 0.0, reverse=True)
        return summaries

    async def get(self, conversation_id: str, viewer_id: str) -> Optional[ConversationSummary]:
        """Summary from the viewer's side, or None when absent or the viewer is not a participant."""
        try:
            convo = await bounded(self._conversations.get(conversation_id), self._timeout)
        except NotAvailable as exc:
            logger.warning("Conversation %s unavailable: %s", conversation_id, exc)
            return None
        if convo is None or viewer_id not in (convo["initiator_id"], convo["counterpart_key"]):
            return None
        try:
            unread = await bounded(self._messages.count_unread(viewer_id, conversation_id), self._timeout)
        except NotAvailable:
            unread = 0
        profiles = await self._profiles_for([counterpart_of(convo, viewer_id)])
        return self._summarize(convo, viewer_id, profiles, unread)

    async def counterpart_in(self, conversation_id: str, viewer_id: str) -> Optional[str]:
        """The other participant, or None when ``viewer_id`` is not in the conversation."""
        convo = await bounded(self._conversations.get(conversation_id), self._timeout)
        if convo is None or viewer_id not in (convo["initiator_id"], convo["counterpart_key"]):
            return None
        return counterpart_of(convo, viewer_id)
