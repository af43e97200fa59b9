from datetime import datetime
from typing import Any, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


MAX_TEXT_LENGTH = 4000
PREVIEW_LENGTH = 200


class MessageContent(BaseModel):
    """Tagged message payload: plain text, an inline image or a named file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text", "image", "file"] = "text"
    text: Optional[str] = None
    url: Optional[str] = None
    file_name: Optional[str] = None
    # attachments only
    size: Optional[int] = Field(default=None, ge=0)
    content_type: Optional[str] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "MessageContent":
        if self.kind == "text":
            if not self.text or not self.text.strip():
                raise ValueError("text message needs non-empty text")
            if len(self.text) > MAX_TEXT_LENGTH:
                raise ValueError(f"text message longer than {MAX_TEXT_LENGTH} characters")
        elif self.kind == "image":
            if not self.url:
                raise ValueError("image message needs a url")
        elif not self.url or not self.file_name:
            raise ValueError("file message needs a file name and a url")
        return self

    @classmethod
    def of_text(cls, text: str) -> "MessageContent":
        return cls(kind="text", text=text.strip())

    @classmethod
    def of_image(cls, url: str, size: Optional[int] = None, content_type: Optional[str] = None) -> "MessageContent":
        return cls(kind="image", url=url, size=size, content_type=content_type)

    @classmethod
    def of_file(
        cls, file_name: str, url: str, size: Optional[int] = None, content_type: Optional[str] = None
    ) -> "MessageContent":
        return cls(kind="file", file_name=file_name, url=url, size=size, content_type=content_type)

    def preview(self) -> str:
        if self.kind == "text":
            return (self.text or "")[:PREVIEW_LENGTH]
        if self.kind == "image":
            return "[image]"
        return f"[file] {self.file_name}"[:PREVIEW_LENGTH]


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: MessageContent
    read: bool = False
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Message":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            recipient_id=doc["recipient_id"],
            content=MessageContent.model_validate(doc["content"]),
            read=bool(doc.get("read", False)),
            created_at=doc["created_at"],
        )


class ConversationSummary(BaseModel):

    conversation_id: str
    counterpart_id: str
    counterpart_name: str
    counterpart_avatar: Optional[str] = None
    counterpart_external: bool = False
    is_online: bool = False
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def last_activity(self) -> Optional[datetime]:
        return self.last_message_at or self.updated_at or self.created_at


class PresenceStatus(BaseModel):

    user_id: str
    online: bool = False
    last_seen: Optional[datetime] = None
    last_seen_text: Optional[str] = None


class Position(BaseModel):

    model_config = ConfigDict(frozen=True)

    x: int
    y: int

    def shifted(self, dx: int, dy: int) -> "Position":
        return Position(x=self.x + dx, y=self.y + dy)


class ActiveChat(BaseModel):
    """One open chat window; client-side only."""

    model_config = ConfigDict(frozen=True)

    counterpart_id: str
    name: str
    is_online: bool = False
    position: Position
    expanded: bool = False


class CreateConversationRequest(BaseModel):

    counterpart_id: str
    # None lets the directory decide from the local profile table
    external: Optional[bool] = None


class SendMessageRequest(BaseModel):

    conversation_id: str
    recipient_id: str
    content: MessageContent


class MarkReadRequest(BaseModel):

    conversation_id: Optional[str] = None
    message_ids: Optional[List[str]] = Field(default=None, max_length=500)


class PresenceUpdate(BaseModel):

    online: bool
