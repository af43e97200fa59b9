from datetime import datetime
from typing import Literal, Optional, TypedDict


ContentKind = Literal["text", "image", "file"]


class MessageContentDocument(TypedDict, total=False):
    kind: ContentKind
    text: Optional[str]
    url: Optional[str]
    file_name: Optional[str]
    size: Optional[int]
    content_type: Optional[str]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: MessageContentDocument
    kind: ContentKind
    # false -> true only
    read: bool
    created_at: datetime
