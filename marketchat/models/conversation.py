from datetime import datetime
from typing import Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    initiator_id: str
    # exactly one of counterpart_id / counterpart_external_id is set
    counterpart_id: Optional[str]
    counterpart_external_id: Optional[str]
    # whichever of the two above is set; unique together with initiator_id
    counterpart_key: str
    created_at: datetime
    updated_at: datetime
    last_message: Optional[str]
    last_message_at: Optional[datetime]
