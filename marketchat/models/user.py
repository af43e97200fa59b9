from datetime import datetime
from typing import Optional, TypedDict


class ProfileDocument(TypedDict, total=False):

    _id: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    # presence, written only on chat open/close transitions
    is_online: bool
    last_seen: Optional[datetime]
