from typing import Optional

from pydantic import BaseModel


class UserIdentity(BaseModel):
    """Authenticated caller, as asserted by the auth provider's token."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
