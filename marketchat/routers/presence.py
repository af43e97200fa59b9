from fastapi import APIRouter, Depends

from marketchat.schemas.chat import PresenceUpdate
from marketchat.schemas.user import UserIdentity
from marketchat.services.context import ChatContext
from marketchat.utils.dependencies import get_chat_context, get_current_user


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, context: ChatContext = Depends(get_chat_context)):
    """
    Online flag and last-seen time as recorded on the profile.
    Unknown users and an unprovisioned profile table both read as offline.
    """
    status = await context.presence.get_status(user_id)
    return status.model_dump(mode="json")


@router.put("")
async def update_presence(
    body: PresenceUpdate,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    await context.presence.set_online(current_user.id, body.online)
    status = await context.presence.get_status(current_user.id)
    return status.model_dump(mode="json")
