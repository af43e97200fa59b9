from fastapi import APIRouter, Depends, HTTPException, Query

from marketchat.schemas.chat import CreateConversationRequest
from marketchat.schemas.user import UserIdentity
from marketchat.services.context import ChatContext
from marketchat.utils.dependencies import get_chat_context, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


async def _require_participant(context: ChatContext, conversation_id: str, user_id: str) -> str:
    counterpart = await context.directory.counterpart_in(conversation_id, user_id)
    if counterpart is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return counterpart


@router.get("")
async def list_conversations(
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    items = await context.directory.list(current_user.id)
    return {"items": [item.model_dump(mode="json") for item in items]}


@router.post("", status_code=201)
async def create_conversation(
    body: CreateConversationRequest,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    conversation_id = await context.directory.get_or_create(
        current_user.id, body.counterpart_id, external=body.external
    )
    return {"conversation_id": conversation_id}


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    summary = await context.directory.get(conversation_id, current_user.id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return summary.model_dump(mode="json")


@router.get("/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    page: int = Query(0, ge=0),
    page_size: int = Query(20, ge=1, le=200),
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    await _require_participant(context, conversation_id, current_user.id)
    messages = await context.messages.list(conversation_id, page=page, page_size=page_size)
    return {
        "items": [m.model_dump(mode="json") for m in messages],
        "page": page,
        "has_more": len(messages) == page_size,
    }


@router.post("/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    await _require_participant(context, conversation_id, current_user.id)
    updated = await context.messages.mark_read(current_user.id, conversation_id=conversation_id)
    return {"updated": updated}
