import json
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as SchemaError

from marketchat.errors import ChatError, ValidationError
from marketchat.schemas.chat import MarkReadRequest, Message, SendMessageRequest
from marketchat.schemas.user import UserIdentity
from marketchat.services.context import ChatContext
from marketchat.utils.dependencies import get_chat_context, get_current_user
from marketchat.utils.security import decode_access_token


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


async def _send_checked(context: ChatContext, sender_id: str, body: SendMessageRequest) -> Message:
    counterpart = await context.directory.counterpart_in(body.conversation_id, sender_id)
    if counterpart is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if counterpart != context.identifiers.require(body.recipient_id, "recipient_id"):
        raise ValidationError("recipient is not part of this conversation", field="recipient_id")
    return await context.messages.send(body.conversation_id, sender_id, body.recipient_id, body.content)


@router.post("", status_code=201)
async def send_message(
    body: SendMessageRequest,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    message = await _send_checked(context, current_user.id, body)
    return message.model_dump(mode="json")


@router.post("/mark_read")
async def mark_read(
    body: MarkReadRequest,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    updated = await context.messages.mark_read(
        current_user.id, conversation_id=body.conversation_id, message_ids=body.message_ids
    )
    return {"updated": updated}


@router.get("/unread")
async def unread_count(
    conversation_id: Optional[str] = None,
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    count = await context.messages.count_unread(current_user.id, conversation_id)
    return {"count": count}


def _error_frame(exc: ChatError) -> Dict[str, Any]:
    return {"type": "error", "kind": exc.kind, "message": exc.user_message, "field": exc.field}


async def _handle_frame(context: ChatContext, user_id: str, frame: Dict[str, Any]) -> Dict[str, Any]:
    kind = frame.get("type")
    if kind == "send":
        try:
            body = SendMessageRequest.model_validate(frame)
        except SchemaError as exc:
            raise ValidationError(f"invalid send frame: {exc.errors()[0]['msg']}", field="content") from exc
        try:
            message = await _send_checked(context, user_id, body)
        except HTTPException:
            raise ValidationError("conversation not found", field="conversation_id")
        return {"type": "ack", "message": message.model_dump(mode="json")}
    if kind == "read":
        updated = await context.messages.mark_read(
            user_id, conversation_id=frame.get("conversation_id"), message_ids=frame.get("message_ids")
        )
        return {"type": "read_ack", "updated": updated}
    raise ValidationError(f"unknown frame type {kind!r}", field="type")


@router.websocket("/ws/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str):
    context: ChatContext = websocket.app.state.chat
    # browsers cannot set headers on a WebSocket, the token comes as ?token=
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        payload = decode_access_token(token, context.settings.jwt_secret, context.settings.jwt_algorithm)
    except jwt.InvalidTokenError:
        await websocket.close(code=4401)
        return
    if not context.identifiers.is_valid(user_id) or payload["sub"].lower() != user_id.lower():
        await websocket.close(code=4403)
        return
    user_id = context.identifiers.require(user_id, "user_id")
    await context.presence.ensure_profile(user_id, payload.get("name"))

    await websocket.accept()

    async def forward_message(message: Message) -> None:
        await websocket.send_text(json.dumps({"type": "message", "message": message.model_dump(mode="json")}))

    async def forward_read(event: Dict[str, Any]) -> None:
        await websocket.send_text(json.dumps(event))

    subscriptions = []
    try:
        subscriptions.append(await context.messages.subscribe(user_id, forward_message))
        subscriptions.append(await context.messages.subscribe_reads(user_id, forward_read))
        logger.info("Live channel opened for %s", user_id)
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
                if not isinstance(frame, dict):
                    raise ValidationError("frames must be JSON objects", field="type")
                reply = await _handle_frame(context, user_id, frame)
            except ValueError:
                reply = _error_frame(ValidationError("frames must be JSON", field="type"))
            except ChatError as exc:
                logger.warning("Frame from %s rejected (%s): %s", user_id, exc.kind, exc)
                reply = _error_frame(exc)
            await websocket.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        for subscription in subscriptions:
            await subscription.cancel()
        logger.info("Live channel closed for %s", user_id)
