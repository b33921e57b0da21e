from typing import Any, Optional

from fastapi import APIRouter, Depends

from careerhub.app.deps import current_user, get_chat
from careerhub.app.models import User
from careerhub.app.schemas import DirectConversationIn, MessageIn
from careerhub.app.services.chat import ChatService, serialize_message

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("/conversations")
async def list_conversations(
    limit: int = 20,
    user: User = Depends(current_user),
    chat: ChatService = Depends(get_chat),
) -> Any:
    return {"conversations": await chat.list_conversations(user.id, limit)}


@router.post("/conversations")
async def open_direct_conversation(
    payload: DirectConversationIn,
    user: User = Depends(current_user),
    chat: ChatService = Depends(get_chat),
) -> Any:
    conversation = await chat.find_or_create_dm(user.id, payload.user_id)
    return conversation.model_dump(mode="json")


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: int,
    limit: int = 20,
    before_id: Optional[int] = None,
    user: User = Depends(current_user),
    chat: ChatService = Depends(get_chat),
) -> Any:
    return await chat.list_messages(conversation_id, user.id, limit, before_id)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: int,
    payload: MessageIn,
    user: User = Depends(current_user),
    chat: ChatService = Depends(get_chat),
) -> Any:
    message = await chat.append_message(conversation_id, user.id, payload.text)
    return serialize_message(message)


@router.post("/conversations/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: int,
    user: User = Depends(current_user),
    chat: ChatService = Depends(get_chat),
) -> Any:
    changed = await chat.mark_conversation_read(conversation_id, user.id)
    return {"conversation_id": conversation_id, "unread": 0, "changed": changed}
