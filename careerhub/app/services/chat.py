# careerhub/app/services/chat.py
"""
Direct conversations, messages and per-participant unread counters.

Unread counters live on `ConversationParticipant` rows and are only changed with
single UPDATE statements (`unread = unread + 1`, `unread = 0`) so concurrent
senders never lose an increment.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models import Conversation, ConversationParticipant, Message, Role, User, as_utc, utcnow
from .notifications import NotificationDispatcher
from .realtime import ConnectionManager, conversation_channel

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 2000

# who may open a direct conversation with whom
ALLOWED_DM = {
    Role.admin: {Role.student, Role.school, Role.employer},
    Role.school: {Role.admin, Role.student, Role.employer},
    Role.student: {Role.admin, Role.school},
    Role.employer: {Role.admin, Role.school},
}


def can_start_conversation(from_role: Role, to_role: Role) -> bool:
    if not from_role or not to_role:
        return False
    return Role(to_role) in ALLOWED_DM.get(Role(from_role), set())


def serialize_message(m: Message) -> Dict[str, Any]:
    data = m.model_dump(mode="json")
    data["created_at"] = as_utc(m.created_at).isoformat()
    return data


class ChatService:
    def __init__(self, session: AsyncSession, gateway: ConnectionManager, notifications: NotificationDispatcher):
        self.session = session
        self.gateway = gateway
        self.notifications = notifications

    async def _participant(self, conversation_id: int, user_id: int) -> ConversationParticipant:
        conversation = await self.session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        stmt = select(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        participant = (await self.session.exec(stmt)).first()
        if participant is None:
            raise ForbiddenError("Access denied to this conversation")
        return participant

    async def _participants(self, conversation_id: int) -> List[ConversationParticipant]:
        stmt = select(ConversationParticipant).where(ConversationParticipant.conversation_id == conversation_id)
        stmt = stmt.execution_options(populate_existing=True)
        return list((await self.session.exec(stmt)).all())

    async def ensure_access(self, conversation_id: int, user_id: int) -> None:
        await self._participant(conversation_id, user_id)

    async def find_or_create_dm(self, user_id: int, other_user_id: int) -> Conversation:
        if user_id == other_user_id:
            raise ValidationError("Cannot start a conversation with yourself")
        me = await self.session.get(User, user_id)
        other = await self.session.get(User, other_user_id)
        if me is None or other is None:
            raise NotFoundError("User not found")
        if not can_start_conversation(me.role, other.role):
            raise ForbiddenError(
                f"Direct messages between {me.role.value} and {other.role.value} are not allowed"
            )

        existing = (await self.session.exec(
            select(ConversationParticipant.conversation_id)
            .join(Conversation, Conversation.id == ConversationParticipant.conversation_id)
            .where(Conversation.is_group == False,  # noqa: E712
                   ConversationParticipant.user_id.in_([user_id, other_user_id]))
            .group_by(ConversationParticipant.conversation_id)
            .having(func.count() == 2)
        )).first()
        if existing is not None:
            return await self.session.get(Conversation, existing)

        conversation = Conversation(is_group=False)
        self.session.add(conversation)
        await self.session.flush()
        self.session.add(ConversationParticipant(conversation_id=conversation.id, user_id=me.id, role=me.role))
        self.session.add(ConversationParticipant(conversation_id=conversation.id, user_id=other.id, role=other.role))
        await self.session.commit()
        await self.session.refresh(conversation)
        logger.info("conversation %s opened between users %s and %s", conversation.id, user_id, other_user_id)
        return conversation

    async def append_message(self, conversation_id: int, sender_id: int, text: str) -> Message:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text is required")
        if len(text) > MAX_MESSAGE_CHARS:
            raise ValidationError(f"Message text must be at most {MAX_MESSAGE_CHARS} characters")
        await self._participant(conversation_id, sender_id)

        message = Message(conversation_id=conversation_id, sender_id=sender_id, text=text)
        self.session.add(message)
        await self.session.flush()
        await self.session.execute(
            update(ConversationParticipant)
            .where(ConversationParticipant.conversation_id == conversation_id,
                   ConversationParticipant.user_id != sender_id)
            .values(unread=ConversationParticipant.unread + 1)
        )
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_message_id=message.id, updated_at=utcnow())
        )
        await self.session.commit()
        await self.session.refresh(message)

        await self._deliver(message)
        return message

    async def _deliver(self, message: Message) -> None:
        conversation_id, sender_id, text = message.conversation_id, message.sender_id, message.text
        channel = conversation_channel(conversation_id)
        payload = serialize_message(message)
        try:
            await self.gateway.emit_to_channel(channel, "message:new", payload)
        except Exception as e:
            logger.debug("message:new push failed: %s", e)

        sender = await self.session.get(User, sender_id)
        sender_name = sender.full_name if sender else "someone"
        viewing = set(self.gateway.online_users(channel))
        recipients = [(p.user_id, p.unread) for p in await self._participants(conversation_id)
                      if p.user_id != sender_id]
        failed = False
        for user_id, unread in recipients:
            try:
                await self.gateway.emit_to_user(user_id, "conversation:updated", {
                    "conversation_id": conversation_id,
                    "last_message": payload,
                    "unread": unread,
                })
            except Exception as e:
                logger.debug("conversation:updated push failed: %s", e)
            if user_id in viewing:
                continue
            try:
                await self.notifications.notify_message_received(
                    sender_id, sender_name, user_id, conversation_id, text,
                )
            except Exception:
                # the message itself is already committed
                logger.exception("message_received notification for user %s failed", user_id)
                await self.session.rollback()
                failed = True
        if failed:
            await self.session.refresh(message)

    async def mark_conversation_read(self, conversation_id: int, user_id: int) -> bool:
        """Reset the caller's unread counter; returns False when it was already zero."""
        await self._participant(conversation_id, user_id)
        result = await self.session.execute(
            update(ConversationParticipant)
            .where(ConversationParticipant.conversation_id == conversation_id,
                   ConversationParticipant.user_id == user_id,
                   ConversationParticipant.unread != 0)
            .values(unread=0)
        )
        await self.session.commit()
        if result.rowcount:
            try:
                await self.gateway.emit_to_channel(conversation_channel(conversation_id), "messages:read",
                                                   {"conversation_id": conversation_id, "user_id": user_id})
            except Exception as e:
                logger.debug("messages:read push failed: %s", e)
        return bool(result.rowcount)

    async def get_unread(self, conversation_id: int, user_id: int) -> int:
        participant = await self._participant(conversation_id, user_id)
        await self.session.refresh(participant)
        return participant.unread

    async def list_conversations(self, user_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        limit = max(1, min(limit, 100))
        rows = (await self.session.exec(
            select(Conversation, ConversationParticipant.unread)
            .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
            .where(ConversationParticipant.user_id == user_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(limit)
        )).all()

        out = []
        for conversation, unread in rows:
            others = [p for p in await self._participants(conversation.id) if p.user_id != user_id]
            last_message = None
            if conversation.last_message_id:
                msg = await self.session.get(Message, conversation.last_message_id)
                last_message = serialize_message(msg) if msg else None
            out.append({
                "id": conversation.id,
                "type": "group" if conversation.is_group else "dm",
                "name": conversation.name,
                "other_participants": [{"user_id": p.user_id, "role": p.role.value} for p in others],
                "last_message": last_message,
                "unread_count": unread,
                "updated_at": as_utc(conversation.updated_at).isoformat(),
            })
        return out

    async def list_messages(self, conversation_id: int, user_id: int, limit: int = 20,
                            before_id: Optional[int] = None) -> Dict[str, Any]:
        await self._participant(conversation_id, user_id)
        limit = max(1, min(limit, 100))
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if before_id is not None:
            stmt = stmt.where(Message.id < before_id)
        rows = list((await self.session.exec(stmt.order_by(Message.id.desc()).limit(limit + 1))).all())
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = rows[-1].id if has_more and rows else None
        rows.reverse()
        return {
            "messages": [serialize_message(m) for m in rows],
            "pagination": {"has_more": has_more, "next_cursor": next_cursor, "limit": limit},
        }
