import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
from sqlmodel import select

from careerhub.app.errors import ForbiddenError, NotFoundError, ValidationError
from careerhub.app.models import Message, Notification, NotificationType, Role, as_utc, utcnow
from careerhub.app.services.cache import Cache, MemoryCache
from careerhub.app.services.chat import ChatService, can_start_conversation
from careerhub.app.services.notifications import NotificationDispatcher
from careerhub.app.services.realtime import conversation_channel

from conftest import fake_socket, make_user, sent_events


@pytest.fixture
async def pair(session):
    admin = await make_user(session, Role.admin, "Admin")
    student = await make_user(session, Role.student, "Stu")
    return admin, student


@pytest.mark.parametrize("a, b, allowed", [
    (Role.admin, Role.student, True),
    (Role.school, Role.employer, True),
    (Role.student, Role.school, True),
    (Role.student, Role.employer, False),
    (Role.employer, Role.student, False),
    (Role.student, Role.student, False),
    (None, Role.admin, False),
])
def test_role_rules(a, b, allowed):
    assert can_start_conversation(a, b) is allowed


async def test_disallowed_pair_is_forbidden(session, chat):
    student = await make_user(session, Role.student, "Stu")
    employer = await make_user(session, Role.employer, "Boss")
    with pytest.raises(ForbiddenError):
        await chat.find_or_create_dm(student.id, employer.id)


async def test_cannot_message_yourself(session, chat):
    admin = await make_user(session, Role.admin, "Admin")
    with pytest.raises(ValidationError):
        await chat.find_or_create_dm(admin.id, admin.id)


async def test_direct_conversation_is_reused(chat, pair):
    admin, student = pair
    first = await chat.find_or_create_dm(admin.id, student.id)
    second = await chat.find_or_create_dm(student.id, admin.id)
    assert first.id == second.id


async def test_unread_counts_follow_messages(chat, pair):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)

    for text in ("one", "two", "three"):
        await chat.append_message(conversation.id, admin.id, text)

    assert await chat.get_unread(conversation.id, student.id) == 3
    assert await chat.get_unread(conversation.id, admin.id) == 0

    # replying leaves the sender's own counter alone; only a read resets it
    await chat.append_message(conversation.id, student.id, "hello")
    assert await chat.get_unread(conversation.id, student.id) == 3
    assert await chat.get_unread(conversation.id, admin.id) == 1


async def test_mark_read_is_idempotent(chat, pair):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    await chat.append_message(conversation.id, admin.id, "ping")

    assert await chat.mark_conversation_read(conversation.id, student.id) is True
    assert await chat.mark_conversation_read(conversation.id, student.id) is False
    assert await chat.get_unread(conversation.id, student.id) == 0


async def test_concurrent_senders_lose_no_increment(session_factory, settings, gateway, chat, pair):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    cache = Cache(MemoryCache())

    async def send(i):
        async with session_factory() as s:
            service = ChatService(s, gateway, NotificationDispatcher(s, cache, gateway, settings))
            await service.append_message(conversation.id, admin.id, f"message {i}")

    await asyncio.gather(*(send(i) for i in range(10)))

    assert await chat.get_unread(conversation.id, student.id) == 10
    async with session_factory() as s:
        messages = (await s.exec(select(Message).where(Message.conversation_id == conversation.id))).all()
    assert len(messages) == 10


@pytest.mark.parametrize("text", ["", "   ", "x" * 2001])
async def test_message_length_is_validated(chat, pair, text):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    with pytest.raises(ValidationError):
        await chat.append_message(conversation.id, admin.id, text)


async def test_outsiders_cannot_post(session, chat, pair):
    admin, student = pair
    outsider = await make_user(session, Role.school, "School")
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    with pytest.raises(ForbiddenError):
        await chat.append_message(conversation.id, outsider.id, "let me in")
    with pytest.raises(NotFoundError):
        await chat.append_message(987, admin.id, "anyone?")


async def test_recipient_away_from_conversation_is_notified(session, chat, pair):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    await chat.append_message(conversation.id, admin.id, "are you there?")

    rows = (await session.exec(select(Notification).where(Notification.recipient_id == student.id))).all()
    assert [n.type for n in rows] == [NotificationType.message_received]
    assert rows[0].entity_id == conversation.id
    assert not (await session.exec(select(Notification).where(Notification.recipient_id == admin.id))).all()


async def test_recipient_viewing_conversation_gets_live_events_only(session, chat, gateway, pair):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    ws = fake_socket()
    gateway.connect(student.id, ws)
    gateway.subscribe(conversation_channel(conversation.id), ws)

    await chat.append_message(conversation.id, admin.id, "live")

    assert sent_events(ws) == ["message:new", "conversation:updated"]
    updated = ws.send_json.call_args_list[1].args[0]["data"]
    assert updated["unread"] == 1
    assert not (await session.exec(select(Notification))).all()


async def test_message_pages_walk_backwards(chat, pair):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    for i in range(5):
        await chat.append_message(conversation.id, admin.id, f"m{i}")

    page = await chat.list_messages(conversation.id, student.id, limit=2)
    assert [m["text"] for m in page["messages"]] == ["m3", "m4"]
    assert page["pagination"]["has_more"] is True

    older = await chat.list_messages(conversation.id, student.id, limit=2,
                                     before_id=page["pagination"]["next_cursor"])
    assert [m["text"] for m in older["messages"]] == ["m1", "m2"]

    oldest = await chat.list_messages(conversation.id, student.id, limit=2,
                                      before_id=older["pagination"]["next_cursor"])
    assert [m["text"] for m in oldest["messages"]] == ["m0"]
    assert oldest["pagination"]["has_more"] is False
    assert oldest["pagination"]["next_cursor"] is None


async def test_conversation_list(session, chat, pair):
    admin, student = pair
    school = await make_user(session, Role.school, "School")
    quiet = await chat.find_or_create_dm(admin.id, school.id)
    busy = await chat.find_or_create_dm(admin.id, student.id)
    await chat.append_message(busy.id, student.id, "hi admin")

    listing = await chat.list_conversations(admin.id)
    assert [c["id"] for c in listing] == [busy.id, quiet.id]
    assert listing[0]["unread_count"] == 1
    assert listing[0]["other_participants"] == [{"user_id": student.id, "role": "student"}]
    assert listing[0]["last_message"]["text"] == "hi admin"
    assert listing[1]["last_message"] is None


async def test_failed_notification_does_not_fail_the_send(session, chat, pair, monkeypatch, caplog):
    admin, student = pair
    conversation = await chat.find_or_create_dm(admin.id, student.id)
    monkeypatch.setattr(chat.notifications, "notify_message_received",
                        AsyncMock(side_effect=RuntimeError("store down")))

    message = await chat.append_message(conversation.id, admin.id, "still delivered")

    assert message.text == "still delivered"
    assert await chat.get_unread(conversation.id, student.id) == 1
    assert "message_received notification" in caplog.text


def test_timestamps_are_utc():
    assert utcnow().tzinfo is datetime.timezone.utc
    naive = datetime.datetime(2024, 1, 1, 12, 0)
    assert as_utc(naive) == datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    plus_two = datetime.datetime(2024, 1, 1, 14, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=2)))
    assert as_utc(plus_two) == as_utc(naive)
    assert as_utc(None) is None
