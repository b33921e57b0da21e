# careerhub/app/services/notifications.py
"""
Notification dispatcher.

Every mutation follows the same order: write to the database, invalidate the
recipient's cached list and count, push realtime events, return. Pushes never
fail the write; a recipient without a live socket finds the notification on
the next REST read.

Concurrent mark-read and other writes on the same row are last write wins on
the status flag; nothing here serializes them.
"""
import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

import pydantic
from sqlalchemy import delete as sa_delete
from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..config import Settings
from ..errors import NotFoundError, ValidationError
from ..models import (
    EntityType,
    Notification,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    User,
    as_utc,
    utcnow,
)
from ..schemas import NotificationIn
from .cache import Cache, notification_count_key, notification_list_key, notifications_prefix
from .realtime import ConnectionManager

logger = logging.getLogger(__name__)

EVENT_NEW = "notification:new"
EVENT_COUNT = "notification:count-update"
EVENT_READ = "notification:read"
EVENT_SYSTEM = "notification:system"

HIGH_PRIORITY_TYPES = {
    NotificationType.course_completion,
    NotificationType.certificate_issued,
    NotificationType.job_application,
    NotificationType.payment_failed,
    NotificationType.security_alert,
}

MESSAGE_PREVIEW_CHARS = 50


def default_priority(type_: NotificationType) -> NotificationPriority:
    return NotificationPriority.high if type_ in HIGH_PRIORITY_TYPES else NotificationPriority.normal


def serialize(n: Notification) -> Dict[str, Any]:
    data = n.model_dump(mode="json")
    for field in ("created_at", "read_at", "dismissed_at"):
        value = as_utc(getattr(n, field))
        data[field] = value.isoformat() if value else None
    data["related_entity"] = (
        {"entity_type": data["entity_type"], "entity_id": data["entity_id"]} if n.entity_type else None
    )
    return data


def _pydantic_reason(err: pydantic.ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in err.errors())


class NotificationDispatcher:
    def __init__(self, session: AsyncSession, cache: Cache, gateway: ConnectionManager, settings: Settings):
        self.session = session
        self.cache = cache
        self.gateway = gateway
        self.settings = settings

    # ---------- internals ----------

    async def _invalidate(self, user_id: int) -> None:
        await self.cache.invalidate(notifications_prefix(user_id))

    async def _push(self, user_id: int, event: str, payload: Any) -> None:
        try:
            await self.gateway.emit_to_user(user_id, event, payload)
        except Exception as e:
            logger.debug("realtime push %s to user %s failed: %s", event, user_id, e)

    async def _push_count(self, user_id: int) -> None:
        if not self.gateway.is_user_connected(user_id):
            return
        counts = await self.get_count(user_id)
        await self._push(user_id, EVENT_COUNT, counts)

    async def _owned(self, notification_id: int, user_id: int) -> Notification:
        stmt = select(Notification).where(Notification.id == notification_id, Notification.recipient_id == user_id)
        notification = (await self.session.exec(stmt)).first()
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification

    # ---------- create ----------

    async def create(
        self,
        recipient_id: int,
        type: NotificationType,
        title: str,
        message: str,
        priority: Optional[NotificationPriority] = None,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[int] = None,
        action_url: Optional[str] = None,
    ) -> Notification:
        try:
            type_ = NotificationType(type)
            priority = NotificationPriority(priority) if priority else default_priority(type_)
            entity_type = EntityType(entity_type) if entity_type else None
        except ValueError as e:
            raise ValidationError(str(e))
        if not (title or "").strip() or not (message or "").strip():
            raise ValidationError("title and message are required")

        recipient = await self.session.get(User, recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient user not found")

        notification = Notification(
            recipient_id=recipient_id,
            title=title.strip(),
            message=message.strip(),
            type=type_,
            priority=priority,
            entity_type=entity_type,
            entity_id=entity_id,
            action_url=action_url,
        )
        self.session.add(notification)
        await self.session.commit()
        await self.session.refresh(notification)
        logger.info("notification %s (%s) created for user %s", notification.id, type_.value, recipient_id)

        await self._invalidate(recipient_id)
        if self.gateway.is_user_connected(recipient_id):
            await self._push(recipient_id, EVENT_NEW, serialize(notification))
            await self._push_count(recipient_id)
        return notification

    async def create_from(self, data: NotificationIn) -> Notification:
        return await self.create(**data.model_dump())

    async def bulk_create(self, entries: Iterable[Any]) -> Dict[str, Any]:
        """
        Create each entry independently. Returns
          {"succeeded": int, "failed": int, "results": [{"index", "success", "id" | "reason"}]}
        """
        if not isinstance(entries, list):
            raise ValidationError("notifications must be a list")

        results: List[Dict[str, Any]] = []
        for index, raw in enumerate(entries):
            try:
                data = raw if isinstance(raw, NotificationIn) else NotificationIn.model_validate(raw)
                notification = await self.create_from(data)
                results.append({"index": index, "success": True, "id": notification.id})
            except pydantic.ValidationError as e:
                results.append({"index": index, "success": False, "reason": _pydantic_reason(e)})
            except (ValidationError, NotFoundError) as e:
                results.append({"index": index, "success": False, "reason": str(e.detail)})
            except Exception:
                await self.session.rollback()
                logger.exception("bulk notification entry %d failed", index)
                results.append({"index": index, "success": False, "reason": "internal error"})

        succeeded = sum(1 for r in results if r["success"])
        return {"succeeded": succeeded, "failed": len(results) - succeeded, "results": results}

    async def broadcast_system(self, title: str, message: str) -> int:
        """Push a transient system notice to every connected socket."""
        payload = {"title": title, "message": message, "type": NotificationType.system_update.value,
                   "created_at": utcnow().isoformat()}
        try:
            return await self.gateway.broadcast(EVENT_SYSTEM, payload)
        except Exception as e:
            logger.debug("system broadcast failed: %s", e)
            return 0

    # ---------- domain helpers ----------

    async def notify_job_application(self, employer_user_id: int, applicant_name: str, job_title: str,
                                     application_id: int) -> Notification:
        return await self.create(
            employer_user_id,
            NotificationType.job_application,
            "New Job Application",
            f"{applicant_name} has applied for the position: {job_title}. Review their application and credentials.",
            entity_type=EntityType.application,
            entity_id=application_id,
            action_url=f"/jobs/applications/{application_id}",
        )

    async def notify_course_enrollment(self, student_user_id: int, course_title: str, course_id: int) -> Notification:
        return await self.create(
            student_user_id,
            NotificationType.course_enrollment,
            "Course Enrollment Confirmed",
            f"You have successfully enrolled in {course_title}. You can now access all course materials.",
            entity_type=EntityType.course,
            entity_id=course_id,
            action_url=f"/courses/{course_id}",
        )

    async def notify_message_received(self, sender_id: int, sender_name: str, recipient_id: int,
                                      conversation_id: int, text: str) -> Optional[Notification]:
        if sender_id == recipient_id:
            return None
        preview = text if len(text) <= MESSAGE_PREVIEW_CHARS else text[:MESSAGE_PREVIEW_CHARS] + "..."
        return await self.create(
            recipient_id,
            NotificationType.message_received,
            f"New message from {sender_name}",
            preview,
            entity_type=EntityType.message,
            entity_id=conversation_id,
            action_url=f"/chat/conversations/{conversation_id}",
        )

    # ---------- state transitions ----------

    async def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = await self._owned(notification_id, user_id)
        if notification.status == NotificationStatus.dismissed:
            raise ValidationError("Notification has been dismissed")
        if notification.status == NotificationStatus.unread:
            notification.status = NotificationStatus.read
            notification.read_at = utcnow()
            self.session.add(notification)
            await self.session.commit()
            await self.session.refresh(notification)
            await self._invalidate(user_id)
            await self._push(user_id, EVENT_READ, {"notification_id": notification.id})
            await self._push_count(user_id)
        return notification

    async def dismiss(self, notification_id: int, user_id: int) -> Notification:
        notification = await self._owned(notification_id, user_id)
        if notification.status != NotificationStatus.dismissed:
            notification.status = NotificationStatus.dismissed
            notification.dismissed_at = utcnow()
            self.session.add(notification)
            await self.session.commit()
            await self.session.refresh(notification)
            await self._invalidate(user_id)
            await self._push_count(user_id)
        return notification

    async def mark_all_read(self, user_id: int) -> int:
        now = utcnow()
        result = await self.session.execute(
            update(Notification)
            .where(Notification.recipient_id == user_id, Notification.status == NotificationStatus.unread)
            .values(status=NotificationStatus.read, read_at=now)
        )
        await self.session.commit()
        affected = result.rowcount or 0
        await self._invalidate(user_id)
        if affected:
            await self._push_count(user_id)
        return affected

    async def delete(self, notification_id: int, user_id: int) -> Dict[str, int]:
        notification = await self._owned(notification_id, user_id)
        await self.session.delete(notification)
        await self.session.commit()
        await self._invalidate(user_id)
        await self._push_count(user_id)
        return {"deleted_count": 1}

    async def bulk_delete(self, notification_ids: List[Any], user_id: int) -> Dict[str, Any]:
        """
        Delete the caller's notifications by id. Entries are judged one by one, so
        a malformed or foreign id fails alone. Returns
          {"deleted_count", "requested", "succeeded", "failed",
           "results": [{"index", "id", "success"[, "reason"]}]}
        """
        if not isinstance(notification_ids, list):
            raise ValidationError("ids must be a list")

        reasons: Dict[int, str] = {}
        seen = set()
        for index, raw in enumerate(notification_ids):
            if isinstance(raw, bool) or not isinstance(raw, int):
                reasons[index] = "invalid id"
            elif raw in seen:
                reasons[index] = "duplicate id"
            else:
                seen.add(raw)

        owned = set()
        deleted = 0
        if seen:
            owned = set((await self.session.exec(
                select(Notification.id).where(Notification.id.in_(sorted(seen)), Notification.recipient_id == user_id)
            )).all())
        if owned:
            result = await self.session.execute(
                sa_delete(Notification).where(Notification.id.in_(sorted(owned)), Notification.recipient_id == user_id)
            )
            await self.session.commit()
            deleted = result.rowcount or 0

        results: List[Dict[str, Any]] = []
        for index, raw in enumerate(notification_ids):
            reason = reasons.get(index)
            if reason is None and raw not in owned:
                reason = "not found or not owned"
            entry = {"index": index, "id": raw, "success": reason is None}
            if reason:
                entry["reason"] = reason
            results.append(entry)

        await self._invalidate(user_id)
        if deleted:
            await self._push_count(user_id)
        succeeded = sum(1 for r in results if r["success"])
        return {
            "deleted_count": deleted,
            "requested": len(notification_ids),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    # ---------- reads ----------

    async def get_count(self, user_id: int) -> Dict[str, Any]:
        key = notification_count_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        mine = Notification.recipient_id == user_id
        total = (await self.session.exec(select(func.count()).select_from(Notification).where(mine))).one()
        unread = (await self.session.exec(
            select(func.count()).select_from(Notification).where(mine, Notification.status == NotificationStatus.unread)
        )).one()
        rows = (await self.session.exec(
            select(Notification.type, func.count()).where(mine).group_by(Notification.type)
        )).all()
        since = utcnow() - datetime.timedelta(hours=self.settings.recent_window_hours)
        recent = (await self.session.exec(
            select(func.count()).select_from(Notification).where(mine, Notification.created_at >= since)
        )).one()

        counts = {
            "total": total,
            "unread": unread,
            "by_type": {NotificationType(t).value: c for t, c in rows},
            "recent": recent,
        }
        await self.cache.set(key, counts, self.settings.notification_count_ttl)
        return counts

    async def list_for_user(self, user_id: int, page: int = 1, limit: Optional[int] = None,
                            status: Optional[NotificationStatus] = None,
                            type_: Optional[NotificationType] = None) -> Dict[str, Any]:
        limit = limit or self.settings.default_page_limit
        if page < 1:
            page = 1
        if limit < 1 or limit > self.settings.max_page_limit:
            limit = self.settings.default_page_limit
        status_v = NotificationStatus(status) if status else None
        type_v = NotificationType(type_) if type_ else None

        key = notification_list_key(user_id, page, limit, status_v and status_v.value, type_v and type_v.value)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        filters = [Notification.recipient_id == user_id]
        if status_v:
            filters.append(Notification.status == status_v)
        if type_v:
            filters.append(Notification.type == type_v)

        total = (await self.session.exec(select(func.count()).select_from(Notification).where(*filters))).one()
        rows = (await self.session.exec(
            select(Notification).where(*filters).order_by(Notification.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )).all()
        total_pages = (total + limit - 1) // limit
        response = {
            "notifications": [serialize(n) for n in rows],
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total": total,
                "limit": limit,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }
        await self.cache.set(key, response, self.settings.notifications_ttl)
        return response
