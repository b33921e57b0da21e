from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from careerhub.app.deps import current_user, get_dispatcher, require_roles
from careerhub.app.models import NotificationStatus, NotificationType, Role, User
from careerhub.app.schemas import BulkDeleteIn, NotificationIn, SystemNotificationIn
from careerhub.app.services.notifications import NotificationDispatcher, serialize

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    page: int = 1,
    limit: int = 10,
    status: Optional[NotificationStatus] = None,
    type_: Optional[NotificationType] = Query(None, alias="type"),
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return await dispatcher.list_for_user(user.id, page, limit, status, type_)


@router.get("/count")
async def notification_count(
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return await dispatcher.get_count(user.id)


@router.post("", status_code=201, dependencies=[Depends(require_roles(Role.admin))])
async def create_notification(
    payload: NotificationIn,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    notification = await dispatcher.create_from(payload)
    return serialize(notification)


@router.post("/bulk", dependencies=[Depends(require_roles(Role.admin))])
async def bulk_create_notifications(
    notifications: List[Any] = Body(..., embed=True),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    # entries are validated one by one so a bad entry does not sink the batch
    return await dispatcher.bulk_create(notifications)


@router.post("/system", dependencies=[Depends(require_roles(Role.admin))])
async def broadcast_system_notification(
    payload: SystemNotificationIn,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    delivered = await dispatcher.broadcast_system(payload.title, payload.message)
    return {"delivered": delivered}


@router.patch("/read-all")
async def mark_all_read(
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return {"modified_count": await dispatcher.mark_all_read(user.id)}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return serialize(await dispatcher.mark_read(notification_id, user.id))


@router.patch("/{notification_id}/dismiss")
async def dismiss(
    notification_id: int,
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return serialize(await dispatcher.dismiss(notification_id, user.id))


@router.post("/bulk-delete")
async def bulk_delete(
    payload: BulkDeleteIn,
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return await dispatcher.bulk_delete(payload.ids, user.id)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    user: User = Depends(current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Any:
    return await dispatcher.delete(notification_id, user.id)
