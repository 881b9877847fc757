"""
Notification API routes: admin queue/channel/template management and the user inbox.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError

from signaldesk.auth.dependencies import get_current_active_user, get_admin_user
from signaldesk.auth.models import User

from .errors import InvalidTransitionError
from .models import (
    ChannelConfig, ChannelCreate, ChannelUpdate, ChannelTest,
    DeliveryLog, DeliveryReceipt, LogStatus, NotificationChannel, NotificationCreate,
    NotificationPreferences, NotificationTemplate, PreferencesUpdate, QueuedNotification,
    QueueStatus, InboxStatus, TemplateCategory, TemplateCreate, TemplateUpdate,
    UserNotification,
)
from .service import notification_service

admin_router = APIRouter(prefix="/api/admin/notifications", tags=["Notifications Admin"])
router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


def _not_found(what: str, item_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{what} {item_id} not found",
    )


def _conflict(e: InvalidTransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=str(e),
    )


# ============== Admin: queue ==============

@admin_router.get("/stats")
async def get_stats(admin: User = Depends(get_admin_user)):
    """Queue depth by status/channel plus channel totals."""
    return notification_service.get_statistics()


@admin_router.get("/queue", response_model=List[QueuedNotification])
async def list_queue(
    status_filter: Optional[QueueStatus] = Query(default=None, alias="status"),
    channel: Optional[NotificationChannel] = None,
    user_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    admin: User = Depends(get_admin_user),
):
    return notification_service.queue.list(status_filter, channel, user_id, limit)


@admin_router.post("/queue", response_model=QueuedNotification, status_code=status.HTTP_201_CREATED)
async def enqueue_notification(
    data: NotificationCreate,
    admin: User = Depends(get_admin_user),
):
    """Manually queue an outbound notification."""
    try:
        return notification_service.enqueue(data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@admin_router.get("/queue/{item_id}", response_model=QueuedNotification)
async def get_queue_item(item_id: str, admin: User = Depends(get_admin_user)):
    item = notification_service.queue.get(item_id)
    if item is None:
        raise _not_found("Notification", item_id)
    return item


@admin_router.post("/queue/{item_id}/retry", response_model=QueuedNotification)
async def retry_notification(item_id: str, admin: User = Depends(get_admin_user)):
    """Put a failed notification back in the queue with a fresh attempt budget."""
    try:
        item = notification_service.queue.requeue(item_id)
    except KeyError:
        raise _not_found("Notification", item_id)
    except InvalidTransitionError as e:
        raise _conflict(e)
    notification_service.emit(item)
    return item


@admin_router.post("/queue/{item_id}/cancel", response_model=QueuedNotification)
async def cancel_notification(item_id: str, admin: User = Depends(get_admin_user)):
    """Cancel a pending notification."""
    try:
        item = notification_service.queue.cancel(item_id)
    except KeyError:
        raise _not_found("Notification", item_id)
    except InvalidTransitionError as e:
        raise _conflict(e)
    notification_service.emit(item)
    return item


@admin_router.post("/queue/{item_id}/receipt", response_model=QueuedNotification)
async def delivery_receipt(
    item_id: str,
    receipt: DeliveryReceipt,
    admin: User = Depends(get_admin_user),
):
    """Record a provider delivery receipt (delivered or bounced)."""
    try:
        return notification_service.apply_receipt(item_id, receipt)
    except KeyError:
        raise _not_found("Notification", item_id)
    except InvalidTransitionError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@admin_router.post("/process")
async def process_queue(request: Request, admin: User = Depends(get_admin_user)):
    """Run one delivery batch immediately."""
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery worker is not running",
        )
    processed = await worker.process_once()
    return {"processed": processed, "pending": notification_service.queue.depth()}


# ============== Admin: channels ==============

@admin_router.get("/channels", response_model=List[ChannelConfig])
async def list_channels(admin: User = Depends(get_admin_user)):
    return notification_service.channels.list()


@admin_router.post("/channels", response_model=ChannelConfig, status_code=status.HTTP_201_CREATED)
async def create_channel(data: ChannelCreate, admin: User = Depends(get_admin_user)):
    try:
        return notification_service.channels.create(data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@admin_router.put("/channels/{channel_id}", response_model=ChannelConfig)
async def update_channel(
    channel_id: str,
    data: ChannelUpdate,
    admin: User = Depends(get_admin_user),
):
    channel = notification_service.channels.update(channel_id, data)
    if channel is None:
        raise _not_found("Channel", channel_id)
    return channel


@admin_router.post(
    "/channels/{channel_id}/test",
    response_model=QueuedNotification,
    status_code=status.HTTP_202_ACCEPTED,
)
async def test_channel(
    channel_id: str,
    data: ChannelTest,
    admin: User = Depends(get_admin_user),
):
    """Queue a top-priority test message through a channel type."""
    try:
        return notification_service.send_test(channel_id, data.recipient, data.message, admin.id)
    except LookupError:
        raise _not_found("Channel", channel_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ============== Admin: templates ==============

@admin_router.get("/templates", response_model=List[NotificationTemplate])
async def list_templates(
    category: Optional[TemplateCategory] = None,
    channel: Optional[NotificationChannel] = None,
    admin: User = Depends(get_admin_user),
):
    return notification_service.templates.list(category, channel)


@admin_router.post("/templates", response_model=NotificationTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(data: TemplateCreate, admin: User = Depends(get_admin_user)):
    try:
        return notification_service.templates.create(data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@admin_router.put("/templates/{template_id}", response_model=NotificationTemplate)
async def update_template(
    template_id: str,
    data: TemplateUpdate,
    admin: User = Depends(get_admin_user),
):
    template = notification_service.templates.update(template_id, data)
    if template is None:
        raise _not_found("Template", template_id)
    return template


@admin_router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: str, admin: User = Depends(get_admin_user)):
    try:
        deleted = notification_service.templates.delete(template_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not deleted:
        raise _not_found("Template", template_id)


# ============== Admin: logs ==============

@admin_router.get("/logs", response_model=List[DeliveryLog])
async def list_logs(
    channel: Optional[NotificationChannel] = None,
    status_filter: Optional[LogStatus] = Query(default=None, alias="status"),
    queue_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    admin: User = Depends(get_admin_user),
):
    return notification_service.logs.list(channel, status_filter, queue_id, limit)


# ============== User inbox ==============

@router.get("", response_model=List[UserNotification])
async def list_notifications(
    status_filter: Optional[InboxStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    current_user: User = Depends(get_current_active_user),
):
    """The caller's in-app notifications, newest first."""
    return notification_service.inbox.list(current_user.id, status_filter, limit)


@router.get("/unread-count")
async def unread_count(current_user: User = Depends(get_current_active_user)):
    return {"unread_count": notification_service.inbox.unread_count(current_user.id)}


@router.post("/read-all")
async def mark_all_read(current_user: User = Depends(get_current_active_user)):
    updated = notification_service.inbox.mark_all_read(current_user.id)
    return {"updated": updated}


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(current_user: User = Depends(get_current_active_user)):
    return notification_service.preferences.get(current_user.id)


@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    data: PreferencesUpdate,
    current_user: User = Depends(get_current_active_user),
):
    try:
        return notification_service.preferences.update(current_user.id, data)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )


@router.post("/{notification_id}/read", response_model=UserNotification)
async def mark_read(notification_id: str, current_user: User = Depends(get_current_active_user)):
    notification = notification_service.inbox.mark_read(current_user.id, notification_id)
    if notification is None:
        raise _not_found("Notification", notification_id)
    return notification


@router.post("/{notification_id}/archive", response_model=UserNotification)
async def archive(notification_id: str, current_user: User = Depends(get_current_active_user)):
    notification = notification_service.inbox.archive(current_user.id, notification_id)
    if notification is None:
        raise _not_found("Notification", notification_id)
    return notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    current_user: User = Depends(get_current_active_user),
):
    if not notification_service.inbox.delete(current_user.id, notification_id):
        raise _not_found("Notification", notification_id)
