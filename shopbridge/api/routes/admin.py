"""
Admin Endpoints

Operator console backend: queue inspection, custom messages, feature
toggles, reconciliation sync with preview/confirm, and member events
relayed from the chat platform gateway.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from loguru import logger

from shopbridge.api.dependencies import get_store, require_admin_token, require_service
from shopbridge.api.models.admin import (
    BroadcastRequest,
    ChannelMessageRequest,
    DirectMessageRequest,
    MemberEvent,
    SettingUpdate,
    SyncPreviewRequest,
)
from shopbridge.config import settings
from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.settings import DEFAULT_SETTINGS
from shopbridge.services.announcements import OperatorMessaging
from shopbridge.services.member_engagement import WelcomeDmScheduler
from shopbridge.services.offline_sync import OfflineOrderSync, SyncPreview
from shopbridge.utils.ttl_store import TTLStore

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin_token)],
)


# ==================== Queue ====================

@router.get("/queue/failed")
async def failed_messages(
    limit: int = Query(50, ge=1, le=500),
    store: DeliveryStore = Depends(get_store),
):
    """Most recent failed messages with their last error."""
    messages = await store.list_failed(limit)
    return {
        "count": len(messages),
        "messages": [
            {
                "id": m.id,
                "kind": str(m.kind),
                "destination": m.destination.model_dump(),
                "attempts": m.attempts,
                "maxAttempts": m.max_attempts,
                "lastError": m.last_error,
                "createdAt": m.created_at.isoformat(),
            }
            for m in messages
        ],
    }


# ==================== Custom messages ====================

@router.post("/messages/channel", status_code=status.HTTP_202_ACCEPTED)
async def send_channel_message(body: ChannelMessageRequest, request: Request):
    messaging: OperatorMessaging = require_service(request, "messaging")
    channel_id = body.channel_id or settings.notification_channel_id
    if not channel_id:
        raise HTTPException(status_code=400, detail="channel_id is required")

    message_id = await messaging.send_to_channel(channel_id, body.content, body.embed, body.author_id)
    return {"status": "queued", "message_id": message_id}


@router.post("/messages/direct", status_code=status.HTTP_202_ACCEPTED)
async def send_direct_message(body: DirectMessageRequest, request: Request):
    messaging: OperatorMessaging = require_service(request, "messaging")
    message_id = await messaging.send_direct(body.user_id, body.content, body.embed, body.author_id)
    return {"status": "queued", "message_id": message_id}


@router.post("/messages/broadcast", status_code=status.HTTP_202_ACCEPTED)
async def broadcast(body: BroadcastRequest, request: Request):
    """DM every member still in the server who has not closed DMs."""
    messaging: OperatorMessaging = require_service(request, "messaging")
    result = await messaging.broadcast(body.content, body.embed, body.author_id, body.limit)
    return {
        "status": "queued",
        "recipients": result.recipients,
        "firstDeliveryAt": result.first_delivery_at.isoformat() if result.first_delivery_at else None,
        "lastDeliveryAt": result.last_delivery_at.isoformat() if result.last_delivery_at else None,
    }


# ==================== Settings ====================

@router.get("/settings")
async def list_settings(store: DeliveryStore = Depends(get_store)):
    return {**DEFAULT_SETTINGS, **(await store.all_settings())}


@router.put("/settings/{key}")
async def update_setting(key: str, body: SettingUpdate, store: DeliveryStore = Depends(get_store)):
    if key not in DEFAULT_SETTINGS:
        raise HTTPException(status_code=404, detail=f"Unknown setting {key}")

    await store.set_setting(key, body.value)
    logger.info(f"⚙️ Setting {key} set to {body.value}", extra={"key": key, "value": body.value})
    return {"key": key, "value": body.value}


# ==================== Reconciliation sync ====================

@router.post("/sync/preview")
async def sync_preview(body: SyncPreviewRequest, request: Request):
    """
    Find orders missed while offline and hold them for confirmation.

    Returns counts plus a token; POST /admin/sync/{token}/apply processes
    exactly the previewed orders.
    """
    sync: OfflineOrderSync = require_service(request, "offline_sync")
    previews: TTLStore[SyncPreview] = require_service(request, "sync_previews")

    if body.since_id:
        preview = await sync.find_orders_after(body.since_id)
    else:
        preview = await sync.find_missed_orders(body.window_hours)

    response = preview.summary()
    if preview.to_process:
        response["token"] = previews.put(preview)
        response["expiresInSeconds"] = previews.ttl_seconds
    return response


async def _apply_in_background(sync: OfflineOrderSync, preview: SyncPreview) -> None:
    try:
        report = await sync.apply(preview)
    except Exception as e:
        logger.error(f"❌ Reconciliation apply aborted: {e}", extra={"error": str(e)})
        return
    logger.info(
        f"🔄 Reconciliation apply finished: {report.processed} processed, {report.failed} failed",
        extra=report.as_dict(),
    )


@router.post("/sync/{token}/apply", status_code=status.HTTP_202_ACCEPTED)
async def sync_apply(token: str, request: Request, background_tasks: BackgroundTasks):
    """
    Start processing a previewed candidate set.

    Orders are spaced by the inter-order delay, so the run continues after
    the response; progress shows up in /admin/sync/stats.
    """
    sync: OfflineOrderSync = require_service(request, "offline_sync")
    previews: TTLStore[SyncPreview] = require_service(request, "sync_previews")

    preview = previews.pop(token)
    if preview is None:
        raise HTTPException(status_code=404, detail="Sync preview expired or unknown")

    background_tasks.add_task(_apply_in_background, sync, preview)
    return {
        "status": "accepted",
        "toProcess": preview.to_process,
        "interOrderDelaySeconds": sync.inter_order_delay,
    }


@router.delete("/sync/{token}")
async def sync_cancel(token: str, request: Request):
    previews: TTLStore[SyncPreview] = require_service(request, "sync_previews")
    if previews.pop(token) is None:
        raise HTTPException(status_code=404, detail="Sync preview expired or unknown")
    return {"status": "cancelled"}


@router.get("/sync/stats")
async def sync_stats(request: Request, window_hours: int = Query(24, ge=1, le=24 * 30)):
    sync: OfflineOrderSync = require_service(request, "offline_sync")
    return await sync.sync_stats(window_hours)


# ==================== Members ====================

@router.post("/members/events")
async def member_event(event: MemberEvent, request: Request):
    """Apply a join/leave/role-change event to member state."""
    scheduler: WelcomeDmScheduler = require_service(request, "scheduler")

    if event.type == "join":
        await scheduler.on_member_join(event.user_id, event.username, event.role_ids, event.joined_at)
    elif event.type == "leave":
        await scheduler.on_member_leave(event.user_id)
    else:
        await scheduler.on_member_roles_updated(event.user_id, event.role_ids)

    return {"status": "ok", "type": event.type, "user_id": event.user_id}
