"""Consulta y administración de notificaciones del usuario del panel."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_relay, get_user_id
from app.services.notifications import NotificationRelay

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", summary="Lista las notificaciones del usuario")
def list_notifications(
    unread: bool = False,
    user_id: str = Depends(get_user_id),
    relay: NotificationRelay = Depends(get_relay),
) -> dict[str, Any]:
    items = relay.user_notifications(user_id, unread_only=unread)
    return {
        "notifications": [item.to_wire() for item in items],
        "total": len(items),
        "unread": sum(1 for item in items if not item.read),
    }


@router.patch("/read-all", summary="Marca todas las notificaciones como leídas")
async def mark_all_read(
    user_id: str = Depends(get_user_id),
    relay: NotificationRelay = Depends(get_relay),
) -> dict[str, Any]:
    count = await relay.mark_all_read(user_id)
    return {"success": True, "markedAsRead": count}


@router.patch("/{notification_id}/read", summary="Marca una notificación como leída")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_user_id),
    relay: NotificationRelay = Depends(get_relay),
) -> dict[str, Any]:
    if not await relay.mark_read(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notificación no encontrada")
    return {"success": True}


@router.delete("/{notification_id}", summary="Elimina una notificación")
async def delete_notification(
    notification_id: str,
    user_id: str = Depends(get_user_id),
    relay: NotificationRelay = Depends(get_relay),
) -> dict[str, Any]:
    if not await relay.delete_notification(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notificación no encontrada")
    return {"success": True}
