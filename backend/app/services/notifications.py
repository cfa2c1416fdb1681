"""Relay de eventos fuera de banda hacia conexiones en vivo."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Protocol
from uuid import uuid4

from app.core.logging import get_logger, log_event

logger = get_logger(__name__)

NotificationKind = Literal["lead", "campaign", "agent", "system"]
NotificationPriority = Literal["low", "medium", "high", "urgent"]


class Connection(Protocol):
    """Conexión viva capaz de recibir eventos JSON."""

    connection_id: str

    async def send_json(self, payload: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class Notification:
    id: str
    kind: NotificationKind
    title: str
    message: str
    priority: NotificationPriority = "medium"
    read: bool = False
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.kind,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "read": self.read,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat(),
        }


class NotificationRelay:
    """Registro `user_id → conexión` con entrega dirigida o por difusión.

    Vive una instancia por proceso; no se comparte entre réplicas. También
    conserva en memoria las notificaciones de cada usuario.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._notifications: dict[str, list[Notification]] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def connection_for(self, user_id: str) -> Connection | None:
        return self._connections.get(user_id)

    async def register(self, user_id: str, connection: Connection) -> None:
        """Asocia el usuario a la conexión, reemplazando cualquier conexión previa."""
        self._connections[user_id] = connection
        log_event(
            logger,
            "relay.registered",
            user_id=user_id,
            connection_id=connection.connection_id,
        )
        unread = self.user_notifications(user_id, unread_only=True)
        if unread:
            await self._deliver(
                connection,
                {"type": "unread_notifications", "data": [item.to_wire() for item in unread]},
            )

    def unregister(self, user_id: str, connection: Connection | None = None) -> None:
        """Elimina el registro; sin registro previo no hace nada.

        Con `connection`, sólo elimina si el usuario sigue asociado a esa misma
        conexión, de modo que cerrar una conexión reemplazada no desconecta la nueva.
        """
        current = self._connections.get(user_id)
        if current is None:
            return
        if connection is not None and current is not connection:
            return
        del self._connections[user_id]
        log_event(logger, "relay.unregistered", user_id=user_id)

    async def send_to_user(self, user_id: str, payload: dict[str, Any]) -> bool:
        connection = self._connections.get(user_id)
        if connection is None:
            return False
        return await self._deliver(connection, payload)

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """Entrega a todos los usuarios registrados; un fallo no detiene al resto."""
        delivered = 0
        for connection in list(self._connections.values()):
            if await self._deliver(connection, payload):
                delivered += 1
        return delivered

    async def _deliver(self, connection: Connection, payload: dict[str, Any]) -> bool:
        try:
            await connection.send_json(payload)
        except Exception:
            logger.exception(
                "relay.delivery_failed",
                extra={"connection_id": connection.connection_id, "event": payload.get("type")},
            )
            return False
        return True

    def user_notifications(self, user_id: str, *, unread_only: bool = False) -> list[Notification]:
        items = self._notifications.get(user_id, [])
        if unread_only:
            return [item for item in items if not item.read]
        return list(items)

    async def create_notification(
        self,
        *,
        kind: NotificationKind,
        title: str,
        message: str,
        user_id: str | None = None,
        priority: NotificationPriority = "medium",
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Guarda y envía una notificación.

        Sin `user_id` se difunde a los usuarios conectados y cada uno guarda su
        propia copia, de modo que pueda marcarla como leída o borrarla.
        """
        notification = Notification(
            id=uuid4().hex,
            kind=kind,
            title=title,
            message=message,
            priority=priority,
            user_id=user_id,
            metadata=metadata or {},
        )
        if user_id:
            self._store(user_id, notification)
            await self.send_to_user(
                user_id, {"type": "notification", "data": notification.to_wire()}
            )
            return notification

        for target in list(self._connections):
            copy = replace(notification, user_id=target, metadata=dict(notification.metadata))
            self._store(target, copy)
            await self.send_to_user(target, {"type": "notification", "data": copy.to_wire()})
        log_event(
            logger,
            "relay.notification_broadcast",
            notification_id=notification.id,
            kind=kind,
            recipients=len(self._connections),
        )
        return notification

    def _store(self, user_id: str, notification: Notification) -> None:
        self._notifications.setdefault(user_id, []).append(notification)

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        for item in self._notifications.get(user_id, []):
            if item.id == notification_id:
                item.read = True
                await self.send_to_user(
                    user_id,
                    {"type": "notification_update", "data": {"id": notification_id, "read": True}},
                )
                return True
        return False

    async def mark_all_read(self, user_id: str) -> int:
        count = 0
        for item in self._notifications.get(user_id, []):
            if not item.read:
                item.read = True
                count += 1
        if count:
            await self.send_to_user(
                user_id, {"type": "notifications_marked_read", "data": {"count": count}}
            )
        return count

    async def delete_notification(self, user_id: str, notification_id: str) -> bool:
        items = self._notifications.get(user_id, [])
        for index, item in enumerate(items):
            if item.id == notification_id:
                del items[index]
                await self.send_to_user(
                    user_id, {"type": "notification_deleted", "data": {"id": notification_id}}
                )
                return True
        return False

    # Notificaciones de dominio

    async def lead_created(
        self, lead_id: str, name: str, *, source: str | None = None
    ) -> Notification:
        return await self.create_notification(
            kind="lead",
            title="Nuevo lead",
            message=f'El lead "{name}" se agregó desde {source or "el sistema"}',
            metadata={"lead_id": lead_id, "source": source},
        )

    async def handover_requested(
        self, lead_id: str, name: str, *, conversation_id: str, reason: str | None
    ) -> Notification:
        return await self.create_notification(
            kind="agent",
            title="Chat requiere atención",
            message=f'La conversación con "{name}" necesita un agente humano',
            priority="high",
            metadata={"lead_id": lead_id, "conversation_id": conversation_id, "reason": reason},
        )

    async def lead_enrolled(self, lead_id: str, name: str, *, campaign_id: str) -> Notification:
        return await self.create_notification(
            kind="campaign",
            title="Lead inscrito en campaña",
            message=f'"{name}" comenzó la secuencia de la campaña {campaign_id}',
            priority="low",
            metadata={"lead_id": lead_id, "campaign_id": campaign_id},
        )
