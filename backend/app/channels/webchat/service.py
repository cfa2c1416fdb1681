"""Servicios del canal webchat: ciclo de vida de sesión y turnos de chat."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Literal, assert_never

from pydantic import ValidationError

from app.agents.base import ChatContext, ChatResponder, SessionInfo
from app.core.logging import get_logger, log_event
from app.models.conversation import Conversation, ConversationMessage, Direction, Lead
from app.repositories.base import (
    CommunicationRepository,
    ConversationRepository,
    EnrollmentStore,
    LeadRepository,
    TemplateCatalog,
)
from app.services.campaigns import enroll_lead
from app.services.notifications import Connection, NotificationRelay

from . import schemas
from .session import ChatSession, ChatSessionRegistry, SessionState

logger = get_logger("app.channels.webchat")

CHAT_CHANNEL = "chat"
WELCOME_TRIGGER = "Initial chat contact"

UnknownLeadPolicy = Literal["create", "error"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatTurnProcessor:
    """Consume mensajes de una conexión y aplica la máquina de estados de la sesión.

    Cada conexión se procesa en orden de llegada porque el socket no lee el
    siguiente mensaje hasta que termina el turno actual. Conexiones distintas
    son independientes entre sí.
    """

    def __init__(
        self,
        *,
        sessions: ChatSessionRegistry,
        relay: NotificationRelay,
        leads: LeadRepository,
        conversations: ConversationRepository,
        communications: CommunicationRepository,
        responder: ChatResponder,
        enrollments: EnrollmentStore | None = None,
        templates: TemplateCatalog | None = None,
        default_campaign_id: str | None = None,
        anonymous_lead_id: str = "anonymous",
        unknown_lead_policy: UnknownLeadPolicy = "create",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions = sessions
        self._relay = relay
        self._leads = leads
        self._conversations = conversations
        self._communications = communications
        self._responder = responder
        self._enrollments = enrollments
        self._templates = templates
        self._default_campaign_id = default_campaign_id
        self._anonymous_lead_id = anonymous_lead_id
        self._unknown_lead_policy = unknown_lead_policy
        self._clock = clock

    def connect(self, connection: Connection) -> ChatSession:
        session = self._sessions.open(connection.connection_id)
        log_event(logger, "webchat.connected", connection_id=connection.connection_id)
        return session

    async def handle_raw(self, connection: Connection, raw: str | bytes) -> None:
        """Valida el mensaje crudo y lo procesa; nunca propaga errores al transporte."""
        try:
            message = schemas.parse_inbound(raw)
        except ValidationError as exc:
            logger.warning(
                "webchat.invalid_message",
                extra={"connection_id": connection.connection_id, "errors": exc.error_count()},
            )
            await self._send_error(connection, "Mensaje inválido")
            return

        try:
            await self.handle(connection, message)
        except Exception:
            logger.exception(
                "webchat.message_failed",
                extra={"connection_id": connection.connection_id, "type": message.type},
            )
            await self._send_error(connection, "No fue posible procesar el mensaje")

    async def handle(self, connection: Connection, message: schemas.InboundMessage) -> None:
        session = self._sessions.get(connection.connection_id)
        if session is None or session.closed:
            logger.warning(
                "webchat.message_after_close", extra={"connection_id": connection.connection_id}
            )
            return

        match message:
            case schemas.AuthMessage():
                await self._handle_auth(connection, session, message)
            case schemas.ChatInitMessage():
                await self._handle_chat_init(connection, session, message)
            case schemas.ChatTextMessage():
                await self._handle_chat_message(connection, session, message)
            case schemas.MarkNotificationReadMessage():
                if session.user_id and message.notification_id:
                    await self._relay.mark_read(session.user_id, message.notification_id)
            case schemas.MarkAllNotificationsReadMessage():
                if session.user_id:
                    await self._relay.mark_all_read(session.user_id)
            case schemas.DeleteNotificationMessage():
                if session.user_id and message.notification_id:
                    await self._relay.delete_notification(session.user_id, message.notification_id)
            case schemas.AgentUpdateMessage():
                await self._relay.broadcast(
                    schemas.AgentUpdateEvent(agent=message.agent, message=message.message).to_wire()
                )
            case schemas.LeadUpdateMessage():
                await self._relay.broadcast(
                    schemas.LeadUpdateEvent(lead_id=message.lead_id, status=message.status).to_wire()
                )
            case schemas.ProcessLeadMessage():
                await self._handle_process_lead(message)
            case _:
                assert_never(message)

    async def _handle_auth(
        self, connection: Connection, session: ChatSession, message: schemas.AuthMessage
    ) -> None:
        if not message.user_id:
            return
        if session.user_id and session.user_id != message.user_id:
            self._relay.unregister(session.user_id, connection)
        self._sessions.identify(connection.connection_id, message.user_id)
        await self._relay.register(message.user_id, connection)

    async def _handle_chat_init(
        self, connection: Connection, session: ChatSession, message: schemas.ChatInitMessage
    ) -> None:
        lead = await self._resolve_lead(connection, message)
        if lead is None:
            return

        conversation = await self._conversations.find_by_lead_and_channel(lead.id, CHAT_CHANNEL)
        if conversation is None:
            conversation = await self._conversations.create(lead.id, CHAT_CHANNEL, CHAT_CHANNEL)

        context = ChatContext(
            lead=lead,
            conversation=conversation,
            session=SessionInfo(
                session_id=message.session_id, connection_id=connection.connection_id
            ),
        )
        welcome = await self._responder.generate_initial_message(context, WELCOME_TRIGGER)

        self._sessions.activate(
            connection.connection_id,
            session_id=message.session_id,
            lead_id=lead.id,
            conversation_id=conversation.id,
        )
        log_event(
            logger,
            "webchat.session_active",
            connection_id=connection.connection_id,
            session_id=message.session_id,
            lead_id=lead.id,
            conversation_id=conversation.id,
        )
        await connection.send_json(
            schemas.ChatConnectedEvent(
                session_id=message.session_id,
                lead_id=lead.id,
                conversation_id=conversation.id,
                welcome_message=welcome,
            ).to_wire()
        )

    async def _resolve_lead(
        self, connection: Connection, message: schemas.ChatInitMessage
    ) -> Lead | None:
        lead_id = message.lead_id
        if lead_id and lead_id != self._anonymous_lead_id:
            lead = await self._leads.find_by_id(lead_id)
            if lead is not None:
                return lead
            if self._unknown_lead_policy == "error":
                logger.warning(
                    "webchat.lead_not_found",
                    extra={"lead_id": lead_id, "session_id": message.session_id},
                )
                await self._send_error(connection, "Lead no encontrado")
                return None
            logger.warning(
                "webchat.lead_not_found_fallback",
                extra={"lead_id": lead_id, "session_id": message.session_id},
            )

        metadata = message.metadata
        fields: dict[str, Any] = {
            "name": metadata.get("name") or "Chat Visitor",
            "email": metadata.get("email") or f"chat_{message.session_id}@anonymous.invalid",
            "phone": metadata.get("phone") or "0000000000",
            "source": "chat_widget",
            "metadata": {**metadata, "session_id": message.session_id, "channel": CHAT_CHANNEL},
        }
        lead = await self._leads.create(fields)
        log_event(logger, "webchat.lead_created", lead_id=lead.id, session_id=message.session_id)
        await self._relay.lead_created(lead.id, lead.name, source=lead.source)
        return lead

    async def _handle_chat_message(
        self, connection: Connection, session: ChatSession, message: schemas.ChatTextMessage
    ) -> None:
        lead_id = session.lead_id
        if session.state is not SessionState.ACTIVE or lead_id is None:
            await self._send_error(connection, "No hay una sesión activa")
            return

        await connection.send_json(schemas.TypingEvent().to_wire())
        try:
            await self._run_turn(connection, session, lead_id, message.content)
        except Exception:
            logger.exception(
                "webchat.turn_failed",
                extra={"session_id": session.session_id, "lead_id": lead_id},
            )
            await self._send_error(connection, "No fue posible procesar el mensaje")
            await connection.send_json(schemas.StopTypingEvent().to_wire())

    async def _run_turn(
        self, connection: Connection, session: ChatSession, lead_id: str, content: str
    ) -> None:
        lead = await self._leads.find_by_id(lead_id)
        conversation = await self._conversations.find_by_lead_and_channel(lead_id, CHAT_CHANNEL)
        if lead is None or conversation is None:
            await self._send_error(connection, "Sesión no encontrada")
            await connection.send_json(schemas.StopTypingEvent().to_wire())
            return

        record_meta = {"session_id": session.session_id}
        await self._communications.create(
            lead.id, CHAT_CHANNEL, Direction.INBOUND, content, "received", None, record_meta
        )
        await self._conversations.append_message(conversation.id, "user", content)
        conversation.messages.append(ConversationMessage(role="user", content=content))

        reply = await self._responder.generate_response(
            ChatContext(
                lead=lead,
                conversation=conversation,
                message=content,
                session=SessionInfo(
                    session_id=session.session_id, connection_id=connection.connection_id
                ),
            )
        )

        await self._communications.create(
            lead.id,
            CHAT_CHANNEL,
            Direction.OUTBOUND,
            reply.content,
            "delivered",
            None,
            {**record_meta, "quick_replies": reply.quick_replies},
        )
        await self._conversations.append_message(conversation.id, "assistant", reply.content)
        conversation.messages.append(ConversationMessage(role="assistant", content=reply.content))

        await connection.send_json(
            schemas.ChatReplyEvent(content=reply.content, quick_replies=reply.quick_replies).to_wire()
        )
        await connection.send_json(schemas.StopTypingEvent().to_wire())

        if reply.should_handover:
            await self._request_handover(lead, conversation, reply.handover_reason)

    async def _request_handover(
        self, lead: Lead, conversation: Conversation, reason: str | None
    ) -> None:
        log_event(
            logger,
            "webchat.handover_requested",
            lead_id=lead.id,
            conversation_id=conversation.id,
            reason=reason,
        )
        await self._relay.broadcast(
            schemas.HandoverRequestedEvent(
                lead=lead, conversation=conversation, reason=reason
            ).to_wire()
        )
        await self._relay.handover_requested(
            lead.id, lead.name, conversation_id=conversation.id, reason=reason
        )

    async def _handle_process_lead(self, message: schemas.ProcessLeadMessage) -> None:
        if not message.lead_id:
            return
        lead = await self._leads.find_by_id(message.lead_id)
        if lead is None:
            logger.warning("webchat.process_lead_unknown", extra={"lead_id": message.lead_id})
            return
        campaign_id = self._default_campaign_id
        if not campaign_id or self._enrollments is None or self._templates is None:
            logger.warning(
                "webchat.process_lead_no_campaign", extra={"lead_id": message.lead_id}
            )
            return
        await enroll_lead(
            self._enrollments,
            self._templates,
            lead_id=lead.id,
            campaign_id=campaign_id,
            now=self._clock(),
        )
        await self._relay.broadcast(
            schemas.LeadUpdateEvent(lead_id=lead.id, status="enrolled").to_wire()
        )
        await self._relay.lead_enrolled(lead.id, lead.name, campaign_id=campaign_id)

    async def disconnect(self, connection: Connection) -> None:
        """Cierra la sesión, libera el registro del relay y avisa a los observadores."""
        session = self._sessions.close(connection.connection_id)
        if session is None:
            return
        log_event(
            logger,
            "webchat.disconnected",
            connection_id=connection.connection_id,
            session_id=session.session_id,
            lead_id=session.lead_id,
        )
        if session.user_id:
            self._relay.unregister(session.user_id, connection)
        if session.session_id is not None and session.lead_id is not None:
            await self._relay.broadcast(
                schemas.ChatDisconnectedEvent(
                    session_id=session.session_id, lead_id=session.lead_id
                ).to_wire()
            )

    async def _send_error(self, connection: Connection, text: str) -> None:
        await connection.send_json(schemas.ErrorEvent(message=text).to_wire())
