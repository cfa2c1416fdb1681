"""Registro en memoria de sesiones de chat por conexión."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from uuid import uuid4


class SessionState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    IDENTIFIED = "identified"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(slots=True)
class ChatSession:
    """Identidad ligada a una conexión viva; no se persiste."""

    connection_id: str
    user_id: str | None = None
    session_id: str | None = None
    lead_id: str | None = None
    conversation_id: str | None = None
    closed: bool = False

    @property
    def state(self) -> SessionState:
        if self.closed:
            return SessionState.CLOSED
        if self.lead_id is not None:
            return SessionState.ACTIVE
        if self.user_id is not None:
            return SessionState.IDENTIFIED
        return SessionState.UNAUTHENTICATED


class SessionError(RuntimeError):
    """Operación sobre una conexión desconocida o cerrada."""


class ChatSessionRegistry:
    """Mapa `connection_id → ChatSession` propio de este proceso."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self, connection_id: str | None = None) -> ChatSession:
        session = ChatSession(connection_id=connection_id or uuid4().hex)
        self._sessions[session.connection_id] = session
        return session

    def get(self, connection_id: str) -> ChatSession | None:
        return self._sessions.get(connection_id)

    def _require(self, connection_id: str) -> ChatSession:
        session = self._sessions.get(connection_id)
        if session is None:
            raise SessionError(f"Conexión {connection_id} no registrada")
        return session

    def identify(self, connection_id: str, user_id: str) -> ChatSession:
        session = self._require(connection_id)
        session.user_id = user_id
        return session

    def activate(
        self,
        connection_id: str,
        *,
        session_id: str,
        lead_id: str,
        conversation_id: str,
    ) -> ChatSession:
        session = self._require(connection_id)
        session.session_id = session_id
        session.lead_id = lead_id
        session.conversation_id = conversation_id
        return session

    def close(self, connection_id: str) -> ChatSession | None:
        """Retira la sesión y devuelve una copia con los datos ligados al cierre."""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return None
        session.closed = True
        return replace(session)

