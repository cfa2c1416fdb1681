"""Construye el conjunto de repositorios según el backend configurado."""

from __future__ import annotations

from dataclasses import dataclass

from app.core.config import Settings

from . import memory, supabase
from .base import (
    CommunicationRepository,
    ConversationRepository,
    EnrollmentStore,
    LeadRepository,
    TemplateCatalog,
)


@dataclass(slots=True)
class Repositories:
    leads: LeadRepository
    conversations: ConversationRepository
    communications: CommunicationRepository
    enrollments: EnrollmentStore
    templates: TemplateCatalog


def build_repositories(config: Settings) -> Repositories:
    """Retorna repositorios en memoria o respaldados por Supabase REST."""
    if config.storage_backend == "supabase":
        client = supabase.SupabaseClient(config.supabase_url, config.supabase_service_role)
        return Repositories(
            leads=supabase.SupabaseLeadRepository(client),
            conversations=supabase.SupabaseConversationRepository(client),
            communications=supabase.SupabaseCommunicationRepository(client),
            enrollments=supabase.SupabaseEnrollmentStore(client),
            templates=supabase.SupabaseTemplateCatalog(client),
        )
    return Repositories(
        leads=memory.InMemoryLeadRepository(),
        conversations=memory.InMemoryConversationRepository(),
        communications=memory.InMemoryCommunicationRepository(),
        enrollments=memory.InMemoryEnrollmentStore(),
        templates=memory.InMemoryTemplateCatalog(),
    )
