"""Configuración central basada en variables de entorno."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs rotativos; sin valor sólo se escribe a stdout.",
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/health", "/api/health", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    storage_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Backend de repositorios: memoria local o Supabase REST.",
    )
    supabase_url: str | None = None
    supabase_service_role: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    mailgun_api_key: str | None = None
    mailgun_domain: str | None = None
    mailgun_from: str | None = None
    sequencer_enabled: bool = True
    sequencer_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="Segundos entre cada ciclo del secuenciador de campañas.",
    )
    sequencer_max_attempts: int = Field(
        default=5,
        ge=0,
        description=(
            "Intentos fallidos de envío antes de marcar la inscripción como `failed`. "
            "Cero reintenta indefinidamente en cada ciclo."
        ),
    )
    sequencer_claim_lease_seconds: int = Field(
        default=300,
        ge=1,
        description="Tiempo que una inscripción reclamada queda fuera de selección mientras se envía.",
    )
    chat_anonymous_lead_id: str = "anonymous"
    chat_unknown_lead_policy: Literal["create", "error"] = Field(
        default="create",
        description="Qué hacer en chat:init cuando el leadId recibido no existe.",
    )
    default_campaign_id: str | None = Field(
        default=None,
        description="Campaña a la que `process_lead` inscribe los leads.",
    )
    model_config = SettingsConfigDict(env_file=".env", env_prefix="LEADRELAY_", extra="allow")


settings = Settings()
