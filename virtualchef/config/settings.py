"""Runtime settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VCHEF_", extra="ignore", populate_by_name=True)

    app_name: str = "Virtual Chef"
    env: str = "dev"
    log_level: str = "info"
    # empty disables the rotating file handler
    log_dir: str = "logs"
    host: str = "127.0.0.1"
    port: int = 18090

    # Un-prefixed name kept so the key can be shared with the web frontend's env file.
    open_router_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPEN_ROUTER_API_KEY", "VCHEF_OPEN_ROUTER_API_KEY"),
    )
    open_router_base_url: str = "https://openrouter.ai/api/v1"
    open_router_model: str = "google/gemini-2.0-flash-001"
    open_router_referer: str = ""
    open_router_title: str = "Reseply Virtual Chef"

    chat_temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    chat_max_output_tokens: int = Field(default=2048, gt=0)

    upstream_timeout_seconds: float = 60.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20
    # How often the relay asks the transport whether the client is still there.
    disconnect_poll_interval_seconds: float = 0.5

    max_request_body_bytes: int = 2_000_000
    max_messages_count: int = 100
    max_content_length_per_message: int = 50_000


settings = Settings()
