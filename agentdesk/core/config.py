"""Application configuration via pydantic-settings.

All values loaded from the .env file at the project root.
The .env file takes precedence over OS-level environment variables
so stale system env vars never shadow the project config.
Timings mirror the console's client constants (page size 10,
1s fetch cooldown, 500ms queue debounce, 1.5s end-chat banner).
"""

from pathlib import Path
from typing import Tuple, Type

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

# agentdesk/core/config.py → agentdesk → project root
_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    """Central console settings. .env file wins over OS env vars."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        env_prefix="AGENTDESK_",
        case_sensitive=False,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Override source priority: .env file > OS env vars > defaults."""
        return (init_settings, dotenv_settings, env_settings, file_secret_settings)

    # --- Backend ---
    backend_url: str = "http://localhost:3000"
    socket_url: str = ""
    request_timeout_seconds: float = 10.0
    request_max_retries: int = 3

    # --- Sync engine ---
    messages_per_page: int = 10
    fetch_cooldown_seconds: float = 1.0
    queue_debounce_seconds: float = 0.5
    end_chat_delay_seconds: float = 1.5
    reconnect_delay_seconds: float = 0.1

    # --- Display defaults ---
    default_department: str = "All"
    unknown_department: str = "Unknown"
    default_sender_name: str = "Unknown"
    end_chat_message: str = "Thank you for your patience. Your chat has ended."

    # --- App ---
    app_env: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def realtime_url(self) -> str:
        """Socket.IO endpoint. Falls back to the REST backend host."""
        return self.socket_url or self.backend_url


settings = Settings()
