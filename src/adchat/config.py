"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from adchat.errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/adchat.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    default_model: str = Field(alias="DEFAULT_MODEL", default="openai/gpt-4o-mini")
    gateway_base_url: str = Field(alias="GATEWAY_BASE_URL", default="http://localhost:30000/v1")
    gateway_api_key: str = Field(alias="GATEWAY_API_KEY", default="")
    gateway_timeout_seconds: int = Field(alias="GATEWAY_TIMEOUT_SECONDS", default=120)
    tools_base_url: str = Field(alias="TOOLS_BASE_URL", default="http://localhost:8081")
    tools_timeout_seconds: int = Field(alias="TOOLS_TIMEOUT_SECONDS", default=60)

    history_window_limit: int = Field(alias="HISTORY_WINDOW_LIMIT", default=80)
    max_tool_rounds: int = Field(alias="MAX_TOOL_ROUNDS", default=5)
    message_sanitizer_enabled: int = Field(alias="MESSAGE_SANITIZER_ENABLED", default=1)
    summary_threshold_messages: int = Field(alias="SUMMARY_THRESHOLD_MESSAGES", default=40)
    name_allocation_attempts: int = Field(alias="NAME_ALLOCATION_ATTEMPTS", default=3)
    campaign_namer: str = Field(alias="CAMPAIGN_NAMER", default="wordlist")
    event_store_enabled: int = Field(alias="EVENT_STORE_ENABLED", default=0)

    task_runner_max_concurrent: int = Field(alias="TASK_RUNNER_MAX_CONCURRENT", default=20)
    task_runner_shutdown_timeout_seconds: int = Field(
        alias="TASK_RUNNER_SHUTDOWN_TIMEOUT_SECONDS",
        default=30,
    )

    chat_rate_limit: str = Field(alias="CHAT_RATE_LIMIT", default="20/minute")
    web_cors_origins: str = Field(alias="WEB_CORS_ORIGINS", default="")
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=8000)


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    _logger = _logging.getLogger(__name__)

    if settings.app_env == "prod" and settings.bind_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: BIND_HOST=0.0.0.0 in production. "
            "Put the API behind a reverse proxy and bind to 127.0.0.1."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "APP_DB": settings.app_db,
        "DEFAULT_MODEL": settings.default_model,
        "GATEWAY_BASE_URL": settings.gateway_base_url,
        "GATEWAY_API_KEY": settings.gateway_api_key,
        "TOOLS_BASE_URL": settings.tools_base_url,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)

    if not settings.app_db.startswith("/"):
        missing.append("APP_DB(absolute path required)")
    if settings.max_tool_rounds < 1:
        missing.append("MAX_TOOL_ROUNDS(>=1 required)")
    if settings.name_allocation_attempts < 1:
        missing.append("NAME_ALLOCATION_ATTEMPTS(>=1 required)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ConfigError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
