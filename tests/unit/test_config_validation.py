import pytest

from adchat.config import Settings, validate_settings_for_env
from adchat.errors import ConfigError


def _prod(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "APP_ENV": "prod",
        "APP_DB": "/var/lib/adchat/app.db",
        "GATEWAY_API_KEY": "secret",
        "GATEWAY_BASE_URL": "https://gateway.example/v1",
        "TOOLS_BASE_URL": "https://tools.example",
    }
    values.update(overrides)
    return Settings(**values)


def test_dev_settings_skip_validation() -> None:
    validate_settings_for_env(Settings(APP_ENV="dev", GATEWAY_API_KEY=""))


def test_complete_prod_settings_pass() -> None:
    validate_settings_for_env(_prod())


def test_prod_requires_gateway_key() -> None:
    with pytest.raises(ConfigError, match="GATEWAY_API_KEY"):
        validate_settings_for_env(_prod(GATEWAY_API_KEY=""))


def test_prod_requires_absolute_db_path() -> None:
    with pytest.raises(ConfigError, match="APP_DB"):
        validate_settings_for_env(_prod(APP_DB="relative.db"))


def test_prod_rejects_zero_round_budget() -> None:
    with pytest.raises(ConfigError, match="MAX_TOOL_ROUNDS"):
        validate_settings_for_env(_prod(MAX_TOOL_ROUNDS=0))
