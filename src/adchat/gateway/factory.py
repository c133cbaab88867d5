"""Gateway construction helpers."""

from adchat.config import Settings
from adchat.gateway.base import ModelGateway
from adchat.gateway.openai_compat import OpenAICompatibleGateway


def build_gateway(settings: Settings) -> ModelGateway:
    return OpenAICompatibleGateway(
        base_url=settings.gateway_base_url,
        api_key=settings.gateway_api_key,
        timeout_seconds=settings.gateway_timeout_seconds,
    )
