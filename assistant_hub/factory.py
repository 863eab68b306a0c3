from typing import Optional

from loguru import logger

from assistant_hub.errors import ConfigurationError, UnsupportedProviderError
from assistant_hub.openai_client import OpenAi, OpenAiHttp
from assistant_hub.settings import Settings, get_settings


def create_client(
    provider: Optional[str] = None,
    company_slug: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> OpenAi:
    """Build the client for the configured AI provider.

    Only ``openai`` is supported; any other provider name raises
    ``UnsupportedProviderError``.
    """
    settings = settings or get_settings()
    provider = (provider or settings.ai_provider).lower()

    if provider == "openai":
        return _create_openai_client(settings, company_slug)
    raise UnsupportedProviderError(provider)


def _create_openai_client(settings: Settings, company_slug: Optional[str]) -> OpenAi:
    if not settings.openai_api_key:
        logger.critical("Missing OPENAI_API_KEY environment variable.")
        raise ConfigurationError(
            "The OpenAI API key is not configured. Add OPENAI_API_KEY to your .env file"
        )

    http = OpenAiHttp(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
    )
    return OpenAi(
        http,
        default_model=settings.openai_model,
        polling=settings.polling_config(),
        company_slug=company_slug,
    )
