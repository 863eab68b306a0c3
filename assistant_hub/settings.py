"""Provider and polling settings loaded from the environment or a .env file."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from assistant_hub.models import PollingConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ai_provider: str = Field(default="openai", description="AI provider backing the hub.")

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key.")
    openai_model: str = Field(default="gpt-4o", description="Default model for new assistants.")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="REST API root.")
    openai_timeout: float = Field(default=60.0, description="Timeout for outbound HTTP requests.")

    aihub_log_level: str = Field(default="INFO", description="Minimum level for the stderr log sink.")
    aihub_poll_max_attempts: int = Field(default=30, gt=0)
    aihub_poll_delay: float = Field(default=1.0, ge=0)

    def polling_config(self) -> PollingConfig:
        return PollingConfig(
            max_attempts=self.aihub_poll_max_attempts, delay=self.aihub_poll_delay
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
