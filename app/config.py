"""
Application configuration management.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # n8n
    n8n_api_url: str
    n8n_api_key: str
    n8n_mcp_url: Optional[str] = None

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4o"
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_deployment: Optional[str] = None

    # Slack (all optional, notifications are skipped when unset)
    slack_bot_token: Optional[str] = None
    slack_signing_secret: Optional[str] = None
    slack_channel_id: Optional[str] = None

    # Debug API
    api_bearer_token: str

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    approval_ttl_seconds: int = 24 * 60 * 60
    expiry_sweep_interval_seconds: int = 5 * 60
    docs_cache_ttl_seconds: int = 60 * 60
    http_timeout_seconds: float = 30.0
    shutdown_grace_seconds: float = 10.0

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
