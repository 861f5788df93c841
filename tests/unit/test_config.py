"""
Unit tests for configuration management.
"""

import pytest
from pydantic import ValidationError
from unittest.mock import patch
import os


REQUIRED = {
    'N8N_API_URL': 'https://n8n.example.com/api/v1',
    'N8N_API_KEY': 'test_n8n_key',
    'OPENAI_API_KEY': 'test_key',
    'API_BEARER_TOKEN': 'test_token',
}


def test_settings_loads_from_environment():
    """Test that settings can be loaded from environment variables."""
    with patch.dict(os.environ, {
        **REQUIRED,
        'SLACK_BOT_TOKEN': 'xoxb-test',
        'SLACK_CHANNEL_ID': 'C123',
        'N8N_MCP_URL': 'https://mcp.example.com',
        'LOG_LEVEL': 'DEBUG',
        'APPROVAL_TTL_SECONDS': '600',
    }):
        from app.config import Settings
        settings = Settings(_env_file=None)

        assert settings.n8n_api_url == 'https://n8n.example.com/api/v1'
        assert settings.n8n_api_key == 'test_n8n_key'
        assert settings.openai_api_key == 'test_key'
        assert settings.api_bearer_token == 'test_token'
        assert settings.slack_bot_token == 'xoxb-test'
        assert settings.slack_channel_id == 'C123'
        assert settings.n8n_mcp_url == 'https://mcp.example.com'
        assert settings.log_level == 'DEBUG'
        assert settings.approval_ttl_seconds == 600


def test_settings_has_default_values():
    """Test that settings have appropriate default values."""
    with patch.dict(os.environ, REQUIRED, clear=True):
        from app.config import Settings
        settings = Settings(_env_file=None)

        assert settings.environment == 'development'
        assert settings.log_level == 'INFO'
        assert settings.openai_model == 'gpt-4o'
        assert settings.approval_ttl_seconds == 24 * 60 * 60
        assert settings.expiry_sweep_interval_seconds == 5 * 60
        assert settings.docs_cache_ttl_seconds == 60 * 60
        assert settings.slack_bot_token is None
        assert settings.azure_openai_endpoint is None


def test_settings_requires_n8n_credentials():
    """Test that startup fails without the required settings."""
    env = {k: v for k, v in REQUIRED.items() if k != 'N8N_API_KEY'}
    with patch.dict(os.environ, env, clear=True):
        from app.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
