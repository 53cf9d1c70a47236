"""
Tests for environment-driven settings.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import DEFAULT_APP_ORIGIN, DEFAULT_STORAGE_LOCAL_DIR, Settings


class TestSettingsFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.environment == "development"
        assert not settings.is_production
        assert settings.allowed_origins == ("*",)
        assert settings.proxy_allowed_hosts == ()
        assert settings.proxy_cors_origin == "*"
        assert not settings.uses_remote_storage
        assert settings.storage_local_dir == DEFAULT_STORAGE_LOCAL_DIR
        assert settings.log_level == "INFO"

    def test_production(self):
        settings = Settings.from_env({"APP_ENV": "Production", "APP_ORIGIN": "https://share.example"})
        assert settings.is_production
        assert settings.proxy_cors_origin == "https://share.example"

    def test_node_env_fallback(self):
        settings = Settings.from_env({"NODE_ENV": "production"})
        assert settings.is_production
        assert settings.proxy_cors_origin == DEFAULT_APP_ORIGIN

    def test_lists_and_flags(self):
        settings = Settings.from_env({
            "AUDIO_PROXY_ALLOWED_HOSTS": " cdn.example.com, *.media.example ,,",
            "ALLOWED_ORIGINS": "https://a.example,https://b.example",
            "PROXY_BLOCK_PRIVATE_NETWORKS": "true",
            "PROXY_BUFFER_RESPONSES": "0",
            "PROXY_TIMEOUT_SECONDS": "not-a-number",
            "LOG_LEVEL": "debug",
        })
        assert settings.proxy_allowed_hosts == ("cdn.example.com", "*.media.example")
        assert settings.allowed_origins == ("https://a.example", "https://b.example")
        assert settings.proxy_block_private_networks is True
        assert settings.proxy_buffer_responses is False
        assert settings.proxy_timeout_seconds == 30.0
        assert settings.log_level == "DEBUG"

    def test_remote_storage_exempts_public_host(self):
        settings = Settings.from_env({
            "BLOB_READ_WRITE_TOKEN": "token",
            "STORAGE_PUBLIC_BASE_URL": "https://abc.public.blob.example/",
            "PUBLIC_APP_URL": "https://share.example",
        })
        assert settings.uses_remote_storage
        assert settings.storage_public_base_url == "https://abc.public.blob.example"
        assert settings.player.exempt_hosts == ("abc.public.blob.example",)
        assert settings.player.app_origin == "https://share.example"
