"""Tests for configuration loading."""

import pytest

from apicache.config import (
    DEFAULT_CLIENT,
    ApiCacheConfig,
    ClientConfig,
    _resolve_env_vars,
    load_config,
    parse_client_config,
)


class TestApiCacheConfig:
    """Test client lookup."""

    def test_known_client(self, config):
        """Test configured clients are returned."""
        assert config.client("acme").rate_limit_max_attempts == 2

    def test_unknown_client_falls_back_to_default(self):
        """Test unknown clients use the default entry."""
        config = ApiCacheConfig(clients={DEFAULT_CLIENT: ClientConfig(cache_ttl=60)})
        assert config.client("other").cache_ttl == 60

    def test_no_default_entry(self):
        """Test an empty configuration still answers."""
        client = ApiCacheConfig().client("other")
        assert client.compression_enabled is False
        assert client.rate_limit_max_attempts is None
        assert client.rate_limit_decay_seconds == 60

    def test_client_names_exclude_default(self, config):
        """Test the default entry is not a real client."""
        assert config.client_names() == ["demo", "demo-compressed", "acme"]


class TestEnvVars:
    """Test environment variable substitution."""

    def test_os_environ_prefix(self, monkeypatch):
        """Test os.environ/VAR values."""
        monkeypatch.setenv("DEMO_KEY", "secret")
        assert _resolve_env_vars("os.environ/DEMO_KEY") == "secret"

    def test_braces(self, monkeypatch):
        """Test ${VAR} values."""
        monkeypatch.setenv("DEMO_KEY", "secret")
        assert _resolve_env_vars({"nested": ["${DEMO_KEY}"]}) == {"nested": ["secret"]}

    def test_plain_values_untouched(self):
        """Test plain values pass through."""
        assert _resolve_env_vars(5) == 5
        assert _resolve_env_vars("plain") == "plain"


class TestParseClientConfig:
    """Test raw client settings parsing."""

    def test_types_coerced(self):
        """Test strings from env vars become the right types."""
        client = parse_client_config(
            {
                "cache_ttl": "3600",
                "compression_enabled": "true",
                "rate_limit_max_attempts": "10",
                "rate_limit_decay_seconds": "30",
            }
        )
        assert client.cache_ttl == 3600
        assert client.compression_enabled is True
        assert client.rate_limit_max_attempts == 10
        assert client.rate_limit_decay_seconds == 30

    def test_defaults(self):
        """Test missing settings use defaults."""
        client = parse_client_config({})
        assert client == ClientConfig()


class TestLoadConfig:
    """Test YAML loading."""

    def test_load_yaml(self, tmp_path, monkeypatch):
        """Test clients and general settings are read from YAML."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        path = tmp_path / "api-cache.yaml"
        path.write_text(
            """
apis:
  default:
    rate_limit_max_attempts: 100
  openai:
    base_url: https://api.openai.com/v1
    api_key: os.environ/OPENAI_API_KEY
    version: v1
    cache_ttl: 86400
    compression_enabled: true
    rate_limit_max_attempts: 60
    rate_limit_decay_seconds: 60
general_settings:
  database_url: sqlite+aiosqlite:///cache.db
  log_level: DEBUG
"""
        )

        config = load_config(str(path))

        openai = config.client("openai")
        assert openai.api_key == "sk-test"
        assert openai.compression_enabled is True
        assert openai.cache_ttl == 86400
        assert config.client("unknown").rate_limit_max_attempts == 100
        assert config.database_url == "sqlite+aiosqlite:///cache.db"
        assert config.log_level == "DEBUG"
        assert config.client_names() == ["openai"]

    def test_env_urls(self, tmp_path, monkeypatch):
        """Test database and redis URLs can come from the environment."""
        monkeypatch.setenv("API_CACHE_DATABASE_URL", "sqlite+aiosqlite:///env.db")
        monkeypatch.setenv("API_CACHE_REDIS_URL", "redis://localhost:6379/1")

        config = load_config(str(tmp_path / "missing.yaml"))

        assert config.database_url == "sqlite+aiosqlite:///env.db"
        assert config.redis_url == "redis://localhost:6379/1"
        assert config.clients == {}

    @pytest.mark.parametrize("content", ["", "apis:\n"])
    def test_empty_sections(self, tmp_path, content):
        """Test empty files and sections are tolerated."""
        path = tmp_path / "api-cache.yaml"
        path.write_text(content)
        assert load_config(str(path)).clients == {}
