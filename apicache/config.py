"""Configuration for the API cache.

Per-client settings (compression, cache TTL, rate limits) live in an explicit
``ApiCacheConfig`` object that is injected into each component.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

DEFAULT_CLIENT = "default"


@dataclass
class ClientConfig:
    """Settings for one API client.

    Attributes:
        base_url: Base URL of the upstream API
        api_key: Credential for the upstream API
        version: API version appended to cache keys
        cache_ttl: Seconds a cached response stays valid (None = forever)
        compression_enabled: Store payloads in the compressed table
        rate_limit_max_attempts: Attempts per window (None or negative = unlimited)
        rate_limit_decay_seconds: Length of the rate limit window
    """
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    version: Optional[str] = None
    cache_ttl: Optional[int] = None
    compression_enabled: bool = False
    rate_limit_max_attempts: Optional[int] = None
    rate_limit_decay_seconds: int = 60


@dataclass
class ApiCacheConfig:
    """Full cache configuration."""
    clients: dict[str, ClientConfig] = field(default_factory=dict)
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    log_level: str = "INFO"

    def client(self, name: str) -> ClientConfig:
        """Get settings for a client, falling back to the ``default`` entry.

        Args:
            name: Client identifier

        Returns:
            Client configuration
        """
        if name in self.clients:
            return self.clients[name]
        return self.clients.get(DEFAULT_CLIENT) or ClientConfig()

    def client_names(self) -> list[str]:
        """Names of explicitly configured clients, excluding ``default``."""
        return [name for name in self.clients if name != DEFAULT_CLIENT]


def _resolve_env_vars(value: Any) -> Any:
    """Resolve environment variables in configuration values.

    Supports format: os.environ/VAR_NAME or ${VAR_NAME}

    Args:
        value: Configuration value

    Returns:
        Resolved value
    """
    if isinstance(value, str):
        if value.startswith("os.environ/"):
            env_var = value[11:]
            return os.environ.get(env_var)
        elif value.startswith("${") and value.endswith("}"):
            env_var = value[2:-1]
            return os.environ.get(env_var)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _to_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def parse_client_config(data: dict[str, Any]) -> ClientConfig:
    """Build a ClientConfig from a raw mapping.

    Args:
        data: Mapping with client settings

    Returns:
        Client configuration
    """
    data = _resolve_env_vars(data or {})
    return ClientConfig(
        base_url=data.get("base_url"),
        api_key=data.get("api_key"),
        version=data.get("version"),
        cache_ttl=_to_optional_int(data.get("cache_ttl")),
        compression_enabled=_to_bool(data.get("compression_enabled", False)),
        rate_limit_max_attempts=_to_optional_int(data.get("rate_limit_max_attempts")),
        rate_limit_decay_seconds=int(data.get("rate_limit_decay_seconds") or 60),
    )


def load_config(config_path: Optional[str] = None) -> ApiCacheConfig:
    """Load configuration from file.

    Args:
        config_path: Path to configuration file. If None, uses default locations.

    Returns:
        API cache configuration
    """
    # Default config locations
    if config_path is None:
        search_paths = [
            "api-cache.yaml",
            "config/api-cache.yaml",
            "/etc/apicache/api-cache.yaml",
        ]
        for path in search_paths:
            if os.path.exists(path):
                config_path = path
                break

    config = ApiCacheConfig(
        database_url=os.environ.get("API_CACHE_DATABASE_URL"),
        redis_url=os.environ.get("API_CACHE_REDIS_URL"),
    )

    if config_path and os.path.exists(config_path):
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)

        if data:
            if "apis" in data:
                config.clients = {
                    name: parse_client_config(settings)
                    for name, settings in (data["apis"] or {}).items()
                }

            if "general_settings" in data:
                general = _resolve_env_vars(data["general_settings"] or {})
                config.database_url = general.get("database_url") or config.database_url
                config.redis_url = general.get("redis_url") or config.redis_url
                config.log_level = general.get("log_level", "INFO")

    return config
