from __future__ import annotations

import hashlib
import json
from typing import Any

import structlog

from apicache.exceptions import EncodingError
from apicache.utils.params import normalize_params, validate_identifier

logger = structlog.get_logger()


class CacheKeyBuilder:
    """Builds ``{client}.{method}.{endpoint}.{params_sha1}[.{version}]`` keys."""

    def build(
        self,
        client: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        method: str = "GET",
        version: str | None = None,
    ) -> str:
        validate_identifier(client)

        normalized = normalize_params(params or {})
        params_hash = hashlib.sha1(self.canonical_json(normalized, client).encode("utf-8")).hexdigest()

        components = [client, method.lower(), endpoint.lstrip("/"), params_hash]
        if version is not None:
            components.append(version)

        key = ".".join(components)
        logger.debug("cache_key_generated", client=client, key=key)
        return key

    @staticmethod
    def canonical_json(normalized: Any, client: str = "") -> str:
        try:
            return json.dumps(
                normalized,
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
        except (TypeError, ValueError) as exc:
            logger.error("cache_key_generation_failed", client=client, error=str(exc))
            raise EncodingError(f"Failed to encode request parameters: {exc}") from exc
