"""Optional per-client payload compression."""

import zlib
from typing import Optional, Union

import structlog

from apicache.config import ApiCacheConfig
from apicache.exceptions import CompressionError

logger = structlog.get_logger()

Payload = Union[bytes, str]


def _as_bytes(data: Payload) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class CompressionService:
    """zlib compression that honours each client's ``compression_enabled`` flag.

    ``compress``/``decompress`` return the input untouched when the client has
    compression turned off or the input is empty. ``force_compress`` and
    ``force_decompress`` ignore the flag; they exist for the table converters,
    which always write compressed payloads into the compressed table.

    Example:
        ```python
        service = CompressionService(config)
        stored = service.compress("openai", body)
        body = service.decompress("openai", stored)
        ```
    """

    def __init__(self, config: Optional[ApiCacheConfig] = None, level: int = zlib.Z_DEFAULT_COMPRESSION) -> None:
        """Initialize the compression service.

        Args:
            config: Cache configuration holding per-client flags
            level: zlib compression level
        """
        self.config = config or ApiCacheConfig()
        self.level = level

    def is_enabled(self, client: str) -> bool:
        """Check whether compression is enabled for a client."""
        return bool(self.config.client(client).compression_enabled)

    def compress(self, client: str, data: Payload, context: Optional[str] = None) -> Payload:
        """Compress data if the client has compression enabled.

        Args:
            client: Client identifier
            data: Raw data (``str`` is UTF-8 encoded)
            context: Label for log messages (e.g. ``"response_body"``)

        Returns:
            Compressed bytes, or the original data when disabled or empty
        """
        if not self.is_enabled(client):
            logger.debug("compression_disabled", client=client, context=context)
            return data
        if not data:
            return data
        return self._compress(client, data, context)

    def decompress(self, client: str, data: Payload, context: Optional[str] = None) -> Payload:
        """Decompress data if the client has compression enabled.

        Args:
            client: Client identifier
            data: Compressed bytes
            context: Label for log messages

        Returns:
            Decompressed bytes, or the original data when disabled or empty
        """
        if not self.is_enabled(client):
            logger.debug("compression_disabled", client=client, context=context)
            return data
        if not data:
            return data
        return self._decompress(client, data, context)

    def force_compress(self, client: str, data: Payload, context: Optional[str] = None) -> bytes:
        """Compress data regardless of the client's flag."""
        if not data:
            return _as_bytes(data)
        return self._compress(client, data, context)

    def force_decompress(self, client: str, data: Payload, context: Optional[str] = None) -> bytes:
        """Decompress data regardless of the client's flag."""
        if not data:
            return _as_bytes(data)
        return self._decompress(client, data, context)

    def _compress(self, client: str, data: Payload, context: Optional[str]) -> bytes:
        raw = _as_bytes(data)
        try:
            compressed = zlib.compress(raw, self.level)
        except (zlib.error, ValueError) as exc:
            logger.error("compression_failed", client=client, context=context, data_length=len(raw))
            raise CompressionError(f"Failed to compress data: {exc}") from exc

        logger.debug(
            "data_compressed",
            client=client,
            context=context,
            original_size=len(raw),
            compressed_size=len(compressed),
            ratio=round(len(compressed) / len(raw), 2),
        )
        return compressed

    def _decompress(self, client: str, data: Payload, context: Optional[str]) -> bytes:
        raw = _as_bytes(data)
        try:
            decompressed = zlib.decompress(raw)
        except zlib.error as exc:
            logger.error("decompression_failed", client=client, context=context, data_length=len(raw))
            raise CompressionError(f"Failed to decompress data: {exc}") from exc

        logger.debug(
            "data_decompressed",
            client=client,
            context=context,
            compressed_size=len(raw),
            original_size=len(decompressed),
        )
        return decompressed
