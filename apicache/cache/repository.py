"""Relational storage for cached API responses.

Each client has an uncompressed and a compressed table; which one a client
reads and writes is decided by its ``compression_enabled`` flag.
"""

import json
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

import structlog
from sqlalchemy import MetaData, Table, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from apicache.cache.compression import CompressionService
from apicache.config import ApiCacheConfig
from apicache.db.tables import build_response_table, create_response_table
from apicache.exceptions import (
    DecodingError,
    EncodingError,
    InvalidIdentifierError,
    MissingRequiredFieldError,
)
from apicache.types import CachedResponse, ResponseMetadata
from apicache.utils.params import validate_identifier

logger = structlog.get_logger()

TABLE_PREFIX = "api_cache_"
TABLE_RESPONSES = "_responses"
TABLE_COMPRESSED = "_compressed"
MAX_TABLE_NAME_LENGTH = 64


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sample(data: Any, length: int = 20) -> Optional[str]:
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return bytes(data[:length]).hex()
    return str(data)[:length]


class CacheRepository:
    """Stores, reads, counts and sweeps cached responses.

    Example:
        ```python
        repository = CacheRepository(engine, CompressionService(config), config)
        await repository.create_tables("openai")
        await repository.store("openai", key, {"response_body": body}, ttl=3600)
        cached = await repository.get("openai", key)
        ```
    """

    def __init__(
        self,
        engine: AsyncEngine,
        compression: Optional[CompressionService] = None,
        config: Optional[ApiCacheConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the repository.

        Args:
            engine: Async SQLAlchemy engine
            compression: Compression service (built from ``config`` when omitted)
            config: Cache configuration
            clock: Returns the current UTC time
        """
        self.engine = engine
        self.config = config or (compression.config if compression else ApiCacheConfig())
        self.compression = compression or CompressionService(self.config)
        self.clock = clock
        self.metadata = MetaData()
        self._tables: dict[str, Table] = {}

    # ------------------------------------------------------------------
    # Table routing
    # ------------------------------------------------------------------

    def get_table_name(self, client: str, compressed: Optional[bool] = None) -> str:
        """Get the physical table name for a client.

        Args:
            client: Client identifier
            compressed: Pick the compressed table; None uses the client's setting

        Returns:
            Table name such as ``api_cache_openai_responses_compressed``

        Raises:
            InvalidIdentifierError: If the client name is invalid or sanitizes away
        """
        validate_identifier(client)

        if compressed is None:
            compressed = self.compression.is_enabled(client)

        sanitized = client.replace("-", "_")
        max_length = MAX_TABLE_NAME_LENGTH - len(TABLE_PREFIX + TABLE_RESPONSES + TABLE_COMPRESSED)
        sanitized = sanitized[:max_length]

        suffix = TABLE_COMPRESSED if compressed else ""
        table_name = re.sub(r"_+", "_", f"{TABLE_PREFIX}{sanitized}{TABLE_RESPONSES}{suffix}")

        if table_name in ("api_cache_responses", "api_cache_responses_compressed"):
            logger.error("table_name_sanitization_failed", client=client, sanitized=sanitized, table=table_name)
            raise InvalidIdentifierError(client, f"Sanitization error for string: {client}")

        return table_name

    def get_table(self, client: str, compressed: Optional[bool] = None) -> Table:
        """Get the SQLAlchemy table for a client."""
        if compressed is None:
            compressed = self.compression.is_enabled(client)
        name = self.get_table_name(client, compressed)
        table = self._tables.get(name)
        if table is None:
            table = build_response_table(self.metadata, name, compressed)
            self._tables[name] = table
        return table

    async def create_tables(self, client: str) -> None:
        """Create both physical tables for a client when missing."""
        async with self.engine.begin() as conn:
            for compressed in (False, True):
                await create_response_table(conn, self.get_table(client, compressed))

    # ------------------------------------------------------------------
    # Payload encoding
    # ------------------------------------------------------------------

    def prepare_headers(
        self,
        client: str,
        headers: Optional[Mapping[str, Any]],
        context: Optional[str] = None,
    ) -> Union[str, bytes, None]:
        """JSON-encode headers and compress them if the client compresses.

        Raises:
            EncodingError: If the headers are not JSON serializable
        """
        if headers is None:
            return None

        try:
            encoded = json.dumps(dict(headers), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.error("headers_encoding_failed", client=client, context=context, error=str(exc))
            raise EncodingError(f"Failed to encode headers: {exc}") from exc

        if self.compression.is_enabled(client):
            return self.compression.compress(client, encoded, f"{context}_headers" if context else "headers")
        return encoded

    def retrieve_headers(
        self,
        client: str,
        data: Union[str, bytes, None],
        context: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """Decompress and decode stored headers.

        Raises:
            DecodingError: If the stored value is not a JSON object
        """
        if data is None:
            return None

        raw = self._to_text(client, data, f"{context}_headers" if context else "headers")
        try:
            decoded = json.loads(raw)
        except ValueError as exc:
            logger.error("headers_decoding_failed", client=client, context=context, error=str(exc), raw=_sample(raw, 200))
            raise DecodingError(f"Failed to decode headers: {exc}") from exc

        if not isinstance(decoded, dict):
            logger.error("headers_not_a_mapping", client=client, context=context, type=type(decoded).__name__, raw=_sample(raw, 200))
            raise DecodingError("Decoded headers must be an object")

        return decoded

    def prepare_body(
        self,
        client: str,
        body: Optional[str],
        context: Optional[str] = None,
    ) -> Union[str, bytes, None]:
        """Compress a body if the client compresses."""
        if body is None:
            return None
        if self.compression.is_enabled(client):
            return self.compression.compress(client, body, f"{context}_body" if context else "body")
        return body

    def retrieve_body(
        self,
        client: str,
        data: Union[str, bytes, None],
        context: Optional[str] = None,
    ) -> Optional[str]:
        """Decompress a stored body."""
        if data is None:
            return None
        return self._to_text(client, data, f"{context}_body" if context else "body")

    def _to_text(self, client: str, data: Union[str, bytes], context: str) -> str:
        if self.compression.is_enabled(client):
            data = self.compression.decompress(client, data, context)
        if isinstance(data, (bytes, bytearray, memoryview)):
            try:
                return bytes(data).decode("utf-8")
            except UnicodeDecodeError as exc:
                logger.error("payload_decoding_failed", client=client, context=context, sample=_sample(bytes(data)))
                raise DecodingError(f"Stored {context} is not valid UTF-8") from exc
        return data

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    async def store(
        self,
        client: str,
        key: str,
        metadata: Union[ResponseMetadata, Mapping[str, Any]],
        ttl: Optional[int] = None,
    ) -> None:
        """Store a response in the client's table.

        A second store for the same key overwrites the first.

        Args:
            client: Client identifier
            key: Cache key
            metadata: Response metadata; ``response_body`` is required
            ttl: Seconds until the entry expires (None or 0 = never)

        Raises:
            MissingRequiredFieldError: If the response body is empty
            EncodingError: If headers cannot be JSON encoded
        """
        table = self.get_table(client)
        now = self.clock()
        expires_at = now + timedelta(seconds=ttl) if ttl else None

        if isinstance(metadata, Mapping):
            body = metadata.get("response_body")
        else:
            body = metadata.response_body
        if not body:
            logger.error("cache_store_missing_field", client=client, key=key, field="response_body")
            raise MissingRequiredFieldError("response_body")

        if isinstance(metadata, Mapping):
            metadata = ResponseMetadata(**metadata)

        response_body = self.prepare_body(client, metadata.response_body, "response")
        row = {
            "client": client,
            "key": key,
            "version": metadata.version,
            "endpoint": metadata.endpoint,
            "base_url": metadata.base_url,
            "full_url": metadata.full_url,
            "method": metadata.method,
            "attributes": metadata.attributes,
            "credits": metadata.credits,
            "cost": metadata.cost,
            "request_params_summary": metadata.request_params_summary,
            "request_headers": self.prepare_headers(client, metadata.request_headers, "request"),
            "request_body": self.prepare_body(client, metadata.request_body, "request"),
            "response_headers": self.prepare_headers(client, metadata.response_headers, "response"),
            "response_body": response_body,
            "response_status_code": metadata.response_status_code,
            "response_size": len(response_body.encode("utf-8") if isinstance(response_body, str) else response_body),
            "response_time": metadata.response_time,
            "expires_at": expires_at,
            "created_at": now,
            "updated_at": now,
        }

        await self._insert_or_replace(table, row)

        logger.info(
            "cache_stored",
            client=client,
            key=key,
            table=table.name,
            expires_at=expires_at.isoformat() if expires_at else None,
            response_size=row["response_size"],
        )

    async def _insert_or_replace(self, table: Table, row: dict[str, Any]) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(insert(table).values(**row))
        except IntegrityError:
            logger.info("cache_key_conflict", table=table.name, key=row["key"])
            values = {k: v for k, v in row.items() if k not in ("key", "created_at")}
            async with self.engine.begin() as conn:
                await conn.execute(update(table).where(table.c.key == row["key"]).values(**values))

    def _not_expired(self, table: Table, now: datetime):
        return or_(table.c.expires_at.is_(None), table.c.expires_at > now)

    def _expired(self, table: Table, now: datetime):
        return (table.c.expires_at.is_not(None)) & (table.c.expires_at <= now)

    async def get(self, client: str, key: str) -> Optional[CachedResponse]:
        """Get a non-expired response from the cache.

        Args:
            client: Client identifier
            key: Cache key

        Returns:
            Decoded response, or None on a miss or an expired entry
        """
        table = self.get_table(client)
        now = self.clock()

        stmt = select(table).where(table.c.key == key, self._not_expired(table, now))
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()

        if row is None:
            logger.debug("cache_miss", client=client, key=key, table=table.name)
            return None

        logger.debug(
            "cache_hit",
            client=client,
            key=key,
            table=table.name,
            response_body_length=len(row["response_body"] or b""),
            response_body_sample=_sample(row["response_body"]),
        )

        return CachedResponse(
            key=row["key"],
            client=row["client"],
            version=row["version"],
            endpoint=row["endpoint"],
            base_url=row["base_url"],
            full_url=row["full_url"],
            method=row["method"],
            attributes=row["attributes"],
            credits=row["credits"],
            cost=row["cost"],
            request_params_summary=row["request_params_summary"],
            request_headers=self.retrieve_headers(client, row["request_headers"], "request"),
            request_body=self.retrieve_body(client, row["request_body"], "request"),
            response_headers=self.retrieve_headers(client, row["response_headers"], "response"),
            response_body=self.retrieve_body(client, row["response_body"], "response"),
            response_status_code=row["response_status_code"],
            response_size=row["response_size"],
            response_time=row["response_time"],
            expires_at=row["expires_at"],
        )

    # ------------------------------------------------------------------
    # Counting and sweeping
    # ------------------------------------------------------------------

    async def _count(self, table: Table, *criteria) -> int:
        stmt = select(func.count()).select_from(table)
        if criteria:
            stmt = stmt.where(*criteria)
        async with self.engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def count_total_responses(self, client: str) -> int:
        """Count all rows, active and expired, for a client."""
        return await self._count(self.get_table(client))

    async def count_active_responses(self, client: str) -> int:
        """Count rows that ``get`` would still return."""
        table = self.get_table(client)
        return await self._count(table, self._not_expired(table, self.clock()))

    async def count_expired_responses(self, client: str) -> int:
        """Count rows whose ``expires_at`` has passed."""
        table = self.get_table(client)
        return await self._count(table, self._expired(table, self.clock()))

    async def delete_expired(self, client: Optional[str] = None) -> dict[str, int]:
        """Delete expired rows.

        Args:
            client: Client to sweep; None sweeps every configured client

        Returns:
            Deleted row count per client. When sweeping every client, a
            client whose table cannot be swept is logged and left out.

        Raises:
            SQLAlchemyError: If the single requested client cannot be swept
        """
        clients = [client] if client else self.config.client_names()
        now = self.clock()
        deleted: dict[str, int] = {}

        for name in clients:
            table = self.get_table(name)
            try:
                async with self.engine.begin() as conn:
                    result = await conn.execute(delete(table).where(self._expired(table, now)))
            except SQLAlchemyError as exc:
                if client:
                    raise
                logger.error("expired_responses_sweep_failed", client=name, table=table.name, error=str(exc))
                continue
            deleted[name] = result.rowcount or 0

            logger.info("expired_responses_deleted", client=name, table=table.name, deleted_count=deleted[name])

        return deleted

    async def clear_table(self, client: str) -> int:
        """Delete every cached response for a client.

        Returns:
            Number of deleted rows
        """
        table = self.get_table(client)
        async with self.engine.begin() as conn:
            result = await conn.execute(delete(table))
        logger.info("cache_table_cleared", client=client, table=table.name, deleted_count=result.rowcount)
        return result.rowcount or 0
