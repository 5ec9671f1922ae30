"""Physical layout of the response cache tables.

Every client owns two tables with the same columns: ``api_cache_{client}_responses``
stores payloads as text and ``api_cache_{client}_responses_compressed`` stores
them as binary.
"""

import hashlib

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncConnection

PAYLOAD_COLUMNS = (
    "request_headers",
    "request_body",
    "response_headers",
    "response_body",
)

PROCESSING_COLUMNS = ("processed_at", "processed_status")


def _index_name(table_name: str, suffix: str) -> str:
    # PostgreSQL caps identifiers at 63 characters and SQLite needs index
    # names that are unique across tables.
    digest = hashlib.sha1(table_name.encode("utf-8")).hexdigest()[:12]
    return f"ix_{digest}_{suffix}"


def build_response_table(metadata: MetaData, name: str, compressed: bool) -> Table:
    """Define a response table on ``metadata``.

    Args:
        metadata: MetaData the table is registered on
        name: Physical table name
        compressed: Use binary payload columns

    Returns:
        The table definition
    """
    payload_type = LargeBinary if compressed else Text

    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False, unique=True),
        Column("client", String(255), nullable=False),
        Column("version", String(255), nullable=True),
        Column("endpoint", String(255), nullable=True),
        Column("base_url", String(2048), nullable=True),
        Column("full_url", String(2048), nullable=True),
        Column("method", String(16), nullable=True),
        Column("attributes", String(255), nullable=True),
        Column("credits", Integer, nullable=True),
        Column("cost", Float, nullable=True),
        Column("request_params_summary", Text, nullable=True),
        *(Column(column, payload_type, nullable=True) for column in PAYLOAD_COLUMNS),
        Column("response_status_code", Integer, nullable=True),
        Column("response_size", Integer, nullable=True),
        Column("response_time", Float, nullable=True),
        Column("expires_at", DateTime(timezone=True), nullable=True),
        Column("processed_at", DateTime(timezone=True), nullable=True),
        Column("processed_status", Text, nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=True),
        Column("updated_at", DateTime(timezone=True), nullable=True),
        Index(_index_name(name, "cev"), "client", "endpoint", "version"),
        Index(_index_name(name, "exp"), "expires_at"),
    )


async def create_response_table(conn: AsyncConnection, table: Table) -> None:
    """Create a response table if it does not exist yet."""
    await conn.run_sync(lambda sync_conn: table.create(sync_conn, checkfirst=True))


async def drop_response_table(conn: AsyncConnection, table: Table) -> None:
    """Drop a response table if it exists.

    Warning: This will delete all data. Use with caution.
    """
    await conn.run_sync(lambda sync_conn: table.drop(sync_conn, checkfirst=True))
