"""Database layer for apicache."""

from apicache.db.session import (
    close_db,
    create_engine,
    get_connection,
    get_database_url,
    get_engine,
    init_db,
)
from apicache.db.tables import (
    PAYLOAD_COLUMNS,
    PROCESSING_COLUMNS,
    build_response_table,
    create_response_table,
    drop_response_table,
)

__all__ = [
    "PAYLOAD_COLUMNS",
    "PROCESSING_COLUMNS",
    "build_response_table",
    "close_db",
    "create_engine",
    "create_response_table",
    "drop_response_table",
    "get_connection",
    "get_database_url",
    "get_engine",
    "init_db",
]
