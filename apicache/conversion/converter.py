"""Batch migration between a client's uncompressed and compressed tables.

Rows are copied in ``id`` order, one transaction per batch, so an interrupted
run can be resumed from the last committed offset. Validation only reads.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Optional, Union

import structlog
from sqlalchemy import Table, func, insert, select, update

from apicache.cache.compression import CompressionService
from apicache.cache.repository import CacheRepository
from apicache.db.tables import PAYLOAD_COLUMNS, PROCESSING_COLUMNS
from apicache.exceptions import ApiCacheError, DecodingError

logger = structlog.get_logger()

ALWAYS_EXCLUDED_COLUMNS = ("id", "response_size")


@dataclass
class ConversionOptions:
    """Converter settings.

    Attributes:
        batch_size: Rows read per batch
        overwrite: Replace rows whose key already exists in the target table
        copy_processing_state: Keep ``processed_at``/``processed_status``
    """
    batch_size: int = 100
    overwrite: bool = False
    copy_processing_state: bool = False


@dataclass
class ConversionStats:
    total_count: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0

    def add(self, other: "ConversionStats") -> None:
        self.total_count += other.total_count
        self.processed_count += other.processed_count
        self.skipped_count += other.skipped_count
        self.error_count += other.error_count

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ValidationStats:
    validated_count: int = 0
    mismatch_count: int = 0
    error_count: int = 0

    def add(self, other: "ValidationStats") -> None:
        self.validated_count += other.validated_count
        self.mismatch_count += other.mismatch_count
        self.error_count += other.error_count

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class TableRepresentationConverter:
    """Copies and verifies rows from one table representation into the other.

    Subclasses only pick the direction through ``source_compressed``.
    """

    source_compressed: bool = False

    def __init__(
        self,
        client: str,
        repository: CacheRepository,
        compression: Optional[CompressionService] = None,
        options: Optional[ConversionOptions] = None,
    ) -> None:
        """Initialize the converter.

        Args:
            client: Client whose tables are converted
            repository: Cache repository (table routing and engine)
            compression: Compression service (defaults to the repository's)
            options: Conversion options
        """
        self.client = client
        self.repository = repository
        self.compression = compression or repository.compression
        self.options = options or ConversionOptions()

    @property
    def source_table(self) -> Table:
        return self.repository.get_table(self.client, self.source_compressed)

    @property
    def target_table(self) -> Table:
        return self.repository.get_table(self.client, not self.source_compressed)

    async def _row_count(self, table: Table) -> int:
        async with self.repository.engine.connect() as conn:
            return int((await conn.execute(select(func.count()).select_from(table))).scalar_one())

    async def uncompressed_row_count(self) -> int:
        return await self._row_count(self.repository.get_table(self.client, False))

    async def compressed_row_count(self) -> int:
        return await self._row_count(self.repository.get_table(self.client, True))

    async def source_row_count(self) -> int:
        return await self._row_count(self.source_table)

    async def target_row_count(self) -> int:
        return await self._row_count(self.target_table)

    # ------------------------------------------------------------------
    # Payload handling
    # ------------------------------------------------------------------

    def _encode_payload(self, value: Union[str, bytes], context: str) -> Union[str, bytes]:
        """Turn a source payload into its target representation."""
        if self.source_compressed:
            return self._decode_text(self.compression.force_decompress(self.client, value, context), context)
        return self.compression.force_compress(self.client, value, context)

    def _logical_value(self, value: Union[str, bytes, None], compressed: bool, context: str) -> Optional[str]:
        """Payload as plain text, whichever table it came from."""
        if value is None:
            return None
        if compressed:
            return self._decode_text(self.compression.force_decompress(self.client, value, context), context)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self._decode_text(bytes(value), context)
        return value

    @staticmethod
    def _decode_text(data: bytes, context: str) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodingError(f"Converted {context} is not valid UTF-8") from exc

    def prepare_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Build the target-table row for a source row.

        Payload columns are converted (``None`` stays ``None``),
        ``response_size`` is recomputed from the stored response body and the
        processing state is reset unless ``copy_processing_state`` is set.

        Args:
            row: Source row mapping

        Returns:
            Values to insert into the target table (without ``id``)

        Raises:
            CompressionError: If a payload cannot be (de)compressed
        """
        data = {column: value for column, value in row.items() if column != "id"}

        for column in PAYLOAD_COLUMNS:
            if data.get(column) is not None:
                data[column] = self._encode_payload(data[column], column)

        body = data.get("response_body")
        if body is not None:
            data["response_size"] = len(body.encode("utf-8") if isinstance(body, str) else body)

        if not self.options.copy_processing_state:
            for column in PROCESSING_COLUMNS:
                data[column] = None

        return data

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def convert_batch(self, batch_size: Optional[int] = None, offset: int = 0) -> ConversionStats:
        """Convert one batch of source rows inside a single transaction.

        Args:
            batch_size: Rows to read (defaults to ``options.batch_size``)
            offset: Rows to skip, in ``id`` order

        Returns:
            Batch statistics
        """
        batch_size = batch_size or self.options.batch_size
        source = self.source_table
        target = self.target_table
        stats = ConversionStats()

        logger.debug(
            "conversion_batch_started",
            client=self.client,
            batch_size=batch_size,
            offset=offset,
            source_table=source.name,
            target_table=target.name,
        )

        async with self.repository.engine.begin() as conn:
            rows = (
                await conn.execute(select(source).order_by(source.c.id).offset(offset).limit(batch_size))
            ).mappings().all()
            stats.total_count = len(rows)

            for row in rows:
                exists = (
                    await conn.execute(select(target.c.id).where(target.c.key == row["key"]))
                ).first() is not None

                if exists and not self.options.overwrite:
                    stats.skipped_count += 1
                    continue

                try:
                    data = self.prepare_row(row)
                except ApiCacheError as exc:
                    logger.error(
                        "row_conversion_failed",
                        client=self.client,
                        row_id=row["id"],
                        row_key=row["key"],
                        error=str(exc),
                    )
                    stats.error_count += 1
                    continue

                if exists:
                    values = {k: v for k, v in data.items() if k != "key"}
                    await conn.execute(update(target).where(target.c.key == row["key"]).values(**values))
                else:
                    await conn.execute(insert(target).values(**data))

                stats.processed_count += 1

        logger.debug("conversion_batch_completed", client=self.client, **stats.to_dict())
        return stats

    async def convert_all(self) -> ConversionStats:
        """Convert every source row, batch by batch."""
        total = ConversionStats()
        total_rows = await self.source_row_count()
        batch_size = self.options.batch_size
        offset = 0

        logger.info("table_conversion_started", client=self.client, total_rows=total_rows, batch_size=batch_size)

        while offset < total_rows:
            total.add(await self.convert_batch(batch_size, offset))
            offset += batch_size
            logger.debug("table_conversion_progress", client=self.client, offset=offset, total_rows=total_rows)

        logger.info("table_conversion_completed", client=self.client, **total.to_dict())
        return total

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_field(
        self,
        source_value: Union[str, bytes, None],
        target_value: Union[str, bytes, None],
        field: str,
    ) -> bool:
        """Check that a payload survived conversion unchanged."""
        if source_value is None and target_value is None:
            return True

        if source_value is None or target_value is None:
            logger.warning(
                "field_null_mismatch",
                client=self.client,
                field=field,
                source_null=source_value is None,
                target_null=target_value is None,
            )
            return False

        try:
            expected = self._logical_value(source_value, self.source_compressed, field)
            actual = self._logical_value(target_value, not self.source_compressed, field)
        except ApiCacheError as exc:
            logger.error("field_validation_failed", client=self.client, field=field, error=str(exc))
            return False

        return expected == actual

    def _compared_columns(self) -> list[str]:
        excluded = set(ALWAYS_EXCLUDED_COLUMNS) | set(PAYLOAD_COLUMNS)
        if not self.options.copy_processing_state:
            excluded |= set(PROCESSING_COLUMNS)
        return [column.name for column in self.source_table.columns if column.name not in excluded]

    def validate_row(self, source_row: Mapping[str, Any], target_row: Mapping[str, Any]) -> bool:
        """Compare a source row with its converted counterpart."""
        for column in self._compared_columns():
            if source_row.get(column) != target_row.get(column):
                logger.debug("field_mismatch", client=self.client, field=column, key=source_row.get("key"))
                return False

        return all(
            self.validate_field(source_row.get(column), target_row.get(column), column)
            for column in PAYLOAD_COLUMNS
        )

    async def validate_batch(self, batch_size: Optional[int] = None, offset: int = 0) -> ValidationStats:
        """Validate one batch of target rows against the source table.

        Args:
            batch_size: Rows to read (defaults to ``options.batch_size``)
            offset: Rows to skip, in ``id`` order

        Returns:
            Batch statistics; a target row without a source counterpart
            counts as an error
        """
        batch_size = batch_size or self.options.batch_size
        source = self.source_table
        target = self.target_table
        stats = ValidationStats()

        async with self.repository.engine.connect() as conn:
            target_rows = (
                await conn.execute(select(target).order_by(target.c.id).offset(offset).limit(batch_size))
            ).mappings().all()
            if not target_rows:
                return stats

            keys = [row["key"] for row in target_rows]
            source_rows = {
                row["key"]: row
                for row in (await conn.execute(select(source).where(source.c.key.in_(keys)))).mappings().all()
            }

        for target_row in target_rows:
            source_row = source_rows.get(target_row["key"])
            if source_row is None:
                logger.warning("converted_row_without_source", client=self.client, key=target_row["key"])
                stats.error_count += 1
                continue

            if self.validate_row(source_row, target_row):
                stats.validated_count += 1
            else:
                stats.mismatch_count += 1

        logger.debug("validation_batch_completed", client=self.client, offset=offset, **stats.to_dict())
        return stats

    async def validate_all(self) -> ValidationStats:
        """Validate every target row, batch by batch."""
        total = ValidationStats()
        total_rows = await self.target_row_count()
        batch_size = self.options.batch_size
        offset = 0

        logger.info("table_validation_started", client=self.client, total_rows=total_rows, batch_size=batch_size)

        while offset < total_rows:
            total.add(await self.validate_batch(batch_size, offset))
            offset += batch_size

        logger.info("table_validation_completed", client=self.client, **total.to_dict())
        return total


class CompressionConverter(TableRepresentationConverter):
    """Uncompressed table to compressed table."""

    source_compressed = False


class DecompressionConverter(TableRepresentationConverter):
    """Compressed table to uncompressed table."""

    source_compressed = True
