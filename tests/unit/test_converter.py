"""Tests for table representation converters."""

import json
import zlib

import pytest
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from apicache.conversion import (
    CompressionConverter,
    ConversionOptions,
    ConversionStats,
    DecompressionConverter,
    ValidationStats,
)


def _metadata(index: int) -> dict:
    return {
        "endpoint": "predictions",
        "version": "v1",
        "method": "GET",
        "request_params_summary": json.dumps({"query": f"q{index}"}),
        "request_headers": {"accept": ["application/json"]},
        "request_body": None,
        "response_headers": {"content-type": ["application/json"]},
        "response_body": json.dumps({"index": index, "items": ["item"] * 20}),
        "response_status_code": 200,
        "response_time": 0.1 * index,
    }


async def _seed(repository, client: str, count: int) -> None:
    for index in range(count):
        await repository.store(client, f"{client}.key.{index}", _metadata(index), ttl=3600)


async def _rows(repository, table):
    async with repository.engine.connect() as conn:
        return (await conn.execute(select(table).order_by(table.c.id))).mappings().all()


class TestCompressionConverter:
    """Test copying the uncompressed table into the compressed one."""

    async def test_row_counts(self, repository):
        """Test both tables are counted."""
        await _seed(repository, "demo", 3)
        converter = CompressionConverter("demo", repository)
        assert await converter.uncompressed_row_count() == 3
        assert await converter.compressed_row_count() == 0

    async def test_convert_all(self, repository):
        """Test every row is compressed into the target table."""
        await _seed(repository, "demo", 5)
        converter = CompressionConverter("demo", repository, options=ConversionOptions(batch_size=2))

        stats = await converter.convert_all()

        assert stats == ConversionStats(total_count=5, processed_count=5, skipped_count=0, error_count=0)
        rows = await _rows(repository, converter.target_table)
        assert [row["key"] for row in rows] == [f"demo.key.{i}" for i in range(5)]
        first = rows[0]
        assert json.loads(zlib.decompress(first["response_body"])) == {"index": 0, "items": ["item"] * 20}
        assert json.loads(zlib.decompress(first["response_headers"])) == {"content-type": ["application/json"]}
        assert first["request_body"] is None
        assert first["response_size"] == len(first["response_body"])

    async def test_convert_is_idempotent(self, repository):
        """Test a second run skips rows that already exist."""
        await _seed(repository, "demo", 3)
        converter = CompressionConverter("demo", repository)

        await converter.convert_all()
        second = await converter.convert_all()

        assert second.processed_count == 0
        assert second.skipped_count == 3
        assert await converter.compressed_row_count() == 3

    async def test_convert_batch_offset(self, repository):
        """Test a batch covers the requested slice in id order."""
        await _seed(repository, "demo", 5)
        converter = CompressionConverter("demo", repository)

        stats = await converter.convert_batch(batch_size=2, offset=2)

        assert stats.total_count == 2
        rows = await _rows(repository, converter.target_table)
        assert [row["key"] for row in rows] == ["demo.key.2", "demo.key.3"]

    async def test_convert_batch_past_end(self, repository):
        """Test an offset beyond the table converts nothing."""
        await _seed(repository, "demo", 2)
        stats = await CompressionConverter("demo", repository).convert_batch(offset=10)
        assert stats == ConversionStats()

    async def test_failed_batch_rolled_back(self, repository, monkeypatch):
        """Test a database error keeps earlier batches and undoes the failing one."""
        await _seed(repository, "demo", 5)
        converter = CompressionConverter("demo", repository, options=ConversionOptions(batch_size=2))
        prepare_row = converter.prepare_row

        def prepare_row_without_key(row):
            data = prepare_row(row)
            if row["key"] == "demo.key.3":
                data["key"] = None
            return data

        monkeypatch.setattr(converter, "prepare_row", prepare_row_without_key)
        with pytest.raises(IntegrityError):
            await converter.convert_all()

        rows = await _rows(repository, converter.target_table)
        assert [row["key"] for row in rows] == ["demo.key.0", "demo.key.1"]

        monkeypatch.undo()
        resumed = await converter.convert_batch(offset=2)
        rest = await converter.convert_batch(offset=4)

        assert resumed == ConversionStats(total_count=2, processed_count=2)
        assert rest == ConversionStats(total_count=1, processed_count=1)
        rows = await _rows(repository, converter.target_table)
        assert [row["key"] for row in rows] == [f"demo.key.{i}" for i in range(5)]

    async def test_validate_all(self, repository):
        """Test converted rows validate cleanly."""
        await _seed(repository, "demo", 4)
        converter = CompressionConverter("demo", repository, options=ConversionOptions(batch_size=3))
        await converter.convert_all()

        stats = await converter.validate_all()

        assert stats == ValidationStats(validated_count=4, mismatch_count=0, error_count=0)

    async def test_validate_detects_mismatch(self, repository):
        """Test a changed column in the target is reported."""
        await _seed(repository, "demo", 2)
        converter = CompressionConverter("demo", repository)
        await converter.convert_all()

        target = converter.target_table
        async with repository.engine.begin() as conn:
            await conn.execute(update(target).where(target.c.key == "demo.key.1").values(endpoint="other"))

        stats = await converter.validate_all()
        assert stats.validated_count == 1
        assert stats.mismatch_count == 1

    async def test_validate_detects_payload_mismatch(self, repository):
        """Test a changed payload in the target is reported."""
        await _seed(repository, "demo", 1)
        converter = CompressionConverter("demo", repository)
        await converter.convert_all()

        target = converter.target_table
        async with repository.engine.begin() as conn:
            await conn.execute(update(target).values(response_body=zlib.compress(b"tampered")))

        assert (await converter.validate_all()).mismatch_count == 1

    async def test_validate_missing_source(self, repository):
        """Test a target row without a source row counts as an error."""
        await _seed(repository, "demo", 2)
        converter = CompressionConverter("demo", repository)
        await converter.convert_all()

        source = converter.source_table
        async with repository.engine.begin() as conn:
            await conn.execute(delete(source).where(source.c.key == "demo.key.0"))

        stats = await converter.validate_all()
        assert stats.error_count == 1
        assert stats.validated_count == 1

    async def test_validation_does_not_mutate(self, repository):
        """Test validation leaves both tables untouched."""
        await _seed(repository, "demo", 2)
        converter = CompressionConverter("demo", repository)
        await converter.convert_all()

        before = [dict(row) for row in await _rows(repository, converter.target_table)]
        await converter.validate_all()
        after = [dict(row) for row in await _rows(repository, converter.target_table)]

        assert before == after

    async def test_processing_state_reset(self, repository, clock):
        """Test processing columns are cleared unless copying is requested."""
        await _seed(repository, "demo", 1)
        source = repository.get_table("demo", compressed=False)
        async with repository.engine.begin() as conn:
            await conn.execute(update(source).values(processed_at=clock.now(), processed_status='{"status": "done"}'))

        converter = CompressionConverter("demo", repository)
        await converter.convert_all()

        row = (await _rows(repository, converter.target_table))[0]
        assert row["processed_at"] is None
        assert row["processed_status"] is None
        assert (await converter.validate_all()).validated_count == 1

    async def test_processing_state_copied(self, repository, clock):
        """Test processing columns survive when copying is requested."""
        await _seed(repository, "demo", 1)
        source = repository.get_table("demo", compressed=False)
        async with repository.engine.begin() as conn:
            await conn.execute(update(source).values(processed_status='{"status": "done"}'))

        converter = CompressionConverter("demo", repository, options=ConversionOptions(copy_processing_state=True))
        await converter.convert_all()

        row = (await _rows(repository, converter.target_table))[0]
        assert row["processed_status"] == '{"status": "done"}'
        assert (await converter.validate_all()).validated_count == 1

    async def test_overwrite(self, repository):
        """Test overwrite replaces rows that were already converted."""
        await _seed(repository, "demo", 2)
        await CompressionConverter("demo", repository).convert_all()

        source = repository.get_table("demo", compressed=False)
        async with repository.engine.begin() as conn:
            await conn.execute(update(source).where(source.c.key == "demo.key.0").values(response_body="updated"))

        converter = CompressionConverter("demo", repository, options=ConversionOptions(overwrite=True))
        stats = await converter.convert_all()

        assert stats.processed_count == 2
        assert stats.skipped_count == 0
        assert await converter.compressed_row_count() == 2
        rows = await _rows(repository, converter.target_table)
        assert zlib.decompress(rows[0]["response_body"]) == b"updated"
        assert (await converter.validate_all()).validated_count == 2

    def test_prepare_row_drops_id(self, repository):
        """Test the source id is never copied."""
        converter = CompressionConverter("demo", repository)
        data = converter.prepare_row({"id": 7, "key": "k", "response_body": "body", "request_body": None})
        assert "id" not in data
        assert data["request_body"] is None
        assert zlib.decompress(data["response_body"]) == b"body"
        assert data["response_size"] == len(data["response_body"])

    def test_validate_field_nulls(self, repository):
        """Test null handling in field validation."""
        converter = CompressionConverter("demo", repository)
        assert converter.validate_field(None, None, "request_body") is True
        assert converter.validate_field("x", None, "request_body") is False
        assert converter.validate_field(None, zlib.compress(b"x"), "request_body") is False

    def test_validate_field_corrupt_target(self, repository):
        """Test undecompressable target data is a mismatch."""
        converter = CompressionConverter("demo", repository)
        assert converter.validate_field("x", b"garbage", "response_body") is False


class TestDecompressionConverter:
    """Test copying the compressed table into the uncompressed one."""

    async def test_convert_and_validate(self, repository):
        """Test compressed rows are restored to plain text."""
        await _seed(repository, "demo-compressed", 3)
        converter = DecompressionConverter("demo-compressed", repository, options=ConversionOptions(batch_size=2))

        stats = await converter.convert_all()

        assert stats.processed_count == 3
        rows = await _rows(repository, converter.target_table)
        assert json.loads(rows[0]["response_body"]) == {"index": 0, "items": ["item"] * 20}
        assert json.loads(rows[0]["response_headers"]) == {"content-type": ["application/json"]}
        assert rows[0]["response_size"] == len(rows[0]["response_body"].encode("utf-8"))

        validation = await converter.validate_all()
        assert validation == ValidationStats(validated_count=3, mismatch_count=0, error_count=0)

    async def test_convert_is_idempotent(self, repository):
        """Test a second run skips rows that already exist."""
        await _seed(repository, "demo-compressed", 2)
        converter = DecompressionConverter("demo-compressed", repository)

        await converter.convert_all()
        second = await converter.convert_all()

        assert second == ConversionStats(total_count=2, processed_count=0, skipped_count=2, error_count=0)

    async def test_corrupt_row_counted(self, repository):
        """Test a row that cannot be decompressed is counted and skipped."""
        await _seed(repository, "demo-compressed", 2)
        source = repository.get_table("demo-compressed", compressed=True)
        async with repository.engine.begin() as conn:
            await conn.execute(
                update(source).where(source.c.key == "demo-compressed.key.1").values(response_body=b"garbage")
            )

        stats = await DecompressionConverter("demo-compressed", repository).convert_all()

        assert stats.processed_count == 1
        assert stats.error_count == 1

    async def test_round_trip(self, repository):
        """Test decompressing then compressing back validates both ways."""
        await _seed(repository, "demo", 2)
        await CompressionConverter("demo", repository).convert_all()

        source = repository.get_table("demo", compressed=False)
        async with repository.engine.begin() as conn:
            await conn.execute(delete(source))

        decompressor = DecompressionConverter("demo", repository)
        assert (await decompressor.convert_all()).processed_count == 2
        assert (await decompressor.validate_all()).validated_count == 2
