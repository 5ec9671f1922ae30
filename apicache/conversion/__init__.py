"""Migration and validation between compressed and uncompressed tables."""

from apicache.conversion.converter import (
    CompressionConverter,
    ConversionOptions,
    ConversionStats,
    DecompressionConverter,
    TableRepresentationConverter,
    ValidationStats,
)

__all__ = [
    "CompressionConverter",
    "ConversionOptions",
    "ConversionStats",
    "DecompressionConverter",
    "TableRepresentationConverter",
    "ValidationStats",
]
