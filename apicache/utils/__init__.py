"""Helpers for parameter normalization and logging."""

from apicache.utils.logging import configure_logging
from apicache.utils.params import (
    MAX_DEPTH,
    normalize_params,
    summarize_params,
    validate_identifier,
)

__all__ = [
    "MAX_DEPTH",
    "configure_logging",
    "normalize_params",
    "summarize_params",
    "validate_identifier",
]
