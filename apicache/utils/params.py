"""Request parameter helpers: normalization, summaries and identifier checks."""

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any, Union

from apicache.exceptions import (
    DepthExceededError,
    InvalidIdentifierError,
    UnsupportedTypeError,
)

MAX_DEPTH = 20
SUMMARY_CHARACTER_LIMIT = 100

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SCALAR_TYPES = (str, int, float, bool)

Params = Union[Mapping[str, Any], Sequence[Any]]


def validate_identifier(value: str) -> None:
    """Check that a client name only holds letters, digits, hyphens and underscores.

    Args:
        value: Identifier to check

    Raises:
        InvalidIdentifierError: If the identifier is empty or has other characters
    """
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        raise InvalidIdentifierError(
            str(value),
            "Identifier must contain only alphanumeric characters, hyphens and underscores",
        )


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def normalize_params(params: Params, depth: int = 1, path: str = "") -> Any:
    """Canonicalize request parameters for hashing.

    ``None`` values are dropped at every level, mapping keys are sorted and
    nested containers are normalized recursively. Sequence order is kept.

    Args:
        params: Mapping or sequence of parameters
        depth: Current nesting level (1 for the top level)
        path: Dotted location, used in error messages

    Returns:
        Normalized dict or list

    Raises:
        DepthExceededError: If nesting goes beyond MAX_DEPTH levels
        UnsupportedTypeError: If a value is not a scalar, mapping or sequence,
            or a mapping key is not a string
    """
    if depth > MAX_DEPTH:
        raise DepthExceededError(MAX_DEPTH)

    if isinstance(params, Mapping):
        for key in params:
            if not isinstance(key, str):
                raise UnsupportedTypeError(f"{type(key).__name__} key", path)
        normalized: Any = {}
        for key, value in sorted(params.items(), key=lambda item: item[0]):
            if value is None:
                continue
            normalized[key] = _normalize_value(value, depth, f"{path}.{key}" if path else key)
        return normalized

    if _is_sequence(params):
        return [
            _normalize_value(value, depth, f"{path}[{index}]")
            for index, value in enumerate(params)
            if value is not None
        ]

    raise UnsupportedTypeError(type(params).__name__, path)


def _normalize_value(value: Any, depth: int, path: str) -> Any:
    if isinstance(value, _SCALAR_TYPES):
        return value
    if isinstance(value, Mapping) or _is_sequence(value):
        return normalize_params(value, depth + 1, path)
    raise UnsupportedTypeError(type(value).__name__, path)


def _dump(value: Any, pretty_print: bool = False) -> str:
    if pretty_print:
        return json.dumps(value, ensure_ascii=False, indent=4)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def summarize_params(
    params: Params,
    truncate: bool = True,
    pretty_print: bool = False,
    character_limit: int = SUMMARY_CHARACTER_LIMIT,
) -> str:
    """Build a short, human-readable JSON summary of request parameters.

    The summary is stored alongside cached responses for auditing; it is never
    used for lookups. A list holding a single mapping (a "task array") is
    flattened to that mapping. Long strings are cut to ``character_limit``
    characters followed by ``...``; nested containers are JSON-encoded first
    and then cut the same way. Numbers and booleans are kept as they are.

    Args:
        params: Request parameters
        truncate: Whether to cut long values
        pretty_print: Indent the output
        character_limit: Maximum characters kept per value

    Returns:
        JSON string
    """
    normalized = normalize_params(params)

    if isinstance(normalized, list) and len(normalized) == 1 and isinstance(normalized[0], dict):
        normalized = normalized[0]

    def summarize(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            value = _dump(value)
        if isinstance(value, str) and truncate and len(value) > character_limit:
            return value[:character_limit] + "..."
        return value

    if isinstance(normalized, dict):
        summary: Any = {key: summarize(value) for key, value in normalized.items()}
    else:
        summary = [summarize(value) for value in normalized]

    return _dump(summary, pretty_print)
