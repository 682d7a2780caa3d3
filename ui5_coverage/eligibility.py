"""Decides which requested resources get instrumented."""

from __future__ import annotations

import re
from typing import Any, Iterable, Union

from .models import ExcludePattern, ResourceRequest

SCRIPT_EXTENSION = ".js"
INSTRUMENT_FLAG = "instrument"

PatternLike = Union[ExcludePattern, "re.Pattern[str]", str]


def is_instrumentation_requested(value: Any) -> bool:
    """Only an explicit ``true`` enables instrumentation."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value == "true"
    return False


def should_instrument_resource(
    request: ResourceRequest, exclude_patterns: Iterable[PatternLike] = ()
) -> bool:
    if not request.path.endswith(SCRIPT_EXTENSION):
        return False
    if not is_instrumentation_requested(request.query.get(INSTRUMENT_FLAG)):
        return False
    return not any(_matches(pattern, request.path) for pattern in exclude_patterns)


def _matches(pattern: PatternLike, path: str) -> bool:
    if isinstance(pattern, ExcludePattern):
        return pattern.matches(path)
    if isinstance(pattern, re.Pattern):
        return pattern.search(path) is not None
    return re.search(pattern, path) is not None


__all__ = [
    "INSTRUMENT_FLAG",
    "SCRIPT_EXTENSION",
    "is_instrumentation_requested",
    "should_instrument_resource",
]
