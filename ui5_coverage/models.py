"""Core data models shared across coverage middleware components."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

JS_CONTENT_TYPE = ".js"
JS_MEDIA_TYPE = "application/javascript"


@dataclass(frozen=True)
class ExcludeDeclaration:
    """A single ``<exclude>`` entry of a library's jscoverage block."""

    name: str
    external: bool = False


@dataclass(frozen=True)
class LibraryDescriptor:
    """Typed view of a ``.library`` descriptor, reduced to coverage excludes."""

    name: Optional[str]
    excludes: List[ExcludeDeclaration] = field(default_factory=list)


@dataclass(frozen=True)
class ExcludePattern:
    """Compiled path matcher plus the declaration it was derived from."""

    pattern: re.Pattern[str]
    declaration: str
    library: Optional[str] = None

    def matches(self, path: str) -> bool:
        return self.pattern.search(path) is not None


@dataclass(frozen=True)
class ResourceRequest:
    """The parts of an incoming request the eligibility check looks at."""

    path: str
    query: Mapping[str, Any] = field(default_factory=dict)
    method: str = "GET"


@dataclass(frozen=True)
class TransformedResource:
    """Instrumented script text ready to be written to the response."""

    text: str
    content_type: str = JS_CONTENT_TYPE

    @property
    def media_type(self) -> str:
        return JS_MEDIA_TYPE
