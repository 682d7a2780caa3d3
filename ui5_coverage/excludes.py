"""Coverage exclude patterns declared in ``.library`` descriptors."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Sequence, Union

import defusedxml.ElementTree as ET  # type: ignore[import-untyped]
from defusedxml import DefusedXmlException  # type: ignore[import-untyped]

from .errors import ConfigError
from .logging import get_logger
from .models import ExcludeDeclaration, ExcludePattern, LibraryDescriptor
from .resources import ResourceReader

LIBRARY_DESCRIPTOR_GLOB = "/resources/**/.library"

_RESOURCE_ROOT = "/resources/"
_ANY_DIRS = "([^/]+[/])*"
_ANY_FILE = "[^/]*"

LOGGER = get_logger("excludes")


@dataclass(frozen=True)
class ExcludeSelection:
    """The exclude patterns applied to requests, and where they came from."""

    source: Literal["configuration", "library"]
    patterns: Sequence[ExcludePattern]

    def matches(self, path: str) -> bool:
        return any(pattern.matches(path) for pattern in self.patterns)


async def get_library_coverage_exclude_patterns(reader: ResourceReader) -> List[ExcludePattern]:
    """Collect exclude patterns from every ``.library`` descriptor the reader finds."""
    patterns: List[ExcludePattern] = []
    for resource in await reader.by_glob(LIBRARY_DESCRIPTOR_GLOB):
        source = getattr(resource, "path", None)
        try:
            text = await resource.get_string()
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable library descriptor %s: %s", source or "<unknown>", exc)
            continue
        descriptor = parse_library_descriptor(text, source=source)
        patterns.extend(compile_library_excludes(descriptor))
    return patterns


def parse_library_descriptor(text: str, *, source: Optional[str] = None) -> LibraryDescriptor:
    """Reduce a ``.library`` XML document to its name and jscoverage excludes.

    Elements are matched by local name so that both namespaced and plain
    descriptors are understood. Unparsable documents yield an empty descriptor.
    """
    try:
        root = ET.fromstring(text)
    except (ET.ParseError, DefusedXmlException) as exc:
        LOGGER.warning("Ignoring unparsable library descriptor %s: %s", source or "<unknown>", exc)
        return LibraryDescriptor(name=None)

    name: Optional[str] = None
    excludes: List[ExcludeDeclaration] = []
    for child in root:
        tag = _local_name(child.tag)
        if tag == "name" and child.text:
            name = child.text.strip() or None
        elif tag == "appData":
            for block in child:
                if _local_name(block.tag) == "jscoverage":
                    excludes.extend(_read_excludes(block))
    return LibraryDescriptor(name=name, excludes=excludes)


def compile_library_excludes(descriptor: LibraryDescriptor) -> List[ExcludePattern]:
    patterns: List[ExcludePattern] = []
    for declaration in descriptor.excludes:
        # External excludes only document another library's rules.
        if declaration.external:
            continue
        patterns.append(
            ExcludePattern(
                pattern=exclude_name_to_regex(declaration.name),
                declaration=declaration.name,
                library=descriptor.name,
            )
        )
    return patterns


def exclude_name_to_regex(name: str) -> re.Pattern[str]:
    """Compile an exclude declaration into a matcher for ``/resources`` paths.

    ``/some/file`` names a resource at any depth, ``lib.ns.`` (trailing dot)
    everything below a namespace and ``lib.ns.Module`` a single module. Each
    also matches the ``-dbg`` variant of the file.
    """
    if name.startswith("/"):
        body = _ANY_DIRS + re.escape(name.lstrip("/"))
    else:
        module_path = name.replace(".", "/")
        if module_path.endswith("/"):
            body = re.escape(module_path) + _ANY_DIRS + _ANY_FILE
        else:
            body = re.escape(module_path)
    return re.compile(re.escape(_RESOURCE_ROOT) + f"(({body}))(-dbg)?\\.js$")


def compile_configured_patterns(
    entries: Iterable[Union[str, "re.Pattern[str]", ExcludePattern]],
) -> List[ExcludePattern]:
    patterns: List[ExcludePattern] = []
    for entry in entries:
        if isinstance(entry, ExcludePattern):
            patterns.append(entry)
        elif isinstance(entry, re.Pattern):
            patterns.append(ExcludePattern(pattern=entry, declaration=entry.pattern))
        else:
            try:
                compiled = re.compile(entry)
            except re.error as exc:
                raise ConfigError(f"Invalid exclude pattern {entry!r}: {exc}") from exc
            patterns.append(ExcludePattern(pattern=compiled, declaration=entry))
    return patterns


def select_exclude_patterns(
    configured: Optional[Sequence[ExcludePattern]],
    library: Sequence[ExcludePattern],
) -> ExcludeSelection:
    """Configured patterns replace the library-derived ones when any are given."""
    if configured:
        return ExcludeSelection(source="configuration", patterns=list(configured))
    return ExcludeSelection(source="library", patterns=list(library))


def _read_excludes(block: object) -> List[ExcludeDeclaration]:
    declarations: List[ExcludeDeclaration] = []
    for element in block:  # type: ignore[attr-defined]
        if _local_name(element.tag) != "exclude":
            continue
        name = (element.get("name") or "").strip()
        if not name:
            continue
        external = (element.get("external") or "").strip().lower() == "true"
        declarations.append(ExcludeDeclaration(name=name, external=external))
    return declarations


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        # Comments and processing instructions carry callables as tags.
        return ""
    return tag.rsplit("}", 1)[-1]


__all__ = [
    "ExcludeSelection",
    "LIBRARY_DESCRIPTOR_GLOB",
    "compile_configured_patterns",
    "compile_library_excludes",
    "exclude_name_to_regex",
    "get_library_coverage_exclude_patterns",
    "parse_library_descriptor",
    "select_exclude_patterns",
]
