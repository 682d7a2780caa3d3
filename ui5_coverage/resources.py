"""Resource resolution: the reader contract and a filesystem-backed reader."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple


class Resource(Protocol):
    """A resolved resource whose text can be read asynchronously."""

    path: str

    async def get_string(self) -> str: ...


class ResourceReader(Protocol):
    """Resolves resources by virtual path or glob pattern."""

    async def by_path(self, path: str) -> Optional[Resource]: ...

    async def by_glob(self, pattern: str) -> Sequence[Resource]: ...


@dataclass(frozen=True)
class FileResource:
    """Resource backed by a file on disk."""

    path: str
    file: Path

    async def get_string(self) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read)

    def _read(self) -> str:
        return self.file.read_text(encoding="utf-8")


class FileSystemReader:
    """Maps virtual path prefixes (``/resources/``, ``/``) onto directories."""

    def __init__(self, mappings: Mapping[str, Path]) -> None:
        normalised: Dict[str, Path] = {}
        for prefix, directory in mappings.items():
            key = prefix if prefix.endswith("/") else f"{prefix}/"
            normalised[key] = Path(directory).expanduser().resolve()
        # Longest prefix wins when mappings overlap.
        self._mappings: List[Tuple[str, Path]] = sorted(
            normalised.items(), key=lambda item: len(item[0]), reverse=True
        )

    async def by_path(self, path: str) -> Optional[FileResource]:
        for prefix, directory in self._mappings:
            if not path.startswith(prefix):
                continue
            candidate = (directory / path[len(prefix):]).resolve()
            if not candidate.is_relative_to(directory):
                continue
            if candidate.is_file():
                return FileResource(path=path, file=candidate)
        return None

    async def by_glob(self, pattern: str) -> List[FileResource]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._glob, pattern)

    def _glob(self, pattern: str) -> List[FileResource]:
        resources: List[FileResource] = []
        seen: set[Path] = set()
        for prefix, directory in self._mappings:
            if not pattern.startswith(prefix) or not directory.is_dir():
                continue
            relative_pattern = pattern[len(prefix):]
            for match in sorted(directory.glob(relative_pattern)):
                if not match.is_file() or match in seen:
                    continue
                seen.add(match)
                virtual = prefix + match.relative_to(directory).as_posix()
                resources.append(FileResource(path=virtual, file=match))
        return resources


def project_reader(root: Path) -> FileSystemReader:
    """Return a reader laid out like a UI5 project rooted at ``root``.

    Library projects keep their sources in ``src`` (served below
    ``/resources/``), applications in ``webapp`` (served at ``/``).
    """
    root = root.expanduser().resolve()
    mappings: Dict[str, Path] = {}
    if (root / "src").is_dir():
        mappings["/resources/"] = root / "src"
    if (root / "test").is_dir():
        mappings["/test-resources/"] = root / "test"
    mappings["/"] = root / "webapp" if (root / "webapp").is_dir() else root
    return FileSystemReader(mappings)


__all__ = ["FileResource", "FileSystemReader", "Resource", "ResourceReader", "project_reader"]
