"""Adapter for the istanbul instrumentation engine."""

from __future__ import annotations

import asyncio
import base64
import json
import subprocess
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from .config import InstrumentOptions
from .errors import InstrumentationError

# Written in two parts so tools scanning this file never pick up a bogus map reference.
SOURCE_MAPPING_URL = "//" + "# sourceMappingURL"
SOURCE_MAP_DATA_PREFIX = "data:application/json;charset=utf-8;base64,"

BRIDGE_DIR = Path(__file__).resolve().parent / "bridge"


class Instrumenter(Protocol):
    """Rewrites script text with coverage probes."""

    async def instrument(self, code: str, filename: str, options: InstrumentOptions) -> str: ...

    def last_source_map(self) -> Optional[Any]: ...


def get_latest_source_map(instrumenter: Instrumenter) -> str:
    """Return an inline source-map comment for the last instrumented file.

    An empty string is returned when the engine produced no map.
    """
    source_map = instrumenter.last_source_map()
    if not source_map:
        return ""
    serialised = json.dumps(source_map, separators=(",", ":"), ensure_ascii=False)
    encoded = base64.b64encode(serialised.encode("utf-8")).decode("ascii")
    return f"\r\n{SOURCE_MAPPING_URL}={SOURCE_MAP_DATA_PREFIX}{encoded}"


class NodeInstrumenter:
    """Runs ``istanbul-lib-instrument`` through a small Node.js bridge script.

    The bridge resolves istanbul from ``cwd`` so the project's own
    ``node_modules`` decides the engine version.
    """

    def __init__(
        self,
        *,
        node: str | None = None,
        cwd: str | Path = ".",
        script: Path | None = None,
    ) -> None:
        self.node = node or "node"
        self.cwd = Path(cwd)
        self.script = script or BRIDGE_DIR / "instrument.mjs"
        self._last_source_map: Optional[Any] = None

    async def instrument(self, code: str, filename: str, options: InstrumentOptions) -> str:
        payload = {"code": code, "filename": filename, "options": options.to_dict()}
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self._run_bridge, payload)
        self._last_source_map = result.get("sourceMap")
        return str(result["code"])

    def last_source_map(self) -> Optional[Any]:
        return self._last_source_map

    def _run_bridge(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        args = [self.node, str(self.script)]
        try:
            completed = subprocess.run(
                args,
                input=json.dumps(payload),
                check=True,
                capture_output=True,
                text=True,
                cwd=str(self.cwd),
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment dependent
            raise InstrumentationError(f"Unable to locate Node.js executable '{self.node}'.") from exc
        except subprocess.CalledProcessError as exc:
            message = exc.stderr.strip() or exc.stdout.strip() or str(exc.returncode)
            raise InstrumentationError(
                f"Instrumenting {payload.get('filename')} failed: {message}"
            ) from exc

        try:
            result = json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise InstrumentationError("Instrumentation bridge returned invalid JSON") from exc
        if not isinstance(result, dict) or not isinstance(result.get("code"), str):
            raise InstrumentationError("Instrumentation bridge returned no code")
        return result


__all__ = [
    "Instrumenter",
    "NodeInstrumenter",
    "SOURCE_MAPPING_URL",
    "get_latest_source_map",
]
