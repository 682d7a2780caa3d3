"""Coverage report aggregation and the istanbul report renderer adapter."""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from .config import InstrumentationConfig
from .errors import ReportError
from .instrumenter import BRIDGE_DIR
from .resources import ResourceReader

REPORT_ROUTE = "/.ui5/coverage/report"


class ReportRenderer(Protocol):
    """Turns a coverage map plus sources into report artifacts on disk."""

    async def render(
        self,
        coverage: Mapping[str, Any],
        sources: Mapping[str, str],
        config: InstrumentationConfig,
    ) -> None: ...


def extract_coverage_map(payload: Any) -> Dict[str, Any]:
    """Accept ``{"coverage": {...}}`` or a bare istanbul coverage map."""
    if not isinstance(payload, Mapping) or not payload:
        return {}
    coverage = payload.get("coverage", payload)
    if not isinstance(coverage, Mapping):
        return {}
    return {
        key: value
        for key, value in coverage.items()
        if isinstance(value, Mapping)
    }


async def report_coverage(
    payload: Any,
    config: InstrumentationConfig,
    resources: ResourceReader,
    logger: logging.Logger,
    *,
    renderer: ReportRenderer | None = None,
) -> Optional[Dict[str, Any]]:
    """Render reports for ``payload`` and describe where they can be fetched.

    Returns ``None`` when the payload carries no coverage data.
    """
    coverage = extract_coverage_map(payload)
    if not coverage:
        return None

    sources: Dict[str, str] = {}
    for key, file_coverage in coverage.items():
        path = str(file_coverage.get("path") or key)
        resource = await resources.by_path(path)
        if resource is None:
            logger.warning("No source found for covered file %s", path)
            continue
        sources[path] = await resource.get_string()

    active_renderer = renderer or NodeReportRenderer(cwd=config.cwd)
    logger.debug(
        "Rendering %s report(s) for %d file(s)",
        ", ".join(config.report.reporters) or "no",
        len(coverage),
    )
    await active_renderer.render(coverage, sources, config)

    return {
        "availableReports": [
            {"report": reporter, "destination": f"{REPORT_ROUTE}/{reporter}/"}
            for reporter in config.report.reporters
        ]
    }


class NodeReportRenderer:
    """Runs ``istanbul-reports`` through a Node.js bridge script."""

    def __init__(
        self,
        *,
        node: str | None = None,
        cwd: str | Path = ".",
        script: Path | None = None,
    ) -> None:
        self.node = node or "node"
        self.cwd = Path(cwd)
        self.script = script or BRIDGE_DIR / "report.mjs"

    async def render(
        self,
        coverage: Mapping[str, Any],
        sources: Mapping[str, str],
        config: InstrumentationConfig,
    ) -> None:
        report = config.report.to_dict()
        payload = {
            "coverage": dict(coverage),
            "sources": dict(sources),
            "reportDir": str(config.report_path().resolve()),
            "reporters": report["reporter"],
            "watermarks": report["watermarks"],
        }
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._run_bridge, payload)

    def _run_bridge(self, payload: Mapping[str, Any]) -> None:
        args = [self.node, str(self.script)]
        try:
            subprocess.run(
                args,
                input=json.dumps(payload),
                check=True,
                capture_output=True,
                text=True,
                cwd=str(self.cwd),
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment dependent
            raise ReportError(f"Unable to locate Node.js executable '{self.node}'.") from exc
        except subprocess.CalledProcessError as exc:
            message = exc.stderr.strip() or exc.stdout.strip() or str(exc.returncode)
            raise ReportError(f"Coverage report generation failed: {message}") from exc


__all__ = [
    "NodeReportRenderer",
    "REPORT_ROUTE",
    "ReportRenderer",
    "extract_coverage_map",
    "report_coverage",
]
