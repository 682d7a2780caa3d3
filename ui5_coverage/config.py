"""Configuration for the coverage middleware (defaults, overrides, YAML file)."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from .errors import ConfigError

WATERMARK_METRICS = ("branches", "functions", "lines", "statements")

_DEFAULTS: Dict[str, Any] = {
    "cwd": "./",
    "instrument": {
        "coverageGlobalScope": "window.top",
        "coverageGlobalScopeFunc": False,
        "produceSourceMap": True,
    },
    "report": {
        "report-dir": "./tmp/coverage-reports",
        "reporter": ["html"],
        "watermarks": {metric: [50, 80] for metric in WATERMARK_METRICS},
    },
}

ExcludeEntry = Union[str, re.Pattern]


@dataclass(frozen=True)
class InstrumentOptions:
    """Options handed to the instrumentation engine."""

    coverage_global_scope: str = "window.top"
    coverage_global_scope_func: bool = False
    produce_source_map: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coverageGlobalScope": self.coverage_global_scope,
            "coverageGlobalScopeFunc": self.coverage_global_scope_func,
            "produceSourceMap": self.produce_source_map,
        }


@dataclass(frozen=True)
class ReportOptions:
    """Options handed to the report renderer."""

    report_dir: str = "./tmp/coverage-reports"
    reporters: Tuple[str, ...] = ("html",)
    watermarks: Mapping[str, Tuple[float, float]] = field(
        default_factory=lambda: {metric: (50, 80) for metric in WATERMARK_METRICS}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report-dir": self.report_dir,
            "reporter": list(self.reporters),
            "watermarks": {name: list(pair) for name, pair in self.watermarks.items()},
        }


@dataclass(frozen=True)
class InstrumentationConfig:
    """Effective configuration of one middleware instance."""

    cwd: str = "./"
    instrument: InstrumentOptions = field(default_factory=InstrumentOptions)
    report: ReportOptions = field(default_factory=ReportOptions)
    exclude_patterns: Optional[Tuple[ExcludeEntry, ...]] = None

    def report_path(self) -> Path:
        """Return the report directory resolved against ``cwd``."""
        return Path(self.cwd) / self.report.report_dir

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cwd": self.cwd,
            "instrument": self.instrument.to_dict(),
            "report": self.report.to_dict(),
        }


def create_instrumentation_config(
    overrides: Mapping[str, Any] | None = None,
) -> InstrumentationConfig:
    """Deep-merge ``overrides`` over the defaults and build the effective config.

    Keys follow the user-facing names (``coverageGlobalScope``, ``report-dir``,
    ``reporter`` ...). ``None`` values count as not supplied; values of the
    wrong shape are ignored so the default stays in place.
    """
    merged = _deep_merge(_DEFAULTS, overrides if isinstance(overrides, Mapping) else {})

    instrument = merged["instrument"]
    report = merged["report"]
    return InstrumentationConfig(
        cwd=str(merged["cwd"]),
        instrument=InstrumentOptions(
            coverage_global_scope=str(instrument["coverageGlobalScope"]),
            coverage_global_scope_func=bool(instrument["coverageGlobalScopeFunc"]),
            produce_source_map=bool(instrument["produceSourceMap"]),
        ),
        report=ReportOptions(
            report_dir=str(report["report-dir"]),
            reporters=_as_reporters(report["reporter"]),
            watermarks=_as_watermarks(report["watermarks"]),
        ),
        exclude_patterns=_as_exclude_patterns(
            overrides.get("excludePatterns") if isinstance(overrides, Mapping) else None
        ),
    )


def config_from_options(options: Mapping[str, Any] | None) -> InstrumentationConfig:
    """Build the config from middleware options (``{"configuration": {...}}``)."""
    configuration = None
    if isinstance(options, Mapping):
        configuration = options.get("configuration")
    return create_instrumentation_config(configuration if isinstance(configuration, Mapping) else None)


def load_options(config_path: Path) -> Dict[str, Any]:
    """Load middleware options from a YAML file holding the ``configuration`` block."""
    path = config_path.expanduser()
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not text.strip():
        return {}

    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path.name} must contain a mapping at the root")
    return {"configuration": loaded}


def _deep_merge(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = copy.deepcopy(dict(defaults))
    for key, default in defaults.items():
        if key not in overrides:
            continue
        value = overrides[key]
        if value is None:
            continue
        if isinstance(default, Mapping):
            if isinstance(value, Mapping):
                result[key] = _deep_merge(default, value)
            continue
        if isinstance(default, list):
            if isinstance(value, (list, tuple)):
                result[key] = list(value)
            continue
        if isinstance(value, (Mapping, list, tuple)):
            continue
        result[key] = value
    return result


def _as_reporters(value: Sequence[Any]) -> Tuple[str, ...]:
    return tuple(str(item) for item in value if isinstance(item, str) and item)


def _as_watermarks(value: Mapping[str, Any]) -> Dict[str, Tuple[float, float]]:
    watermarks: Dict[str, Tuple[float, float]] = {}
    for metric in WATERMARK_METRICS:
        pair = _as_pair(value.get(metric))
        default_low, default_high = _DEFAULTS["report"]["watermarks"][metric]
        watermarks[metric] = pair if pair is not None else (default_low, default_high)
    return watermarks


def _as_pair(value: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    low, high = value
    if isinstance(low, bool) or isinstance(high, bool):
        return None
    if not isinstance(low, (int, float)) or not isinstance(high, (int, float)):
        return None
    return (low, high)


def _as_exclude_patterns(value: Any) -> Optional[Tuple[ExcludeEntry, ...]]:
    if value is None:
        return None
    if isinstance(value, (str, re.Pattern)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return None
    entries: List[ExcludeEntry] = [item for item in value if isinstance(item, (str, re.Pattern))]
    return tuple(entries) if entries else None


__all__ = [
    "InstrumentOptions",
    "InstrumentationConfig",
    "ReportOptions",
    "WATERMARK_METRICS",
    "config_from_options",
    "create_instrumentation_config",
    "load_options",
]
