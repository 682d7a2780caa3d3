"""Request-time code coverage instrumentation for UI5 resource servers."""

from .config import InstrumentationConfig, create_instrumentation_config, load_options
from .eligibility import should_instrument_resource
from .errors import ConfigError, CoverageError, InstrumentationError, ReportError
from .excludes import get_library_coverage_exclude_patterns
from .instrumenter import NodeInstrumenter, get_latest_source_map
from .reporter import NodeReportRenderer, report_coverage
from .resources import FileSystemReader
from .transform import transform_resource

__all__ = [
    "ConfigError",
    "CoverageError",
    "FileSystemReader",
    "InstrumentationConfig",
    "InstrumentationError",
    "NodeInstrumenter",
    "NodeReportRenderer",
    "ReportError",
    "create_instrumentation_config",
    "get_latest_source_map",
    "get_library_coverage_exclude_patterns",
    "load_options",
    "report_coverage",
    "should_instrument_resource",
    "transform_resource",
]
