"""Exception types raised by the coverage middleware."""


class CoverageError(RuntimeError):
    """Base class for coverage middleware failures."""


class ConfigError(CoverageError):
    """Raised when a configuration file cannot be read or parsed."""


class InstrumentationError(CoverageError):
    """Raised when the instrumentation engine fails to rewrite a resource."""


class ReportError(CoverageError):
    """Raised when the report renderer fails to produce coverage reports."""


__all__ = ["CoverageError", "ConfigError", "InstrumentationError", "ReportError"]
