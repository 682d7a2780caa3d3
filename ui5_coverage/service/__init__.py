"""HTTP surface: the coverage middleware and a standalone FastAPI server."""

from .app import create_app, run_service
from .middleware import CoverageMiddleware, read_package_version

__all__ = ["CoverageMiddleware", "create_app", "read_package_version", "run_service"]
