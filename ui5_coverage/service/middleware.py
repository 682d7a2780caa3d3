"""ASGI middleware routing coverage requests in front of a resource server."""

from __future__ import annotations

import asyncio
import json
import logging
from importlib import metadata
from typing import Any, Awaitable, Callable, List, Mapping, Optional

from pydantic import BaseModel
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import InstrumentationConfig, config_from_options
from ..eligibility import should_instrument_resource
from ..excludes import (
    ExcludeSelection,
    compile_configured_patterns,
    get_library_coverage_exclude_patterns,
    select_exclude_patterns,
)
from ..instrumenter import Instrumenter, NodeInstrumenter
from ..logging import get_logger
from ..models import ExcludePattern, ResourceRequest
from ..reporter import REPORT_ROUTE, report_coverage
from ..resources import ResourceReader
from ..transform import transform_resource

DIST_NAME = "ui5-coverage-middleware"

PING_ROUTE = "/.ui5/coverage/ping"
REPORT_VIEWER_ROUTE = f"{REPORT_ROUTE}/html"
NO_REPORT_DATA = "No report data provided"

ReportCallable = Callable[
    [Any, InstrumentationConfig, ResourceReader, logging.Logger],
    Awaitable[Optional[Mapping[str, Any]]],
]

LOGGER = get_logger("middleware")


class PingResponse(BaseModel):
    version: str


class ErrorResponse(BaseModel):
    detail: str


def read_package_version() -> str:
    """Return the installed distribution version from package metadata."""
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0"


class CoverageMiddleware:
    """Serves coverage endpoints and instruments flagged script resources.

    Everything the middleware caches (effective config, package version,
    library exclude patterns) lives on the instance, so several middlewares
    in one process stay independent. Library patterns are derived on first
    use and reused for the lifetime of the instance.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        resources: ResourceReader,
        options: Mapping[str, Any] | None = None,
        instrumenter: Instrumenter | None = None,
        report_coverage: ReportCallable = report_coverage,
        static_app: ASGIApp | None = None,
        logger: logging.Logger | None = None,
        version_loader: Callable[[], str] = read_package_version,
    ) -> None:
        self.app = app
        self.resources = resources
        self.config = config_from_options(options)
        self.logger = logger or LOGGER
        self.instrumenter = instrumenter or NodeInstrumenter(cwd=self.config.cwd)
        self.version = version_loader()
        self._report_coverage = report_coverage
        self._static = static_app or StaticFiles(
            directory=self.config.report_path(), html=True, check_dir=False
        )
        self._configured_excludes: Optional[List[ExcludePattern]] = None
        if self.config.exclude_patterns:
            self._configured_excludes = compile_configured_patterns(self.config.exclude_patterns)
        self._library_excludes: Optional[List[ExcludePattern]] = None
        self._library_lock = asyncio.Lock()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        path = scope["path"]
        if method == "GET" and path == PING_ROUTE:
            response: Optional[Response] = JSONResponse(PingResponse(version=self.version).model_dump())
        elif method == "POST" and path == REPORT_ROUTE:
            response = await self._handle_report(Request(scope, receive))
        elif method == "GET" and path.startswith(REPORT_VIEWER_ROUTE):
            await self._serve_report_viewer(scope, receive, send)
            return
        else:
            response = await self._handle_resource(Request(scope, receive))

        if response is None:
            await self.app(scope, receive, send)
            return
        await response(scope, receive, send)

    async def exclude_selection(self) -> ExcludeSelection:
        """Return the exclude patterns in effect for resource requests."""
        if self._configured_excludes:
            return select_exclude_patterns(self._configured_excludes, [])
        async with self._library_lock:
            if self._library_excludes is None:
                self._library_excludes = await get_library_coverage_exclude_patterns(self.resources)
                LOGGER.debug(
                    "Derived %d coverage exclude pattern(s) from library descriptors",
                    len(self._library_excludes),
                )
        return select_exclude_patterns(None, self._library_excludes)

    async def _handle_report(self, request: Request) -> Response:
        body = await request.body()
        payload: Any = None
        if body.strip():
            try:
                payload = json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                self.logger.warning("Ignoring coverage report with invalid JSON body: %s", exc)

        report = await self._report_coverage(payload, self.config, self.resources, self.logger)
        if report is None:
            return JSONResponse(ErrorResponse(detail=NO_REPORT_DATA).model_dump(), status_code=400)
        return JSONResponse(report)

    async def _serve_report_viewer(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self.config.report_path().is_dir():
            # Nothing has been reported yet.
            await PlainTextResponse("Not Found", status_code=404)(scope, receive, send)
            return
        viewer_scope = dict(scope)
        viewer_scope["path"] = scope["path"][len(REPORT_ROUTE):]
        viewer_scope["root_path"] = scope.get("root_path", "") + REPORT_ROUTE
        try:
            await self._static(viewer_scope, receive, send)
        except HTTPException as exc:
            response = PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)
            await response(scope, receive, send)

    async def _handle_resource(self, request: Request) -> Optional[Response]:
        resource_request = ResourceRequest(
            path=request.scope["path"],
            query=dict(request.query_params),
            method=request.method,
        )
        if not should_instrument_resource(resource_request):
            return None
        selection = await self.exclude_selection()
        if selection.matches(resource_request.path):
            return None

        transformed = await transform_resource(
            resource_request.path,
            resources=self.resources,
            instrumenter=self.instrumenter,
            config=self.config,
            logger=self.logger,
        )
        if transformed is None:
            return None
        return Response(content=transformed.text, media_type=transformed.media_type)


__all__ = [
    "CoverageMiddleware",
    "NO_REPORT_DATA",
    "PING_ROUTE",
    "REPORT_VIEWER_ROUTE",
    "read_package_version",
]
