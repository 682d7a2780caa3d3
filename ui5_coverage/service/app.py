"""FastAPI application serving a UI5 project with coverage instrumentation."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any, Mapping

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import Response

from ..instrumenter import Instrumenter
from ..logging import uvicorn_log_config
from ..reporter import report_coverage
from ..resources import ResourceReader, project_reader
from .middleware import CoverageMiddleware, ReportCallable, read_package_version


def create_app(
    root: str | Path = ".",
    *,
    options: Mapping[str, Any] | None = None,
    resources: ResourceReader | None = None,
    instrumenter: Instrumenter | None = None,
    report_coverage: ReportCallable = report_coverage,
) -> FastAPI:
    """Create the FastAPI application serving ``root`` behind the coverage middleware."""

    reader = resources or project_reader(Path(root))
    app = FastAPI(title="UI5 Coverage Server", version=read_package_version())
    app.add_middleware(
        CoverageMiddleware,
        resources=reader,
        options=options,
        instrumenter=instrumenter,
        report_coverage=report_coverage,
    )

    @app.get("/{resource_path:path}")
    async def serve_resource(resource_path: str) -> Response:
        path = f"/{resource_path}"
        if path.endswith("/"):
            path += "index.html"
        resource = await reader.by_path(path)
        if resource is None:
            raise HTTPException(status_code=404, detail=f"No resource found for {path}")
        media_type, _ = mimetypes.guess_type(path)
        return Response(
            content=await resource.get_string(),
            media_type=media_type or "application/octet-stream",
        )

    return app


def run_service(
    root: str | Path = ".",
    *,
    host: str = "127.0.0.1",
    port: int = 8080,
    options: Mapping[str, Any] | None = None,
    verbose: bool = False,
) -> None:  # pragma: no cover - integration path
    app = create_app(root, options=options)
    uvicorn.run(app, host=host, port=port, log_config=uvicorn_log_config(verbose=verbose))


__all__ = ["create_app", "run_service"]
