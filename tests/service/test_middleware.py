"""Tests for the coverage ASGI middleware."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from tests._fixtures.stubs import (
    SAMPLE_JS,
    RecordingLogger,
    StubInstrumenter,
    StubReader,
    library_descriptor,
)
from ui5_coverage.errors import ConfigError
from ui5_coverage.instrumenter import SOURCE_MAPPING_URL
from ui5_coverage.service.middleware import CoverageMiddleware, NO_REPORT_DATA

PATH = "/resources/lib1/Control1.js"
MAP_MARKER = f"{SOURCE_MAPPING_URL}=data:application/json;charset=utf-8;base64,"
PASSTHROUGH = "passthrough"


class _VersionLoader:
    def __init__(self, version: str = "0.0.0-test") -> None:
        self.version = version
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return self.version


def _client(
    *,
    reader: StubReader | None = None,
    instrumenter: StubInstrumenter | None = None,
    logger: RecordingLogger | None = None,
    options: dict[str, Any] | None = None,
    **kwargs: Any,
) -> TestClient:
    app = FastAPI()
    app.add_middleware(
        CoverageMiddleware,
        resources=reader if reader is not None else StubReader({PATH: SAMPLE_JS}),
        options=options,
        instrumenter=instrumenter or StubInstrumenter(),
        logger=logger or RecordingLogger(),
        **kwargs,
    )

    @app.get("/{rest:path}")
    async def downstream(rest: str) -> PlainTextResponse:
        return PlainTextResponse(PASSTHROUGH)

    return TestClient(app)


def _instrument(client: TestClient, path: str = PATH):
    return client.get(path, params={"instrument": "true"})


def test_ping_reads_version_once() -> None:
    loader = _VersionLoader()
    client = _client(version_loader=loader)

    for _ in range(3):
        response = client.get("/.ui5/coverage/ping")
        assert response.status_code == 200
        assert response.json() == {"version": "0.0.0-test"}

    assert loader.calls == 1


def test_middleware_instances_are_isolated() -> None:
    first = _client(version_loader=_VersionLoader("1.0.0"))
    second = _client(version_loader=_VersionLoader("2.0.0"))

    assert first.get("/.ui5/coverage/ping").json() == {"version": "1.0.0"}
    assert second.get("/.ui5/coverage/ping").json() == {"version": "2.0.0"}


def test_coverage_report_request() -> None:
    calls: list[tuple[Any, ...]] = []
    expected = {"c": "d"}

    async def fake_report(*args: Any) -> dict[str, str]:
        calls.append(args)
        return expected

    reader = StubReader({PATH: SAMPLE_JS})
    logger = RecordingLogger()
    client = _client(reader=reader, logger=logger, report_coverage=fake_report)

    response = client.post("/.ui5/coverage/report", json={"a": "b"})

    assert response.status_code == 200
    assert response.json() == expected
    assert len(calls) == 1
    payload, config, resources, used_logger = calls[0]
    assert payload == {"a": "b"}
    assert config.cwd == "./"
    assert resources is reader
    assert used_logger is logger


@pytest.mark.parametrize("body", [b"", b"   ", b"{not json", b"\xff\xfe{"])
def test_coverage_report_without_data(body: bytes) -> None:
    payloads: list[Any] = []

    async def fake_report(payload: Any, *args: Any) -> None:
        payloads.append(payload)
        return None

    client = _client(report_coverage=fake_report)

    response = client.post(
        "/.ui5/coverage/report",
        content=body,
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"detail": NO_REPORT_DATA}
    assert payloads == [None]


def test_coverage_report_with_unusable_payload_uses_default_aggregator() -> None:
    client = _client()

    response = client.post("/.ui5/coverage/report", json={"a": "b"})

    assert response.status_code == 400
    assert response.json() == {"detail": NO_REPORT_DATA}


def test_report_viewer_serves_static_files(tmp_path: Path) -> None:
    html_dir = tmp_path / "reports" / "html"
    html_dir.mkdir(parents=True)
    (html_dir / "index.html").write_text("<h1>coverage</h1>", encoding="utf-8")
    options = {"configuration": {"cwd": str(tmp_path), "report": {"report-dir": "reports"}}}
    client = _client(options=options)

    response = client.get("/.ui5/coverage/report/html/index.html")
    assert response.status_code == 200
    assert "<h1>coverage</h1>" in response.text

    directory = client.get("/.ui5/coverage/report/html/")
    assert directory.status_code == 200
    assert "<h1>coverage</h1>" in directory.text

    missing = client.get("/.ui5/coverage/report/html/missing.html")
    assert missing.status_code == 404


def test_report_viewer_before_any_report(tmp_path: Path) -> None:
    options = {"configuration": {"cwd": str(tmp_path / "nothing-yet")}}
    client = _client(options=options)

    response = client.get("/.ui5/coverage/report/html/index.html")

    assert response.status_code == 404


def test_report_viewer_delegates_to_static_app(tmp_path: Path) -> None:
    scopes: list[dict[str, Any]] = []

    async def static_app(scope, receive, send) -> None:  # type: ignore[no-untyped-def]
        scopes.append(scope)
        await PlainTextResponse("viewer")(scope, receive, send)

    (tmp_path / "reports").mkdir()
    options = {"configuration": {"cwd": str(tmp_path), "report": {"report-dir": "reports"}}}
    client = _client(static_app=static_app, options=options)

    response = client.get("/.ui5/coverage/report/html/index.html")

    assert response.text == "viewer"
    assert scopes[0]["path"] == "/html/index.html"
    assert scopes[0]["root_path"].endswith("/.ui5/coverage/report")


@pytest.mark.parametrize(
    "options",
    [None, {"configuration": {"instrument": {"produceSourceMap": True}}}, {"configuration": {"excludePatterns": None}}],
)
def test_instrument_with_source_map(options) -> None:
    logger = RecordingLogger()
    client = _client(logger=logger, options=options)

    response = _instrument(client)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/javascript")
    assert f'path="{PATH}"' in response.text
    assert MAP_MARKER in response.text
    assert logger.count("debug") == 3


def test_instrument_without_source_map() -> None:
    logger = RecordingLogger()
    client = _client(logger=logger, options={"configuration": {"instrument": {"produceSourceMap": False}}})

    response = _instrument(client)

    assert response.status_code == 200
    assert f'path="{PATH}"' in response.text
    assert MAP_MARKER not in response.text
    assert logger.count("debug") == 2


def test_ineligible_resource_passes_through(monkeypatch) -> None:
    calls: list[Any] = []

    def fake_should_instrument(request, patterns=()) -> bool:  # type: ignore[no-untyped-def]
        calls.append(request)
        return False

    monkeypatch.setattr(
        "ui5_coverage.service.middleware.should_instrument_resource", fake_should_instrument
    )
    instrumenter = StubInstrumenter()
    client = _client(instrumenter=instrumenter)

    response = _instrument(client)

    assert response.text == PASSTHROUGH
    assert len(calls) == 1
    assert calls[0].path == PATH
    assert calls[0].query == {"instrument": "true"}
    assert instrumenter.calls == []


def test_unflagged_request_passes_through() -> None:
    reader = StubReader({PATH: SAMPLE_JS})
    client = _client(reader=reader)

    assert client.get(PATH).text == PASSTHROUGH
    assert reader.path_calls == []
    assert reader.glob_calls == []


def test_missing_resource_passes_through() -> None:
    logger = RecordingLogger()
    client = _client(reader=StubReader({}), logger=logger)

    response = _instrument(client)

    assert response.status_code == 200
    assert response.text == PASSTHROUGH
    assert logger.count("debug") == 1
    assert logger.count("warning") == 1


def test_configured_exclude_patterns() -> None:
    logger = RecordingLogger()
    reader = StubReader({PATH: SAMPLE_JS})
    client = _client(
        reader=reader,
        logger=logger,
        options={"configuration": {"excludePatterns": [PATH]}},
    )

    response = _instrument(client)

    assert response.text == PASSTHROUGH
    assert logger.count("debug") == 0
    assert reader.glob_calls == []


def test_configured_exclude_patterns_override_library_excludes() -> None:
    reader = StubReader(
        {PATH: SAMPLE_JS, "/resources/ui5/lib1/ShouldNotExclude.js": SAMPLE_JS},
        descriptors=[library_descriptor("ui5.lib1", '<exclude name="ui5.lib1.ShouldNotExclude" />')],
    )
    client = _client(reader=reader, options={"configuration": {"excludePatterns": [PATH]}})

    assert _instrument(client).text == PASSTHROUGH
    library_excluded = _instrument(client, "/resources/ui5/lib1/ShouldNotExclude.js")
    assert MAP_MARKER in library_excluded.text


def test_library_excludes_apply_without_configuration() -> None:
    reader = StubReader(
        {PATH: SAMPLE_JS, "/resources/lib2/Control2.js": SAMPLE_JS},
        descriptors=[library_descriptor("lib1", '<exclude name="lib1.Control1" />')],
    )
    client = _client(reader=reader)

    assert _instrument(client).text == PASSTHROUGH
    assert MAP_MARKER in _instrument(client, "/resources/lib2/Control2.js").text
    assert reader.glob_calls == ["/resources/**/.library"]


def test_instrument_multiple_files_in_sequence() -> None:
    logger = RecordingLogger()
    second = "/resources/lib2/Control2.js"
    client = _client(
        reader=StubReader({PATH: SAMPLE_JS, second: "sap.ui.define([], () => {});"}),
        logger=logger,
    )

    first_response = _instrument(client)
    second_response = _instrument(client, second)

    assert f'path="{PATH}"' in first_response.text
    assert MAP_MARKER in first_response.text
    assert f'path="{second}"' in second_response.text
    assert MAP_MARKER in second_response.text
    assert logger.count("debug") == 6


def test_instrumentation_failure_is_not_swallowed() -> None:
    class _FailingInstrumenter(StubInstrumenter):
        async def instrument(self, code, filename, options):  # type: ignore[no-untyped-def]
            raise RuntimeError("engine exploded")

    client = _client(instrumenter=_FailingInstrumenter())
    client_no_raise = TestClient(client.app, raise_server_exceptions=False)

    with pytest.raises(RuntimeError, match="engine exploded"):
        _instrument(client)
    assert _instrument(client_no_raise).status_code == 500


def test_invalid_configured_exclude_pattern_is_a_config_error() -> None:
    with pytest.raises(ConfigError, match="unclosed"):
        CoverageMiddleware(
            FastAPI(),
            resources=StubReader(),
            options={"configuration": {"excludePatterns": ["[unclosed"]}},
            instrumenter=StubInstrumenter(),
        )
