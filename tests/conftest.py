from __future__ import annotations

import pytest

from tests._fixtures.stubs import RecordingLogger, StubInstrumenter, StubReader


@pytest.fixture
def make_reader():
    """Return the reader factory so tests can seed files and descriptors."""
    return StubReader


@pytest.fixture
def instrumenter() -> StubInstrumenter:
    return StubInstrumenter()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()
