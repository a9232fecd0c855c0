"""Shared test fixtures for the ingest API."""

import json
import os
import tempfile
from pathlib import Path

import pytest

# main builds a module-level app on import; keep its log files out of the checkout
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="ingest-test-logs-"))

from fastapi.testclient import TestClient  # noqa: E402

from main import IngestAPIApp  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    """Location of the settings file; not created until a test writes it."""
    return tmp_path / "appsettings.json"


@pytest.fixture
def write_settings(settings_path: Path):
    def _write(connections):
        settings_path.write_text(json.dumps({"connections": connections}), encoding="utf-8")
        return settings_path
    return _write


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def make_client(tmp_path: Path, settings_path: Path):
    """Build a TestClient around a fresh IngestAPIApp reading ``settings_path``."""
    def _make() -> TestClient:
        ingest_app = IngestAPIApp(settings_path=str(settings_path), log_dir=str(tmp_path / "logs"))
        return TestClient(ingest_app.app)
    return _make


@pytest.fixture
def acme_client(write_settings, output_root, make_client) -> TestClient:
    write_settings([{"sender": "acme", "receiver": "corp", "baseOutputPath": str(output_root)}])
    return make_client()
