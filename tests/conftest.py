import os
import sys
# Ensure project root is importable for tests, regardless of runner CWD
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Route the root script name to the package core so monkeypatching through
# either name patches the globals main() actually uses.
import importlib
_core_mod = importlib.import_module("youtrack_worklog_importer.core")
sys.modules["mYouTrackWorkLogImporter"] = _core_mod

import types
from typing import Any, Dict, List, Optional

import pytest
import requests


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Optional[Any] = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json_data = json_data
        self.text = text
        self.headers = headers or {}

    def json(self):
        if self._json_data is None:
            raise ValueError("no json")
        return self._json_data

    def raise_for_status(self):
        if 400 <= self.status_code:
            err = requests.HTTPError(f"HTTP {self.status_code}")
            err.response = types.SimpleNamespace(status_code=self.status_code, text=self.text)
            raise err


def make_http_error(status: int) -> requests.HTTPError:
    err = requests.HTTPError(f"HTTP {status}")
    err.response = types.SimpleNamespace(status_code=status, text=f"{status} error")
    return err


class FakeSession:
    """Records POST calls; responses can be keyed by a substring of the URL."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, default: Optional[FakeResponse] = None):
        self.calls: List[Dict[str, Any]] = []
        self.responses = responses or {}
        self.default = default or FakeResponse(status_code=200, json_data={"id": "1-1"})

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        for needle, resp in self.responses.items():
            if needle in url:
                if isinstance(resp, Exception):
                    raise resp
                return resp
        return self.default


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment variables out of config resolution."""
    for name in ("YOU_TRACK_URL", "AUTH_TOKEN", "YOU_TRACK_REPORTS_DIR"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def no_sleep(monkeypatch):
    """Make time.sleep a no-op for faster retry tests."""
    monkeypatch.setattr("time.sleep", lambda *_args, **_kwargs: None)
    yield


@pytest.fixture
def tmp_config_file(tmp_path):
    """Create a minimal valid config.ini and return its path."""
    p = tmp_path / "config.ini"
    p.write_text(
        "[youtrack]\n"
        "base_url = https://yt.example.com/api/issues/\n"
        "auth_token = perm:token123\n"
        "verify_ssl = true\n",
        encoding="utf-8",
    )
    return p


@pytest.fixture
def write_report(tmp_path):
    """Return a helper that writes a CSV report into tmp_path/reports."""
    reports = tmp_path / "reports"
    reports.mkdir()

    def _write(rows, name="report.csv", header="Description,Start date,Duration"):
        p = reports / name
        p.write_text(header + "\n" + "".join(r + "\n" for r in rows), encoding="utf-8")
        return p

    _write.dir = reports
    return _write


__all__ = ["FakeResponse", "FakeSession", "make_http_error"]
