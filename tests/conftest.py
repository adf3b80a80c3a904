# tests/conftest.py
import json
import posixpath
import threading
import time
from unittest.mock import MagicMock
from urllib.parse import unquote, urlparse

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from darkibox.config import Settings, get_settings
from darkibox.fs import Fs
from darkibox.pacer import Pacer
from darkibox.path_api import PathProtocol
from darkibox.transport import RestTransport

BASE_URL = "https://darkibox.test"
MOD_TIME = "2024-05-01T12:00:00+00:00"


def make_response(status=200, json_body=None, text=None, headers=None):
    """Builds a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response.reason = ""
    response.url = BASE_URL
    response.encoding = "utf-8"
    response.headers = CaseInsensitiveDict(headers or {})
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers.setdefault("Content-Type", "application/json")
    else:
        response._content = (text or "").encode("utf-8")
    response._content_consumed = True
    return response


class FakeDarkibox:
    """
    In-memory stand-in for the path-addressed Darkibox API.
    Plug it in as `Session.request`; it records every call with its dispatch time.
    """

    def __init__(self):
        self.files = {}
        self.dirs = {"/"}
        self.calls = []
        self._lock = threading.Lock()

    def _entry(self, path):
        if path in self.dirs:
            return {"name": posixpath.basename(path), "size": None, "mod_time": MOD_TIME, "mime_type": "", "is_dir": True}
        return {
            "name": posixpath.basename(path),
            "size": len(self.files[path]),
            "mod_time": MOD_TIME,
            "mime_type": "application/octet-stream",
            "is_dir": False,
        }

    def _children(self, path):
        prefix = path.rstrip("/") + "/"
        return sorted(
            p
            for p in list(self.files) + list(self.dirs)
            if p != path and p.startswith(prefix) and "/" not in p[len(prefix):]
        )

    def __call__(self, method, url, params=None, headers=None, data=None, files=None, timeout=None):
        parsed = urlparse(url)
        _, operation, tail = parsed.path.split("/", 2)
        path = "/" + unquote(tail).strip("/")
        body = data.read() if hasattr(data, "read") else None

        with self._lock:
            self.calls.append((method, operation, path, time.monotonic()))
            return self._handle(method, operation, path, body)

    def _handle(self, method, operation, path, body):
        if operation == "list":
            if path in self.dirs:
                return make_response(200, [self._entry(p) for p in self._children(path)])
            if path in self.files:
                return make_response(200, self._entry(path))
            return make_response(404, {"error": "no such directory"})
        if operation == "fileinfo":
            if path in self.files or path in self.dirs:
                return make_response(200, self._entry(path))
            return make_response(404, {"error": "no such file"})
        if operation == "upload":
            self.files[path] = body or b""
            return make_response(200, {"ok": True})
        if operation == "update":
            if path not in self.files:
                return make_response(404, {"error": "no such file"})
            self.files[path] = body or b""
            return make_response(200, {"ok": True})
        if operation == "mkdir":
            self.dirs.add(path)
            return make_response(200, {"ok": True})
        if operation == "rmdir":
            if path not in self.dirs:
                return make_response(404, {"error": "no such directory"})
            if self._children(path):
                return make_response(409, {"error": "directory not empty"})
            self.dirs.discard(path)
            return make_response(200, {"ok": True})
        if operation == "remove":
            if path not in self.files:
                return make_response(404, {"error": "no such file"})
            del self.files[path]
            return make_response(200, {"ok": True})
        return make_response(400, {"error": f"unknown operation {operation}"})


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Makes sure no cached settings leak between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_settings():
    """
    Provides a mock of the application settings for testing.
    This avoids the need for environment variables during tests.
    """
    settings = MagicMock(spec=Settings)
    settings.DARKIBOX_REMOTE_NAME = "darkibox"
    settings.DARKIBOX_PROTOCOL = "path"
    settings.DARKIBOX_BASE_URL = BASE_URL
    settings.DARKIBOX_ROOT = "/backup"
    settings.API_KEY = "test_key"
    settings.UPLOAD_FILE_DESCRIPTION = ""
    settings.PACER_MIN_SLEEP = 0.0
    settings.PACER_MAX_SLEEP = 0.0
    settings.PACER_DECAY_CONSTANT = 2
    settings.LOW_LEVEL_RETRIES = 3
    settings.REQUEST_TIMEOUT = 5.0
    settings.METADATA_TTL_SECONDS = 0.0
    settings.LOG_LEVEL = "INFO"
    return settings


@pytest.fixture
def session():
    """A requests.Session whose request method is a mock."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def transport(session):
    """A transport without pacing delays and a small retry budget."""
    return RestTransport(
        BASE_URL, pacer=Pacer(min_sleep=0.0, max_sleep=0.0), session=session, retries=3
    )


@pytest.fixture
def fake_server():
    return FakeDarkibox()


@pytest.fixture
def fs(transport, session, fake_server):
    """An Fs rooted at /root, backed by the in-memory fake server."""
    fake_server.dirs.add("/root")
    session.request.side_effect = fake_server
    return Fs("darkibox", "/root", PathProtocol(transport, api_key="secret"), credential="secret")
