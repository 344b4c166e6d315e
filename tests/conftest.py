import json
import sys
import threading
from io import BytesIO
from pathlib import Path

import pytest
import requests

# Ensure the repo root is on sys.path for absolute imports.
REPO_ROOT = Path(__file__).resolve().parents[1]
repo_root_str = str(REPO_ROOT)
if repo_root_str not in sys.path:
    sys.path.insert(0, repo_root_str)


class FakeResponse:
    def __init__(self, status_code=200, body=b""):
        self.status_code = status_code
        self.content = body if isinstance(body, bytes) else body.encode("utf-8")

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    @property
    def text(self):
        return self.content.decode("utf-8")

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Stand-in for requests.Session keyed by absolute URL.

    Values are (status, body) tuples, plain bodies (status 200), or an
    exception instance to raise. Unknown URLs answer 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, timeout=None):
        with self._lock:
            self.calls.append(url)
        value = self.routes.get(url)
        if value is None:
            return FakeResponse(404, b"not found")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, tuple):
            return FakeResponse(*value)
        if isinstance(value, (dict, list)):
            return FakeResponse(200, json.dumps(value))
        return FakeResponse(200, value)


def listing(*hrefs):
    links = "\n".join(f'<a href="{href}">{href}</a>' for href in hrefs)
    return f"<html><head><title>Index of /</title></head><body><h1>Index of /</h1><hr><pre>{links}</pre><hr></body></html>"


def image_bytes(size=(40, 20), color=(200, 30, 30), fmt="PNG"):
    from PIL import Image

    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def make_listing():
    return listing


@pytest.fixture
def make_image():
    return image_bytes


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")
