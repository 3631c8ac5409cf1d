"""Test configuration and fixtures"""

import os

os.environ.setdefault("FLASK_ENV", "testing")

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from unittest.mock import Mock, patch

from app import create_app

_NO_PAYLOAD = object()


class FakeJsonResponse:
    """Minimal stand-in for a non-streamed ``requests.Response``."""

    def __init__(self, payload=_NO_PAYLOAD, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if self._payload is _NO_PAYLOAD:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeUpstream:
    """Routes ``requests.get`` calls by URL to canned responses."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, url, payload=_NO_PAYLOAD, status_code=200, exc=None):
        self.routes[url] = (payload, status_code, exc)

    def __call__(self, url, params=None, timeout=None, headers=None, **kwargs):
        self.calls.append(
            {"url": url, "params": params, "timeout": timeout, "headers": headers}
        )
        if url not in self.routes:
            raise requests.ConnectionError(f"No route for {url}")
        payload, status_code, exc = self.routes[url]
        if exc is not None:
            raise exc
        return FakeJsonResponse(payload, status_code)


class FakeStream:
    """Streamed upstream response; exceptions in *chunks* are raised in place."""

    def __init__(self, chunks, headers=None, status_code=200):
        self._chunks = list(chunks)
        self.headers = CaseInsensitiveDict(headers or {})
        self.status_code = status_code
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True


@pytest.fixture
def config_path(tmp_path):
    """Path of a throwaway persisted config file"""
    return str(tmp_path / "config.json")


@pytest.fixture
def app(config_path):
    """Application built from the testing configuration"""
    return create_app("testing", {"CONFIG_FILE": config_path})


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def upstream():
    """Patch ``requests.get`` used for metadata lookups"""
    fake = FakeUpstream()
    with patch("logic.requests.get", side_effect=fake):
        yield fake


@pytest.fixture
def stream_session():
    """Patch the session used to open audio streams.

    Set ``stream_session.get.return_value`` (or ``side_effect``) per test.
    """
    session = Mock()
    with patch("logic.requests.Session", return_value=session):
        yield session


@pytest.fixture
def make_stream():
    return FakeStream
