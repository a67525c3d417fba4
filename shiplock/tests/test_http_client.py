from __future__ import annotations

import io
import json
from urllib.error import HTTPError, URLError

import pytest

from shiplock.client import ShiplockHttpClient
from shiplock.client import http as http_mod
from shiplock.core.errors import Unavailable


class FakeResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self.headers = {"Content-Type": "application/json"}
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_store_secret_sends_json_and_api_key(monkeypatch) -> None:
    seen = {}

    def fake_urlopen(req, context=None, timeout=None):
        seen["url"] = req.full_url
        seen["method"] = req.get_method()
        seen["body"] = json.loads(req.data.decode("utf-8"))
        seen["key"] = req.get_header("X-shiplock-api-key")
        return FakeResponse(201, b'{"message": "ok", "token_id": 4}')

    monkeypatch.setattr(http_mod, "urlopen", fake_urlopen)
    c = ShiplockHttpClient("http://localhost:8080", api_key="k1")
    r = c.store_secret(4, "0xabcd")

    assert r.ok and r.json()["token_id"] == 4
    assert seen["url"] == "http://localhost:8080/secrets"
    assert seen["method"] == "POST"
    assert seen["body"] == {"tokenId": 4, "secret": "0xabcd", "replace": False}
    assert seen["key"] == "k1"


def test_query_params_and_http_errors(monkeypatch) -> None:
    def fake_urlopen(req, context=None, timeout=None):
        assert req.full_url == "http://h/routes?originNodeId=WH-1&destNodeId=DC-1"
        raise HTTPError(req.full_url, 404, "Not Found", {}, io.BytesIO(b'{"error": "not_found"}'))

    monkeypatch.setattr(http_mod, "urlopen", fake_urlopen)
    r = ShiplockHttpClient("http://h").route("WH-1", "DC-1")
    assert r.status == 404 and not r.ok
    assert r.json()["error"] == "not_found"


def test_transport_failure_is_unavailable(monkeypatch) -> None:
    def fake_urlopen(req, context=None, timeout=None):
        raise URLError("connection refused")

    monkeypatch.setattr(http_mod, "urlopen", fake_urlopen)
    with pytest.raises(Unavailable):
        ShiplockHttpClient("http://h").reveal_secret(1)


def test_oversized_body_is_refused() -> None:
    c = ShiplockHttpClient("http://h", max_body_bytes=16)
    with pytest.raises(ValueError):
        c.store_secret(1, "ab" * 64)
