from __future__ import annotations

import json
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urljoin
from urllib.request import Request, urlopen

from shiplock.core.errors import Unavailable

API_KEY_HEADER = "X-Shiplock-API-Key"


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """HTTP response wrapper.

    Security notes:
    - Treat `body_bytes` as untrusted.

    """

    status: int
    headers: Mapping[str, str]
    body_bytes: bytes

    def json(self) -> Any:
        return json.loads(self.body_bytes.decode("utf-8", errors="strict"))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ShiplockHttpClient:
    """Minimal stdlib-only client for the shiplock API.

    Security notes:
    - Does NOT disable TLS verification.
    - Request bodies are capped (they are small JSON documents).

    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout_sec: float = 30.0,
        max_body_bytes: int = 64 * 1024,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.api_key = api_key
        self.timeout_sec = float(timeout_sec)
        self.max_body_bytes = int(max_body_bytes)

    def _request(self, method: str, path: str, *, params: Optional[Dict[str, str]] = None, body: Any = None) -> HttpResponse:
        url = urljoin(self.base_url, path.lstrip("/"))
        if params:
            url += "?" + urlencode({k: v for k, v in params.items() if v is not None})

        data = None
        if body is not None:
            data = json.dumps(body, sort_keys=True).encode("utf-8")
            if len(data) > self.max_body_bytes:
                raise ValueError(f"request body too large: {len(data)} > {self.max_body_bytes}")

        req = Request(url=url, data=data, method=method)
        if data is not None:
            req.add_header("Content-Type", "application/json")
        if self.api_key:
            req.add_header(API_KEY_HEADER, self.api_key)
        return _do_request(req, timeout=self.timeout_sec)

    def get(self, path: str, params: Optional[Dict[str, str]] = None) -> HttpResponse:
        return self._request("GET", path, params=params)

    def post_json(self, path: str, body: Any) -> HttpResponse:
        return self._request("POST", path, body=body)

    def delete(self, path: str) -> HttpResponse:
        return self._request("DELETE", path)

    # Convenience wrappers mirroring the API surface.

    def destinations(self, origin_node_id: str) -> HttpResponse:
        return self.get("/destinations", {"originNodeId": origin_node_id})

    def route(self, origin_node_id: str, dest_node_id: str) -> HttpResponse:
        return self.get("/routes", {"originNodeId": origin_node_id, "destNodeId": dest_node_id})

    def store_secret(self, token_id: int, secret_hex: str, *, replace: bool = False) -> HttpResponse:
        return self.post_json("/secrets", {"tokenId": int(token_id), "secret": secret_hex, "replace": bool(replace)})

    def reveal_secret(self, token_id: int) -> HttpResponse:
        return self.get(f"/secrets/{int(token_id)}")

    def purge_secret(self, token_id: int) -> HttpResponse:
        return self.delete(f"/secrets/{int(token_id)}")


def _do_request(req: Request, *, timeout: float) -> HttpResponse:
    """Send one request and wrap the outcome.

    Security notes:
    - TLS verification stays on (default SSL context).
    - HTTP error statuses come back as responses; only transport failures raise.
    """

    try:
        with urlopen(req, context=ssl.create_default_context(), timeout=timeout) as resp:
            return HttpResponse(
                status=int(resp.status),
                headers=dict(resp.headers.items()),
                body_bytes=resp.read(),
            )
    except HTTPError as e:
        return HttpResponse(
            status=int(e.code or 0),
            headers=dict(e.headers.items()) if e.headers else {},
            body_bytes=e.read() or b"",
        )
    except URLError as e:
        raise Unavailable(f"network error: {e.reason}") from e
