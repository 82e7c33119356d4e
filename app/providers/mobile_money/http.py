

# app/providers/mobile_money/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx


logger = logging.getLogger("mako.http")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class AsyncHttpClient:
    def __init__(
        self,
        timeout_s: float = 20.0,
        *,
        base_url: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
    ):
        self._debug = debug
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_s,
            follow_redirects=True,
            transport=transport,
        )

    async def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
    ) -> HttpResponse:
        r = await self._client.post(url, headers=headers, json=json_body)
        if self._debug:
            self._debug_dump("POST", url, headers, json_body, r)
        return self._wrap(r)

    async def get(self, url: str, *, headers: dict[str, str]) -> HttpResponse:
        r = await self._client.get(url, headers=headers)
        if self._debug:
            self._debug_dump("GET", url, headers, None, r)
        return self._wrap(r)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], json_body: Any, r: httpx.Response) -> None:
        safe_headers = dict(headers or {})
        if "Authorization" in safe_headers:
            safe_headers["Authorization"] = "REDACTED"
        logger.debug(
            "gateway_http method=%s url=%s headers=%s status=%s body=%s",
            method,
            url,
            safe_headers,
            r.status_code,
            r.text[:300],
        )


def is_server_error(code: int) -> bool:
    return 500 <= code <= 599
