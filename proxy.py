"""Forwarding of API operations to another backend instance.

Used when BACKEND_URL is configured: this process then serves only as the
front door and relays requests and responses unchanged, streaming chat
bytes through as they arrive.
"""

import logging
from collections.abc import AsyncIterator

import httpx
from fastapi.responses import JSONResponse, Response, StreamingResponse

from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

RELAYED_HEADERS = ("content-type", "content-disposition", "cache-control")


class BackendProxy:
    """Relays extract/chat/download calls to ``<base_url>/api/...``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def extract(self, filename: str, data: bytes, media_type: str) -> Response:
        files = {"file": (filename, data, media_type)}
        resp = await self._send("POST", "/api/extract", files=files)
        return _relay_json(resp)

    async def download(self, doc_id: str, fmt: str) -> Response:
        resp = await self._send("GET", f"/api/download/{doc_id}/{fmt}")
        if resp.status_code != 200:
            return _relay_json(resp)
        return Response(
            content=resp.content,
            status_code=200,
            headers=_relayed_headers(resp),
        )

    async def chat(self, payload: dict) -> Response:
        request = self._client.build_request("POST", "/api/chat", json=payload)
        try:
            resp = await self._client.send(request, stream=True)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            raise _unavailable(e) from e

        if resp.status_code != 200:
            await resp.aread()
            await resp.aclose()
            return _relay_json(resp)

        return StreamingResponse(
            _relay_stream(resp),
            status_code=200,
            headers=_relayed_headers(resp),
        )

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            raise _unavailable(e) from e


async def _relay_stream(resp: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in resp.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        logger.warning("Backend chat stream broke off: %s", e)
    finally:
        await resp.aclose()


def _relay_json(resp: httpx.Response) -> JSONResponse:
    try:
        body = resp.json()
    except ValueError:
        body = {"error": resp.text or f"Backend returned HTTP {resp.status_code}"}
    return JSONResponse(status_code=resp.status_code, content=body)


def _relayed_headers(resp: httpx.Response) -> dict[str, str]:
    return {name: resp.headers[name] for name in RELAYED_HEADERS if name in resp.headers}


def _unavailable(e: Exception) -> UpstreamUnavailable:
    logger.warning("Backend unreachable: %s", e)
    return UpstreamUnavailable(f"Backend unavailable: {e}")
