"""
REST HTTP client for the chatflow backend.
"""

import logging
from typing import Any, Optional

import httpx

from chatflow.errors import ConnectionError, HttpError

DEFAULT_BASE_URL = "http://localhost:3000"
API_PREFIX = "/api/v1"

logger = logging.getLogger(__name__)

# (field name, (file name, content, mime))
FilePart = tuple[str, tuple[str, bytes, str]]


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}{API_PREFIX}",
            headers={"User-Agent": "chatflow-client/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_api_key(self, api_key: Optional[str]) -> None:
        self._api_key = api_key

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers: dict[str, str] = {"x-request-from": "internal"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        server_message: Optional[str] = None
        try:
            body = resp.json()
            if isinstance(body, dict) and isinstance(body.get("message"), str):
                server_message = body["message"]
        except ValueError:
            pass
        raise HttpError(resp.status_code, f"HTTP {resp.status_code}: {resp.text[:200]}", server_message)

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        return resp.json()

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise ConnectionError(f"{method} {path} failed: {e}")
        logger.debug("%s %s -> %s", method, path, resp.status_code)
        self._raise_for_status(resp)
        return self._json(resp)

    async def get(self, path: str, params: Optional[dict[str, str]] = None) -> Any:
        return await self._send("GET", path, params=params, headers=self._headers())

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self._send("POST", path, json=body, headers=self._headers())

    async def put(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self._send("PUT", path, json=body, headers=self._headers())

    async def upload(self, path: str, files: list[FilePart], data: Optional[dict[str, str]] = None) -> Any:
        """Multipart form upload."""
        return await self._send("POST", path, files=files, data=data, headers=self._headers())

    async def open_stream(self, path: str, body: dict[str, Any]) -> httpx.Response:
        """POST and return the response with its body unread. Caller must aclose() it.

        Reads have no timeout: the channel stays open for as long as the turn runs.
        """
        request = self._client.build_request(
            "POST", path, json=body,
            headers=self._headers({"Accept": "text/event-stream"}),
            timeout=httpx.Timeout(self._timeout, read=None),
        )
        try:
            resp = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise ConnectionError(f"POST {path} failed: {e}")
        if resp.status_code >= 400:
            try:
                await resp.aread()
            finally:
                await resp.aclose()
            self._raise_for_status(resp)
        return resp

    def url(self, path: str, params: Optional[dict[str, str]] = None) -> str:
        return str(httpx.URL(f"{self._base_url}{API_PREFIX}/{path.lstrip('/')}", params=params))

    async def close(self) -> None:
        await self._client.aclose()
