"""
Server-sent event channel for one streaming turn.

The backend answers a streaming prediction with `text/event-stream` frames
whose `data:` field is `{"event": <kind>, "data": <payload>}`. EventStream
opens the POST, yields typed events in arrival order and is closed exactly
once, whether by the consumer, a terminal event or a teardown from elsewhere.
"""

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from chatflow.errors import EventPayloadError
from chatflow.models.events import Event, parse_event
from chatflow.transport.http import HttpClient

logger = logging.getLogger(__name__)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the joined `data:` field of each SSE frame."""
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
    if data:
        yield "\n".join(data)


class EventStream:
    def __init__(self, http: HttpClient, path: str, body: dict[str, Any]):
        self._http = http
        self._path = path
        self._body = body
        self._response: Optional[httpx.Response] = None
        self._closed = False
        self.torn_down = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self._response is not None or self._closed:
            raise RuntimeError("EventStream can only be opened once")
        self._response = await self._http.open_stream(self._path, self._body)
        content_type = self._response.headers.get("content-type", "")
        if not content_type.startswith("text/event-stream"):
            logger.warning("Prediction stream answered with content-type %r", content_type)

    async def close(self, teardown: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        self.torn_down = teardown
        if self._response is not None:
            await self._response.aclose()
            logger.debug("Closed event stream %s", self._path)

    async def __aenter__(self) -> "EventStream":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def __aiter__(self) -> AsyncIterator[Event]:
        if self._response is None:
            raise RuntimeError("EventStream is not open")
        async for frame in iter_sse_data(self._response.aiter_lines()):
            if self._closed:
                return
            try:
                yield parse_event(frame)
            except EventPayloadError as e:
                logger.warning("Skipping malformed stream event: %s", e)
