from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Mapping, Optional

from starlette.background import BackgroundTask
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from agent.core.errors import TransportFault


logger = logging.getLogger(__name__)


class AsgiChunkSink:
    """Writes each chunk as its own ASGI body message, so every write is flushed."""

    def __init__(self, send: Send, charset: str = "utf-8") -> None:
        self._send = send
        self._charset = charset
        self.disconnected = asyncio.Event()

    async def write(self, text: str) -> None:
        if self.disconnected.is_set():
            raise TransportFault("Client disconnected")
        try:
            await self._send(
                {"type": "http.response.body", "body": text.encode(self._charset), "more_body": True}
            )
        except OSError as exc:
            self.disconnected.set()
            raise TransportFault(f"Write to client failed: {exc}") from exc


async def _watch_disconnect(receive: Receive, sink: AsgiChunkSink) -> None:
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            sink.disconnected.set()
            return


class RelayResponse(Response):
    """Response whose body is produced by writing to an ``AsgiChunkSink``."""

    def __init__(
        self,
        producer: Callable[[AsgiChunkSink], Awaitable[object]],
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        media_type: Optional[str] = None,
        background: Optional[BackgroundTask] = None,
    ) -> None:
        self.producer = producer
        self.status_code = status_code
        self.media_type = self.media_type if media_type is None else media_type
        self.background = background
        self.init_headers(headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": self.status_code, "headers": self.raw_headers})
        sink = AsgiChunkSink(send, self.charset)
        watcher = asyncio.create_task(_watch_disconnect(receive, sink))
        try:
            await self.producer(sink)
        finally:
            watcher.cancel()

        if not sink.disconnected.is_set():
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        else:
            logger.info("Client went away before the stream finished")
        if self.background is not None:
            await self.background()
