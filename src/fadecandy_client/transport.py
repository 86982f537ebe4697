"""WebSocket transport used to talk to fcserver."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional, Protocol, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import ServerConnectionError
from .logging import get_logger

Frame = Union[str, bytes]


class Transport(Protocol):
    """Duplex, message-oriented channel carrying one JSON document per frame."""

    async def send(self, text: str) -> None:
        ...

    def frames(self) -> AsyncIterator[Frame]:
        ...

    async def close(self) -> None:
        ...


class WebSocketTransport:
    """Transport backed by a `websockets` client connection."""

    def __init__(self, websocket: Any, url: str) -> None:
        self._websocket = websocket
        self.url = url
        self.logger = get_logger("fadecandy.transport")

    @classmethod
    async def connect(cls, url: str, timeout: Optional[float] = None) -> "WebSocketTransport":
        """Open a WebSocket to fcserver, raising `ServerConnectionError` on failure."""

        logger = get_logger("fadecandy.transport")
        try:
            websocket = await websockets.connect(url, open_timeout=timeout)
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake) as exc:
            logger.error(
                "Failed to connect to fcserver",
                extra={"url": url, "error": str(exc)},
            )
            raise ServerConnectionError(f"Could not connect to fcserver at {url}: {exc}") from exc
        logger.info("Connected to fcserver", extra={"url": url})
        return cls(websocket, url)

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send(text)
        except ConnectionClosed as exc:
            raise ServerConnectionError(f"Connection to {self.url} closed: {exc}") from exc

    async def frames(self) -> AsyncIterator[Frame]:
        # Iteration ends on a clean close and raises ConnectionClosedError otherwise.
        async for frame in self._websocket:
            yield frame

    async def close(self) -> None:
        await self._websocket.close()
        self.logger.info("Closed fcserver connection", extra={"url": self.url})
