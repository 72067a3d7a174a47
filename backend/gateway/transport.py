"""Duplex connection adapter used by the session lifecycle.

The session only needs: a liveness probe, an ordered stream of inbound
units (text, binary, or end-of-stream), and a text writer. Transport
failures surface as TransportError.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from core.exceptions import TransportError


class InboundKind(str, Enum):
    TEXT = "text"
    BINARY = "binary"
    CLOSED = "closed"


@dataclass
class Inbound:
    kind: InboundKind
    data: Optional[Union[str, bytes]] = None


class Connection(ABC):
    peer: str = ""

    @abstractmethod
    async def probe(self) -> None:
        """Send the liveness probe. Raises TransportError if the peer is gone."""
        ...

    @abstractmethod
    async def receive(self) -> Inbound:
        ...

    @abstractmethod
    async def send_text(self, text: str) -> None:
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...


class StarletteConnection(Connection):
    """Adapter over a FastAPI/Starlette WebSocket.

    ASGI exposes no ping frame to applications, so the probe is the upgrade
    acceptance itself: the first frame the server sends. Protocol-level
    ping/pong is left to the ASGI server.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        client = websocket.client
        self.peer = f"{client.host}:{client.port}" if client else "unknown"

    async def probe(self) -> None:
        try:
            await self.websocket.accept()
        except (RuntimeError, OSError, WebSocketDisconnect) as e:
            raise TransportError(f"Probe failed: {e}")

    async def receive(self) -> Inbound:
        try:
            message = await self.websocket.receive()
        except (RuntimeError, OSError) as e:
            raise TransportError(f"Read failed: {e}")

        if message["type"] == "websocket.disconnect":
            return Inbound(InboundKind.CLOSED)
        if message.get("text") is not None:
            return Inbound(InboundKind.TEXT, message["text"])
        return Inbound(InboundKind.BINARY, message.get("bytes"))

    async def send_text(self, text: str) -> None:
        try:
            await self.websocket.send_text(text)
        except (RuntimeError, OSError, WebSocketDisconnect) as e:
            raise TransportError(f"Write failed: {e}")

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as e:
            raise TransportError(f"Close failed: {e}")

    @property
    def closed(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.DISCONNECTED
            or self.websocket.application_state == WebSocketState.DISCONNECTED
        )
