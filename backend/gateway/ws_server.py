"""WebSocket session lifecycle.

Protocol:
  1. Peer connects; the server sends the liveness probe (no probe, no session)
  2. A receive task drains inbound frames strictly in arrival order
  3. Text frames go to the CommandDispatcher; replies share one locked writer
  4. Non-text frames are logged and discarded
  5. End-of-stream (or shutdown) ends the session; nothing is sent after that

A read error is logged and the loop keeps reading unless the connection
reports itself closed. Write errors are logged only. No error from a single
frame ever leaves the session.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket

from core.exceptions import TransportError
from gateway.dispatcher import CommandDispatcher, SessionContext
from gateway.transport import Connection, InboundKind, StarletteConnection
from observability.audit_log import log_audit_event
from schemas.audit import AuditEventType

logger = logging.getLogger(__name__)

# Consecutive read errors after which the peer is treated as gone
MAX_CONSECUTIVE_READ_ERRORS = 32

# Active sessions: conn_id -> Session
_active_sessions: Dict[str, "Session"] = {}


class Session:
    """One connection: a receive task plus the writer it drives."""

    def __init__(
        self,
        connection: Connection,
        dispatcher: CommandDispatcher,
        conn_id: Optional[str] = None,
        audit: Callable[..., Awaitable[Any]] = log_audit_event,
    ):
        self.connection = connection
        self.dispatcher = dispatcher
        self.conn_id = conn_id or uuid.uuid4().hex[:12]
        self.context = SessionContext(conn_id=self.conn_id, peer=connection.peer)
        self.audit = audit
        self.frames_received = 0
        self._write_lock = asyncio.Lock()
        self._recv_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._done = asyncio.Event()

    async def run(self) -> int:
        """Run until end-of-stream or stop(). Returns frames received."""
        try:
            await self.connection.probe()
        except TransportError as e:
            logger.warning("Could not probe peer: conn=%s peer=%s error=%s", self.conn_id, self.connection.peer, e.message)
            self._done.set()
            return 0
        logger.info("Probed peer: conn=%s peer=%s", self.conn_id, self.connection.peer)

        _active_sessions[self.conn_id] = self
        await self._audit(AuditEventType.SESSION_STARTED, {"peer": self.connection.peer})
        self._recv_task = asyncio.create_task(self._receive_loop(), name=f"recv-{self.conn_id}")
        try:
            count = await self._recv_task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
            count = self.frames_received
            logger.info("Session stopped by shutdown: conn=%s", self.conn_id)
            await self._close(code=1001, reason="Server shutting down")
        finally:
            _active_sessions.pop(self.conn_id, None)
            self._done.set()

        logger.info("Session ended: conn=%s frames=%d", self.conn_id, count)
        await self._audit(AuditEventType.SESSION_TERMINATED, {"frames": count})
        return count

    def stop(self) -> None:
        """Cancel the receive loop; run() returns once it unwinds."""
        self._stopping = True
        if self._recv_task is not None and not self._recv_task.done():
            self._recv_task.cancel()

    async def wait_closed(self) -> None:
        await self._done.wait()

    async def _receive_loop(self) -> int:
        read_errors = 0
        while True:
            try:
                inbound = await self.connection.receive()
            except TransportError as e:
                if self.connection.closed:
                    logger.info("Connection gone: conn=%s error=%s", self.conn_id, e.message)
                    break
                read_errors += 1
                if read_errors >= MAX_CONSECUTIVE_READ_ERRORS:
                    logger.error("Too many read errors, giving up: conn=%s errors=%d", self.conn_id, read_errors)
                    break
                logger.warning("Read error: conn=%s error=%s", self.conn_id, e.message)
                continue
            read_errors = 0

            if inbound.kind is InboundKind.CLOSED:
                logger.info("Peer closed: conn=%s", self.conn_id)
                break

            self.frames_received += 1
            if inbound.kind is not InboundKind.TEXT:
                logger.warning("Not allowed message discarded: conn=%s kind=%s", self.conn_id, inbound.kind.value)
                continue

            try:
                reply = await self.dispatcher.dispatch(inbound.data, self.context)
            except Exception as e:
                logger.error("Dispatch crashed: conn=%s error=%s", self.conn_id, str(e), exc_info=True)
                continue
            if reply is not None:
                await self.send(reply)

        return self.frames_received

    async def send(self, text: str) -> None:
        """Best-effort write; failures are logged, never raised."""
        async with self._write_lock:
            try:
                await self.connection.send_text(text)
            except TransportError as e:
                logger.error("Send message failed: conn=%s error=%s", self.conn_id, e.message)

    async def _close(self, code: int, reason: str) -> None:
        async with self._write_lock:
            try:
                await self.connection.close(code=code, reason=reason)
            except TransportError as e:
                logger.warning("Close failed: conn=%s error=%s", self.conn_id, e.message)

    async def _audit(self, event_type: AuditEventType, details: dict) -> None:
        try:
            await self.audit(event_type, conn_id=self.conn_id, details=details)
        except Exception as e:
            logger.warning("Audit write failed: conn=%s event=%s error=%s", self.conn_id, event_type.value, str(e))


async def handle_ws_connection(websocket: WebSocket, dispatcher: CommandDispatcher) -> int:
    """Serve one upgraded WebSocket until it ends."""
    session = Session(StarletteConnection(websocket), dispatcher, audit=dispatcher.audit)
    return await session.run()


def get_active_session_count() -> int:
    return len(_active_sessions)


async def shutdown_sessions(timeout: float = 5.0) -> None:
    """Stop every live session and wait for them to unwind."""
    sessions = list(_active_sessions.values())
    if not sessions:
        return
    logger.info("Stopping %d active sessions", len(sessions))
    for session in sessions:
        session.stop()
    try:
        await asyncio.wait_for(
            asyncio.gather(*(s.wait_closed() for s in sessions)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Sessions still open after %.1fs shutdown grace", timeout)
