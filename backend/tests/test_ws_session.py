"""Session lifecycle — probe, ordered receive loop, resilience and shutdown."""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from core.exceptions import TransportError
from gateway.dispatcher import CommandDispatcher
from gateway.ws_server import (
    MAX_CONSECUTIVE_READ_ERRORS,
    Session,
    get_active_session_count,
    shutdown_sessions,
)
from fakes import FakeConnection, MemoryDeviceRegistry, MemoryNonceStore
from schemas.audit import AuditEventType


@pytest.fixture
def audit():
    return AsyncMock()


@pytest.fixture
def dispatcher(audit):
    return CommandDispatcher(MemoryNonceStore(), MemoryDeviceRegistry(), audit=audit)


def get_nonce(id):
    return json.dumps({"id": id, "method": "getNonce", "token": "", "params": {"user_id": "U"}})


@pytest.mark.asyncio
async def test_failed_probe_ends_session_without_sending(dispatcher, audit):
    conn = FakeConnection(["ping", None], probe_ok=False)
    assert await Session(conn, dispatcher, audit=audit).run() == 0
    assert conn.probed
    assert conn.sent == []
    audit.assert_not_awaited()


@pytest.mark.asyncio
async def test_frames_answered_in_arrival_order(dispatcher, audit):
    conn = FakeConnection(["ping", get_nonce(1), get_nonce(2), "ping", get_nonce(3), None])
    count = await Session(conn, dispatcher, audit=audit).run()

    assert count == 5
    assert conn.sent[0] == "pong"
    assert conn.sent[3] == "pong"
    assert [json.loads(s)["id"] for s in (conn.sent[1], conn.sent[2], conn.sent[4])] == [1, 2, 3]


@pytest.mark.asyncio
async def test_binary_frames_discarded(dispatcher, audit):
    conn = FakeConnection([b"\x00\x01", "ping", None])
    assert await Session(conn, dispatcher, audit=audit).run() == 2
    assert conn.sent == ["pong"]


@pytest.mark.asyncio
async def test_read_error_does_not_end_session(dispatcher, audit):
    conn = FakeConnection([TransportError("glitch"), "ping", None])
    assert await Session(conn, dispatcher, audit=audit).run() == 1
    assert conn.sent == ["pong"]


@pytest.mark.asyncio
async def test_read_error_on_closed_connection_ends_session(dispatcher, audit):
    conn = FakeConnection()
    conn.mark_closed()
    conn.feed(TransportError("reset by peer"))
    conn.feed("ping")
    assert await Session(conn, dispatcher, audit=audit).run() == 0
    assert conn.sent == []


@pytest.mark.asyncio
async def test_endless_read_errors_give_up(dispatcher, audit):
    conn = FakeConnection([TransportError("glitch")] * 100)
    assert await Session(conn, dispatcher, audit=audit).run() == 0
    assert conn._queue.qsize() == 100 - MAX_CONSECUTIVE_READ_ERRORS


@pytest.mark.asyncio
async def test_successful_read_resets_error_count(dispatcher, audit):
    burst = [TransportError("glitch")] * (MAX_CONSECUTIVE_READ_ERRORS - 1)
    conn = FakeConnection(burst + ["ping"] + burst + ["ping", None])
    assert await Session(conn, dispatcher, audit=audit).run() == 2
    assert conn.sent == ["pong", "pong"]


@pytest.mark.asyncio
async def test_write_failure_keeps_session_alive(dispatcher, audit):
    conn = FakeConnection(["ping", "ping", None])
    conn.fail_writes = True
    assert await Session(conn, dispatcher, audit=audit).run() == 2


@pytest.mark.asyncio
async def test_malformed_frames_never_end_session(dispatcher, audit):
    conn = FakeConnection(["{oops", "[]", get_nonce(4), None])
    assert await Session(conn, dispatcher, audit=audit).run() == 3
    codes = [json.loads(s)["code"] for s in conn.sent]
    assert codes == [400, 400, 0]


@pytest.mark.asyncio
async def test_deeply_nested_frame_still_answered(dispatcher, audit):
    conn = FakeConnection(["[" * 100000 + "]" * 100000, "ping", None])
    assert await Session(conn, dispatcher, audit=audit).run() == 2
    assert json.loads(conn.sent[0])["code"] == 400
    assert conn.sent[1] == "pong"


@pytest.mark.asyncio
async def test_session_lifecycle_is_audited(dispatcher, audit):
    await Session(FakeConnection([None]), dispatcher, conn_id="c1", audit=audit).run()
    events = [c.args[0] for c in audit.await_args_list]
    assert events == [AuditEventType.SESSION_STARTED, AuditEventType.SESSION_TERMINATED]
    assert audit.await_args.kwargs["conn_id"] == "c1"


@pytest.mark.asyncio
async def test_shutdown_stops_idle_sessions(dispatcher, audit):
    conns = [FakeConnection(["ping"]) for _ in range(3)]
    tasks = [asyncio.create_task(Session(c, dispatcher, audit=audit).run()) for c in conns]

    for _ in range(50):
        if get_active_session_count() == 3 and all(c.sent for c in conns):
            break
        await asyncio.sleep(0.01)
    assert get_active_session_count() == 3

    await shutdown_sessions(timeout=1.0)
    results = await asyncio.gather(*tasks)

    assert results == [1, 1, 1]
    assert get_active_session_count() == 0
    assert all(c.close_code == 1001 for c in conns)
