"""HTTP surface and the /ws endpoint over in-memory stores."""
import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from auth.tokens import issue_token
from gateway.dispatcher import CommandDispatcher
from fakes import MemoryDeviceRegistry, MemoryNonceStore, User
from server import app, get_dispatcher


@pytest.fixture
def dispatcher():
    return CommandDispatcher(MemoryNonceStore(), MemoryDeviceRegistry(), audit=AsyncMock())


@pytest.fixture
def client(dispatcher):
    # No lifespan: MongoDB is never touched
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["env"] == "dev"
    assert body["active_sessions"] == 0


def test_auth_me_returns_claims(client):
    token = issue_token("5user", "684060212")
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "5user"
    assert resp.json()["device_id"] == "684060212"


@pytest.mark.parametrize("header", [None, "Bearer", "Bearer not.a.token", "Basic abc"])
def test_auth_me_rejects_missing_or_bad_credentials(client, header):
    headers = {"Authorization": header} if header else {}
    resp = client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"


def test_websocket_ping_and_commands(client):
    user = User()
    with client.websocket_connect("/ws") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        ws.send_text(json.dumps({"id": 1, "method": "getNonce", "token": "", "params": {"user_id": user.address}}))
        assert json.loads(ws.receive_text())["result"] == {"nonce": "0"}

        ws.send_bytes(b"\x00")
        ws.send_text(json.dumps({
            "id": 2, "method": "login", "token": "",
            "params": {"user_id": user.address, "device_id": "684060212", "nonce": 1, "signature": user.sign(1)},
        }))
        login = json.loads(ws.receive_text())
        assert login["id"] == 2
        assert login["code"] == 0

    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {login['result']['token']}"})
    assert resp.json()["user_id"] == user.address
