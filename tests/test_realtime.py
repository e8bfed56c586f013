"""Realtime hub delivery rules and the WebSocket channel."""

import datetime

import pytest
from fastapi.testclient import TestClient

from shortener.enums import ConnectivityState
from shortener.events import URLClicked, URLCreated, URLDeleted
from shortener.realtime import ConnectionHub
from shortener.schemas import URLRecord


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail
        self.accepted = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self) -> None:
        pass

    def events(self) -> list[str]:
        return [m["event"] for m in self.sent]


def make_record() -> URLRecord:
    return URLRecord(
        id="r1",
        original_url="https://github.com",
        short_code="abc1234",
        short_url="http://sho.rt/abc1234",
        clicks=0,
        created_at=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
    )


# ============================================================================
# HUB DELIVERY RULES
# ============================================================================


@pytest.mark.asyncio
async def test_new_record_goes_to_everyone() -> None:
    hub = ConnectionHub()
    requester_ws, other_ws = FakeWebSocket(), FakeWebSocket()
    requester = await hub.connect(requester_ws)
    await hub.connect(other_ws)

    await hub.publish(URLCreated(record=make_record(), is_existing=False, origin=requester.id))

    assert requester_ws.events() == ["created"]
    assert other_ws.events() == ["created"]
    assert other_ws.sent[0]["data"]["shortCode"] == "abc1234"


@pytest.mark.asyncio
async def test_existing_record_goes_only_to_requester() -> None:
    hub = ConnectionHub()
    requester_ws, other_ws = FakeWebSocket(), FakeWebSocket()
    requester = await hub.connect(requester_ws)
    await hub.connect(other_ws)

    await hub.publish(URLCreated(record=make_record(), is_existing=True, origin=requester.id))

    assert requester_ws.events() == ["created"]
    assert other_ws.sent == []


@pytest.mark.asyncio
async def test_deleted_and_clicked_go_to_everyone() -> None:
    hub = ConnectionHub()
    requester_ws, other_ws = FakeWebSocket(), FakeWebSocket()
    requester = await hub.connect(requester_ws)
    await hub.connect(other_ws)

    await hub.publish(URLDeleted(record_id="r1", origin=requester.id))
    await hub.publish(URLClicked(record_id="r2", clicks=4))

    for ws in (requester_ws, other_ws):
        assert ws.sent == [
            {"event": "deleted", "data": {"id": "r1"}},
            {"event": "clicked", "data": {"id": "r2", "clicks": 4}},
        ]


@pytest.mark.asyncio
async def test_failed_send_drops_subscriber() -> None:
    hub = ConnectionHub()
    healthy_ws = FakeWebSocket()
    await hub.connect(healthy_ws)
    broken = await hub.connect(FakeWebSocket(fail=True))

    await hub.publish(URLClicked(record_id="r1", clicks=1))

    assert len(hub) == 1
    assert broken.id not in hub
    assert healthy_ws.events() == ["clicked"]


@pytest.mark.asyncio
async def test_connectivity_change_is_broadcast() -> None:
    hub = ConnectionHub()
    ws = FakeWebSocket()
    await hub.connect(ws)

    await hub.connectivity_changed(ConnectivityState.DISCONNECTED)

    assert ws.sent == [{"event": "status", "data": {"storage": "disconnected"}}]


# ============================================================================
# WEBSOCKET CHANNEL
# ============================================================================


def test_subscribe_receives_status_and_snapshot(ws_client: TestClient) -> None:
    ws_client.post("/api/shorten", json={"originalUrl": "github.com"})

    with ws_client.websocket_connect("/ws") as ws:
        assert ws.receive_json() == {"event": "status", "data": {"storage": "connected"}}
        snapshot = ws.receive_json()
        assert snapshot["event"] == "listSnapshot"
        assert [r["originalUrl"] for r in snapshot["data"]] == ["https://github.com"]

        ws.send_json({"event": "requestSnapshot"})
        assert ws.receive_json()["event"] == "listSnapshot"


def test_submit_url_acknowledges_then_creates(ws_client: TestClient) -> None:
    with ws_client.websocket_connect("/ws") as requester, ws_client.websocket_connect("/ws") as other:
        for ws in (requester, other):
            ws.receive_json()
            ws.receive_json()

        requester.send_json({"event": "submitUrl", "data": {"originalUrl": "github.com"}})
        assert requester.receive_json() == {"event": "processing", "data": {"originalUrl": "github.com"}}
        created = requester.receive_json()
        assert created["event"] == "created"
        assert created["data"]["originalUrl"] == "https://github.com"
        assert other.receive_json() == created

        # Resubmission is answered to the requester only
        requester.send_json({"event": "submitUrl", "data": {"originalUrl": "https://github.com"}})
        assert requester.receive_json()["event"] == "processing"
        assert requester.receive_json() == created

        requester.send_json({"event": "requestDelete", "data": {"id": created["data"]["id"]}})
        deleted = {"event": "deleted", "data": {"id": created["data"]["id"]}}
        assert requester.receive_json() == deleted
        assert other.receive_json() == deleted


def test_redirect_broadcasts_click(ws_client: TestClient) -> None:
    record = ws_client.post("/api/shorten", json={"originalUrl": "github.com"}).json()

    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.receive_json()

        response = ws_client.get(f"/{record['shortCode']}", follow_redirects=False)
        assert response.status_code == 307
        assert ws.receive_json() == {"event": "clicked", "data": {"id": record["id"], "clicks": 1}}


@pytest.mark.parametrize(
    "message, error",
    [
        ({"event": "bogus"}, "Unknown event: bogus"),
        ({"event": "submitUrl", "data": {}}, "URL is required"),
        ({"event": "requestDelete", "data": {}}, "URL ID is required"),
        ({"event": "requestDelete", "data": {"id": "missing"}}, "URL not found"),
    ],
)
def test_bad_requests_answer_with_error(ws_client: TestClient, message: dict, error: str) -> None:
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_json(message)
        assert ws.receive_json() == {"event": "error", "data": {"message": error}}


def test_invalid_url_is_acknowledged_then_rejected(ws_client: TestClient) -> None:
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_json({"event": "submitUrl", "data": {"originalUrl": "not a url"}})
        assert ws.receive_json()["event"] == "processing"
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid URL format"}}


def test_malformed_message(ws_client: TestClient) -> None:
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed message"}}
