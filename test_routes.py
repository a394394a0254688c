from fastapi.testclient import TestClient

from peerdrop.app import create_app
from peerdrop.config import Settings
from peerdrop.models import EnvelopeType, SignalingEnvelope


def make_app(local="127.0.0.1"):
    settings = Settings(discovery_enabled=False, settle_delay=0, late_delay=0)
    return create_app(settings, local_address=local)


def test_health_without_peers():
    client = TestClient(make_app())
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == "running"
    assert body["localAddress"] == "127.0.0.1"
    assert body["timestamp"]


def test_ip_and_peers():
    app = make_app()
    client = TestClient(app)
    assert client.get("/ip").json() == {"success": True, "localAddress": "127.0.0.1"}
    assert client.get("/peers").json() == {"success": True, "peers": []}


def test_discover_with_no_peers():
    client = TestClient(make_app())
    resp = client.post("/discover")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "peers": [], "localAddress": "127.0.0.1"}


def test_forward_without_client():
    client = TestClient(make_app())
    envelope = {"type": "offer", "fromAddress": "10.0.0.7", "payload": {"sdp": "v=0"}}
    resp = client.post("/forward", json=envelope)
    assert resp.status_code == 200
    assert resp.json() == {"success": False, "delivered": False}


def test_poll_drains_once():
    app = make_app()
    app.state.node.pending.put(
        "10.0.0.9", SignalingEnvelope(type=EnvelopeType.OFFER, from_address="127.0.0.1")
    )
    client = TestClient(app)

    first = client.get("/poll-signaling", params={"address": "10.0.0.9"}).json()
    assert first["success"] is True
    assert first["count"] == 1
    assert first["messages"][0]["type"] == "offer"
    assert first["messages"][0]["fromAddress"] == "127.0.0.1"
    assert "storedAt" in first["messages"][0]

    second = client.get("/poll-signaling", params={"address": "10.0.0.9"}).json()
    assert second == {"success": True, "messages": [], "count": 0}


def test_websocket_session():
    app = make_app()
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert hello["yourAddress"] == "127.0.0.1"

            ws.send_json({"type": "register", "address": "127.0.0.1"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            resp = client.post(
                "/forward", json={"type": "answer", "fromAddress": "10.0.0.7", "payload": "sdp"}
            )
            assert resp.json() == {"success": True, "delivered": True}
            delivered = ws.receive_json()
            assert delivered["type"] == "answer"
            assert delivered["fromAddress"] == "10.0.0.7"
            assert delivered["payload"] == "sdp"


def test_websocket_local_connection_request():
    app = make_app()
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
            ws_a.receive_json()
            ws_b.receive_json()
            ws_b.send_json({"type": "register", "address": "127.0.0.1"})
            ws_b.send_json({"type": "ping"})
            assert ws_b.receive_json() == {"type": "pong"}

            ws_a.send_json(
                {
                    "type": "connection_request",
                    "targetAddress": "127.0.0.1",
                    "fromName": "alice",
                    "fromAddress": "6.6.6.6",
                }
            )
            envelope = ws_b.receive_json()
            assert envelope["type"] == "connection_request"
            assert envelope["fromName"] == "alice"
            assert envelope["fromAddress"] != "6.6.6.6"

            peers = client.get("/peers").json()["peers"]
            assert [p["displayName"] for p in peers] == ["alice"]


def test_cors_headers_for_browser_ui():
    client = TestClient(make_app())
    resp = client.get("/peers", headers={"Origin": "http://localhost:3000"})
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"

    preflight = client.options(
        "/forward",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert preflight.status_code == 200
    assert "access-control-allow-methods" in preflight.headers


def test_websocket_binary_frame_keeps_session():
    app = make_app()
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_bytes(b'{"type": "ping"}')
            assert ws.receive_json() == {"type": "pong"}
            ws.send_bytes(b"\xff\xfe")
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


def test_forwarded_ping_not_delivered():
    app = make_app()
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            resp = client.post("/forward", json={"type": "ping", "fromAddress": "10.0.0.7"})
            assert resp.status_code == 200
            assert resp.json() == {"success": False, "delivered": False}
            # the next frame is our own pong, not the forwarded ping
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
