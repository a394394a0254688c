import asyncio

from fakes import FakeConnection
from peerdrop.sessions import ClientRegistry


def test_connect_keys_by_observed_address():
    registry = ClientRegistry()
    session = registry.connect(FakeConnection(), "::ffff:192.168.1.4")
    assert session.address == "192.168.1.4"
    assert registry.get("192.168.1.4") is session


def test_register_rekeys_session():
    registry = ClientRegistry()
    session = registry.connect(FakeConnection(), "127.0.0.1")
    registry.register(session, "10.0.0.5")
    assert registry.get("127.0.0.1") is None
    assert registry.get("10.0.0.5") is session
    assert len(registry) == 1


def test_later_registration_evicts_without_closing():
    registry = ClientRegistry()
    first_conn = FakeConnection()
    first = registry.connect(first_conn, "127.0.0.1")
    second = registry.connect(FakeConnection(), "127.0.0.2")
    registry.register(first, "10.0.0.5")
    registry.register(second, "10.0.0.5")
    assert registry.get("10.0.0.5") is second

    # the evicted session can still be written to
    assert asyncio.run(first.send({"type": "pong"})) is True
    assert first_conn.sent == [{"type": "pong"}]

    # and its disconnect must not drop the newer mapping
    registry.disconnect(first)
    assert registry.get("10.0.0.5") is second
    registry.disconnect(second)
    assert registry.get("10.0.0.5") is None
    assert len(registry) == 0


def test_send_failure_reported():
    registry = ClientRegistry()
    session = registry.connect(FakeConnection(fail=True), "10.0.0.5")
    assert asyncio.run(session.send({"type": "pong"})) is False
