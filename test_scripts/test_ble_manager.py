import asyncio

import pytest

from ble_manager import (
    BATTERY_LEVEL_CHAR_UUID,
    HEART_RATE_CHAR_UUID,
    ConnectionFailedError,
    MissingCharacteristicError,
    connect_to_peripheral,
    reconnect,
)
from fakes import FakeAdapter, FakeClient, FakeDevice, FakeSelector

HRM = FakeDevice("AA:BB:CC:DD:EE:01", "Polar H10")
FAST = {"poll_interval": 0, "scan_duration": 0}


def test_connect_retries_until_it_succeeds():
    client = FakeClient(connect_failures=3)
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    session = asyncio.run(connect_to_peripheral(adapter, HRM.address, **FAST))

    assert client.connect_calls == 4
    assert client.device is HRM
    assert session.address == HRM.address
    assert session.name == "Polar H10"
    assert session.client is client
    assert HEART_RATE_CHAR_UUID in client.handlers


def test_notifications_land_in_the_session_stream():
    client = FakeClient()
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    async def scenario():
        session = await connect_to_peripheral(adapter, HRM.address, **FAST)
        client.notify(b"\x00\x48")
        return await session.next_notification(timeout=1)

    assert asyncio.run(scenario()) == b"\x00\x48"


def test_disconnect_ends_the_stream():
    client = FakeClient()
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    async def scenario():
        session = await connect_to_peripheral(adapter, HRM.address, **FAST)
        client.disconnected_callback(client)
        return await session.next_notification(timeout=1)

    assert asyncio.run(scenario()) is None


def test_interactive_connect_uses_placeholder_name():
    nameless = FakeDevice("AA:BB:CC:DD:EE:02")
    adapter = FakeAdapter(scans=[[nameless]])

    session = asyncio.run(connect_to_peripheral(adapter, None, FakeSelector(1), **FAST))

    assert session.address == nameless.address
    assert session.name == "(Empty)"


def test_missing_heart_rate_characteristic_is_fatal():
    client = FakeClient(uuids=[BATTERY_LEVEL_CHAR_UUID])
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    with pytest.raises(MissingCharacteristicError):
        asyncio.run(connect_to_peripheral(adapter, HRM.address, **FAST))
    assert client.connect_calls == 1
    assert not client.is_connected


def test_missing_battery_characteristic_is_fatal():
    adapter = FakeAdapter(scans=[[HRM]], clients=[FakeClient(uuids=[HEART_RATE_CHAR_UUID])])

    with pytest.raises(MissingCharacteristicError):
        asyncio.run(connect_to_peripheral(adapter, HRM.address, **FAST))


def test_attempt_cap_gives_up():
    client = FakeClient(connect_failures=10)
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    with pytest.raises(ConnectionFailedError):
        asyncio.run(connect_to_peripheral(adapter, HRM.address, max_attempts=3, **FAST))
    assert client.connect_calls == 3


def test_reconnect_keeps_the_address_and_closes_the_old_session():
    first, second = FakeClient(), FakeClient(connect_failures=1)
    adapter = FakeAdapter(scans=[[HRM]], clients=[first, second])

    async def scenario():
        old = await connect_to_peripheral(adapter, HRM.address, **FAST)
        new = await reconnect(adapter, old, **FAST)
        return old, new

    old, new = asyncio.run(scenario())

    assert new is not old
    assert new.address == old.address
    assert new.client is second
    assert first.disconnect_calls == 1
    assert second.is_connected


def test_gatt_error_during_setup_reconnects_without_stale_end_marker():
    client = FakeClient(read_failures=1)
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    async def scenario():
        session = await connect_to_peripheral(adapter, HRM.address, **FAST)
        client.notify(b"\x00\x48")
        return session, await session.next_notification(timeout=1)

    session, payload = asyncio.run(scenario())

    assert client.connect_calls == 2
    assert client.read_calls == 2
    assert client.disconnect_calls == 1
    assert session.client is client
    assert payload == b"\x00\x48"


def test_retry_delay_is_waited_between_attempts(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    client = FakeClient(connect_failures=2)
    adapter = FakeAdapter(scans=[[HRM]], clients=[client])

    asyncio.run(connect_to_peripheral(adapter, HRM.address, retry_delay=0.25, **FAST))

    assert client.connect_calls == 3
    assert delays.count(0.25) == 2
