"""
BLE connection lifecycle for a heart-rate peripheral.

Select a target, connect (retrying), check the GATT table, read the battery
level once and subscribe to heart-rate notifications. The result is a
ConnectedSession whose queue the notification pipeline consumes.
"""

import asyncio
import logging
from typing import Optional

from bleak.exc import BleakError

from ble_device import Adapter, ConnectedSession
from ble_utils import select_peripheral

logger = logging.getLogger(__name__)

# Standard GATT characteristics
BATTERY_LEVEL_CHAR_UUID = "00002a19-0000-1000-8000-00805f9b34fb"  # Battery Level (read)
HEART_RATE_CHAR_UUID = "00002a37-0000-1000-8000-00805f9b34fb"     # Heart Rate Measurement (notify)

# Errors a flaky radio link produces; all of them are worth another try
TRANSIENT_ERRORS = (BleakError, asyncio.TimeoutError, OSError)


class MissingCharacteristicError(Exception):
    """The peripheral connected but is not a conforming heart-rate device."""


class ConnectionFailedError(Exception):
    """Raised only when a connect attempt cap is configured and exhausted."""


async def _connect_with_retry(client, name, retry_delay=0.0, max_attempts=None):
    """
    Call ``client.connect()`` until it succeeds.

    Retries forever by default (device out of range or busy advertising).
    """
    attempts = 0
    while True:
        attempts += 1
        try:
            await client.connect()
            return
        except TRANSIENT_ERRORS as e:
            logger.warning("[BLE] Failed to connect to %s: %r", name, e)
            if max_attempts is not None and attempts >= max_attempts:
                raise ConnectionFailedError(
                    f"Gave up connecting to {name} after {attempts} attempts"
                ) from e
            await asyncio.sleep(retry_delay)


def _require_characteristic(client, uuid, label, name):
    characteristic = client.services.get_characteristic(uuid)
    if characteristic is None:
        raise MissingCharacteristicError(f"{name} has no {label} characteristic ({uuid})")
    return characteristic


async def _subscribe(session: ConnectedSession):
    client = session.client
    battery_char = _require_characteristic(client, BATTERY_LEVEL_CHAR_UUID, "battery level", session.name)
    heart_rate_char = _require_characteristic(client, HEART_RATE_CHAR_UUID, "heart rate", session.name)

    battery_level = await client.read_gatt_char(battery_char)
    if battery_level:
        logger.info("[BLE] Battery level of %s: %d%%", session.name, battery_level[0])
    else:
        logger.warning("[BLE] Empty battery level reading from %s", session.name)

    # Drop end-of-stream markers left behind by earlier failed attempts
    while not session.notifications.empty():
        session.notifications.get_nowait()

    def heart_rate_handler(sender, data: bytearray):
        session.push(data)

    await client.start_notify(heart_rate_char, heart_rate_handler)
    logger.info("[BLE] Subscribed to heart rate characteristic of %s", session.name)


async def connect_to_peripheral(
    adapter: Adapter,
    address: Optional[str] = None,
    provider=None,
    retry_delay: float = 0.0,
    max_attempts: Optional[int] = None,
    scan_duration: float = 1.0,
    poll_interval: float = 1.0,
) -> ConnectedSession:
    """
    Connect to a heart-rate peripheral and subscribe to its notifications.

    Args:
        adapter: Local radio to scan and connect with
        address: Known peripheral address; None asks the operator to pick one
        provider: Selection provider for interactive mode (terminal by default)
        retry_delay: Pause between failed connect attempts
        max_attempts: Cap on connect attempts; None retries forever

    Raises:
        MissingCharacteristicError: battery level or heart rate characteristic absent
        ConnectionFailedError: only when ``max_attempts`` is set and used up
    """
    peripheral = await select_peripheral(
        adapter, address, provider, scan_duration=scan_duration, poll_interval=poll_interval
    )
    session = ConnectedSession(address=peripheral.address, name=peripheral.display_name)

    def handle_disconnect(client):
        logger.info("[BLE] %s [%s] disconnected", session.name, session.address)
        session.end_stream()

    session.client = adapter.client(
        peripheral.device or peripheral.address, disconnected_callback=handle_disconnect
    )

    while True:
        logger.info("[BLE] Connecting to %s [%s]", session.name, session.address)
        await _connect_with_retry(session.client, session.name, retry_delay, max_attempts)
        logger.info("[BLE] Connected to %s [%s]", session.name, session.address)

        try:
            await _subscribe(session)
            return session
        except MissingCharacteristicError:
            await session.close()
            raise
        except TRANSIENT_ERRORS as e:
            logger.warning("[BLE] Setting up %s failed, reconnecting: %s", session.name, e)
            await session.close()


async def reconnect(adapter: Adapter, session: ConnectedSession, **options) -> ConnectedSession:
    """Drop ``session`` and build a new one for the same address, without prompting."""
    logger.info("[BLE] Reconnecting to %s [%s]", session.name, session.address)
    await session.close()
    return await connect_to_peripheral(adapter, session.address, **options)
