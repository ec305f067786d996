import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

logger = logging.getLogger(__name__)

EMPTY_NAME = "(Empty)"


class Adapter:
    """Local Bluetooth radio used for scanning and connecting.

    ``name`` is the host adapter (e.g. ``hci0``) handed to bleak; ``None``
    lets the platform backend pick its default adapter.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name

    def _backend_kwargs(self):
        return {"adapter": self.name} if self.name else {}

    def scanner(self):
        return BleakScanner(**self._backend_kwargs())

    def client(self, device, disconnected_callback=None):
        return BleakClient(
            device,
            disconnected_callback=disconnected_callback,
            **self._backend_kwargs(),
        )

    def __repr__(self):
        return f"Adapter({self.name or 'default'})"


@dataclass(frozen=True)
class PeripheralRef:
    """A remote device seen during a scan. Two refs are equal when their addresses are."""
    address: str
    name: Optional[str] = field(default=None, compare=False)
    device: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "address", self.address.upper())

    @property
    def display_name(self) -> str:
        return self.name or EMPTY_NAME


@dataclass(frozen=True)
class HeartRateSample:
    bpm: int
    received_at: datetime


@dataclass
class ConnectedSession:
    """Live state of one connect+subscribe cycle.

    Notifications are pushed onto ``notifications`` by the GATT callback; a
    ``None`` entry marks the end of the stream (peripheral disconnected).
    """
    address: str
    name: str
    client: Any = field(default=None, repr=False)
    notifications: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)

    def push(self, data):
        self.notifications.put_nowait(bytes(data))

    def end_stream(self):
        self.notifications.put_nowait(None)

    async def next_notification(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """Wait for the next payload; ``None`` means the stream ended.

        Raises ``asyncio.TimeoutError`` when ``timeout`` expires first.
        """
        if timeout is None:
            return await self.notifications.get()
        return await asyncio.wait_for(self.notifications.get(), timeout)

    async def close(self):
        """Disconnect the client if it is still up. Errors are logged, not raised."""
        if self.client is None or not self.client.is_connected:
            return
        try:
            await self.client.disconnect()
            logger.info("[BLE] Disconnected from %s [%s]", self.name, self.address)
        except EOFError:
            # D-Bus connection already closed
            pass
        except (BleakError, OSError) as e:
            logger.warning("[BLE] Disconnect error for %s: %s", self.name, e)
