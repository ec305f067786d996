import asyncio
import logging
from datetime import datetime
from typing import Optional

from ble_device import ConnectedSession, HeartRateSample

logger = logging.getLogger(__name__)


class MalformedPayloadError(ValueError):
    """Notification too short to carry a heart rate value."""


def decode_heart_rate(payload: bytes) -> int:
    """
    Beats per minute from a Heart Rate Measurement notification.

    The value is the second byte; byte 0 holds the flags.
    """
    if len(payload) < 2:
        raise MalformedPayloadError(
            f"expected at least 2 bytes, got {len(payload)} ({bytes(payload).hex() or 'empty'})"
        )
    return payload[1]


def _local_now() -> datetime:
    return datetime.now().astimezone()


class HeartRatePipeline:
    """
    Forwarding loop: wait for a notification, decode, forward, log.

    With ``timeout`` set, a silent or ended stream triggers ``reconnect``
    (a coroutine function taking the old session and returning a new one).
    Without it, the loop simply returns when the stream ends.
    """

    def __init__(self, forwarder, reconnect, log=None, timeout: Optional[float] = None, now=_local_now):
        self.forwarder = forwarder
        self.reconnect = reconnect
        self.log = log
        self.timeout = timeout
        self._now = now

    def handle_payload(self, session: ConnectedSession, payload: bytes) -> Optional[HeartRateSample]:
        """Decode one payload and pass it on. Malformed payloads are logged and dropped."""
        logger.debug("[BLE] Received data from %s: %s", session.name, payload.hex())
        try:
            bpm = decode_heart_rate(payload)
        except MalformedPayloadError as e:
            logger.warning("[BLE] Discarding notification from %s: %s", session.name, e)
            return None

        sample = HeartRateSample(bpm=bpm, received_at=self._now())
        if self.forwarder.forward(sample) and self.log is not None:
            self.log.write(sample)
        return sample

    async def run(self, session: ConnectedSession) -> ConnectedSession:
        """Run until the stream ends (no timeout configured) or forever. Returns the last session."""
        while True:
            try:
                payload = await session.next_notification(self.timeout)
            except asyncio.TimeoutError:
                logger.info(
                    "[BLE] Timed out while waiting for a notification from %s", session.name
                )
                session = await self.reconnect(session)
                continue

            if payload is None:
                logger.info("[BLE] Notification stream from %s ended", session.name)
                if self.timeout is None:
                    return session
                session = await self.reconnect(session)
                continue

            self.handle_payload(session, payload)
