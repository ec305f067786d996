"""
OSC output for heart-rate samples.

Two message policies:
- ContinuousPolicy: every sample, as a 0.0-1.0 float on /avatar/parameters/HeartRate
- RateLimitedTextPolicy: at most one chatbox text message per interval on /chatbox/input
"""

import logging
import socket
import time
from typing import Optional, Tuple

from pythonosc.osc_message import OscMessage
from pythonosc.osc_message_builder import OscMessageBuilder

from ble_device import HeartRateSample

logger = logging.getLogger(__name__)

HEART_RATE_ADDRESS = "/avatar/parameters/HeartRate"
CHATBOX_ADDRESS = "/chatbox/input"

DEFAULT_RECEIVER = "127.0.0.1:9000"
DEFAULT_SENDER = "127.0.0.1:9001"

BPM_MAX = 255.0


def parse_host_port(text: str) -> Tuple[str, int]:
    """
    Split ``host:port`` into a socket address. Raises ValueError on bad input.

    IPv6 hosts go in brackets, e.g. ``[::1]:9000``.
    """
    host, sep, port = text.strip().rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not sep or not host:
        raise ValueError(f"expected host:port, got {text!r}")
    port = int(port)
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in {text!r}")
    return host, port


def address_family(host: str):
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def normalize_bpm(bpm: int) -> float:
    return bpm / BPM_MAX


def build_message(address: str, *args) -> OscMessage:
    builder = OscMessageBuilder(address=address)
    for arg in args:
        builder.add_arg(arg)
    return builder.build()


class ContinuousPolicy:
    """Forward every sample as a normalized float."""

    def message_for(self, sample: HeartRateSample, now: float) -> Optional[OscMessage]:
        return build_message(HEART_RATE_ADDRESS, normalize_bpm(sample.bpm))


class RateLimitedTextPolicy:
    """
    Forward a chatbox text at most once every ``min_interval`` seconds.

    The two flags after the text are the chatbox input type: send
    immediately (skip the keyboard) and play the notification sound.
    """

    def __init__(self, min_interval: float = 2.0, template: str = "Heart rate: {bpm} bpm"):
        self.min_interval = min_interval
        self.template = template
        self._last_sent = None

    def message_for(self, sample: HeartRateSample, now: float) -> Optional[OscMessage]:
        if self._last_sent is not None and now - self._last_sent < self.min_interval:
            return None
        self._last_sent = now
        return build_message(CHATBOX_ADDRESS, self.template.format(bpm=sample.bpm), True, False)


class OscForwarder:
    """Owns the UDP socket bound to ``sender`` and sends policy messages to ``receiver``."""

    def __init__(self, receiver, sender, policy=None, clock=time.monotonic, sock=None):
        self.receiver = receiver
        self.policy = policy or ContinuousPolicy()
        self._clock = clock
        if sock is None:
            sock = socket.socket(address_family(sender[0]), socket.SOCK_DGRAM)
            try:
                sock.bind(sender)
            except OSError:
                sock.close()
                raise
            logger.info("[OSC] Bound to address %s:%d", *sender)
        self._sock = sock

    def forward(self, sample: HeartRateSample) -> bool:
        """Send the policy's message for ``sample``. Returns False when nothing was sent."""
        message = self.policy.message_for(sample, self._clock())
        if message is None:
            logger.debug("[OSC] Skipped %d bpm, sent too recently", sample.bpm)
            return False

        self._sock.sendto(message.dgram, self.receiver)
        logger.info(
            "[OSC] Sent message to host [%s:%d]: %s %s",
            self.receiver[0], self.receiver[1], message.address, message.params,
        )
        return True

    def close(self):
        self._sock.close()
