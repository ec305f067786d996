"""
Heart rate BLE -> OSC bridge.

Connects to a BLE heart-rate sensor, forwards every reading as an OSC
message over UDP and optionally logs readings to a CSV file.
"""

import argparse
import asyncio
import functools
import logging
import sys
from datetime import datetime

from bleak.exc import BleakError

from ble_manager import ConnectionFailedError, MissingCharacteristicError, connect_to_peripheral, reconnect
from ble_utils import TerminalSelector, parse_address, select_adapter
from hr_log import HeartRateLog
from notification_handler import HeartRatePipeline
from osc_forwarder import (
    DEFAULT_RECEIVER,
    DEFAULT_SENDER,
    ContinuousPolicy,
    OscForwarder,
    RateLimitedTextPolicy,
    parse_host_port,
)

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Forward BLE heart rate notifications as OSC messages")
    parser.add_argument("-p", "--peripheral-address",
                        help="Peripheral address; omit to pick one interactively")
    parser.add_argument("-r", "--receiver", type=parse_host_port, default=DEFAULT_RECEIVER,
                        help=f"OSC receiver host:port (default {DEFAULT_RECEIVER})")
    parser.add_argument("--sender", type=parse_host_port, default=DEFAULT_SENDER,
                        help=f"Local host:port to send from (default {DEFAULT_SENDER})")
    parser.add_argument("-t", "--timeout-threshold", type=float, default=10.0,
                        help="Seconds without a notification before reconnecting; 0 disables")
    parser.add_argument("-m", "--mode", choices=("continuous", "text"), default="continuous",
                        help="continuous: float parameter per reading; text: rate-limited chatbox text")
    parser.add_argument("--min-interval", type=float, default=2.0,
                        help="Minimum seconds between messages in text mode")
    parser.add_argument("--adapter", help="Host Bluetooth adapter, e.g. hci0")
    parser.add_argument("--log-dir", default=".", help="Directory for the CSV heart rate log")
    parser.add_argument("--no-log", action="store_true", help="Do not write the CSV log")
    parser.add_argument("--retry-delay", type=float, default=0.0,
                        help="Seconds to wait between failed connect attempts")
    parser.add_argument("--max-attempts", type=int, default=None,
                        help="Give up after this many connect attempts (default: never)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def configure_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # bleak is chatty at debug level
    logging.getLogger("bleak").setLevel(logging.INFO)


def build_policy(args):
    if args.mode == "text":
        return RateLimitedTextPolicy(min_interval=args.min_interval)
    return ContinuousPolicy()


async def run_bridge(args, provider=None):
    """Set up socket, log and connection, then run the forwarding loop."""
    started_at = datetime.now()
    provider = provider or TerminalSelector()

    forwarder = OscForwarder(args.receiver, args.sender, build_policy(args))
    log = None
    try:
        if not args.no_log:
            log = HeartRateLog.for_run(args.log_dir, started_at)

        adapter = await select_adapter(provider, args.adapter)

        address = parse_address(args.peripheral_address)
        if args.peripheral_address and address is None:
            logger.warning("Could not parse peripheral address %r, selecting interactively",
                           args.peripheral_address)

        options = {"retry_delay": args.retry_delay, "max_attempts": args.max_attempts}
        session = await connect_to_peripheral(adapter, address, provider, **options)

        timeout = args.timeout_threshold if args.timeout_threshold > 0 else None
        pipeline = HeartRatePipeline(
            forwarder,
            functools.partial(reconnect, adapter, **options),
            log=log,
            timeout=timeout,
        )
        session = await pipeline.run(session)
        await session.close()
    finally:
        forwarder.close()
        if log is not None:
            log.close()


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        asyncio.run(run_bridge(args))
    except (KeyboardInterrupt, EOFError):
        print("\nExiting...")
    except (MissingCharacteristicError, ConnectionFailedError, BleakError, OSError) as e:
        logger.error("Fatal: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
