import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import List, Optional

from ble_device import Adapter, PeripheralRef

logger = logging.getLogger(__name__)

SCAN_AGAIN = "[Scan again]"

# Where BlueZ lists host adapters (hci0, hci1, ...)
ADAPTER_SYSFS = Path("/sys/class/bluetooth")

_MAC_DELIMITED = re.compile(r"^[0-9A-Fa-f]{2}([:-][0-9A-Fa-f]{2}){5}$")
_MAC_PLAIN = re.compile(r"^[0-9A-Fa-f]{12}$")


def parse_address(text: Optional[str]) -> Optional[str]:
    """
    Normalize a peripheral address given on the command line.

    Accepts ``AA:BB:CC:DD:EE:FF``, ``AA-BB-...``, ``AABBCCDDEEFF`` and the
    UUID identifiers CoreBluetooth uses instead of MAC addresses.
    Returns None when the text is none of those.
    """
    if not text:
        return None
    text = text.strip()
    if _MAC_DELIMITED.match(text):
        return text.replace("-", ":").upper()
    if _MAC_PLAIN.match(text):
        return ":".join(text[i:i + 2] for i in range(0, 12, 2)).upper()
    try:
        return str(uuid.UUID(text)).upper()
    except ValueError:
        return None


def display_label(ref: PeripheralRef) -> str:
    """Menu entry for a peripheral: its advertised name, or a placeholder."""
    return ref.display_name


def _discovered(scanner) -> List[PeripheralRef]:
    """Peripherals the scanner currently reports, in the scanner's order."""
    return [
        PeripheralRef(device.address, adv.local_name or device.name, device)
        for device, adv in scanner.discovered_devices_and_advertisement_data.values()
    ]


async def scan(adapter: Adapter, duration: float) -> List[PeripheralRef]:
    """
    Scan for ``duration`` seconds and return whatever the adapter reports as visible.

    An empty list is a valid outcome; callers decide whether to rescan.
    """
    scanner = adapter.scanner()
    await scanner.start()
    try:
        await asyncio.sleep(duration)
    finally:
        await scanner.stop()
    return _discovered(scanner)


async def scan_for_address(adapter: Adapter, address: str, poll_interval: float = 1.0) -> PeripheralRef:
    """
    Keep scanning until a peripheral with ``address`` shows up.

    Never gives up on its own; wrap it in ``asyncio.wait_for`` to bound it.
    """
    target = address.upper()
    logger.info("[BLE] Scanning for peripheral with address %s", target)

    scanner = adapter.scanner()
    await scanner.start()
    try:
        peripheral = None
        while peripheral is None:
            await asyncio.sleep(poll_interval)
            peripheral = next(
                (ref for ref in _discovered(scanner) if ref.address == target), None
            )
    finally:
        await scanner.stop()

    logger.info("[BLE] Peripheral with address %s found", target)
    return peripheral


class TerminalSelector:
    """Numbered menu on the terminal. ``list_options`` returns the chosen index."""

    def __init__(self, default: int = 0):
        self.default = default

    async def list_options(self, prompt: str, labels: List[str]) -> int:
        print(f"\n{prompt}:")
        for idx, label in enumerate(labels):
            print(f"  {idx}. {label}")

        while True:
            # input() blocks, keep it off the event loop
            choice = await asyncio.to_thread(
                input, f"Select (0-{len(labels) - 1}) [{self.default}]: "
            )
            if not choice.strip():
                return self.default
            try:
                return int(choice)
            except ValueError:
                print("Please enter a number.")


async def interactive_peripheral_scan(adapter: Adapter, provider, duration: float = 1.0) -> PeripheralRef:
    """
    Scan, show the results and let the operator pick one.

    Loops (rescanning) on an empty scan, on "[Scan again]" and on an
    out-of-range choice. There is deliberately no iteration cap.
    """
    while True:
        peripherals = await scan(adapter, duration)
        if not peripherals:
            logger.info("[BLE] No peripherals found, scanning again")
            continue

        labels = [SCAN_AGAIN] + [display_label(ref) for ref in peripherals]
        choice = await provider.list_options("Select bluetooth peripheral", labels)
        if choice == 0:
            logger.info("[BLE] User chose to scan again")
            continue

        # Account for the "scan again" item
        index = choice - 1
        if 0 <= index < len(peripherals):
            return peripherals[index]
        logger.info("[BLE] Selection %s is out of range, scanning again", choice)


async def select_peripheral(
    adapter: Adapter,
    address: Optional[str] = None,
    provider=None,
    scan_duration: float = 1.0,
    poll_interval: float = 1.0,
) -> PeripheralRef:
    """Resolve a known address or an interactive pick to a single peripheral."""
    if address is not None:
        return await scan_for_address(adapter, address, poll_interval)
    if provider is None:
        provider = TerminalSelector()
    return await interactive_peripheral_scan(adapter, provider, scan_duration)


def list_adapters(sysfs: Path = ADAPTER_SYSFS) -> List[str]:
    """Host adapter names; empty where the platform does not expose them."""
    if not sysfs.is_dir():
        return []
    return sorted(p.name for p in sysfs.iterdir() if p.name.startswith("hci"))


async def select_adapter(provider=None, name: Optional[str] = None, sysfs: Path = ADAPTER_SYSFS) -> Adapter:
    """
    Pick the radio for this run.

    An explicit ``name`` wins. With zero or one adapter listed the choice is
    automatic; otherwise the operator is asked.
    """
    if name:
        return Adapter(name)

    names = list_adapters(sysfs)
    if len(names) <= 1:
        adapter = Adapter(names[0] if names else None)
        logger.info("[BLE] Using %r", adapter)
        return adapter

    if provider is None:
        provider = TerminalSelector()
    while True:
        choice = await provider.list_options("Select bluetooth adapter", names)
        if 0 <= choice < len(names):
            adapter = Adapter(names[choice])
            logger.info("[BLE] Using %r", adapter)
            return adapter
