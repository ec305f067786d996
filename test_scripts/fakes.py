"""In-memory stand-ins for bleak scanners/clients, the terminal menu and the UDP socket."""

from bleak.exc import BleakError

from ble_manager import BATTERY_LEVEL_CHAR_UUID, HEART_RATE_CHAR_UUID


class FakeDevice:
    def __init__(self, address, name=None):
        self.address = address
        self.name = name


class FakeAdvertisement:
    def __init__(self, local_name=None):
        self.local_name = local_name


class FakeScanner:
    def __init__(self, adapter):
        self.adapter = adapter
        self.running = False

    async def start(self):
        self.running = True

    async def stop(self):
        self.running = False

    @property
    def discovered_devices_and_advertisement_data(self):
        return {
            device.address: (device, FakeAdvertisement(device.name))
            for device in self.adapter.next_scan()
        }


class FakeServices:
    def __init__(self, uuids):
        self.uuids = set(uuids)

    def get_characteristic(self, uuid):
        return uuid if uuid in self.uuids else None


class FakeClient:
    def __init__(self, connect_failures=0, uuids=(BATTERY_LEVEL_CHAR_UUID, HEART_RATE_CHAR_UUID),
                 battery=b"\x55", read_failures=0):
        self.connect_failures = connect_failures
        self.read_failures = read_failures
        self.read_calls = 0
        self.services = FakeServices(uuids)
        self.battery = battery
        self.is_connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.handlers = {}
        self.device = None
        self.disconnected_callback = None

    async def connect(self):
        self.connect_calls += 1
        if self.connect_failures:
            self.connect_failures -= 1
            raise BleakError("Device is out of range")
        self.is_connected = True

    async def disconnect(self):
        self.is_connected = False
        self.disconnect_calls += 1
        if self.disconnected_callback:
            self.disconnected_callback(self)

    async def read_gatt_char(self, characteristic):
        self.read_calls += 1
        if self.read_failures:
            self.read_failures -= 1
            raise BleakError("ATT error")
        return bytearray(self.battery)

    async def start_notify(self, characteristic, handler):
        self.handlers[characteristic] = handler

    def notify(self, data):
        for handler in self.handlers.values():
            handler(None, bytearray(data))


class FakeAdapter:
    """Each scanner poll pops the next scripted scan result; the last one repeats."""

    def __init__(self, scans=(), clients=()):
        self.scans = [list(scan) for scan in scans]
        self.clients = list(clients)
        self.scanners = []
        self.created_clients = []

    def next_scan(self):
        if not self.scans:
            return []
        if len(self.scans) > 1:
            return self.scans.pop(0)
        return self.scans[0]

    def scanner(self):
        scanner = FakeScanner(self)
        self.scanners.append(scanner)
        return scanner

    def client(self, device, disconnected_callback=None):
        client = self.clients.pop(0) if self.clients else FakeClient()
        client.device = device
        client.disconnected_callback = disconnected_callback
        self.created_clients.append(client)
        return client


class FakeSelector:
    """Answers menu prompts with scripted indexes and remembers what it was shown."""

    def __init__(self, *choices):
        self.choices = list(choices)
        self.prompts = []

    async def list_options(self, prompt, labels):
        self.prompts.append((prompt, list(labels)))
        return self.choices.pop(0)


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.closed = False

    def sendto(self, data, address):
        self.sent.append((data, address))

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now
