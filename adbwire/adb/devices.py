"""Device records and the device list enrichment pipeline."""

import asyncio
import re
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union

from .errors import ADBError
from ..util.logging import get_logger

logger = get_logger(__name__)

GETPROP_LINE = re.compile(r"^\[([^\]]*)\]: \[(.*)\]\s*$")

# getprop keys copied onto the record, keyed by property name
GETPROP_FIELDS: Dict[str, str] = {
    "ro.product.model.internal": "modelnumber",
    "ro.build.version.release": "release",
    "ro.build.version.sdk": "sdk",
    "ro.product.brand": "brand",
    "ro.product.device": "device",
    "ro.product.manufacturer": "manufacturer",
    "ro.product.model": "model",
    "ro.product.name": "name",
    "ro.genymotion.version": "genymotion_version",
}

ABI_PREFIX = "ro.product.cpu.abi"

ShellRunner = Callable[[str, str], Awaitable[Union[bytes, str, None]]]


@dataclass
class DeviceRecord:
    """A device or emulator as reported by the ADB server."""

    id: str
    state: str
    emulator: bool = False
    modelnumber: Optional[str] = None
    release: Optional[str] = None
    sdk: Optional[str] = None
    brand: Optional[str] = None
    device: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    name: Optional[str] = None
    genymotion_version: Optional[str] = None
    abi: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Get a human-readable device name."""
        if self.model:
            return f"{self.brand or ''} {self.model} ({self.id})".strip()
        return self.id

    @property
    def api_level(self) -> Optional[int]:
        try:
            return int(self.sdk) if self.sdk else None
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class EmulatorIdentity:
    """Decides whether a device id belongs to an emulator."""

    async def is_emulator(self, device_id: str) -> bool:
        raise NotImplementedError


class SerialEmulatorIdentity(EmulatorIdentity):
    """Treats ``emulator-<port>`` serials as Android emulators."""

    SERIAL = re.compile(r"^emulator-(\d+)$")

    async def is_emulator(self, device_id: str) -> bool:
        return bool(self.SERIAL.match(device_id))


def parse_device_list(data: Union[bytes, str, None]) -> List[DeviceRecord]:
    """Parse ``host:devices`` output into bare device records."""
    if data is None:
        return []
    text = data.decode("utf-8", "replace") if isinstance(data, bytes) else data

    records = []
    for line in text.split("\n"):
        parts = line.split()
        if len(parts) <= 1:
            continue
        records.append(DeviceRecord(id=parts[0], state=parts[1]))
    return records


def apply_getprop(record: DeviceRecord, output: Union[bytes, str]) -> DeviceRecord:
    """Copy the interesting ``getprop`` values onto a device record."""
    text = output.decode("utf-8", "replace") if isinstance(output, bytes) else output

    for line in text.split("\n"):
        match = GETPROP_LINE.match(line)
        if not match:
            continue
        key, value = match.group(1), match.group(2)

        if key in GETPROP_FIELDS:
            setattr(record, GETPROP_FIELDS[key], value)
        elif key.startswith(ABI_PREFIX):
            for abi in (a.strip() for a in value.split(",")):
                if abi and abi not in record.abi:
                    record.abi.append(abi)

    return record


class DeviceEnricher:
    """Turns a raw device list into enriched :class:`DeviceRecord` objects.

    Devices in the ``device`` state are queried with ``getprop``. Records
    reporting a Genymotion version are emulators; the rest get their emulator
    flag from the identity collaborator. Lookups for different devices run
    concurrently and a failing lookup leaves the record un-enriched instead
    of failing the whole listing.
    """

    def __init__(self, shell: ShellRunner, identity: EmulatorIdentity):
        self.shell = shell
        self.identity = identity

    async def enrich(self, data: Union[bytes, str, None]) -> List[DeviceRecord]:
        records = parse_device_list(data)
        results = await asyncio.gather(*(self._enrich_one(r) for r in records))
        return [r for r in results if r]

    async def _enrich_one(self, record: DeviceRecord) -> DeviceRecord:
        if record.state == "device":
            try:
                output = await self.shell(record.id, "getprop")
                if output:
                    apply_getprop(record, output)
            except (ADBError, OSError) as e:
                logger.debug(f"getprop failed for {record.id}: {e}")

        # Genymotion VMs show up as <ip>:<port> serials
        if record.genymotion_version:
            record.emulator = True
            return record

        try:
            record.emulator = bool(await self.identity.is_emulator(record.id))
        except (ADBError, OSError) as e:
            logger.debug(f"Unable to determine whether {record.id} is an emulator: {e}")
            record.emulator = False

        return record
