"""
Device catalog for WCH RISC-V microcontrollers.

Provides a single source of truth for:
- Device identity as reported by the bootloader (variant and type bytes)
- Flash size (used for erase sector counts and image size checks)
- Supported bootloader connections (serial UART and/or USB)

Devices are grouped in families. A device can be addressed by name or by a
"family:device" index string, matching the order of list_families().

Usage:
    from wch_isp.models import list_families, get_device, find_device_by_index

    for family in list_families():
        print(family.name, [d.name for d in family.devices])

    device = get_device("CH32V003F4P6")
    device = find_device_by_index("0:0")
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from wch_isp.errors import DeviceNotFoundError
from wch_isp.utils.formatting import byte_size


class Connection(Enum):
    """Bootloader connection type."""
    SERIAL = "serial"
    USB = "usb"


@dataclass(frozen=True)
class DeviceInfo:
    """One microcontroller part as known to the bootloader."""
    name: str
    package: str
    variant: int
    type: int
    flash_size: int
    connections: Tuple[Connection, ...] = (Connection.SERIAL,)

    @property
    def label(self) -> str:
        """e.g. "CH32V003F4P6 (TSSOP20, 16 KiB)"."""
        return f"{self.name} ({self.package}, {byte_size(self.flash_size)})"

    def supports(self, connection: Connection) -> bool:
        return connection in self.connections

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "package": self.package,
            "variant": f"0x{self.variant:02X}",
            "type": f"0x{self.type:02X}",
            "flash_size": self.flash_size,
            "connections": [c.value for c in self.connections],
        }


@dataclass
class DeviceFamily:
    name: str
    devices: List[DeviceInfo] = field(default_factory=list)


# ============================================================================
# DEVICE REGISTRY - All known devices
# ============================================================================

_FAMILIES: List[DeviceFamily] = []

_SERIAL = (Connection.SERIAL,)
_SERIAL_USB = (Connection.SERIAL, Connection.USB)


def _register_family(name: str, devices: List[DeviceInfo]) -> None:
    _FAMILIES.append(DeviceFamily(name=name, devices=devices))


def _init_registry() -> None:
    """Initialize the registry with known devices."""

    # CH32V003: no USB peripheral, UART bootloader only
    _register_family("CH32V003", [
        DeviceInfo("CH32V003F4P6", "TSSOP20", 0x30, 0x21, 16 * 1024, _SERIAL),
        DeviceInfo("CH32V003F4U6", "QFN20", 0x31, 0x21, 16 * 1024, _SERIAL),
        DeviceInfo("CH32V003A4M6", "SOP16", 0x32, 0x21, 16 * 1024, _SERIAL),
        DeviceInfo("CH32V003J4M6", "SOP8", 0x33, 0x21, 16 * 1024, _SERIAL),
    ])

    _register_family("CH32V103", [
        DeviceInfo("CH32V103C8T6", "LQFP48", 0x3F, 0x15, 64 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V103R8T6", "LQFP64M", 0x3F, 0x15, 64 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V103C6T6", "LQFP48", 0x32, 0x15, 32 * 1024, _SERIAL_USB),
    ])

    _register_family("CH32V20x", [
        DeviceInfo("CH32V203C8T6", "LQFP48", 0x30, 0x19, 64 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V203C6T6", "LQFP48", 0x31, 0x19, 32 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V203G6U6", "QFN28", 0x32, 0x19, 32 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V203RBT6", "LQFP64M", 0x34, 0x19, 128 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V208WBU6", "QFN68", 0x80, 0x19, 128 * 1024, _SERIAL_USB),
    ])

    _register_family("CH32V30x", [
        DeviceInfo("CH32V307VCT6", "LQFP100", 0x70, 0x17, 256 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V307RCT6", "LQFP64M", 0x71, 0x17, 256 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V305RBT6", "LQFP64M", 0x50, 0x17, 128 * 1024, _SERIAL_USB),
        DeviceInfo("CH32V303VCT6", "LQFP100", 0x30, 0x17, 256 * 1024, _SERIAL_USB),
    ])

    _register_family("CH32X03x", [
        DeviceInfo("CH32X035R8T6", "LQFP64M", 0x50, 0x23, 62 * 1024, _SERIAL_USB),
        DeviceInfo("CH32X035C8T6", "LQFP48", 0x51, 0x23, 62 * 1024, _SERIAL_USB),
        DeviceInfo("CH32X035G8U6", "QFN28", 0x56, 0x23, 62 * 1024, _SERIAL_USB),
    ])

    _register_family("CH32L103", [
        DeviceInfo("CH32L103C8T6", "LQFP48", 0x31, 0x25, 64 * 1024, _SERIAL_USB),
        DeviceInfo("CH32L103K8U6", "QFN32", 0x32, 0x25, 64 * 1024, _SERIAL_USB),
    ])


# Initialize registry on module load
_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def list_families() -> List[DeviceFamily]:
    """Return all device families in catalog order."""
    return list(_FAMILIES)


def list_devices() -> List[DeviceInfo]:
    """Return every device across all families."""
    return [dev for fam in _FAMILIES for dev in fam.devices]


def find_device_by_index(specifier: str) -> DeviceInfo:
    """
    Look up a device by "family:device" index string (e.g. "1:0").

    Raises:
        DeviceNotFoundError: Bad specifier or indices out of range
    """
    parts = specifier.split(":")
    try:
        fam_idx, dev_idx = (int(p) for p in parts)
    except ValueError:
        raise DeviceNotFoundError("Device not found or invalid specifier string") from None

    if 0 <= fam_idx < len(_FAMILIES):
        devices = _FAMILIES[fam_idx].devices
        if 0 <= dev_idx < len(devices):
            return devices[dev_idx]

    raise DeviceNotFoundError("Device not found or invalid specifier string")


def find_device_index_by_name(name: str) -> Optional[str]:
    """Return the "family:device" index for a device name, or None."""
    wanted = name.strip().upper()
    for fam_idx, fam in enumerate(_FAMILIES):
        for dev_idx, dev in enumerate(fam.devices):
            if dev.name.upper() == wanted:
                return f"{fam_idx}:{dev_idx}"
    return None


def get_device(name_or_index: str) -> DeviceInfo:
    """
    Look up a device by name (case-insensitive) or "family:device" index.

    Raises:
        DeviceNotFoundError: No such device
    """
    if ":" in name_or_index:
        return find_device_by_index(name_or_index)

    index = find_device_index_by_name(name_or_index)
    if index is None:
        raise DeviceNotFoundError(f"Unknown device: {name_or_index}")
    return find_device_by_index(index)


def load_catalog(path) -> List[DeviceFamily]:
    """
    Replace the catalog with families read from a JSON file.

    Expected shape:
        [{"family": "CH32V003", "devices": [
            {"name": "CH32V003F4P6", "package": "TSSOP20",
             "variant": 48, "type": 33, "flash": {"size": 16384},
             "connections": ["serial"]}]}]

    Raises:
        ValueError: File is not valid catalog JSON
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))

    families = []
    try:
        for fam in raw:
            devices = [
                DeviceInfo(
                    name=dev["name"],
                    package=dev.get("package", ""),
                    variant=int(dev["variant"]),
                    type=int(dev["type"]),
                    flash_size=int(dev["flash"]["size"]),
                    connections=tuple(
                        Connection(c) for c in dev.get("connections", ["serial"])
                    ),
                )
                for dev in fam["devices"]
            ]
            families.append(DeviceFamily(name=fam["family"], devices=devices))
    except (KeyError, TypeError) as e:
        raise ValueError(f"Error parsing device catalog: {e}") from e

    _FAMILIES[:] = families
    return list_families()


def reset_catalog() -> None:
    """Restore the built-in catalog."""
    _FAMILIES.clear()
    _init_registry()
