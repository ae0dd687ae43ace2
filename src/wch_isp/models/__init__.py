"""
Device catalog for WCH microcontrollers.

Provides a unified layer for device lookup, flash size and connections.
"""

from .registry import (
    Connection,
    DeviceInfo,
    DeviceFamily,
    list_families,
    list_devices,
    find_device_by_index,
    find_device_index_by_name,
    get_device,
    load_catalog,
    reset_catalog,
)

__all__ = [
    "Connection",
    "DeviceInfo",
    "DeviceFamily",
    "list_families",
    "list_devices",
    "find_device_by_index",
    "find_device_index_by_name",
    "get_device",
    "load_catalog",
    "reset_catalog",
]
