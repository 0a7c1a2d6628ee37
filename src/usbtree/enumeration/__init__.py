"""
Enumeration Adapter.

Uniform, time-bounded access to the platform's USB enumeration
facility (udev/sysfs or libusb).
"""

from usbtree.enumeration.adapter import EnumerationAdapter, StringCache
from usbtree.enumeration.backend import (
    BackendUnavailable,
    BusInfo,
    DeviceAccessError,
    DeviceBusy,
    DeviceHandle,
    DeviceTimeout,
    EnumerationBackend,
    InterfaceInfo,
    PermissionDenied,
)
from usbtree.enumeration.platform import BACKEND_NAMES, get_platform_backend

__all__ = [
    # Adapter
    "EnumerationAdapter",
    "StringCache",
    # Backend interface
    "BackendUnavailable",
    "BusInfo",
    "DeviceAccessError",
    "DeviceBusy",
    "DeviceHandle",
    "DeviceTimeout",
    "EnumerationBackend",
    "InterfaceInfo",
    "PermissionDenied",
    # Selection
    "BACKEND_NAMES",
    "get_platform_backend",
]
