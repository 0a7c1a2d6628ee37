"""
Enumeration backend interface.

A backend gives raw access to the buses, devices and descriptor bytes
of one platform facility (udev/sysfs, libusb). Everything above it only
sees BusInfo, DeviceHandle and bytes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from usbtree.descriptors.constants import Speed
from usbtree.errors import UsbTreeError


class DeviceAccessError(UsbTreeError):
    """A single device could not be read; siblings are unaffected."""

    pass


class PermissionDenied(DeviceAccessError):
    """Access to the device was refused by the operating system."""

    pass


class DeviceBusy(DeviceAccessError):
    """The device is claimed by another process or driver."""

    pass


class DeviceTimeout(DeviceAccessError):
    """A read did not complete within the per-device timeout."""

    pass


class BackendUnavailable(UsbTreeError):
    """No enumeration facility is present on this system."""

    pass


@dataclass
class BusInfo:
    """A host controller bus as reported by the backend."""

    number: int
    name: str | None = None
    host_controller: str | None = None
    pci_vendor: int | None = None
    pci_device: int | None = None
    pci_revision: int | None = None
    sys_path: str | None = None


@dataclass
class InterfaceInfo:
    """Kernel-side facts about an interface (driver binding, sysfs path)."""

    number: int
    driver: str | None = None
    sys_path: str | None = None


@dataclass
class DeviceHandle:
    """
    Opaque reference to one device on a bus.

    ``port_path`` is the tuple of port indices from the root hub; the
    root hub itself has the empty path. None means the backend could
    not tell where the device is attached.
    """

    bus: int
    address: int
    port_path: tuple[int, ...] | None = None
    speed: Speed = Speed.UNKNOWN
    driver: str | None = None
    sys_path: str | None = None
    vendor_name: str | None = None
    product_name: str | None = None
    active_configuration: int | None = None
    native: Any = field(default=None, repr=False, compare=False)

    @property
    def device_id(self) -> str:
        """Get unique device identifier (bus:address)."""
        return f"{self.bus}:{self.address}"


class EnumerationBackend(ABC):
    """Raw device and descriptor access for one platform facility."""

    name = "abstract"

    @abstractmethod
    def list_buses(self) -> list[tuple[BusInfo, list[DeviceHandle]]]:
        """
        List buses and the devices attached to each.

        Raises:
            BackendUnavailable: If the facility is not present
        """
        pass

    def read_device_descriptor(self, handle: DeviceHandle) -> bytes | None:
        """
        Read only the 18-byte device descriptor.

        Returns None where the backend has no cheaper read than
        ``read_descriptors``.
        """
        return None

    @abstractmethod
    def read_descriptors(self, handle: DeviceHandle) -> list[bytes]:
        """
        Read the raw descriptors of a device.

        Returns:
            Device descriptor first, then one buffer per configuration
            bundle, optionally followed by BOS and hub descriptors.
        """
        pass

    @abstractmethod
    def read_string(self, handle: DeviceHandle, index: int) -> str | None:
        """Read string descriptor ``index`` of a device."""
        pass

    def read_interfaces(self, handle: DeviceHandle) -> list[InterfaceInfo]:
        """Driver bindings of a device's interfaces, where the backend knows them."""
        return []

    def close(self) -> None:
        """Release backend resources."""
        pass
