"""
libusb enumeration backend.

Uses PyUSB to issue GET_DESCRIPTOR control transfers. Works on any
platform libusb supports, but needs permission to open each device.
"""

from __future__ import annotations

import errno
import logging
import struct

import usb.core
import usb.util

from usbtree.descriptors.constants import DescriptorType, Speed, USBClass
from usbtree.enumeration.backend import (
    BackendUnavailable,
    BusInfo,
    DeviceAccessError,
    DeviceBusy,
    DeviceHandle,
    DeviceTimeout,
    EnumerationBackend,
    PermissionDenied,
)


logger = logging.getLogger(__name__)

# bmRequestType values
STANDARD_IN = 0x80
CLASS_DEVICE_IN = 0xA0
GET_DESCRIPTOR = 0x06

# libusb speed codes
_SPEEDS = {
    1: Speed.LOW,
    2: Speed.FULL,
    3: Speed.HIGH,
    4: Speed.SUPER,
    5: Speed.SUPER_PLUS,
}


def map_usb_error(error: usb.core.USBError, handle: DeviceHandle) -> DeviceAccessError:
    """Translate a PyUSB error into a per-device error."""
    message = f"Device {handle.device_id}: {error}"
    if isinstance(error, usb.core.USBTimeoutError) or error.errno == errno.ETIMEDOUT:
        return DeviceTimeout(message)
    if error.errno in (errno.EACCES, errno.EPERM):
        return PermissionDenied(message)
    if error.errno == errno.EBUSY:
        return DeviceBusy(message)
    return DeviceAccessError(message)


class LibusbBackend(EnumerationBackend):
    """Enumeration through PyUSB/libusb."""

    name = "libusb"

    def __init__(self, timeout: float = 2.0, backend=None) -> None:
        """
        Initialize the backend.

        Args:
            timeout: Control transfer timeout in seconds
            backend: Explicit PyUSB backend object, default lets PyUSB choose
        """
        self.timeout_ms = int(timeout * 1000) if timeout > 0 else 0
        self._backend = backend
        self._devices: list = []

    def list_buses(self) -> list[tuple[BusInfo, list[DeviceHandle]]]:
        try:
            devices = list(usb.core.find(find_all=True, backend=self._backend))
        except usb.core.NoBackendError as e:
            logger.error("No USB backend available. Install libusb.")
            raise BackendUnavailable("No libusb backend available") from e
        self._devices = devices

        handles: dict[int, list[DeviceHandle]] = {}
        for dev in devices:
            handle = DeviceHandle(
                bus=dev.bus,
                address=dev.address,
                port_path=self._port_path(dev),
                speed=_SPEEDS.get(dev.speed, Speed.UNKNOWN),
                native=dev,
            )
            handles.setdefault(dev.bus, []).append(handle)

        return [(BusInfo(number=bus), handles[bus]) for bus in sorted(handles)]

    @staticmethod
    def _port_path(dev) -> tuple[int, ...] | None:
        ports = dev.port_numbers
        if ports:
            return tuple(ports)
        if not dev.port_number and dev.bDeviceClass == USBClass.HUB:
            return ()
        return None

    def _get_descriptor(self, dev, descriptor_type: int, index: int, length: int) -> bytes:
        data = dev.ctrl_transfer(
            STANDARD_IN,
            GET_DESCRIPTOR,
            (descriptor_type << 8) | index,
            0,
            length,
            timeout=self.timeout_ms,
        )
        return bytes(data)

    def _get_bundle(self, dev, descriptor_type: int, index: int, header_length: int) -> bytes:
        """Read a descriptor header, then the whole bundle by wTotalLength."""
        header = self._get_descriptor(dev, descriptor_type, index, header_length)
        if len(header) < 4:
            return header
        (total,) = struct.unpack_from("<H", header, 2)
        return self._get_descriptor(dev, descriptor_type, index, total)

    def read_device_descriptor(self, handle: DeviceHandle) -> bytes:
        try:
            return self._get_descriptor(handle.native, DescriptorType.DEVICE, 0, 18)
        except usb.core.USBError as e:
            raise map_usb_error(e, handle) from e
        except NotImplementedError as e:
            raise DeviceAccessError(f"Device {handle.device_id}: {e}") from e

    def read_descriptors(self, handle: DeviceHandle) -> list[bytes]:
        dev = handle.native
        try:
            buffers = [self._get_descriptor(dev, DescriptorType.DEVICE, 0, 18)]
            for index in range(dev.bNumConfigurations):
                buffers.append(
                    self._get_bundle(dev, DescriptorType.CONFIGURATION, index, 9)
                )
        except usb.core.USBError as e:
            raise map_usb_error(e, handle) from e
        except NotImplementedError as e:
            raise DeviceAccessError(f"Device {handle.device_id}: {e}") from e

        # optional descriptors: devices answer with a stall when absent
        if dev.bcdUSB >= 0x0201:
            try:
                buffers.append(self._get_bundle(dev, DescriptorType.BOS, 0, 5))
            except usb.core.USBError as e:
                logger.debug("No BOS descriptor for %s: %s", handle.device_id, e)
        if dev.bDeviceClass == USBClass.HUB:
            hub_type = (
                DescriptorType.SUPERSPEED_HUB
                if dev.bcdUSB >= 0x0300
                else DescriptorType.HUB
            )
            try:
                data = dev.ctrl_transfer(
                    CLASS_DEVICE_IN,
                    GET_DESCRIPTOR,
                    hub_type << 8,
                    0,
                    71,
                    timeout=self.timeout_ms,
                )
                buffers.append(bytes(data))
            except usb.core.USBError as e:
                logger.debug("No hub descriptor for %s: %s", handle.device_id, e)
        return buffers

    def read_string(self, handle: DeviceHandle, index: int) -> str | None:
        try:
            return usb.util.get_string(handle.native, index)
        except usb.core.USBError as e:
            raise map_usb_error(e, handle) from e
        except (ValueError, NotImplementedError) as e:
            # no LANGID table, or the platform backend cannot read strings
            logger.debug("String %d of %s: %s", index, handle.device_id, e)
            return None

    def close(self) -> None:
        for dev in self._devices:
            usb.util.dispose_resources(dev)
        self._devices = []
