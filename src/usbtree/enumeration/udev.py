"""
udev/sysfs enumeration backend.

Reads the descriptors the kernel has already cached in sysfs, so no
device is opened and no control transfer is issued.
"""

from __future__ import annotations

import logging
import re
import struct
import threading

from usbtree.descriptors.constants import DescriptorType, Speed
from usbtree.descriptors.decoder import decode_buffers
from usbtree.enumeration.backend import (
    BackendUnavailable,
    BusInfo,
    DeviceAccessError,
    DeviceHandle,
    EnumerationBackend,
    InterfaceInfo,
)


logger = logging.getLogger(__name__)

# "usb1" for root hubs, "1-4.2" for everything else
ROOT_HUB_NAME = re.compile(r"^usb(\d+)$")
DEVICE_NAME = re.compile(r"^(\d+)-(\d+(?:\.\d+)*)$")


def parse_port_path(sys_name: str) -> tuple[int, ...] | None:
    """
    Parse the port path from a sysfs device name.

    Args:
        sys_name: Kernel device name ("usb1", "1-4.2")

    Returns:
        Tuple of port indices, () for a root hub, None if unparseable
    """
    if ROOT_HUB_NAME.match(sys_name):
        return ()
    match = DEVICE_NAME.match(sys_name)
    if match is None:
        return None
    return tuple(int(p) for p in match.group(2).split("."))


def split_sysfs_descriptors(raw: bytes) -> list[bytes]:
    """
    Split the sysfs ``descriptors`` blob into per-descriptor buffers.

    The blob holds the device descriptor followed by every configuration
    bundle; each bundle is kept whole using its wTotalLength.
    """
    buffers = []
    offset = 0
    while offset < len(raw):
        length = raw[offset]
        if length < 2 or offset + 1 >= len(raw):
            buffers.append(raw[offset:])
            break
        if raw[offset + 1] == DescriptorType.CONFIGURATION and offset + 4 <= len(raw):
            (length,) = struct.unpack_from("<H", raw, offset + 2)
            length = max(length, 2)
        buffers.append(raw[offset:offset + length])
        offset += length
    return buffers


def _attr_str(device, name: str) -> str | None:
    value = device.attributes.get(name)
    if value is None:
        return None
    return value.decode("utf-8", errors="replace").strip()


def _attr_int(device, name: str, base: int = 10) -> int | None:
    text = _attr_str(device, name)
    if not text:
        return None
    try:
        return int(text, base)
    except ValueError:
        return None


class UdevBackend(EnumerationBackend):
    """
    Enumeration through pyudev.

    String descriptors come from the kernel's string attributes
    (manufacturer, product, serial, configuration, interface).
    """

    name = "udev"

    def __init__(self, context=None) -> None:
        self._context = context
        self._strings: dict[tuple[int, int], dict[int, str]] = {}
        self._lock = threading.Lock()

    def _ensure_context(self):
        """Initialize pyudev context if needed."""
        if self._context is None:
            try:
                import pyudev
                self._context = pyudev.Context()
            except (ImportError, OSError) as e:
                raise BackendUnavailable(f"udev is not available: {e}") from e
        return self._context

    def probe(self) -> None:
        """
        Check that udev can be used on this system.

        Raises:
            BackendUnavailable: If no udev context can be opened
        """
        self._ensure_context()

    def _bus_info(self, root_hub, bus: int) -> BusInfo:
        info = BusInfo(
            number=bus,
            name=_attr_str(root_hub, "product"),
            host_controller=_attr_str(root_hub, "manufacturer"),
            sys_path=root_hub.sys_path,
        )
        pci = root_hub.find_parent("pci")
        if pci is not None:
            info.pci_vendor = _attr_int(pci, "vendor", 16)
            info.pci_device = _attr_int(pci, "device", 16)
            info.pci_revision = _attr_int(pci, "revision", 16)
        return info

    def list_buses(self) -> list[tuple[BusInfo, list[DeviceHandle]]]:
        context = self._ensure_context()
        buses: dict[int, BusInfo] = {}
        handles: dict[int, list[DeviceHandle]] = {}

        for device in context.list_devices(subsystem="usb", DEVTYPE="usb_device"):
            bus = _attr_int(device, "busnum")
            address = _attr_int(device, "devnum")
            if bus is None or address is None:
                logger.debug("Skipping %s: no bus/device number", device.sys_path)
                continue

            props = device.properties
            handle = DeviceHandle(
                bus=bus,
                address=address,
                port_path=parse_port_path(device.sys_name),
                speed=Speed.from_mbps(_attr_str(device, "speed")),
                driver=device.driver,
                sys_path=device.sys_path,
                vendor_name=props.get("ID_VENDOR_FROM_DATABASE"),
                product_name=props.get("ID_MODEL_FROM_DATABASE"),
                active_configuration=_attr_int(device, "bConfigurationValue"),
                native=device,
            )
            handles.setdefault(bus, []).append(handle)
            if handle.port_path == ():
                buses[bus] = self._bus_info(device, bus)

        return [
            (buses.get(bus) or BusInfo(number=bus), handles[bus])
            for bus in sorted(handles)
        ]

    def read_device_descriptor(self, handle: DeviceHandle) -> bytes:
        return self._raw_descriptors(handle)[:18]

    def _raw_descriptors(self, handle: DeviceHandle) -> bytes:
        raw = handle.native.attributes.get("descriptors")
        if not raw:
            raise DeviceAccessError(
                f"Device {handle.device_id}: descriptors attribute unavailable"
            )
        return bytes(raw)

    def read_descriptors(self, handle: DeviceHandle) -> list[bytes]:
        device = handle.native
        raw = self._raw_descriptors(handle)
        buffers = split_sysfs_descriptors(raw)
        bos = device.attributes.get("bos_descriptors")
        if bos:
            buffers.append(bytes(bos))
        return buffers

    def read_interfaces(self, handle: DeviceHandle) -> list[InterfaceInfo]:
        return [
            InterfaceInfo(
                number=_attr_int(child, "bInterfaceNumber", 16) or 0,
                driver=child.driver,
                sys_path=child.sys_path,
            )
            for child in self._interface_devices(handle)
        ]

    def _interface_devices(self, handle: DeviceHandle) -> list:
        device = handle.native
        prefix = f"{device.sys_name}:"
        return [
            child for child in device.children
            if child.sys_name.startswith(prefix)
        ]

    def _string_table(self, handle: DeviceHandle) -> dict[int, str]:
        """Map string indices to the text the kernel exposes for them."""
        device = handle.native
        decoded = decode_buffers(self.read_descriptors(handle))
        table: dict[int, str] = {}

        def put(index: int | None, text: str | None) -> None:
            if index and text:
                table.setdefault(index, text)

        if decoded.device is not None:
            put(decoded.device.manufacturer_index, _attr_str(device, "manufacturer"))
            put(decoded.device.product_index, _attr_str(device, "product"))
            put(decoded.device.serial_index, _attr_str(device, "serial"))

        active = [
            c for c in decoded.configurations
            if c.value == handle.active_configuration
        ]
        if active:
            config = active[0]
            put(config.name.index, _attr_str(device, "configuration"))
            for child in self._interface_devices(handle):
                number = _attr_int(child, "bInterfaceNumber", 16)
                alt = _attr_int(child, "bAlternateSetting") or 0
                for intf in config.interfaces:
                    if intf.number == number and intf.alt_setting == alt:
                        put(intf.name.index, _attr_str(child, "interface"))
        return table

    def read_string(self, handle: DeviceHandle, index: int) -> str | None:
        key = (handle.bus, handle.address)
        with self._lock:
            table = self._strings.get(key)
        if table is None:
            table = self._string_table(handle)
            with self._lock:
                self._strings[key] = table
        return table.get(index)
