"""
Pytest configuration and shared fixtures for usbtree tests.
"""

from __future__ import annotations

import struct
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generator

import pytest
import yaml

from usbtree.descriptors.records import DeviceDescriptor
from usbtree.enumeration.backend import (
    BusInfo,
    DeviceHandle,
    EnumerationBackend,
    InterfaceInfo,
)


def device_bytes(
    vid: int,
    pid: int,
    device_class: int = 0,
    usb_version: int = 0x0200,
    num_configurations: int = 1,
    strings: tuple[int, int, int] = (1, 2, 3),
) -> bytes:
    """Raw 18-byte device descriptor."""
    return DeviceDescriptor(
        usb_version=usb_version,
        device_class=device_class,
        device_subclass=0,
        device_protocol=0,
        max_packet_size=64,
        vendor_id=vid,
        product_id=pid,
        device_version=0x0100,
        manufacturer_index=strings[0],
        product_index=strings[1],
        serial_index=strings[2],
        num_configurations=num_configurations,
    ).to_bytes()


def config_bytes(
    interfaces: list[tuple[int, int, int, list[tuple[int, int, int, int]]]],
    value: int = 1,
    attributes: int = 0xA0,
    max_power: int = 50,
    extra: bytes = b"",
) -> bytes:
    """
    Raw configuration bundle.

    ``interfaces`` holds (class, subclass, protocol, endpoints) tuples
    with endpoints as (address, attributes, max_packet, interval).
    """
    body = extra
    for number, (cls, sub, proto, endpoints) in enumerate(interfaces):
        body += bytes([9, 0x04, number, 0, len(endpoints), cls, sub, proto, 0])
        for address, ep_attributes, max_packet, interval in endpoints:
            body += struct.pack("<BBBBHB", 7, 0x05, address, ep_attributes, max_packet, interval)
    header = struct.pack(
        "<BBHBBBBB", 9, 0x02, 9 + len(body), len(interfaces), value, 0, attributes, max_power
    )
    return header + body


HID_KEYBOARD = (0x03, 0x01, 0x01, [(0x81, 0x03, 8, 10)])
MASS_STORAGE = (0x08, 0x06, 0x50, [(0x81, 0x02, 512, 0), (0x02, 0x02, 512, 0)])
HUB_INTERFACE = (0x09, 0x00, 0x00, [(0x81, 0x03, 1, 12)])


@dataclass
class FakeDevice:
    """A device of the in-memory backend."""

    handle: DeviceHandle
    buffers: list[bytes] = field(default_factory=list)
    strings: dict[int, str] = field(default_factory=dict)
    interfaces: list[InterfaceInfo] = field(default_factory=list)
    error: Exception | None = None
    delay: float = 0.0
    config_delay: float = 0.0
    interface_error: Exception | None = None


class FakeBackend(EnumerationBackend):
    """In-memory backend serving canned descriptor bytes."""

    name = "fake"

    def __init__(self, buses: list[tuple[BusInfo, list[FakeDevice]]]) -> None:
        self.buses = buses
        self.devices = {
            (d.handle.bus, d.handle.address): d for _, devices in buses for d in devices
        }
        self.string_reads = 0
        self.closed = False

    def list_buses(self) -> list[tuple[BusInfo, list[DeviceHandle]]]:
        return [(info, [d.handle for d in devices]) for info, devices in self.buses]

    def _device(self, handle: DeviceHandle) -> FakeDevice:
        device = self.devices[(handle.bus, handle.address)]
        if device.delay:
            time.sleep(device.delay)
        if device.error is not None:
            raise device.error
        return device

    def read_device_descriptor(self, handle: DeviceHandle) -> bytes | None:
        buffers = self._device(handle).buffers
        return buffers[0][:18] if buffers else None

    def read_descriptors(self, handle: DeviceHandle) -> list[bytes]:
        device = self._device(handle)
        if device.config_delay:
            time.sleep(device.config_delay)
        return list(device.buffers)

    def read_string(self, handle: DeviceHandle, index: int) -> str | None:
        self.string_reads += 1
        return self.devices[(handle.bus, handle.address)].strings.get(index)

    def read_interfaces(self, handle: DeviceHandle) -> list[InterfaceInfo]:
        device = self.devices[(handle.bus, handle.address)]
        if device.interface_error is not None:
            raise device.interface_error
        return list(device.interfaces)

    def close(self) -> None:
        self.closed = True


def fake_device(
    bus: int,
    address: int,
    port_path: tuple[int, ...] | None,
    vid: int,
    pid: int,
    device_class: int = 0,
    interfaces: list | None = None,
    product: str | None = None,
    serial: str | None = None,
    **kwargs,
) -> FakeDevice:
    """FakeDevice with a device descriptor and one configuration."""
    buffers = [device_bytes(vid, pid, device_class)]
    buffers.append(config_bytes(interfaces if interfaces is not None else []))
    strings = {1: "Acme"}
    if product:
        strings[2] = product
    if serial:
        strings[3] = serial
    return FakeDevice(
        handle=DeviceHandle(bus=bus, address=address, port_path=port_path),
        buffers=buffers,
        strings=strings,
        **kwargs,
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "usbtree.yaml"
    config_data = {
        "logging": {"level": "debug"},
        "enumeration": {
            "backend": "libusb",
            "timeout": 0.5,
            "max_workers": 4,
        },
        "display": {
            "mode": "tree",
            "blocks": ["name", "serial"],
            "sort": "vendor-product",
            "theme": "plain",
        },
        "filter": {"device": "1d6b:"},
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def keyboard_buffers() -> list[bytes]:
    """Device descriptor and configuration of a HID keyboard."""
    hid = bytes([9, 0x21, 0x11, 0x01, 0x00, 0x01, 0x22, 0x3F, 0x00])
    config = struct.pack("<BBHBBBBB", 9, 0x02, 34, 1, 1, 0, 0xA0, 50)
    config += bytes([9, 0x04, 0, 0, 1, 0x03, 0x01, 0x01, 0])
    config += hid
    config += struct.pack("<BBBBHB", 7, 0x05, 0x81, 0x03, 8, 10)
    return [device_bytes(0x046D, 0xC31C), config]


@pytest.fixture
def hub_tree_backend() -> FakeBackend:
    """
    One bus: root hub 1d6b:0003 with a hub on port 1 and a storage
    device on port 2; the hub carries 1d6b:0002 on port 1 and a
    keyboard on port 3.
    """
    devices = [
        fake_device(1, 1, (), 0x1D6B, 0x0003, 0x09, [HUB_INTERFACE], product="Root"),
        fake_device(1, 2, (1,), 0x05E3, 0x0610, 0x09, [HUB_INTERFACE], product="USB2 Hub"),
        fake_device(1, 4, (2,), 0x0781, 0x5581, 0x00, [MASS_STORAGE],
                    product="Ultra", serial="4C530001"),
        fake_device(1, 5, (1, 1), 0x1D6B, 0x0002, 0x00, [HID_KEYBOARD], product="Gadget"),
        fake_device(1, 6, (1, 3), 0x046D, 0xC31C, 0x00, [HID_KEYBOARD],
                    product="Keyboard", serial="KB01"),
    ]
    info = BusInfo(number=1, name="xHCI Host Controller", host_controller="Linux xhci-hcd")
    return FakeBackend([(info, devices)])


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    """Factory for FakeBackend instances."""
    return FakeBackend


@pytest.fixture
def make_device() -> Callable[..., FakeDevice]:
    """Factory for FakeDevice instances with one configuration."""
    return fake_device


@pytest.fixture
def make_config_bytes() -> Callable[..., bytes]:
    """Factory for raw configuration bundles."""
    return config_bytes


@pytest.fixture
def make_device_bytes() -> Callable[..., bytes]:
    """Factory for raw device descriptors."""
    return device_bytes
