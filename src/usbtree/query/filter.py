"""
Device filtering.

A DeviceFilter is a conjunction of optional predicates. Tree filtering
keeps every ancestor of a match; list filtering returns the matches.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from usbtree.descriptors.constants import parse_class
from usbtree.tree.models import Device, UsbTree


def _parse_hex_id(text: str) -> int | None:
    text = text.strip()
    if not text:
        return None
    value = int(text, 16)
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"ID out of range: {text}")
    return value


def parse_vid_pid(value: str) -> tuple[int | None, int | None]:
    """
    Parse an lsusb-style "vendor:[product]" string.

    Args:
        value: "1d6b:0002", "1d6b:", ":0002" or "1d6b"

    Returns:
        Tuple of (vendor_id, product_id), None where omitted

    Raises:
        ValueError: If either part is not a 16-bit hex number
    """
    vid, _, pid = value.partition(":")
    try:
        return _parse_hex_id(vid), _parse_hex_id(pid)
    except ValueError as e:
        raise ValueError(f"Invalid vendor:product '{value}': {e}") from None


def parse_bus_address(value: str) -> tuple[int | None, int | None]:
    """
    Parse an lsusb-style "[bus]:[devnum]" string (decimal).

    Raises:
        ValueError: If either part is not a decimal number
    """
    bus, sep, address = value.partition(":")
    if not sep:
        bus, address = value, ""
    try:
        return (
            int(bus) if bus.strip() else None,
            int(address) if address.strip() else None,
        )
    except ValueError:
        raise ValueError(f"Invalid bus:devnum '{value}'") from None


@dataclass
class DeviceFilter:
    """
    Predicates a device must all satisfy.

    None values are ignored (match any).
    """

    bus: int | None = None
    address: int | None = None
    vendor_id: int | None = None
    product_id: int | None = None
    device_class: int | None = None  # device class or any interface class
    name: str | None = None  # case-insensitive substring
    serial: str | None = None  # case-insensitive substring
    exclude_hubs: bool = False

    def has_conditions(self) -> bool:
        """Check if any conditions are specified."""
        return self.exclude_hubs or any(
            getattr(self, f.name) is not None
            for f in dataclasses.fields(self)
            if f.name != "exclude_hubs"
        )

    def is_match(self, device: Device) -> bool:
        """Check a single device against every predicate."""
        if self.exclude_hubs and device.is_hub:
            return False
        if self.bus is not None and device.bus != self.bus:
            return False
        if self.address is not None and device.address != self.address:
            return False
        if self.vendor_id is not None and device.vendor_id != self.vendor_id:
            return False
        if self.product_id is not None and device.product_id != self.product_id:
            return False
        if self.device_class is not None:
            if (
                device.device_class != self.device_class
                and self.device_class not in device.interface_classes
            ):
                return False
        if self.name is not None:
            needle = self.name.lower()
            names = (device.product.get(), device.product_name, device.vendor_name)
            if not any(n and needle in n.lower() for n in names):
                return False
        if self.serial is not None:
            serial = device.serial.get()
            if not serial or self.serial.lower() not in serial.lower():
                return False
        return True

    def _prune(self, device: Device) -> Device | None:
        children = [c for c in (self._prune(c) for c in device.children) if c]
        if children or self.is_match(device):
            return dataclasses.replace(device, children=children)
        return None

    def filter_tree(self, tree: UsbTree) -> UsbTree:
        """
        Prune non-matching subtrees, keeping every ancestor of a match.

        Returns a new tree; buses whose devices all fail stay present
        with no root.
        """
        if not self.has_conditions():
            return tree
        buses = [
            dataclasses.replace(bus, root=self._prune(bus.root) if bus.root else None)
            for bus in tree.buses
        ]
        return UsbTree(buses=buses, conflicts=list(tree.conflicts))

    def filter_devices(self, tree: UsbTree) -> list[Device]:
        """Flat sequence of matching devices in tree order."""
        return [d for d in tree.iter_devices() if self.is_match(d)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        return {
            key: value
            for key, value in dataclasses.asdict(self).items()
            if value is not None and value is not False
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeviceFilter:
        """Create from a config mapping with lsusb-style string values."""
        vendor_id = product_id = bus = address = None
        if data.get("device"):
            vendor_id, product_id = parse_vid_pid(str(data["device"]))
        if data.get("location"):
            bus, address = parse_bus_address(str(data["location"]))
        device_class = data.get("class")
        return cls(
            bus=bus,
            address=address,
            vendor_id=vendor_id,
            product_id=product_id,
            device_class=parse_class(device_class) if device_class is not None else None,
            name=data.get("name"),
            serial=data.get("serial"),
            exclude_hubs=bool(data.get("exclude_hubs", False)),
        )
