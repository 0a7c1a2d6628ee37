"""
Device tree models.

Bus, Device and UsbTree records holding one enumeration snapshot, with
conversion to and from the JSON document.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterator

from usbtree.descriptors.constants import (
    Speed,
    USBClass,
    format_bcd,
    get_class_name,
)
from usbtree.descriptors.records import (
    BosDescriptor,
    Configuration,
    DeviceDescriptor,
    HubDescriptor,
    OpaqueDescriptor,
    StringRef,
)
from usbtree.descriptors.validator import Anomaly
from usbtree.errors import UsbTreeError


class TreeConflict(UsbTreeError):
    """
    Two reads claimed the same bus address or port path.

    The most recently read device is kept; this note records what was
    discarded.
    """

    def __init__(
        self,
        bus: int,
        reason: str,
        kept_address: int | None,
        discarded_address: int | None,
        port_path: tuple[int, ...] | None = None,
        kept_sequence: int | None = None,
        discarded_sequence: int | None = None,
    ) -> None:
        self.bus = bus
        self.reason = reason
        self.kept_address = kept_address
        self.discarded_address = discarded_address
        self.port_path = port_path
        self.kept_sequence = kept_sequence
        self.discarded_sequence = discarded_sequence
        super().__init__(
            f"Bus {bus}: duplicate {reason}, kept device {kept_address} "
            f"(read {kept_sequence}), discarded device {discarded_address} "
            f"(read {discarded_sequence})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TreeConflict):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash((self.bus, self.reason, self.kept_address, self.discarded_address))

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus": self.bus,
            "reason": self.reason,
            "kept_address": self.kept_address,
            "discarded_address": self.discarded_address,
            "port_path": list(self.port_path) if self.port_path is not None else None,
            "kept_sequence": self.kept_sequence,
            "discarded_sequence": self.discarded_sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreeConflict:
        port_path = data.get("port_path")
        return cls(
            bus=data["bus"],
            reason=data["reason"],
            kept_address=data.get("kept_address"),
            discarded_address=data.get("discarded_address"),
            port_path=tuple(port_path) if port_path is not None else None,
            kept_sequence=data.get("kept_sequence"),
            discarded_sequence=data.get("discarded_sequence"),
        )


def format_port_path(bus: int, port_path: tuple[int, ...]) -> str:
    """Format a port path the way the kernel names devices ("1-4.2", "1-0")."""
    if not port_path:
        return f"{bus}-0"
    return f"{bus}-{'.'.join(str(p) for p in port_path)}"


@dataclass
class Device:
    """
    A USB device at a position in the tree.

    Descriptor-derived properties return None when the descriptor could
    not be read (degraded devices).
    """

    bus: int
    port_path: tuple[int, ...]
    address: int | None = None
    descriptor: DeviceDescriptor | None = None
    speed: Speed = Speed.UNKNOWN
    manufacturer: StringRef = field(default_factory=StringRef)
    product: StringRef = field(default_factory=StringRef)
    serial: StringRef = field(default_factory=StringRef)
    configurations: list[Configuration] = field(default_factory=list)
    active_configuration: int | None = None
    bos: BosDescriptor | None = None
    hub: HubDescriptor | None = None
    extra: list[OpaqueDescriptor] = field(default_factory=list)
    driver: str | None = None
    sys_path: str | None = None
    vendor_name: str | None = None
    product_name: str | None = None
    degraded: bool = False
    errors: list[str] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    children: list[Device] = field(default_factory=list)
    sequence: int | None = field(default=None, compare=False)

    @property
    def vendor_id(self) -> int | None:
        return self.descriptor.vendor_id if self.descriptor else None

    @property
    def product_id(self) -> int | None:
        return self.descriptor.product_id if self.descriptor else None

    @property
    def device_class(self) -> int | None:
        return self.descriptor.device_class if self.descriptor else None

    @property
    def device_subclass(self) -> int | None:
        return self.descriptor.device_subclass if self.descriptor else None

    @property
    def device_protocol(self) -> int | None:
        return self.descriptor.device_protocol if self.descriptor else None

    @property
    def usb_version(self) -> int | None:
        return self.descriptor.usb_version if self.descriptor else None

    @property
    def device_version(self) -> int | None:
        return self.descriptor.device_version if self.descriptor else None

    @property
    def max_packet_size(self) -> int | None:
        return self.descriptor.max_packet_size if self.descriptor else None

    @property
    def num_configurations(self) -> int | None:
        return self.descriptor.num_configurations if self.descriptor else None

    @property
    def class_name(self) -> str | None:
        if self.device_class is None:
            return None
        return get_class_name(self.device_class)

    @property
    def is_root_hub(self) -> bool:
        return self.port_path == ()

    @property
    def is_hub(self) -> bool:
        return self.device_class == USBClass.HUB or self.hub is not None

    @property
    def depth(self) -> int:
        return len(self.port_path)

    @property
    def branch_position(self) -> int:
        """Port on the parent hub; 0 for a root hub."""
        return self.port_path[-1] if self.port_path else 0

    @property
    def location(self) -> str:
        return format_port_path(self.bus, self.port_path)

    @property
    def name(self) -> str | None:
        """Product string, falling back to the database product name."""
        return self.product.get() or self.product_name

    @property
    def interface_classes(self) -> set[int]:
        return {
            intf.interface_class
            for config in self.configurations
            for intf in config.interfaces
        }

    def walk(self) -> Iterator[Device]:
        """Iterate over this device and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, resolving strings as needed."""
        superspeed = self.speed.is_superspeed
        return {
            "bus": self.bus,
            "address": self.address,
            "port_path": list(self.port_path),
            "location": self.location,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
            "class": self.device_class,
            "class_name": self.class_name,
            "usb_version": format_bcd(self.usb_version),
            "device_version": format_bcd(self.device_version),
            "speed": self.speed.value,
            "manufacturer": self.manufacturer.get(),
            "product": self.product.get(),
            "serial": self.serial.get(),
            "vendor_name": self.vendor_name,
            "product_name": self.product_name,
            "driver": self.driver,
            "sys_path": self.sys_path,
            "active_configuration": self.active_configuration,
            "degraded": self.degraded,
            "errors": list(self.errors),
            "anomalies": [a.to_dict() for a in self.anomalies],
            "descriptor": asdict(self.descriptor) if self.descriptor else None,
            "bos": self.bos.to_dict() if self.bos else None,
            "hub": self.hub.to_dict() if self.hub else None,
            "extra": [e.to_dict() for e in self.extra],
            "configurations": [c.to_dict(superspeed) for c in self.configurations],
            "devices": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Device:
        descriptor = data.get("descriptor")
        descriptor = DeviceDescriptor(**descriptor) if descriptor else None

        def string(index_field: str, key: str) -> StringRef:
            index = getattr(descriptor, index_field) if descriptor else 0
            return StringRef(index=index, value=data.get(key))

        bos = data.get("bos")
        hub = data.get("hub")
        return cls(
            bus=data["bus"],
            port_path=tuple(data.get("port_path", ())),
            address=data.get("address"),
            descriptor=descriptor,
            speed=Speed(data.get("speed", Speed.UNKNOWN.value)),
            manufacturer=string("manufacturer_index", "manufacturer"),
            product=string("product_index", "product"),
            serial=string("serial_index", "serial"),
            configurations=[
                Configuration.from_dict(c) for c in data.get("configurations", [])
            ],
            active_configuration=data.get("active_configuration"),
            bos=BosDescriptor.from_dict(bos) if bos else None,
            hub=HubDescriptor.from_dict(hub) if hub else None,
            extra=[OpaqueDescriptor.from_dict(e) for e in data.get("extra", [])],
            driver=data.get("driver"),
            sys_path=data.get("sys_path"),
            vendor_name=data.get("vendor_name"),
            product_name=data.get("product_name"),
            degraded=data.get("degraded", False),
            errors=list(data.get("errors", [])),
            anomalies=[Anomaly.from_dict(a) for a in data.get("anomalies", [])],
            children=[cls.from_dict(d) for d in data.get("devices", [])],
        )


@dataclass
class Bus:
    """A host controller bus and the device tree below its root hub."""

    number: int
    name: str | None = None
    host_controller: str | None = None
    pci_vendor: int | None = None
    pci_device: int | None = None
    pci_revision: int | None = None
    sys_path: str | None = None
    root: Device | None = None

    @property
    def location(self) -> str:
        return format_port_path(self.number, ())

    def iter_devices(self) -> Iterator[Device]:
        """Iterate over every device on the bus, root hub first."""
        if self.root is not None:
            yield from self.root.walk()

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "host_controller": self.host_controller,
            "pci_vendor": self.pci_vendor,
            "pci_device": self.pci_device,
            "pci_revision": self.pci_revision,
            "sys_path": self.sys_path,
            "devices": [self.root.to_dict()] if self.root else [],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Bus:
        devices = data.get("devices", [])
        return cls(
            number=data["number"],
            name=data.get("name"),
            host_controller=data.get("host_controller"),
            pci_vendor=data.get("pci_vendor"),
            pci_device=data.get("pci_device"),
            pci_revision=data.get("pci_revision"),
            sys_path=data.get("sys_path"),
            root=Device.from_dict(devices[0]) if devices else None,
        )


@dataclass
class UsbTree:
    """One enumeration snapshot: buses plus conflict notes."""

    buses: list[Bus] = field(default_factory=list)
    conflicts: list[TreeConflict] = field(default_factory=list)

    def iter_devices(self) -> Iterator[Device]:
        for bus in self.buses:
            yield from bus.iter_devices()

    def find_device(self, bus: int, address: int) -> Device | None:
        for device in self.iter_devices():
            if device.bus == bus and device.address == address:
                return device
        return None

    def find_by_path(self, bus: int, port_path: tuple[int, ...]) -> Device | None:
        for device in self.iter_devices():
            if device.bus == bus and device.port_path == port_path:
                return device
        return None

    @property
    def device_count(self) -> int:
        return sum(1 for _ in self.iter_devices())

    def to_dict(self) -> dict[str, Any]:
        from usbtree import __version__

        return {
            "version": __version__,
            "buses": [bus.to_dict() for bus in self.buses],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsbTree:
        return cls(
            buses=[Bus.from_dict(b) for b in data.get("buses", [])],
            conflicts=[TreeConflict.from_dict(c) for c in data.get("conflicts", [])],
        )
