"""
USB Descriptor records.

Typed records produced by the decoder. Fixed-format records can be
encoded back to their wire form with ``to_bytes()``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, Callable

from usbtree.descriptors.constants import (
    DescriptorType,
    DeviceCapabilityType,
    SyncType,
    TransferType,
    UsageType,
    format_bcd,
    get_class_name,
)


# struct layouts, little endian as on the wire
DEVICE_FORMAT = "<BBHBBBBHHHBBBB"
CONFIGURATION_FORMAT = "<BBHBBBBB"
INTERFACE_FORMAT = "<BBBBBBBBB"
ENDPOINT_FORMAT = "<BBBBHB"
AUDIO_ENDPOINT_FORMAT = "<BBBBHBBB"
ASSOCIATION_FORMAT = "<BBBBBBBB"
BOS_FORMAT = "<BBHB"
SS_COMPANION_FORMAT = "<BBBBH"
HID_FORMAT = "<BBHBB"

DEVICE_LENGTH = struct.calcsize(DEVICE_FORMAT)
CONFIGURATION_LENGTH = struct.calcsize(CONFIGURATION_FORMAT)
INTERFACE_LENGTH = struct.calcsize(INTERFACE_FORMAT)
ENDPOINT_LENGTH = struct.calcsize(ENDPOINT_FORMAT)
AUDIO_ENDPOINT_LENGTH = struct.calcsize(AUDIO_ENDPOINT_FORMAT)
ASSOCIATION_LENGTH = struct.calcsize(ASSOCIATION_FORMAT)
BOS_LENGTH = struct.calcsize(BOS_FORMAT)
SS_COMPANION_LENGTH = struct.calcsize(SS_COMPANION_FORMAT)


@dataclass
class StringRef:
    """
    Reference to a string descriptor.

    Holds the descriptor index and resolves the text on first access
    through ``resolver``; index 0 means the device has no such string.
    """

    index: int = 0
    value: str | None = None
    resolver: Callable[[int], str | None] | None = field(
        default=None, repr=False, compare=False
    )
    _resolved: bool = field(default=False, repr=False, compare=False)

    def get(self) -> str | None:
        if self.value is not None or self._resolved:
            return self.value
        self._resolved = True
        if self.index and self.resolver is not None:
            self.value = self.resolver(self.index)
        return self.value

    @property
    def is_resolved(self) -> bool:
        return self.value is not None or self._resolved


@dataclass
class OpaqueDescriptor:
    """Descriptor kept as raw bytes (class-specific or unsupported)."""

    descriptor_type: int
    data: bytes

    def to_bytes(self) -> bytes:
        return self.data

    def to_dict(self) -> dict[str, Any]:
        return {
            "descriptor_type": self.descriptor_type,
            "data": self.data.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OpaqueDescriptor:
        return cls(
            descriptor_type=data["descriptor_type"],
            data=bytes.fromhex(data.get("data", "")),
        )


@dataclass
class DeviceDescriptor:
    """Standard device descriptor (18 bytes)."""

    usb_version: int
    device_class: int
    device_subclass: int
    device_protocol: int
    max_packet_size: int
    vendor_id: int
    product_id: int
    device_version: int
    manufacturer_index: int
    product_index: int
    serial_index: int
    num_configurations: int

    def to_bytes(self) -> bytes:
        return struct.pack(
            DEVICE_FORMAT,
            DEVICE_LENGTH,
            DescriptorType.DEVICE,
            self.usb_version,
            self.device_class,
            self.device_subclass,
            self.device_protocol,
            self.max_packet_size,
            self.vendor_id,
            self.product_id,
            self.device_version,
            self.manufacturer_index,
            self.product_index,
            self.serial_index,
            self.num_configurations,
        )


@dataclass
class SuperSpeedCompanion:
    """SuperSpeed endpoint companion descriptor."""

    max_burst: int
    attributes: int
    bytes_per_interval: int

    def to_bytes(self) -> bytes:
        return struct.pack(
            SS_COMPANION_FORMAT,
            SS_COMPANION_LENGTH,
            DescriptorType.SS_ENDPOINT_COMPANION,
            self.max_burst,
            self.attributes,
            self.bytes_per_interval,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_burst": self.max_burst,
            "attributes": self.attributes,
            "bytes_per_interval": self.bytes_per_interval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SuperSpeedCompanion:
        return cls(
            max_burst=data["max_burst"],
            attributes=data["attributes"],
            bytes_per_interval=data["bytes_per_interval"],
        )


@dataclass
class Endpoint:
    """USB Endpoint Descriptor."""

    address: int
    attributes: int
    max_packet_size: int
    interval: int
    # Audio class endpoints carry two extra bytes
    refresh: int | None = None
    synch_address: int | None = None
    companion: SuperSpeedCompanion | None = None
    extra: list[OpaqueDescriptor] = field(default_factory=list)

    @property
    def number(self) -> int:
        return self.address & 0x0F

    @property
    def direction(self) -> str:
        """Get endpoint direction (IN or OUT)."""
        return "IN" if self.address & 0x80 else "OUT"

    @property
    def transfer_type(self) -> TransferType:
        return TransferType(self.attributes & 0x03)

    @property
    def sync_type(self) -> SyncType:
        return SyncType((self.attributes >> 2) & 0x03)

    @property
    def usage_type(self) -> UsageType:
        return UsageType((self.attributes >> 4) & 0x03)

    @property
    def max_packet_bytes(self) -> int:
        """Payload size per transaction, including high-bandwidth multipliers."""
        size = self.max_packet_size & 0x07FF
        multiplier = ((self.max_packet_size >> 11) & 0x03) + 1
        return size * multiplier

    def to_bytes(self) -> bytes:
        if self.refresh is not None:
            return struct.pack(
                AUDIO_ENDPOINT_FORMAT,
                AUDIO_ENDPOINT_LENGTH,
                DescriptorType.ENDPOINT,
                self.address,
                self.attributes,
                self.max_packet_size,
                self.interval,
                self.refresh,
                self.synch_address or 0,
            )
        return struct.pack(
            ENDPOINT_FORMAT,
            ENDPOINT_LENGTH,
            DescriptorType.ENDPOINT,
            self.address,
            self.attributes,
            self.max_packet_size,
            self.interval,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "number": self.number,
            "direction": self.direction,
            "attributes": self.attributes,
            "transfer_type": self.transfer_type.name.lower(),
            "sync_type": self.sync_type.name.lower(),
            "usage_type": self.usage_type.name.lower(),
            "max_packet_size": self.max_packet_size,
            "interval": self.interval,
            "refresh": self.refresh,
            "synch_address": self.synch_address,
            "companion": self.companion.to_dict() if self.companion else None,
            "extra": [e.to_dict() for e in self.extra],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Endpoint:
        companion = data.get("companion")
        return cls(
            address=data["address"],
            attributes=data["attributes"],
            max_packet_size=data["max_packet_size"],
            interval=data["interval"],
            refresh=data.get("refresh"),
            synch_address=data.get("synch_address"),
            companion=SuperSpeedCompanion.from_dict(companion) if companion else None,
            extra=[OpaqueDescriptor.from_dict(e) for e in data.get("extra", [])],
        )


@dataclass
class HidDescriptor:
    """HID class descriptor found after a HID interface."""

    hid_version: int
    country_code: int
    reports: list[tuple[int, int]] = field(default_factory=list)  # (type, length)

    def to_bytes(self) -> bytes:
        head = struct.pack(
            HID_FORMAT,
            6 + 3 * len(self.reports),
            DescriptorType.HID,
            self.hid_version,
            self.country_code,
            len(self.reports),
        )
        body = b"".join(struct.pack("<BH", t, n) for t, n in self.reports)
        return head + body

    def to_dict(self) -> dict[str, Any]:
        return {
            "hid_version": format_bcd(self.hid_version),
            "country_code": self.country_code,
            "reports": [{"type": t, "length": n} for t, n in self.reports],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HidDescriptor:
        major, _, minor = str(data.get("hid_version") or "0.00").partition(".")
        return cls(
            hid_version=(int(major, 16) << 8) | int(minor or "0", 16),
            country_code=data.get("country_code", 0),
            reports=[(r["type"], r["length"]) for r in data.get("reports", [])],
        )


@dataclass
class Interface:
    """
    USB Interface (one alternate setting).

    Alternate settings of the same interface are separate entries
    sharing ``number``.
    """

    number: int
    alt_setting: int
    num_endpoints: int
    interface_class: int
    interface_subclass: int
    interface_protocol: int
    name: StringRef = field(default_factory=StringRef)
    endpoints: list[Endpoint] = field(default_factory=list)
    hid: HidDescriptor | None = None
    extra: list[OpaqueDescriptor] = field(default_factory=list)
    driver: str | None = None
    sys_path: str | None = None

    @property
    def class_name(self) -> str:
        """Get human-readable class name."""
        return get_class_name(self.interface_class)

    def to_bytes(self) -> bytes:
        return struct.pack(
            INTERFACE_FORMAT,
            INTERFACE_LENGTH,
            DescriptorType.INTERFACE,
            self.number,
            self.alt_setting,
            self.num_endpoints,
            self.interface_class,
            self.interface_subclass,
            self.interface_protocol,
            self.name.index,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "alt_setting": self.alt_setting,
            "num_endpoints": self.num_endpoints,
            "class": self.interface_class,
            "class_name": self.class_name,
            "subclass": self.interface_subclass,
            "protocol": self.interface_protocol,
            "name_index": self.name.index,
            "name": self.name.get(),
            "driver": self.driver,
            "sys_path": self.sys_path,
            "hid": self.hid.to_dict() if self.hid else None,
            "extra": [e.to_dict() for e in self.extra],
            "endpoints": [ep.to_dict() for ep in self.endpoints],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Interface:
        hid = data.get("hid")
        return cls(
            number=data["number"],
            alt_setting=data.get("alt_setting", 0),
            num_endpoints=data.get("num_endpoints", len(data.get("endpoints", []))),
            interface_class=data["class"],
            interface_subclass=data.get("subclass", 0),
            interface_protocol=data.get("protocol", 0),
            name=StringRef(index=data.get("name_index", 0), value=data.get("name")),
            endpoints=[Endpoint.from_dict(ep) for ep in data.get("endpoints", [])],
            hid=HidDescriptor.from_dict(hid) if hid else None,
            extra=[OpaqueDescriptor.from_dict(e) for e in data.get("extra", [])],
            driver=data.get("driver"),
            sys_path=data.get("sys_path"),
        )


@dataclass
class InterfaceAssociation:
    """Interface association descriptor grouping interfaces into a function."""

    first_interface: int
    interface_count: int
    function_class: int
    function_subclass: int
    function_protocol: int
    function_index: int

    def to_bytes(self) -> bytes:
        return struct.pack(
            ASSOCIATION_FORMAT,
            ASSOCIATION_LENGTH,
            DescriptorType.INTERFACE_ASSOCIATION,
            self.first_interface,
            self.interface_count,
            self.function_class,
            self.function_subclass,
            self.function_protocol,
            self.function_index,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "first_interface": self.first_interface,
            "interface_count": self.interface_count,
            "function_class": self.function_class,
            "function_subclass": self.function_subclass,
            "function_protocol": self.function_protocol,
            "function_index": self.function_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InterfaceAssociation:
        return cls(**data)


@dataclass
class Configuration:
    """USB Configuration with its interfaces."""

    value: int
    attributes: int
    max_power: int  # raw bMaxPower units
    total_length: int
    num_interfaces: int
    name: StringRef = field(default_factory=StringRef)
    interfaces: list[Interface] = field(default_factory=list)
    associations: list[InterfaceAssociation] = field(default_factory=list)
    extra: list[OpaqueDescriptor] = field(default_factory=list)

    @property
    def self_powered(self) -> bool:
        return bool(self.attributes & 0x40)

    @property
    def remote_wakeup(self) -> bool:
        return bool(self.attributes & 0x20)

    @property
    def attribute_names(self) -> list[str]:
        names = []
        if self.self_powered:
            names.append("self-powered")
        if self.remote_wakeup:
            names.append("remote-wakeup")
        return names

    def max_power_ma(self, superspeed: bool = False) -> int:
        """Maximum power draw in mA; the unit is 8 mA at SuperSpeed, 2 mA below."""
        return self.max_power * (8 if superspeed else 2)

    def to_bytes(self) -> bytes:
        """Encode the 9-byte configuration header."""
        return struct.pack(
            CONFIGURATION_FORMAT,
            CONFIGURATION_LENGTH,
            DescriptorType.CONFIGURATION,
            self.total_length,
            self.num_interfaces,
            self.value,
            self.name.index,
            self.attributes,
            self.max_power,
        )

    def to_dict(self, superspeed: bool = False) -> dict[str, Any]:
        return {
            "value": self.value,
            "attributes": self.attributes,
            "attribute_names": self.attribute_names,
            "max_power": self.max_power,
            "max_power_ma": self.max_power_ma(superspeed),
            "total_length": self.total_length,
            "num_interfaces": self.num_interfaces,
            "name_index": self.name.index,
            "name": self.name.get(),
            "associations": [a.to_dict() for a in self.associations],
            "extra": [e.to_dict() for e in self.extra],
            "interfaces": [i.to_dict() for i in self.interfaces],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Configuration:
        return cls(
            value=data["value"],
            attributes=data.get("attributes", 0x80),
            max_power=data.get("max_power", 0),
            total_length=data.get("total_length", 0),
            num_interfaces=data.get("num_interfaces", 0),
            name=StringRef(index=data.get("name_index", 0), value=data.get("name")),
            interfaces=[Interface.from_dict(i) for i in data.get("interfaces", [])],
            associations=[
                InterfaceAssociation.from_dict(a) for a in data.get("associations", [])
            ],
            extra=[OpaqueDescriptor.from_dict(e) for e in data.get("extra", [])],
        )


@dataclass
class DeviceCapability:
    """BOS device capability; ``data`` holds the bytes after the 3-byte header."""

    capability_type: int
    data: bytes

    @property
    def name(self) -> str:
        try:
            return DeviceCapabilityType(self.capability_type).name.lower()
        except ValueError:
            return f"unknown_0x{self.capability_type:02x}"

    def decoded(self) -> dict[str, Any]:
        """Decode well-known capabilities; others are reported as hex."""
        try:
            if self.capability_type == DeviceCapabilityType.USB_2_0_EXTENSION:
                (attributes,) = struct.unpack_from("<I", self.data)
                return {"lpm": bool(attributes & 0x02), "attributes": attributes}
            if self.capability_type == DeviceCapabilityType.SUPERSPEED_USB:
                attributes, speeds, functionality, u1, u2 = struct.unpack_from(
                    "<BHBBH", self.data
                )
                return {
                    "ltm": bool(attributes & 0x02),
                    "speeds_supported": speeds,
                    "functionality_support": functionality,
                    "u1_exit_latency": u1,
                    "u2_exit_latency": u2,
                }
            if self.capability_type == DeviceCapabilityType.CONTAINER_ID:
                uuid = self.data[1:17]
                if len(uuid) == 16:
                    return {"container_id": uuid.hex()}
        except struct.error:
            pass
        return {"data": self.data.hex()}

    def to_bytes(self) -> bytes:
        return (
            bytes([3 + len(self.data), DescriptorType.DEVICE_CAPABILITY, self.capability_type])
            + self.data
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability_type": self.capability_type,
            "name": self.name,
            "raw": self.data.hex(),
            **{k: v for k, v in self.decoded().items() if k != "data"},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeviceCapability:
        return cls(
            capability_type=data["capability_type"],
            data=bytes.fromhex(data.get("raw", "")),
        )


@dataclass
class BosDescriptor:
    """Binary Object Store with its device capabilities."""

    total_length: int
    num_capabilities: int
    capabilities: list[DeviceCapability] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Encode the 5-byte BOS header."""
        return struct.pack(
            BOS_FORMAT,
            BOS_LENGTH,
            DescriptorType.BOS,
            self.total_length,
            self.num_capabilities,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_length": self.total_length,
            "num_capabilities": self.num_capabilities,
            "capabilities": [c.to_dict() for c in self.capabilities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BosDescriptor:
        return cls(
            total_length=data.get("total_length", 0),
            num_capabilities=data.get("num_capabilities", 0),
            capabilities=[DeviceCapability.from_dict(c) for c in data.get("capabilities", [])],
        )


@dataclass
class HubDescriptor:
    """Hub class descriptor (USB 2.0 or SuperSpeed)."""

    num_ports: int
    characteristics: int
    power_on_to_good: int  # in 2 ms units
    controller_current: int
    device_removable: bytes = b""
    port_power_mask: bytes = b""
    superspeed: bool = False
    header_decode_latency: int | None = None
    hub_delay: int | None = None

    @property
    def power_switching(self) -> str:
        mode = self.characteristics & 0x03
        return {0: "ganged", 1: "per-port"}.get(mode, "none")

    @property
    def compound(self) -> bool:
        return bool(self.characteristics & 0x04)

    def to_bytes(self) -> bytes:
        if self.superspeed:
            return struct.pack(
                "<BBBHBBBH",
                12,
                DescriptorType.SUPERSPEED_HUB,
                self.num_ports,
                self.characteristics,
                self.power_on_to_good,
                self.controller_current,
                self.header_decode_latency or 0,
                self.hub_delay or 0,
            ) + (self.device_removable or b"\x00\x00")[:2]
        body = struct.pack(
            "<BHBB",
            self.num_ports,
            self.characteristics,
            self.power_on_to_good,
            self.controller_current,
        ) + self.device_removable + self.port_power_mask
        return bytes([2 + len(body), DescriptorType.HUB]) + body

    def to_dict(self) -> dict[str, Any]:
        return {
            "num_ports": self.num_ports,
            "characteristics": self.characteristics,
            "power_switching": self.power_switching,
            "compound": self.compound,
            "power_on_to_good_ms": self.power_on_to_good * 2,
            "controller_current": self.controller_current,
            "device_removable": self.device_removable.hex(),
            "port_power_mask": self.port_power_mask.hex(),
            "superspeed": self.superspeed,
            "header_decode_latency": self.header_decode_latency,
            "hub_delay": self.hub_delay,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HubDescriptor:
        return cls(
            num_ports=data["num_ports"],
            characteristics=data.get("characteristics", 0),
            power_on_to_good=data.get("power_on_to_good_ms", 0) // 2,
            controller_current=data.get("controller_current", 0),
            device_removable=bytes.fromhex(data.get("device_removable", "")),
            port_power_mask=bytes.fromhex(data.get("port_power_mask", "")),
            superspeed=data.get("superspeed", False),
            header_decode_latency=data.get("header_decode_latency"),
            hub_delay=data.get("hub_delay"),
        )
