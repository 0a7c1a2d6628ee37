"""
USB Constants and Reference Data.

Descriptor type codes, class codes, speeds and the small vendor table
used when the system database has no name for a vendor.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import NamedTuple


class DescriptorType(IntEnum):
    """Standard descriptor type codes (bDescriptorType)."""

    DEVICE = 0x01
    CONFIGURATION = 0x02
    STRING = 0x03
    INTERFACE = 0x04
    ENDPOINT = 0x05
    DEVICE_QUALIFIER = 0x06
    OTHER_SPEED_CONFIGURATION = 0x07
    INTERFACE_POWER = 0x08
    OTG = 0x09
    DEBUG = 0x0A
    INTERFACE_ASSOCIATION = 0x0B
    BOS = 0x0F
    DEVICE_CAPABILITY = 0x10
    HID = 0x21
    REPORT = 0x22
    CS_INTERFACE = 0x24
    CS_ENDPOINT = 0x25
    HUB = 0x29
    SUPERSPEED_HUB = 0x2A
    SS_ENDPOINT_COMPANION = 0x30
    SSP_ISOC_ENDPOINT_COMPANION = 0x31


class DeviceCapabilityType(IntEnum):
    """BOS device capability types (bDevCapabilityType)."""

    WIRELESS_USB = 0x01
    USB_2_0_EXTENSION = 0x02
    SUPERSPEED_USB = 0x03
    CONTAINER_ID = 0x04
    PLATFORM = 0x05
    POWER_DELIVERY = 0x06
    BATTERY_INFO = 0x07
    PD_CONSUMER_PORT = 0x08
    PD_PROVIDER_PORT = 0x09
    SUPERSPEED_PLUS = 0x0A
    PRECISION_TIME_MEASUREMENT = 0x0B
    WIRELESS_USB_EXT = 0x0C
    BILLBOARD = 0x0D


class USBClass(IntEnum):
    """USB Device/Interface Class Codes."""

    # Standard classes
    PER_INTERFACE = 0x00  # Class defined at interface level
    AUDIO = 0x01
    CDC_CONTROL = 0x02  # Communications Device Class
    HID = 0x03  # Human Interface Device
    PHYSICAL = 0x05
    IMAGE = 0x06  # Still Image Capture
    PRINTER = 0x07
    MASS_STORAGE = 0x08
    HUB = 0x09
    CDC_DATA = 0x0A
    SMART_CARD = 0x0B
    CONTENT_SECURITY = 0x0D
    VIDEO = 0x0E
    PERSONAL_HEALTHCARE = 0x0F
    AUDIO_VIDEO = 0x10
    BILLBOARD = 0x11
    USB_TYPE_C_BRIDGE = 0x12
    DIAGNOSTIC = 0xDC
    WIRELESS_CONTROLLER = 0xE0
    MISCELLANEOUS = 0xEF
    APPLICATION_SPECIFIC = 0xFE
    VENDOR_SPECIFIC = 0xFF


class TransferType(IntEnum):
    """USB Transfer Types."""

    CONTROL = 0x00
    ISOCHRONOUS = 0x01
    BULK = 0x02
    INTERRUPT = 0x03


class SyncType(IntEnum):
    """Isochronous synchronisation type (bmAttributes bits 3..2)."""

    NONE = 0x00
    ASYNC = 0x01
    ADAPTIVE = 0x02
    SYNC = 0x03


class UsageType(IntEnum):
    """Endpoint usage type (bmAttributes bits 5..4)."""

    DATA = 0x00
    FEEDBACK = 0x01
    IMPLICIT_FEEDBACK = 0x02
    RESERVED = 0x03


class Speed(Enum):
    """Negotiated device speed."""

    UNKNOWN = "unknown"
    LOW = "low"
    FULL = "full"
    HIGH = "high"
    SUPER = "super"
    SUPER_PLUS = "super_plus"
    SUPER_PLUS_X2 = "super_plus_x2"

    @property
    def label(self) -> str:
        return SPEED_LABELS[self]

    @property
    def is_superspeed(self) -> bool:
        return self in (Speed.SUPER, Speed.SUPER_PLUS, Speed.SUPER_PLUS_X2)

    @classmethod
    def from_mbps(cls, value: str | float | None) -> "Speed":
        """Map a sysfs ``speed`` attribute (Mbit/s) to a Speed."""
        if value is None:
            return cls.UNKNOWN
        try:
            mbps = float(value)
        except (TypeError, ValueError):
            return cls.UNKNOWN
        return _SPEED_BY_MBPS.get(mbps, cls.UNKNOWN)


SPEED_LABELS: dict[Speed, str] = {
    Speed.UNKNOWN: "unknown",
    Speed.LOW: "1.5 Mb/s",
    Speed.FULL: "12 Mb/s",
    Speed.HIGH: "480 Mb/s",
    Speed.SUPER: "5 Gb/s",
    Speed.SUPER_PLUS: "10 Gb/s",
    Speed.SUPER_PLUS_X2: "20 Gb/s",
}

_SPEED_BY_MBPS: dict[float, Speed] = {
    1.5: Speed.LOW,
    12.0: Speed.FULL,
    480.0: Speed.HIGH,
    5000.0: Speed.SUPER,
    10000.0: Speed.SUPER_PLUS,
    20000.0: Speed.SUPER_PLUS_X2,
}


class ClassInfo(NamedTuple):
    """Information about a USB class."""

    code: int
    name: str
    description: str


# Class information
USB_CLASS_INFO: dict[int, ClassInfo] = {
    USBClass.PER_INTERFACE: ClassInfo(
        0x00, "Per-Interface", "Class defined at interface level"
    ),
    USBClass.AUDIO: ClassInfo(0x01, "Audio", "Speakers, microphones"),
    USBClass.CDC_CONTROL: ClassInfo(
        0x02, "Communications", "Modems, network adapters, serial ports"
    ),
    USBClass.HID: ClassInfo(0x03, "HID", "Keyboards, mice, game controllers"),
    USBClass.PHYSICAL: ClassInfo(0x05, "Physical", "Force feedback devices"),
    USBClass.IMAGE: ClassInfo(0x06, "Image", "Cameras, scanners"),
    USBClass.PRINTER: ClassInfo(0x07, "Printer", "Printers"),
    USBClass.MASS_STORAGE: ClassInfo(0x08, "Mass Storage", "Drives, card readers"),
    USBClass.HUB: ClassInfo(0x09, "Hub", "USB hubs"),
    USBClass.CDC_DATA: ClassInfo(0x0A, "CDC-Data", "Data interface for CDC devices"),
    USBClass.SMART_CARD: ClassInfo(0x0B, "Smart Card", "Smart card readers"),
    USBClass.CONTENT_SECURITY: ClassInfo(0x0D, "Content Security", "Content protection"),
    USBClass.VIDEO: ClassInfo(0x0E, "Video", "Webcams, capture devices"),
    USBClass.PERSONAL_HEALTHCARE: ClassInfo(
        0x0F, "Personal Healthcare", "Health monitoring devices"
    ),
    USBClass.AUDIO_VIDEO: ClassInfo(0x10, "Audio/Video", "A/V devices"),
    USBClass.BILLBOARD: ClassInfo(0x11, "Billboard", "Alternate mode billboard"),
    USBClass.USB_TYPE_C_BRIDGE: ClassInfo(0x12, "Type-C Bridge", "USB Type-C bridge"),
    USBClass.DIAGNOSTIC: ClassInfo(0xDC, "Diagnostic", "Diagnostic devices"),
    USBClass.WIRELESS_CONTROLLER: ClassInfo(
        0xE0, "Wireless", "Bluetooth/WiFi adapters"
    ),
    USBClass.MISCELLANEOUS: ClassInfo(0xEF, "Miscellaneous", "Composite devices"),
    USBClass.APPLICATION_SPECIFIC: ClassInfo(
        0xFE, "Application Specific", "DFU, IrDA, test and measurement"
    ),
    USBClass.VENDOR_SPECIFIC: ClassInfo(
        0xFF, "Vendor Specific", "Vendor defined functionality"
    ),
}


# Fallback vendor names when the system database has no entry
KNOWN_VENDORS: dict[int, str] = {
    0x046D: "Logitech",
    0x045E: "Microsoft",
    0x05AC: "Apple",
    0x8087: "Intel",
    0x8086: "Intel",
    0x1D6B: "Linux Foundation",
    0x0BDA: "Realtek",
    0x0781: "SanDisk",
    0x0951: "Kingston",
    0x1058: "Western Digital",
    0x0930: "Toshiba",
    0x04E8: "Samsung",
    0x0B05: "ASUS",
    0x1532: "Razer",
    0x1038: "SteelSeries",
    0x046A: "Cherry",
    0x04F2: "Chicony",
    0x0A5C: "Broadcom",
    0x10C4: "Silicon Labs",
    0x1A86: "QinHeng Electronics",
    0x0483: "STMicroelectronics",
    0x03EB: "Atmel",
    0x2341: "Arduino",
    0x239A: "Adafruit",
    0x1D50: "OpenMoko",
    0x05E3: "Genesys Logic",
    0x2109: "VIA Labs",
}


def get_class_name(class_code: int) -> str:
    """
    Get human-readable name for a USB class.

    Args:
        class_code: USB class code

    Returns:
        Class name string
    """
    info = USB_CLASS_INFO.get(class_code)
    if info:
        return info.name
    return f"Unknown (0x{class_code:02X})"


def parse_class(value: str | int) -> int:
    """
    Resolve a class given as code or name ("hid", "0x03", "mass-storage").

    Raises:
        ValueError: If the value names no known class
    """
    if isinstance(value, int):
        return value
    text = value.strip()
    try:
        return int(text, 0)
    except ValueError:
        pass
    key = text.upper().replace("-", "_").replace(" ", "_")
    if key in USBClass.__members__:
        return int(USBClass[key])
    for code, info in USB_CLASS_INFO.items():
        if info.name.lower() == text.lower():
            return int(code)
    raise ValueError(f"Unknown USB class: {value}")


def get_vendor_name(vid: int | None) -> str | None:
    """Get a fallback vendor name for a vendor ID."""
    if vid is None:
        return None
    return KNOWN_VENDORS.get(vid)


def format_bcd(value: int | None) -> str | None:
    """Format a BCD release number such as 0x0210 as "2.10"."""
    if value is None:
        return None
    return f"{(value >> 8) & 0xFF:x}.{value & 0xFF:02x}"
