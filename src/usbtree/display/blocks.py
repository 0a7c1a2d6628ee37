"""
Display blocks.

A block is a named, pure mapping from a bus, device, configuration,
interface or endpoint to a short text value. Each entity kind has a
closed catalog of blocks; REGISTRY maps every block to its BlockSpec.
Extractors return None when the value is unknown and the formatter
renders the placeholder instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable, Iterable

from usbtree.descriptors.constants import Speed, format_bcd, get_class_name
from usbtree.descriptors.records import Configuration, Endpoint, Interface
from usbtree.display.theme import ColourRole, IconTheme
from usbtree.tree.models import Bus, Device


class BlockKind(Enum):
    """Entity kinds that carry their own block catalog."""

    BUS = "bus"
    DEVICE = "device"
    CONFIGURATION = "configuration"
    INTERFACE = "interface"
    ENDPOINT = "endpoint"


class Align(Enum):
    LEFT = "left"
    RIGHT = "right"


class BusBlock(Enum):
    BUS_NUMBER = "bus-number"
    ICON = "icon"
    NAME = "name"
    HOST_CONTROLLER = "host-controller"
    PCI_VENDOR = "pci-vendor"
    PCI_DEVICE = "pci-device"
    PCI_REVISION = "pci-revision"
    PORT_PATH = "port-path"


class DeviceBlock(Enum):
    BUS_NUMBER = "bus-number"
    DEVICE_NUMBER = "device-number"
    BRANCH_POSITION = "branch-position"
    PORT_PATH = "port-path"
    SYS_PATH = "sys-path"
    DRIVER = "driver"
    ICON = "icon"
    VENDOR_ID = "vendor-id"
    PRODUCT_ID = "product-id"
    NAME = "name"
    MANUFACTURER = "manufacturer"
    PRODUCT_NAME = "product-name"
    VENDOR_NAME = "vendor-name"
    SERIAL = "serial"
    SPEED = "speed"
    TREE_POSITIONS = "tree-positions"
    BUS_POWER = "bus-power"
    BCD_DEVICE = "bcd-device"
    BCD_USB = "bcd-usb"
    CLASS_CODE = "class-code"
    SUB_CLASS = "sub-class"
    PROTOCOL = "protocol"
    NUM_CONFIGURATIONS = "num-configurations"
    STATUS = "status"


class ConfigurationBlock(Enum):
    NAME = "name"
    NUMBER = "number"
    NUM_INTERFACES = "num-interfaces"
    ATTRIBUTES = "attributes"
    ICON_ATTRIBUTES = "icon-attributes"
    MAX_POWER = "max-power"


class InterfaceBlock(Enum):
    NAME = "name"
    NUMBER = "number"
    PORT_PATH = "port-path"
    CLASS_CODE = "class-code"
    SUB_CLASS = "sub-class"
    PROTOCOL = "protocol"
    ALT_SETTING = "alt-setting"
    DRIVER = "driver"
    SYS_PATH = "sys-path"
    NUM_ENDPOINTS = "num-endpoints"
    ICON = "icon"


class EndpointBlock(Enum):
    NUMBER = "number"
    DIRECTION = "direction"
    TRANSFER_TYPE = "transfer-type"
    SYNC_TYPE = "sync-type"
    USAGE_TYPE = "usage-type"
    MAX_PACKET_SIZE = "max-packet-size"
    INTERVAL = "interval"


BLOCK_ENUMS: dict[BlockKind, type[Enum]] = {
    BlockKind.BUS: BusBlock,
    BlockKind.DEVICE: DeviceBlock,
    BlockKind.CONFIGURATION: ConfigurationBlock,
    BlockKind.INTERFACE: InterfaceBlock,
    BlockKind.ENDPOINT: EndpointBlock,
}

# Blocks that are dropped when the theme carries no icons
ICON_BLOCKS = {
    BusBlock.ICON,
    DeviceBlock.ICON,
    InterfaceBlock.ICON,
    ConfigurationBlock.ICON_ATTRIBUTES,
}


@dataclass
class BlockContext:
    """
    Rendering context handed to every extractor.

    ``device`` and ``configuration`` are the enclosing entities when a
    configuration, interface or endpoint is being rendered.
    """

    decimal: bool = False
    icons: IconTheme | None = None
    device: Device | None = None
    configuration: Configuration | None = None


Extractor = Callable[[Any, BlockContext], "str | None"]


@dataclass(frozen=True)
class BlockSpec:
    """Heading, value extractor, alignment and colour role of a block."""

    heading: str
    extract: Extractor
    align: Align = Align.LEFT
    role: ColourRole | None = None


def _id(value: int | None, ctx: BlockContext, width: int = 4) -> str | None:
    if value is None:
        return None
    if ctx.decimal:
        return str(value)
    return f"0x{value:0{width}x}"


def _num(value: int | None) -> str | None:
    return None if value is None else str(value)


def _text(value: str | None) -> str | None:
    return value or None


def _basename(path: str | None) -> str | None:
    return PurePosixPath(path).name if path else None


# -- bus ---------------------------------------------------------------------


def _bus_icon(bus: Bus, ctx: BlockContext) -> str | None:
    return ctx.icons.bus if ctx.icons else None


# -- device ------------------------------------------------------------------


def _device_icon(device: Device, ctx: BlockContext) -> str | None:
    if ctx.icons is None:
        return None
    return ctx.icons.for_classes(device.device_class, device.interface_classes)


def _tree_positions(device: Device, ctx: BlockContext) -> str | None:
    if device.is_root_hub:
        return "0"
    return "-".join(str(p) for p in device.port_path)


def _speed(device: Device, ctx: BlockContext) -> str | None:
    if device.speed is Speed.UNKNOWN:
        return None
    return device.speed.label


def _active_configuration(device: Device) -> Configuration | None:
    for config in device.configurations:
        if config.value == device.active_configuration:
            return config
    return device.configurations[0] if device.configurations else None


def _bus_power(device: Device, ctx: BlockContext) -> str | None:
    config = _active_configuration(device)
    if config is None:
        return None
    return f"{config.max_power_ma(device.speed.is_superspeed)}mA"


def _status(device: Device, ctx: BlockContext) -> str | None:
    if device.degraded:
        return "degraded"
    if device.anomalies:
        return "anomaly"
    return "ok"


# -- configuration -----------------------------------------------------------


def _attributes(config: Configuration, ctx: BlockContext) -> str | None:
    return ", ".join(config.attribute_names) or "bus-powered"


def _icon_attributes(config: Configuration, ctx: BlockContext) -> str | None:
    if ctx.icons is None:
        return None
    return ctx.icons.for_attributes(config.self_powered, config.remote_wakeup) or None


def _max_power(config: Configuration, ctx: BlockContext) -> str | None:
    superspeed = ctx.device.speed.is_superspeed if ctx.device else False
    return f"{config.max_power_ma(superspeed)}mA"


# -- interface ---------------------------------------------------------------


def _interface_path(intf: Interface, ctx: BlockContext) -> str | None:
    if ctx.device is None or ctx.configuration is None:
        return None
    return f"{ctx.device.location}:{ctx.configuration.value}.{intf.number}"


def _interface_icon(intf: Interface, ctx: BlockContext) -> str | None:
    return ctx.icons.for_class(intf.interface_class) if ctx.icons else None


# -- endpoint ----------------------------------------------------------------


def _max_packet(endpoint: Endpoint, ctx: BlockContext) -> str | None:
    size = endpoint.max_packet_size & 0x07FF
    multiplier = ((endpoint.max_packet_size >> 11) & 0x03) + 1
    if multiplier > 1:
        return f"{multiplier}x {size}"
    return str(size)


def _title(member: Enum) -> str:
    return member.name.replace("_", " ").title().replace(" ", "")


BUS_BLOCKS: dict[Enum, BlockSpec] = {
    BusBlock.BUS_NUMBER: BlockSpec(
        "Bus", lambda b, c: f"{b.number:03d}", Align.RIGHT, ColourRole.NUMBER
    ),
    BusBlock.ICON: BlockSpec("", _bus_icon, role=ColourRole.ICON),
    BusBlock.NAME: BlockSpec("Name", lambda b, c: _text(b.name), role=ColourRole.NAME),
    BusBlock.HOST_CONTROLLER: BlockSpec(
        "Host Controller", lambda b, c: _text(b.host_controller), role=ColourRole.MANUFACTURER
    ),
    BusBlock.PCI_VENDOR: BlockSpec(
        " VID ", lambda b, c: _id(b.pci_vendor, c), Align.RIGHT, ColourRole.VID
    ),
    BusBlock.PCI_DEVICE: BlockSpec(
        " PID ", lambda b, c: _id(b.pci_device, c), Align.RIGHT, ColourRole.PID
    ),
    BusBlock.PCI_REVISION: BlockSpec(
        " Rev ", lambda b, c: _id(b.pci_revision, c), Align.RIGHT, ColourRole.NUMBER
    ),
    BusBlock.PORT_PATH: BlockSpec("PortPath", lambda b, c: b.location, role=ColourRole.PATH),
}

DEVICE_BLOCKS: dict[Enum, BlockSpec] = {
    DeviceBlock.BUS_NUMBER: BlockSpec(
        "Bus", lambda d, c: f"{d.bus:03d}", Align.RIGHT, ColourRole.NUMBER
    ),
    DeviceBlock.DEVICE_NUMBER: BlockSpec(
        " # ",
        lambda d, c: None if d.address is None else f"{d.address:03d}",
        Align.RIGHT,
        ColourRole.NUMBER,
    ),
    DeviceBlock.BRANCH_POSITION: BlockSpec(
        "Prt", lambda d, c: str(d.branch_position), Align.RIGHT, ColourRole.NUMBER
    ),
    DeviceBlock.PORT_PATH: BlockSpec("PPath", lambda d, c: d.location, role=ColourRole.PATH),
    DeviceBlock.SYS_PATH: BlockSpec(
        "SPath", lambda d, c: _basename(d.sys_path), role=ColourRole.PATH
    ),
    DeviceBlock.DRIVER: BlockSpec("Driver", lambda d, c: _text(d.driver), role=ColourRole.DRIVER),
    DeviceBlock.ICON: BlockSpec("", _device_icon, role=ColourRole.ICON),
    DeviceBlock.VENDOR_ID: BlockSpec(
        "VID", lambda d, c: _id(d.vendor_id, c), Align.RIGHT, ColourRole.VID
    ),
    DeviceBlock.PRODUCT_ID: BlockSpec(
        "PID", lambda d, c: _id(d.product_id, c), Align.RIGHT, ColourRole.PID
    ),
    DeviceBlock.NAME: BlockSpec("Name", lambda d, c: _text(d.name), role=ColourRole.NAME),
    DeviceBlock.MANUFACTURER: BlockSpec(
        "Manufacturer", lambda d, c: _text(d.manufacturer.get()), role=ColourRole.MANUFACTURER
    ),
    DeviceBlock.PRODUCT_NAME: BlockSpec(
        "PName", lambda d, c: _text(d.product_name), role=ColourRole.NAME
    ),
    DeviceBlock.VENDOR_NAME: BlockSpec(
        "VName", lambda d, c: _text(d.vendor_name), role=ColourRole.MANUFACTURER
    ),
    DeviceBlock.SERIAL: BlockSpec(
        "Serial", lambda d, c: _text(d.serial.get()), role=ColourRole.SERIAL
    ),
    DeviceBlock.SPEED: BlockSpec("Speed", _speed, Align.RIGHT, ColourRole.SPEED),
    DeviceBlock.TREE_POSITIONS: BlockSpec("TPos", _tree_positions, role=ColourRole.LOCATION),
    DeviceBlock.BUS_POWER: BlockSpec("PBus", _bus_power, Align.RIGHT, ColourRole.POWER),
    DeviceBlock.BCD_DEVICE: BlockSpec(
        "Dev V", lambda d, c: format_bcd(d.device_version), Align.RIGHT, ColourRole.NUMBER
    ),
    DeviceBlock.BCD_USB: BlockSpec(
        "USB V", lambda d, c: format_bcd(d.usb_version), Align.RIGHT, ColourRole.NUMBER
    ),
    DeviceBlock.CLASS_CODE: BlockSpec(
        "Class", lambda d, c: d.class_name, role=ColourRole.CLASS_CODE
    ),
    DeviceBlock.SUB_CLASS: BlockSpec(
        "SubC", lambda d, c: _id(d.device_subclass, c, 2), Align.RIGHT, ColourRole.SUB_CODE
    ),
    DeviceBlock.PROTOCOL: BlockSpec(
        "Pcol", lambda d, c: _id(d.device_protocol, c, 2), Align.RIGHT, ColourRole.PROTOCOL
    ),
    DeviceBlock.NUM_CONFIGURATIONS: BlockSpec(
        "NCfg", lambda d, c: _num(d.num_configurations), Align.RIGHT, ColourRole.NUMBER
    ),
    DeviceBlock.STATUS: BlockSpec("Status", _status, role=ColourRole.STATUS),
}

CONFIGURATION_BLOCKS: dict[Enum, BlockSpec] = {
    ConfigurationBlock.NAME: BlockSpec(
        "Name", lambda cfg, c: _text(cfg.name.get()), role=ColourRole.NAME
    ),
    ConfigurationBlock.NUMBER: BlockSpec(
        " #", lambda cfg, c: str(cfg.value), Align.RIGHT, ColourRole.NUMBER
    ),
    ConfigurationBlock.NUM_INTERFACES: BlockSpec(
        "NumI", lambda cfg, c: str(cfg.num_interfaces), Align.RIGHT, ColourRole.NUMBER
    ),
    ConfigurationBlock.ATTRIBUTES: BlockSpec("Attributes", _attributes, role=ColourRole.ATTRIBUTES),
    ConfigurationBlock.ICON_ATTRIBUTES: BlockSpec("", _icon_attributes, role=ColourRole.ICON),
    ConfigurationBlock.MAX_POWER: BlockSpec("MaxPwr", _max_power, Align.RIGHT, ColourRole.POWER),
}

INTERFACE_BLOCKS: dict[Enum, BlockSpec] = {
    InterfaceBlock.NAME: BlockSpec(
        "Name", lambda i, c: _text(i.name.get()), role=ColourRole.NAME
    ),
    InterfaceBlock.NUMBER: BlockSpec(
        " #", lambda i, c: str(i.number), Align.RIGHT, ColourRole.NUMBER
    ),
    InterfaceBlock.PORT_PATH: BlockSpec("PortPath", _interface_path, role=ColourRole.PATH),
    InterfaceBlock.CLASS_CODE: BlockSpec(
        "Class", lambda i, c: get_class_name(i.interface_class), role=ColourRole.CLASS_CODE
    ),
    InterfaceBlock.SUB_CLASS: BlockSpec(
        "SubC", lambda i, c: _id(i.interface_subclass, c, 2), Align.RIGHT, ColourRole.SUB_CODE
    ),
    InterfaceBlock.PROTOCOL: BlockSpec(
        "Pcol", lambda i, c: _id(i.interface_protocol, c, 2), Align.RIGHT, ColourRole.PROTOCOL
    ),
    InterfaceBlock.ALT_SETTING: BlockSpec(
        "Alt", lambda i, c: str(i.alt_setting), Align.RIGHT, ColourRole.NUMBER
    ),
    InterfaceBlock.DRIVER: BlockSpec(
        "Driver", lambda i, c: _text(i.driver), role=ColourRole.DRIVER
    ),
    InterfaceBlock.SYS_PATH: BlockSpec(
        "SPath", lambda i, c: _basename(i.sys_path), role=ColourRole.PATH
    ),
    InterfaceBlock.NUM_ENDPOINTS: BlockSpec(
        "NumE", lambda i, c: str(i.num_endpoints), Align.RIGHT, ColourRole.NUMBER
    ),
    InterfaceBlock.ICON: BlockSpec("", _interface_icon, role=ColourRole.ICON),
}

ENDPOINT_BLOCKS: dict[Enum, BlockSpec] = {
    EndpointBlock.NUMBER: BlockSpec(
        " #", lambda e, c: str(e.number), Align.RIGHT, ColourRole.NUMBER
    ),
    EndpointBlock.DIRECTION: BlockSpec(
        "Dir", lambda e, c: e.direction, role=ColourRole.ATTRIBUTES
    ),
    EndpointBlock.TRANSFER_TYPE: BlockSpec(
        "TransferT", lambda e, c: _title(e.transfer_type), role=ColourRole.ATTRIBUTES
    ),
    EndpointBlock.SYNC_TYPE: BlockSpec(
        "SyncT", lambda e, c: _title(e.sync_type), role=ColourRole.ATTRIBUTES
    ),
    EndpointBlock.USAGE_TYPE: BlockSpec(
        "UsageT", lambda e, c: _title(e.usage_type), role=ColourRole.ATTRIBUTES
    ),
    EndpointBlock.MAX_PACKET_SIZE: BlockSpec(
        "MaxPkB", _max_packet, Align.RIGHT, ColourRole.NUMBER
    ),
    EndpointBlock.INTERVAL: BlockSpec(
        "Iv", lambda e, c: str(e.interval), Align.RIGHT, ColourRole.NUMBER
    ),
}

REGISTRY: dict[BlockKind, dict[Enum, BlockSpec]] = {
    BlockKind.BUS: BUS_BLOCKS,
    BlockKind.DEVICE: DEVICE_BLOCKS,
    BlockKind.CONFIGURATION: CONFIGURATION_BLOCKS,
    BlockKind.INTERFACE: INTERFACE_BLOCKS,
    BlockKind.ENDPOINT: ENDPOINT_BLOCKS,
}


_DEFAULTS: dict[tuple[BlockKind, bool], list[Enum]] = {
    (BlockKind.BUS, False): [BusBlock.NAME, BusBlock.HOST_CONTROLLER],
    (BlockKind.BUS, True): [
        BusBlock.ICON,
        BusBlock.PORT_PATH,
        BusBlock.NAME,
        BusBlock.HOST_CONTROLLER,
        BusBlock.PCI_VENDOR,
        BusBlock.PCI_DEVICE,
        BusBlock.PCI_REVISION,
    ],
    (BlockKind.DEVICE, False): [
        DeviceBlock.BUS_NUMBER,
        DeviceBlock.DEVICE_NUMBER,
        DeviceBlock.ICON,
        DeviceBlock.VENDOR_ID,
        DeviceBlock.PRODUCT_ID,
        DeviceBlock.NAME,
        DeviceBlock.SERIAL,
        DeviceBlock.SPEED,
    ],
    (BlockKind.DEVICE, True): [
        DeviceBlock.BUS_NUMBER,
        DeviceBlock.DEVICE_NUMBER,
        DeviceBlock.TREE_POSITIONS,
        DeviceBlock.PORT_PATH,
        DeviceBlock.ICON,
        DeviceBlock.VENDOR_ID,
        DeviceBlock.PRODUCT_ID,
        DeviceBlock.BCD_DEVICE,
        DeviceBlock.BCD_USB,
        DeviceBlock.CLASS_CODE,
        DeviceBlock.SUB_CLASS,
        DeviceBlock.PROTOCOL,
        DeviceBlock.NAME,
        DeviceBlock.MANUFACTURER,
        DeviceBlock.SERIAL,
        DeviceBlock.DRIVER,
        DeviceBlock.SPEED,
        DeviceBlock.STATUS,
    ],
    (BlockKind.CONFIGURATION, False): [
        ConfigurationBlock.NUMBER,
        ConfigurationBlock.ICON_ATTRIBUTES,
        ConfigurationBlock.MAX_POWER,
        ConfigurationBlock.NAME,
    ],
    (BlockKind.CONFIGURATION, True): [
        ConfigurationBlock.NUMBER,
        ConfigurationBlock.ICON_ATTRIBUTES,
        ConfigurationBlock.ATTRIBUTES,
        ConfigurationBlock.NUM_INTERFACES,
        ConfigurationBlock.MAX_POWER,
        ConfigurationBlock.NAME,
    ],
    (BlockKind.INTERFACE, False): [
        InterfaceBlock.PORT_PATH,
        InterfaceBlock.ICON,
        InterfaceBlock.ALT_SETTING,
        InterfaceBlock.CLASS_CODE,
        InterfaceBlock.SUB_CLASS,
        InterfaceBlock.PROTOCOL,
        InterfaceBlock.NAME,
    ],
    (BlockKind.INTERFACE, True): [
        InterfaceBlock.PORT_PATH,
        InterfaceBlock.ICON,
        InterfaceBlock.ALT_SETTING,
        InterfaceBlock.CLASS_CODE,
        InterfaceBlock.SUB_CLASS,
        InterfaceBlock.PROTOCOL,
        InterfaceBlock.NAME,
        InterfaceBlock.DRIVER,
        InterfaceBlock.NUM_ENDPOINTS,
    ],
    (BlockKind.ENDPOINT, False): [
        EndpointBlock.NUMBER,
        EndpointBlock.DIRECTION,
        EndpointBlock.TRANSFER_TYPE,
        EndpointBlock.SYNC_TYPE,
        EndpointBlock.USAGE_TYPE,
        EndpointBlock.MAX_PACKET_SIZE,
    ],
    (BlockKind.ENDPOINT, True): [
        EndpointBlock.NUMBER,
        EndpointBlock.DIRECTION,
        EndpointBlock.TRANSFER_TYPE,
        EndpointBlock.SYNC_TYPE,
        EndpointBlock.USAGE_TYPE,
        EndpointBlock.INTERVAL,
        EndpointBlock.MAX_PACKET_SIZE,
    ],
}

TREE_DEVICE_BLOCKS: list[Enum] = [
    DeviceBlock.ICON,
    DeviceBlock.DEVICE_NUMBER,
    DeviceBlock.VENDOR_ID,
    DeviceBlock.PRODUCT_ID,
    DeviceBlock.NAME,
    DeviceBlock.SERIAL,
]


def default_blocks(kind: BlockKind, verbose: bool = False, tree: bool = False) -> list[Enum]:
    """
    Default block selection for an entity kind.

    Args:
        kind: Entity kind
        verbose: Use the verbose set
        tree: Tree output; only changes the terse device set

    Returns:
        New list of block members
    """
    if tree and kind is BlockKind.DEVICE and not verbose:
        return list(TREE_DEVICE_BLOCKS)
    return list(_DEFAULTS[(kind, verbose)])


def parse_blocks(kind: BlockKind, names: str | Iterable[str]) -> list[Enum]:
    """
    Parse block names for an entity kind.

    Each item may itself be a comma-separated list ("name,serial").

    Raises:
        ValueError: If a name is not in the kind's catalog
    """
    if isinstance(names, str):
        names = [names]
    enum = BLOCK_ENUMS[kind]
    blocks = []
    for item in names:
        for name in item.split(","):
            name = name.strip().lower().replace("_", "-")
            if not name:
                continue
            try:
                blocks.append(enum(name))
            except ValueError:
                valid = ", ".join(m.value for m in enum)
                raise ValueError(
                    f"Unknown {kind.value} block: {name} (valid: {valid})"
                ) from None
    return blocks


def get_spec(kind: BlockKind, block: Enum) -> BlockSpec:
    return REGISTRY[kind][block]
