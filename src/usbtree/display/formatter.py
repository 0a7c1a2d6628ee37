"""
Output formatter.

Renders a UsbTree (or a flat list of devices) as an indented tree, a
padded table or a JSON document, according to PrintSettings.
"""

from __future__ import annotations

import dataclasses
import logging
import random
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from usbtree.descriptors.records import Configuration, Interface, StringRef
from usbtree.display.blocks import (
    ICON_BLOCKS,
    Align,
    BlockContext,
    BlockKind,
    default_blocks,
    get_spec,
)
from usbtree.display.theme import ColourRole, Theme, get_theme
from usbtree.tree.models import Bus, Device, UsbTree


logger = logging.getLogger(__name__)

PLACEHOLDER = "-"
MAX_VERBOSITY = 4


class Sort(Enum):
    """Device sort keys; all but NO_SORT tie-break on (bus, port path)."""

    PORT_PATH = "port-path"
    DEVICE_NUMBER = "device-number"
    VENDOR_PRODUCT = "vendor-product"
    NAME = "name"
    NO_SORT = "no-sort"

    def key(self, device: Device) -> tuple:
        position = (device.bus, device.port_path)
        if self is Sort.DEVICE_NUMBER:
            return (device.address is None, device.address or 0, *position)
        if self is Sort.VENDOR_PRODUCT:
            return (
                device.vendor_id is None,
                device.vendor_id or 0,
                device.product_id or 0,
                *position,
            )
        if self is Sort.NAME:
            name = device.name
            return (name is None, (name or "").lower(), *position)
        return position

    def sort(self, devices: Iterable[Device]) -> list[Device]:
        if self is Sort.NO_SORT:
            return list(devices)
        return sorted(devices, key=self.key)


class Group(Enum):
    NO_GROUP = "no-group"
    BUS = "bus"


class OutputMode(Enum):
    TREE = "tree"
    LIST = "list"
    JSON = "json"


class MaskSerial(Enum):
    """How serial numbers are masked for sharing output."""

    HIDE = "hide"
    SCRAMBLE = "scramble"
    REPLACE = "replace"

    def mask(self, serial: str, rng: random.Random | None = None) -> str:
        rng = rng or random.Random()
        if self is MaskSerial.HIDE:
            return "*" * len(serial)
        if self is MaskSerial.SCRAMBLE:
            return "".join(rng.choice(serial) for _ in serial)
        alphabet = string.ascii_uppercase + string.digits
        return "".join(rng.choices(alphabet, k=len(serial)))


@dataclass
class PrintSettings:
    """
    Everything the formatter needs besides the tree.

    Block lists left as None fall back to the default set for the
    output mode and verbosity.
    """

    mode: OutputMode = OutputMode.LIST
    device_blocks: list[Enum] | None = None
    bus_blocks: list[Enum] | None = None
    config_blocks: list[Enum] | None = None
    interface_blocks: list[Enum] | None = None
    endpoint_blocks: list[Enum] | None = None
    sort: Sort = Sort.PORT_PATH
    group: Group = Group.NO_GROUP
    theme: Theme = field(default_factory=lambda: get_theme("default"))
    verbosity: int = 0
    more: bool = False
    headings: bool = False
    decimal: bool = False
    no_padding: bool = False
    hide_buses: bool = False
    hide_hubs: bool = False
    mask_serials: MaskSerial | None = None

    @property
    def verbose(self) -> bool:
        return self.more or self.verbosity >= MAX_VERBOSITY

    def blocks_for(self, kind: BlockKind) -> list[Enum]:
        """Selected blocks for a kind, with icon blocks dropped if the theme has none."""
        selected = {
            BlockKind.BUS: self.bus_blocks,
            BlockKind.DEVICE: self.device_blocks,
            BlockKind.CONFIGURATION: self.config_blocks,
            BlockKind.INTERFACE: self.interface_blocks,
            BlockKind.ENDPOINT: self.endpoint_blocks,
        }[kind]
        if selected is None:
            selected = default_blocks(kind, self.verbose, tree=self.mode is OutputMode.TREE)
        if self.theme.icons is None:
            selected = [b for b in selected if b not in ICON_BLOCKS]
        return list(selected)

    def context(self, **kwargs: Any) -> BlockContext:
        return BlockContext(decimal=self.decimal, icons=self.theme.icons, **kwargs)


# -- serial masking ----------------------------------------------------------


def _mask_device(device: Device, mode: MaskSerial, rng: random.Random) -> Device:
    serial = device.serial.get()
    masked = StringRef(
        index=device.serial.index,
        value=mode.mask(serial, rng) if serial else None,
        _resolved=True,
    )
    return dataclasses.replace(
        device,
        serial=masked,
        children=[_mask_device(c, mode, rng) for c in device.children],
    )


def mask_serials(tree: UsbTree, mode: MaskSerial, rng: random.Random | None = None) -> UsbTree:
    """Return a copy of the tree with every serial number masked."""
    rng = rng or random.Random()
    return UsbTree(
        buses=[
            dataclasses.replace(
                bus, root=_mask_device(bus.root, mode, rng) if bus.root else None
            )
            for bus in tree.buses
        ],
        conflicts=list(tree.conflicts),
    )


# -- cells and rows ----------------------------------------------------------


class _Table:
    """Column widths for one entity kind, measured over everything shown."""

    def __init__(self, kind: BlockKind, blocks: Sequence[Enum], settings: PrintSettings) -> None:
        self.kind = kind
        self.blocks = list(blocks)
        self.specs = [get_spec(kind, b) for b in self.blocks]
        self.settings = settings
        self.widths = [0] * len(self.blocks)
        if settings.headings:
            self.widths = [len(spec.heading) for spec in self.specs]

    def values(self, entity: Any, ctx: BlockContext) -> list[str]:
        values = []
        for spec in self.specs:
            value = spec.extract(entity, ctx)
            values.append(PLACEHOLDER if value is None or value == "" else value)
        return values

    def measure(self, entity: Any, ctx: BlockContext) -> None:
        for i, value in enumerate(self.values(entity, ctx)):
            self.widths[i] = max(self.widths[i], len(value))

    def _join(self, cells: list[tuple[str, Align, ColourRole | None]]) -> str:
        theme = self.settings.theme
        parts = []
        for (text, align, role), width in zip(cells, self.widths):
            if self.settings.no_padding:
                parts.append(theme.paint(text, role))
                continue
            pad = " " * max(width - len(text), 0)
            if align is Align.RIGHT:
                parts.append(pad + theme.paint(text, role))
            else:
                parts.append(theme.paint(text, role) + pad)
        return " ".join(parts).rstrip()

    def row(self, entity: Any, ctx: BlockContext) -> str:
        values = self.values(entity, ctx)
        return self._join(
            [(v, spec.align, spec.role) for v, spec in zip(values, self.specs)]
        )

    def heading(self) -> str:
        return self._join(
            [(spec.heading, spec.align, ColourRole.HEADING) for spec in self.specs]
        )


# -- list mode ---------------------------------------------------------------


def _visible_devices(
    devices: Iterable[Device],
    settings: PrintSettings,
    match: Callable[[Device], bool] | None = None,
) -> list[Device]:
    if match is not None:
        devices = [d for d in devices if match(d)]
    if settings.hide_hubs:
        devices = [d for d in devices if not d.is_hub]
    return settings.sort.sort(devices)


def _ordered_buses(buses: Iterable[Bus], settings: PrintSettings) -> list[Bus]:
    if settings.sort is Sort.NO_SORT:
        return list(buses)
    return sorted(buses, key=lambda b: b.number)


def _render_list(
    tree: UsbTree,
    settings: PrintSettings,
    match: Callable[[Device], bool] | None = None,
) -> str:
    devices_table = _Table(BlockKind.DEVICE, settings.blocks_for(BlockKind.DEVICE), settings)
    ctx = settings.context()
    lines: list[str] = []

    if settings.group is Group.BUS:
        bus_table = _Table(BlockKind.BUS, settings.blocks_for(BlockKind.BUS), settings)
        groups = []
        for bus in _ordered_buses(tree.buses, settings):
            devices = _visible_devices(bus.iter_devices(), settings, match)
            if settings.hide_buses and not devices:
                continue
            groups.append((bus, devices))
            bus_table.measure(bus, ctx)
            for device in devices:
                devices_table.measure(device, ctx)
        for i, (bus, devices) in enumerate(groups):
            if i:
                lines.append("")
            if settings.headings:
                lines.append(bus_table.heading())
            lines.append(bus_table.row(bus, ctx))
            if settings.headings and devices:
                lines.append(devices_table.heading())
            lines.extend(devices_table.row(d, ctx) for d in devices)
        return "\n".join(lines)

    devices = _visible_devices(tree.iter_devices(), settings, match)
    for device in devices:
        devices_table.measure(device, ctx)
    if settings.headings:
        lines.append(devices_table.heading())
    lines.extend(devices_table.row(d, ctx) for d in devices)
    return "\n".join(lines)


def _render_device_list(devices: Sequence[Device], settings: PrintSettings) -> str:
    table = _Table(BlockKind.DEVICE, settings.blocks_for(BlockKind.DEVICE), settings)
    ctx = settings.context()
    devices = _visible_devices(devices, settings)
    for device in devices:
        table.measure(device, ctx)
    lines = [table.heading()] if settings.headings else []
    lines.extend(table.row(d, ctx) for d in devices)
    return "\n".join(lines)


# -- tree mode ---------------------------------------------------------------


class _TreeRenderer:
    """Walks buses and devices emitting connector-prefixed lines."""

    def __init__(self, settings: PrintSettings) -> None:
        self.settings = settings
        self.theme = settings.theme
        self.glyphs = settings.theme.glyphs
        self.tables = {
            kind: _Table(kind, settings.blocks_for(kind), settings) for kind in BlockKind
        }
        self.lines: list[str] = []

    def children(self, device: Device) -> list[Device]:
        """Child devices to show, with hidden hubs replaced by their children."""
        shown = []
        for child in device.children:
            if self.settings.hide_hubs and child.is_hub:
                shown.extend(self.children(child))
            else:
                shown.append(child)
        return self.settings.sort.sort(shown)

    def top_devices(self, bus: Bus) -> list[Device]:
        if bus.root is None:
            return []
        if self.settings.hide_hubs and bus.root.is_hub:
            return self.children(bus.root)
        return [bus.root]

    def configurations(self, device: Device) -> list[Configuration]:
        return device.configurations if self.settings.verbosity >= 1 else []

    def interfaces(self, config: Configuration) -> list[Interface]:
        return config.interfaces if self.settings.verbosity >= 2 else []

    # measuring pass

    def measure(self, buses: list[Bus]) -> None:
        ctx = self.settings.context()
        for bus in buses:
            self.tables[BlockKind.BUS].measure(bus, ctx)
            for device in self.top_devices(bus):
                self._measure_device(device)

    def _measure_device(self, device: Device) -> None:
        self.tables[BlockKind.DEVICE].measure(device, self.settings.context())
        for config in self.configurations(device):
            ctx = self.settings.context(device=device, configuration=config)
            self.tables[BlockKind.CONFIGURATION].measure(config, ctx)
            for intf in self.interfaces(config):
                self.tables[BlockKind.INTERFACE].measure(intf, ctx)
                if self.settings.verbosity >= 3:
                    for endpoint in intf.endpoints:
                        self.tables[BlockKind.ENDPOINT].measure(endpoint, ctx)
        for child in self.children(device):
            self._measure_device(child)

    # output pass

    def _connector(self, last: bool) -> str:
        glyph = self.glyphs.corner if last else self.glyphs.edge
        return self.theme.paint(glyph, ColourRole.TREE)

    def _extend(self, prefix: str, last: bool) -> str:
        return prefix + self.theme.paint(
            self.glyphs.blank if last else self.glyphs.line, ColourRole.TREE
        )

    def _emit(self, prefix: str, last: bool, glyph: str, role: ColourRole, row: str) -> None:
        line = f"{prefix}{self._connector(last)}{self.theme.paint(glyph, role)} {row}"
        self.lines.append(line.rstrip())

    def render_bus(self, bus: Bus) -> None:
        ctx = self.settings.context()
        if self.settings.headings:
            self.lines.append("  " + self.tables[BlockKind.BUS].heading())
            self.lines.append("  " + self.tables[BlockKind.DEVICE].heading())
        start = self.theme.paint(self.glyphs.bus_start, ColourRole.TREE_BUS_START)
        self.lines.append(f"{start} {self.tables[BlockKind.BUS].row(bus, ctx)}".rstrip())
        devices = self.top_devices(bus)
        for i, device in enumerate(devices):
            self.render_device(device, "", i == len(devices) - 1)

    def render_device(self, device: Device, prefix: str, last: bool) -> None:
        table = self.tables[BlockKind.DEVICE]
        self._emit(
            prefix, last, self.glyphs.device, ColourRole.TREE_DEVICE,
            table.row(device, self.settings.context()),
        )
        inner = self._extend(prefix, last)
        configs = self.configurations(device)
        children = self.children(device)
        items: list[Any] = [*configs, *children]
        for i, item in enumerate(items):
            item_last = i == len(items) - 1
            if isinstance(item, Configuration):
                self.render_configuration(device, item, inner, item_last)
            else:
                self.render_device(item, inner, item_last)

    def render_configuration(
        self, device: Device, config: Configuration, prefix: str, last: bool
    ) -> None:
        ctx = self.settings.context(device=device, configuration=config)
        self._emit(
            prefix, last, self.glyphs.configuration, ColourRole.TREE_CONFIGURATION,
            self.tables[BlockKind.CONFIGURATION].row(config, ctx),
        )
        inner = self._extend(prefix, last)
        interfaces = self.interfaces(config)
        for i, intf in enumerate(interfaces):
            intf_last = i == len(interfaces) - 1
            self._emit(
                inner, intf_last, self.glyphs.interface, ColourRole.TREE_INTERFACE,
                self.tables[BlockKind.INTERFACE].row(intf, ctx),
            )
            if self.settings.verbosity < 3:
                continue
            ep_prefix = self._extend(inner, intf_last)
            for j, endpoint in enumerate(intf.endpoints):
                inbound = endpoint.direction == "IN"
                self._emit(
                    ep_prefix,
                    j == len(intf.endpoints) - 1,
                    self.glyphs.endpoint_in if inbound else self.glyphs.endpoint_out,
                    ColourRole.TREE_ENDPOINT_IN if inbound else ColourRole.TREE_ENDPOINT_OUT,
                    self.tables[BlockKind.ENDPOINT].row(endpoint, ctx),
                )

    def render(self, tree: UsbTree) -> str:
        buses = [
            bus for bus in _ordered_buses(tree.buses, self.settings)
            if not (
                self.settings.hide_buses
                and (bus.root is None or not bus.root.children)
            )
        ]
        self.measure(buses)
        for i, bus in enumerate(buses):
            if i:
                self.lines.append("")
            self.render_bus(bus)
        return "\n".join(self.lines)


# -- entry point -------------------------------------------------------------


def render(
    tree: UsbTree | Sequence[Device],
    settings: PrintSettings | None = None,
    match: Callable[[Device], bool] | None = None,
) -> str | dict[str, Any]:
    """
    Render a tree or a flat device list.

    Args:
        tree: Snapshot to render, or a flat sequence of devices
        settings: Print settings; defaults apply when omitted
        match: List mode rows are limited to devices it accepts

    Returns:
        Text for tree and list modes, a JSON-ready dict for json mode
    """
    settings = settings or PrintSettings()

    if isinstance(tree, UsbTree):
        # matched against unmasked serials
        keys = None
        if match is not None and settings.mode is OutputMode.LIST:
            keys = {(d.bus, d.port_path) for d in tree.iter_devices() if match(d)}
        if settings.mask_serials is not None:
            tree = mask_serials(tree, settings.mask_serials)
        if settings.mode is OutputMode.JSON:
            return tree.to_dict()
        if settings.mode is OutputMode.TREE:
            return _TreeRenderer(settings).render(tree)
        if keys is None:
            return _render_list(tree, settings)
        return _render_list(tree, settings, lambda d: (d.bus, d.port_path) in keys)

    devices = list(tree)
    if settings.mask_serials is not None:
        rng = random.Random()
        devices = [_mask_device(d, settings.mask_serials, rng) for d in devices]
    if settings.mode is OutputMode.JSON:
        from usbtree import __version__

        return {"version": __version__, "devices": [d.to_dict() for d in devices]}
    if settings.mode is OutputMode.TREE:
        logger.debug("Tree mode needs a UsbTree; rendering %d devices as a list", len(devices))
    return _render_device_list(devices, settings)
