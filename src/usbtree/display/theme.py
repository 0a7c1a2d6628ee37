"""
Output themes.

Colours, icons and tree glyphs. Every lookup is a pure function of the
block's colour role or the device/interface class.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from usbtree.descriptors.constants import USBClass, parse_class


class Colour:
    """ANSI escape sequences."""

    BOLD = "\033[1m"
    UNDERLINE = "\033[4m"
    BLUE = "\033[34;1m"
    CYAN = "\033[36;1m"
    GREEN = "\033[32;1m"
    YELLOW = "\033[33;1m"
    RED = "\033[31;1m"
    MAGENTA = "\033[35;1m"
    WHITE = "\033[37m"
    DIM = "\033[2m"
    RESET = "\033[0m"


class ColourRole(Enum):
    """What a rendered value is, for colouring."""

    NAME = "name"
    SERIAL = "serial"
    MANUFACTURER = "manufacturer"
    DRIVER = "driver"
    VID = "vid"
    PID = "pid"
    LOCATION = "location"
    PATH = "path"
    NUMBER = "number"
    SPEED = "speed"
    POWER = "power"
    CLASS_CODE = "class_code"
    SUB_CODE = "sub_code"
    PROTOCOL = "protocol"
    ATTRIBUTES = "attributes"
    ICON = "icon"
    STATUS = "status"
    TREE = "tree"
    TREE_BUS_START = "tree_bus_start"
    TREE_DEVICE = "tree_device"
    TREE_CONFIGURATION = "tree_configuration"
    TREE_INTERFACE = "tree_interface"
    TREE_ENDPOINT_IN = "tree_endpoint_in"
    TREE_ENDPOINT_OUT = "tree_endpoint_out"
    HEADING = "heading"


DEFAULT_COLOURS: dict[ColourRole, str] = {
    ColourRole.NAME: Colour.BLUE,
    ColourRole.SERIAL: Colour.GREEN,
    ColourRole.MANUFACTURER: Colour.BLUE,
    ColourRole.DRIVER: Colour.MAGENTA,
    ColourRole.VID: Colour.YELLOW,
    ColourRole.PID: Colour.YELLOW,
    ColourRole.LOCATION: Colour.MAGENTA,
    ColourRole.PATH: Colour.CYAN,
    ColourRole.NUMBER: Colour.CYAN,
    ColourRole.SPEED: Colour.MAGENTA,
    ColourRole.POWER: Colour.RED,
    ColourRole.CLASS_CODE: Colour.YELLOW,
    ColourRole.SUB_CODE: Colour.YELLOW,
    ColourRole.PROTOCOL: Colour.YELLOW,
    ColourRole.ATTRIBUTES: Colour.MAGENTA,
    ColourRole.ICON: Colour.WHITE,
    ColourRole.STATUS: Colour.RED,
    ColourRole.TREE: Colour.DIM,
    ColourRole.TREE_BUS_START: Colour.DIM,
    ColourRole.TREE_DEVICE: Colour.DIM,
    ColourRole.TREE_CONFIGURATION: Colour.DIM,
    ColourRole.TREE_INTERFACE: Colour.DIM,
    ColourRole.TREE_ENDPOINT_IN: Colour.YELLOW,
    ColourRole.TREE_ENDPOINT_OUT: Colour.MAGENTA,
    ColourRole.HEADING: Colour.BOLD + Colour.UNDERLINE,
}


@dataclass(frozen=True)
class TreeGlyphs:
    """Connector and terminator glyphs for tree output."""

    edge: str
    corner: str
    line: str
    blank: str
    bus_start: str
    device: str
    configuration: str
    interface: str
    endpoint_in: str
    endpoint_out: str


UTF8_GLYPHS = TreeGlyphs(
    edge="├── ",
    corner="└── ",
    line="│   ",
    blank="    ",
    bus_start="●",
    device="○",
    configuration="•",
    interface="◦",
    endpoint_in="→",
    endpoint_out="←",
)

ASCII_GLYPHS = TreeGlyphs(
    edge="|-- ",
    corner="`-- ",
    line="|   ",
    blank="    ",
    bus_start="/:",
    device="o",
    configuration="*",
    interface="+",
    endpoint_in=">",
    endpoint_out="<",
)


DEFAULT_CLASS_ICONS: dict[int, str] = {
    USBClass.AUDIO: "♫",
    USBClass.CDC_CONTROL: "⇄",
    USBClass.CDC_DATA: "⇄",
    USBClass.HID: "⌨",
    USBClass.IMAGE: "▧",
    USBClass.PRINTER: "⎙",
    USBClass.MASS_STORAGE: "▤",
    USBClass.HUB: "◇",
    USBClass.SMART_CARD: "▭",
    USBClass.VIDEO: "◉",
    USBClass.WIRELESS_CONTROLLER: "≋",
    USBClass.BILLBOARD: "▦",
    USBClass.DIAGNOSTIC: "✚",
    USBClass.VENDOR_SPECIFIC: "✱",
}


@dataclass(frozen=True)
class IconTheme:
    """Icons by class code, plus bus and configuration attribute icons."""

    classes: dict[int, str] = field(default_factory=lambda: dict(DEFAULT_CLASS_ICONS))
    default: str = "◌"
    bus: str = "⏚"
    self_powered: str = "⚡"
    remote_wakeup: str = "⏻"

    def for_class(self, class_code: int | None) -> str:
        if class_code is None:
            return self.default
        return self.classes.get(class_code, self.default)

    def for_classes(self, device_class: int | None, interface_classes: set[int]) -> str:
        """Icon for a device: its own class, else its single interface class."""
        if device_class in (None, USBClass.PER_INTERFACE, USBClass.MISCELLANEOUS):
            if len(interface_classes) == 1:
                return self.for_class(next(iter(interface_classes)))
            return self.default
        return self.for_class(device_class)

    def for_attributes(self, self_powered: bool, remote_wakeup: bool) -> str:
        icons = []
        if self_powered:
            icons.append(self.self_powered)
        if remote_wakeup:
            icons.append(self.remote_wakeup)
        return " ".join(icons)


@dataclass(frozen=True)
class Theme:
    """A named combination of colours, icons and tree glyphs."""

    name: str
    glyphs: TreeGlyphs
    colours: dict[ColourRole, str] | None = None
    icons: IconTheme | None = None

    def paint(self, text: str, role: ColourRole | None) -> str:
        """Wrap text in the colour for ``role``; unchanged without colours."""
        if not self.colours or role is None or not text:
            return text
        code = self.colours.get(role)
        if not code:
            return text
        return f"{code}{text}{Colour.RESET}"


THEMES: dict[str, Theme] = {
    "default": Theme("default", UTF8_GLYPHS, DEFAULT_COLOURS, IconTheme()),
    "no-icons": Theme("no-icons", UTF8_GLYPHS, DEFAULT_COLOURS, None),
    "ascii": Theme("ascii", ASCII_GLYPHS, DEFAULT_COLOURS, None),
    "plain": Theme("plain", ASCII_GLYPHS, None, None),
}


def get_theme(name: str) -> Theme:
    """
    Look up a theme by name.

    Raises:
        ValueError: If the theme is unknown
    """
    try:
        return THEMES[name]
    except KeyError:
        raise ValueError(
            f"Unknown theme: {name} (choose from {', '.join(THEMES)})"
        ) from None


# IconTheme fields that can be overridden by name alongside class icons
ICON_SLOTS = ("default", "bus", "self_powered", "remote_wakeup")


def parse_colour(value: str) -> str:
    """
    Resolve a colour name ("blue", "bold+underline", "none") to ANSI codes.

    Raises:
        ValueError: If a part names no known colour
    """
    if value.strip().lower() == "none":
        return ""
    codes = []
    for part in value.split("+"):
        name = part.strip().upper()
        if name.startswith("_") or name == "RESET" or not hasattr(Colour, name):
            raise ValueError(f"Unknown colour: {part.strip()}")
        codes.append(getattr(Colour, name))
    return "".join(codes)


def customize_theme(
    theme: Theme,
    icons: dict[str | int, str] | None = None,
    colours: dict[str, str] | None = None,
) -> Theme:
    """
    Return ``theme`` with icon and colour overrides merged over it.

    Icon keys are class codes or names, or one of ``ICON_SLOTS``. Colour
    keys are ColourRole values. A theme without icons or colours gains
    them from the overrides, starting from the default icon set and an
    empty colour map respectively.

    Raises:
        ValueError: If a key or colour is not recognised
    """
    if icons:
        base = theme.icons or IconTheme()
        classes = dict(base.classes)
        slots = {}
        for key, glyph in icons.items():
            if key in ICON_SLOTS:
                slots[key] = str(glyph)
            else:
                classes[parse_class(key)] = str(glyph)
        theme = replace(theme, icons=replace(base, classes=classes, **slots))

    if colours:
        merged = dict(theme.colours or {})
        for key, value in colours.items():
            try:
                role = ColourRole(key)
            except ValueError:
                raise ValueError(f"Unknown colour role: {key}") from None
            merged[role] = parse_colour(value)
        theme = replace(theme, colours=merged)

    return theme
