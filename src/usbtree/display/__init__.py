"""
Block Registry & Formatter.

Catalogs of displayable blocks per entity kind, themes, and rendering
of tree, list and JSON output.
"""

from usbtree.display.blocks import (
    REGISTRY,
    BlockKind,
    BlockSpec,
    BusBlock,
    ConfigurationBlock,
    DeviceBlock,
    EndpointBlock,
    InterfaceBlock,
    default_blocks,
    parse_blocks,
)
from usbtree.display.formatter import (
    PLACEHOLDER,
    Group,
    MaskSerial,
    OutputMode,
    PrintSettings,
    Sort,
    mask_serials,
    render,
)
from usbtree.display.theme import THEMES, Theme, get_theme

__all__ = [
    # Blocks
    "REGISTRY",
    "BlockKind",
    "BlockSpec",
    "BusBlock",
    "ConfigurationBlock",
    "DeviceBlock",
    "EndpointBlock",
    "InterfaceBlock",
    "default_blocks",
    "parse_blocks",
    # Formatter
    "PLACEHOLDER",
    "Group",
    "MaskSerial",
    "OutputMode",
    "PrintSettings",
    "Sort",
    "mask_serials",
    "render",
    # Themes
    "THEMES",
    "Theme",
    "get_theme",
]
