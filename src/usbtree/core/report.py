"""
Report pipeline.

Runs Adapter -> Decoder -> Builder -> Filter -> Formatter once and hands
back the rendered payload together with the tree it was rendered from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from usbtree.config import DisplayConfig, UsbTreeConfig
from usbtree.display.blocks import BlockKind, parse_blocks
from usbtree.display.formatter import (
    Group,
    MaskSerial,
    OutputMode,
    PrintSettings,
    Sort,
    render,
)
from usbtree.display.theme import customize_theme, get_theme
from usbtree.enumeration.adapter import EnumerationAdapter
from usbtree.enumeration.backend import EnumerationBackend
from usbtree.enumeration.platform import get_platform_backend
from usbtree.errors import ConfigError
from usbtree.query.filter import DeviceFilter
from usbtree.tree.builder import TreeBuilder
from usbtree.tree.capture import TreeDiff, diff_trees, format_diff, load_capture
from usbtree.tree.models import UsbTree


logger = logging.getLogger(__name__)


@dataclass
class Report:
    """Result of one report generation."""

    tree: UsbTree
    payload: str | dict[str, Any]
    settings: PrintSettings
    diff: TreeDiff | None = None

    @property
    def is_json(self) -> bool:
        return isinstance(self.payload, dict)


def settings_from_config(display: DisplayConfig) -> PrintSettings:
    """
    Build PrintSettings from the display section.

    Raises:
        ConfigError: If any value is not recognised
    """
    try:
        return PrintSettings(
            mode=OutputMode(display.mode),
            device_blocks=parse_blocks(BlockKind.DEVICE, display.blocks)
            if display.blocks else None,
            bus_blocks=parse_blocks(BlockKind.BUS, display.bus_blocks)
            if display.bus_blocks else None,
            config_blocks=parse_blocks(BlockKind.CONFIGURATION, display.config_blocks)
            if display.config_blocks else None,
            interface_blocks=parse_blocks(BlockKind.INTERFACE, display.interface_blocks)
            if display.interface_blocks else None,
            endpoint_blocks=parse_blocks(BlockKind.ENDPOINT, display.endpoint_blocks)
            if display.endpoint_blocks else None,
            sort=Sort(display.sort),
            group=Group(display.group),
            theme=customize_theme(
                get_theme(display.theme), display.icons, display.colours
            ),
            verbosity=display.verbosity,
            more=display.more,
            headings=display.headings,
            decimal=display.decimal,
            no_padding=display.no_padding,
            hide_buses=display.hide_buses,
            hide_hubs=display.hide_hubs,
            mask_serials=MaskSerial(display.mask_serials) if display.mask_serials else None,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


def filter_from_config(data: dict[str, Any]) -> DeviceFilter | None:
    """
    Build a DeviceFilter from the filter section; None when it is empty.

    Raises:
        ConfigError: If a value cannot be parsed
    """
    try:
        device_filter = DeviceFilter.from_dict(data)
    except ValueError as e:
        raise ConfigError(f"Invalid filter: {e}") from e
    return device_filter if device_filter.has_conditions() else None


def _log_level(name: str) -> int:
    return getattr(logging, name.upper(), logging.WARNING)


def _finish(
    tree: UsbTree,
    settings: PrintSettings,
    device_filter: DeviceFilter | None,
    baseline: UsbTree | None,
) -> Report:
    if device_filter is not None:
        tree = device_filter.filter_tree(tree)

    if baseline is None:
        match = device_filter.is_match if device_filter is not None else None
        return Report(tree=tree, payload=render(tree, settings, match), settings=settings)

    if device_filter is not None:
        baseline = device_filter.filter_tree(baseline)
    diff = diff_trees(baseline, tree)
    logger.info(
        "Diff: %d added, %d removed, %d changed",
        len(diff.added), len(diff.removed), len(diff.changed),
    )
    payload: str | dict[str, Any]
    if settings.mode is OutputMode.JSON:
        payload = diff.to_dict()
    else:
        payload = format_diff(diff)
    return Report(tree=tree, payload=payload, settings=settings, diff=diff)


def generate_report(
    config: UsbTreeConfig | None = None,
    backend: EnumerationBackend | None = None,
    device_filter: DeviceFilter | None = None,
    from_json: str | Path | None = None,
    diff_against: str | Path | None = None,
) -> Report:
    """
    Enumerate (or load) a tree, filter it and render it.

    Args:
        config: Resolved configuration; defaults when omitted
        backend: Backend to enumerate through; selected from the config
            when omitted
        device_filter: Filter to apply; taken from the config's filter
            section when omitted
        from_json: Render a saved capture instead of the live system
        diff_against: Saved capture to compare the tree against

    Returns:
        Report with the rendered payload

    Raises:
        BackendUnavailable: If no enumeration backend can be used
        ConfigError: If display or filter settings are invalid
        CaptureError: If a capture cannot be read back
    """
    config = config or UsbTreeConfig()
    settings = settings_from_config(config.display)
    if device_filter is None:
        device_filter = filter_from_config(config.filter)
    baseline = load_capture(diff_against) if diff_against is not None else None

    if from_json is not None:
        return _finish(load_capture(from_json), settings, device_filter, baseline)

    enumeration = config.enumeration
    if backend is None:
        backend = get_platform_backend(enumeration.backend, enumeration.timeout)
    logger.debug("Enumerating with %s backend", backend.name)

    # Strings resolve lazily, so rendering happens while the adapter is open
    with EnumerationAdapter(
        backend,
        timeout=enumeration.timeout,
        read_strings=enumeration.read_strings,
    ) as adapter:
        builder = TreeBuilder(
            adapter,
            max_workers=enumeration.max_workers,
            conflict_log_level=_log_level(enumeration.conflict_log_level),
        )
        tree = builder.build()
        return _finish(tree, settings, device_filter, baseline)
