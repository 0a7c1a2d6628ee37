"""
Saved JSON captures.

Loads a document written by ``usbtree --json`` back into a tree and
compares two trees device by device.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from usbtree.errors import CaptureError
from usbtree.tree.models import Device, UsbTree


logger = logging.getLogger(__name__)

# Fields compared when a device sits at the same position in both trees
DIFF_FIELDS = (
    "address",
    "vendor_id",
    "product_id",
    "device_class",
    "usb_version",
    "device_version",
    "speed",
    "name",
    "serial_value",
    "driver",
    "degraded",
)


def load_capture(path: str | Path) -> UsbTree:
    """
    Load a JSON capture into a UsbTree.

    Args:
        path: Path of the JSON document

    Returns:
        The tree the document describes

    Raises:
        FileNotFoundError: If the file does not exist
        CaptureError: If the document is not a valid capture
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise CaptureError(f"{path}: not valid JSON: {e}") from e

    if not isinstance(data, dict) or "buses" not in data:
        raise CaptureError(f"{path}: not a usbtree capture (no 'buses' key)")
    try:
        tree = UsbTree.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise CaptureError(f"{path}: malformed capture: {e}") from e

    logger.debug(
        "Loaded capture %s (version %s, %d devices)",
        path, data.get("version"), tree.device_count,
    )
    return tree


def _field_value(device: Device, name: str) -> Any:
    if name == "serial_value":
        return device.serial.get()
    return getattr(device, name)


@dataclass
class DeviceChange:
    """A device present in both trees with differing fields."""

    old: Device
    new: Device
    fields: dict[str, tuple[Any, Any]] = field(default_factory=dict)


@dataclass
class TreeDiff:
    """Differences between two trees keyed by (bus, port path)."""

    added: list[Device] = field(default_factory=list)
    removed: list[Device] = field(default_factory=list)
    changed: list[DeviceChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": [d.location for d in self.added],
            "removed": [d.location for d in self.removed],
            "changed": [
                {
                    "location": c.new.location,
                    "fields": {
                        name: {"old": old, "new": new}
                        for name, (old, new) in c.fields.items()
                    },
                }
                for c in self.changed
            ],
        }


def _index(tree: UsbTree) -> dict[tuple[int, tuple[int, ...]], Device]:
    return {(d.bus, d.port_path): d for d in tree.iter_devices()}


def diff_trees(old: UsbTree, new: UsbTree) -> TreeDiff:
    """
    Compare two trees.

    Devices are matched by bus and port path; enum values are compared
    by value so a loaded capture diffs cleanly against a live tree.
    """
    old_index = _index(old)
    new_index = _index(new)
    diff = TreeDiff()

    for key in sorted(new_index.keys() - old_index.keys()):
        diff.added.append(new_index[key])
    for key in sorted(old_index.keys() - new_index.keys()):
        diff.removed.append(old_index[key])

    for key in sorted(old_index.keys() & new_index.keys()):
        before, after = old_index[key], new_index[key]
        change = DeviceChange(before, after)
        for name in DIFF_FIELDS:
            a, b = _field_value(before, name), _field_value(after, name)
            if a != b:
                change.fields[name] = (getattr(a, "value", a), getattr(b, "value", b))
        if change.fields:
            diff.changed.append(change)

    return diff


def format_diff(diff: TreeDiff) -> str:
    """Render a diff as one line per added, removed or changed device."""
    if diff.is_empty:
        return "No changes"

    def label(device: Device) -> str:
        ids = "-"
        if device.vendor_id is not None:
            ids = f"{device.vendor_id:04x}:{device.product_id:04x}"
        return f"{device.location} {ids} {device.name or '-'}"

    lines = [f"+ {label(d)}" for d in diff.added]
    lines += [f"- {label(d)}" for d in diff.removed]
    for change in diff.changed:
        details = ", ".join(
            f"{name}: {old} -> {new}" for name, (old, new) in change.fields.items()
        )
        lines.append(f"~ {label(change.new)} ({details})")
    return "\n".join(lines)
