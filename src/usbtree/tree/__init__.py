"""
Device Tree Builder.

Assembles decoded devices into one tree per bus and reads saved
captures back.
"""

from usbtree.tree.builder import TreeBuilder
from usbtree.tree.capture import TreeDiff, diff_trees, format_diff, load_capture
from usbtree.tree.models import Bus, Device, TreeConflict, UsbTree, format_port_path

__all__ = [
    "Bus",
    "Device",
    "TreeBuilder",
    "TreeConflict",
    "TreeDiff",
    "UsbTree",
    "diff_trees",
    "format_diff",
    "format_port_path",
    "load_capture",
]
