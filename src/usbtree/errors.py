"""
Error taxonomy for usbtree.

Per-device failures are recoverable and end up as data on the tree
(degraded flags, error notes). Only BackendUnavailable is fatal.
"""

from __future__ import annotations


class UsbTreeError(Exception):
    """Base class for all usbtree errors."""

    pass


class ConfigError(UsbTreeError):
    """Invalid configuration value."""

    pass


class CaptureError(UsbTreeError):
    """A saved JSON capture could not be read back."""

    pass
