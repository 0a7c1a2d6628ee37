"""Backend selection for the current platform."""

from __future__ import annotations

import logging
import platform

from usbtree.enumeration.backend import BackendUnavailable, EnumerationBackend
from usbtree.errors import ConfigError


logger = logging.getLogger(__name__)

BACKEND_NAMES = ("auto", "udev", "libusb")


def get_platform_backend(name: str = "auto", timeout: float = 2.0) -> EnumerationBackend:
    """
    Get the enumeration backend for the current platform.

    Args:
        name: "udev", "libusb" or "auto" (udev on Linux when usable)
        timeout: Transfer timeout handed to backends that issue requests

    Returns:
        EnumerationBackend instance

    Raises:
        ConfigError: If the name is not a known backend
        BackendUnavailable: If an explicitly requested backend cannot be used
    """
    if name not in BACKEND_NAMES:
        raise ConfigError(f"Unknown backend: {name}")

    if name == "udev":
        from usbtree.enumeration.udev import UdevBackend
        backend = UdevBackend()
        backend.probe()
        return backend

    if name == "auto" and platform.system().lower() == "linux":
        from usbtree.enumeration.udev import UdevBackend
        backend = UdevBackend()
        try:
            backend.probe()
            logger.debug("Using udev backend")
            return backend
        except BackendUnavailable as e:
            logger.info("udev unavailable (%s), falling back to libusb", e)

    from usbtree.enumeration.libusb import LibusbBackend
    logger.debug("Using libusb backend")
    return LibusbBackend(timeout=timeout)
