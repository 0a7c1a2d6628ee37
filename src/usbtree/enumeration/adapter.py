"""
Enumeration Adapter.

Wraps one backend instance: bounds every device read by a wall-clock
timeout, caches string descriptors and maps backend failures onto the
per-device error types.
"""

from __future__ import annotations

import errno
import functools
import logging
import threading
from typing import Callable, TypeVar

from usbtree.enumeration.backend import (
    BackendUnavailable,
    BusInfo,
    DeviceAccessError,
    DeviceBusy,
    DeviceHandle,
    DeviceTimeout,
    EnumerationBackend,
    InterfaceInfo,
    PermissionDenied,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

_ERRNO_MAP = {
    errno.EACCES: PermissionDenied,
    errno.EPERM: PermissionDenied,
    errno.EBUSY: DeviceBusy,
    errno.ETIMEDOUT: DeviceTimeout,
}


class StringCache:
    """
    String descriptor cache keyed by (bus, address, index).

    Failed reads are cached as None so a device is asked at most once
    per index.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[int, int, int], str | None] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_or_load(
        self,
        key: tuple[int, int, int],
        loader: Callable[[], str | None],
    ) -> str | None:
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]
            self.misses += 1
        value = loader()
        with self._lock:
            return self._entries.setdefault(key, value)

    def get(self, key: tuple[int, int, int]) -> str | None:
        with self._lock:
            return self._entries.get(key)

    def __contains__(self, key: tuple[int, int, int]) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0


def map_os_error(error: OSError, handle: DeviceHandle) -> DeviceAccessError:
    """Translate an OS-level failure into a per-device error."""
    error_class = _ERRNO_MAP.get(error.errno, DeviceAccessError)
    return error_class(f"Device {handle.device_id}: {error}")


class EnumerationAdapter:
    """
    Uniform, time-bounded access to an enumeration backend.

    Each guarded read runs on its own daemon thread and its timeout
    starts when that read starts. A read still running at its deadline
    is abandoned; neither later reads nor ``close()`` wait for it.
    """

    def __init__(
        self,
        backend: EnumerationBackend,
        timeout: float = 2.0,
        read_strings: bool = True,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            backend: Backend instance to wrap
            timeout: Per-read timeout in seconds, 0 disables the guard
            read_strings: Whether string descriptors are fetched at all
        """
        self.backend = backend
        self.timeout = timeout
        self.read_strings = read_strings
        self.strings = StringCache()
        self.abandoned = 0
        self._abandoned_lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> EnumerationAdapter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.abandoned:
            logger.info("Closing with %d timed-out reads still pending", self.abandoned)
        self.backend.close()
        logger.debug(
            "Adapter closed (string cache: %d entries, %d hits, %d misses)",
            len(self.strings), self.strings.hits, self.strings.misses,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def _guarded(self, handle: DeviceHandle, func: Callable[..., T], *args) -> T:
        """Run ``func`` on a fresh daemon thread, waiting at most the timeout."""
        outcome: dict[str, object] = {}

        def run() -> None:
            try:
                outcome["value"] = func(*args)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(
            target=run, name=f"usbtree-io-{handle.device_id}", daemon=True
        )
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            with self._abandoned_lock:
                self.abandoned += 1
            raise DeviceTimeout(
                f"Device {handle.device_id}: no response within {self.timeout:g}s"
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]

    def _call(self, handle: DeviceHandle, func: Callable[..., T], *args) -> T:
        """Run a backend call under the timeout and map its failures."""
        try:
            if self.timeout <= 0:
                return func(*args)
            return self._guarded(handle, func, *args)
        except (DeviceAccessError, BackendUnavailable):
            raise
        except OSError as e:
            raise map_os_error(e, handle) from e

    def list_buses(self) -> list[tuple[BusInfo, list[DeviceHandle]]]:
        """
        List buses and their device handles.

        Raises:
            BackendUnavailable: If the backend facility is missing
        """
        buses = self.backend.list_buses()
        logger.debug(
            "Backend %s reported %d buses, %d devices",
            self.backend.name, len(buses), sum(len(h) for _, h in buses),
        )
        return buses

    def read_device_descriptor(self, handle: DeviceHandle) -> bytes | None:
        """
        Read the device descriptor alone, None if the backend cannot.

        Raises:
            DeviceAccessError: PermissionDenied, DeviceBusy or DeviceTimeout
        """
        return self._call(handle, self.backend.read_device_descriptor, handle)

    def read_descriptors(self, handle: DeviceHandle) -> list[bytes]:
        """
        Read the raw descriptors of a device.

        Raises:
            DeviceAccessError: PermissionDenied, DeviceBusy or DeviceTimeout
        """
        return self._call(handle, self.backend.read_descriptors, handle)

    def read_interfaces(self, handle: DeviceHandle) -> list[InterfaceInfo]:
        try:
            return self._call(handle, self.backend.read_interfaces, handle)
        except DeviceAccessError as e:
            logger.debug("No interface details for %s: %s", handle.device_id, e)
            return []

    def read_string(self, handle: DeviceHandle, index: int) -> str | None:
        """
        Resolve string descriptor ``index`` of a device through the cache.

        Failures are logged and yield None; they never propagate.
        """
        if not index or not self.read_strings:
            return None
        key = (handle.bus, handle.address, index)
        if self._closed:
            return self.strings.get(key)

        def load() -> str | None:
            try:
                return self._call(handle, self.backend.read_string, handle, index)
            except DeviceAccessError as e:
                logger.debug("String %d of %s unavailable: %s", index, handle.device_id, e)
                return None
            except Exception as e:
                logger.warning(
                    "Error reading string %d of %s: %s", index, handle.device_id, e
                )
                return None

        return self.strings.get_or_load(key, load)

    def string_resolver(self, handle: DeviceHandle) -> Callable[[int], str | None]:
        """Resolver bound to one device, for lazily resolved StringRefs."""
        return functools.partial(self.read_string, handle)
