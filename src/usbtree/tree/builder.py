"""
Device Tree Builder.

Probes every device the adapter lists, decodes its descriptors and
assembles one tree per bus keyed by port path.
"""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from usbtree.descriptors.constants import get_vendor_name
from usbtree.descriptors.decoder import decode_buffers, decode_device
from usbtree.descriptors.records import DeviceDescriptor, StringRef
from usbtree.descriptors.validator import DescriptorValidator
from usbtree.enumeration.adapter import EnumerationAdapter
from usbtree.enumeration.backend import (
    BackendUnavailable,
    BusInfo,
    DeviceAccessError,
    DeviceHandle,
)
from usbtree.tree.models import Bus, Device, TreeConflict, UsbTree


logger = logging.getLogger(__name__)

# Root hub port that devices without a port path are listed under; real
# ports are numbered from 1
UNPLACED_PORT = 0


class _BusTable:
    """
    Per-bus result table.

    Inserts happen in completion order under the lock; each insert gets
    the next read sequence number and the latest read wins on collision.
    """

    def __init__(self, bus: int) -> None:
        self.bus = bus
        self.by_address: dict[int, Device] = {}
        self.by_path: dict[tuple[int, ...], Device] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

    def insert(self, device: Device) -> list[TreeConflict]:
        conflicts = []
        with self._lock:
            device.sequence = next(self._sequence)

            previous = self.by_address.get(device.address)
            if previous is not None:
                self.by_path.pop(previous.port_path, None)
                conflicts.append(self._conflict("address", device, previous))

            previous = self.by_path.get(device.port_path)
            if previous is not None:
                self.by_address.pop(previous.address, None)
                conflicts.append(self._conflict("port-path", device, previous))

            self.by_address[device.address] = device
            self.by_path[device.port_path] = device
        return conflicts

    def _conflict(self, reason: str, kept: Device, discarded: Device) -> TreeConflict:
        return TreeConflict(
            bus=self.bus,
            reason=reason,
            kept_address=kept.address,
            discarded_address=discarded.address,
            port_path=kept.port_path if reason == "port-path" else discarded.port_path,
            kept_sequence=kept.sequence,
            discarded_sequence=discarded.sequence,
        )


class TreeBuilder:
    """
    Assembles decoded devices into a rooted forest, one root per bus.
    """

    def __init__(
        self,
        adapter: EnumerationAdapter,
        max_workers: int = 8,
        conflict_log_level: int = logging.WARNING,
        validator: DescriptorValidator | None = None,
    ) -> None:
        """
        Initialize the builder.

        Args:
            adapter: Enumeration adapter to read devices through
            max_workers: Upper bound on concurrent device probes
            conflict_log_level: Logging level for TreeConflict notes
            validator: Consistency checker, default DescriptorValidator
        """
        self.adapter = adapter
        self.max_workers = max(1, max_workers)
        self.conflict_log_level = conflict_log_level
        self.validator = validator or DescriptorValidator()

    def build(self) -> UsbTree:
        """
        Enumerate all buses and build the device tree.

        Raises:
            BackendUnavailable: If the backend facility is missing
        """
        tree = UsbTree()
        for info, handles in self.adapter.list_buses():
            bus, conflicts = self.build_bus(info, handles)
            tree.buses.append(bus)
            tree.conflicts.extend(conflicts)
        tree.buses.sort(key=lambda b: b.number)
        logger.info(
            "Built tree: %d buses, %d devices, %d conflicts",
            len(tree.buses), tree.device_count, len(tree.conflicts),
        )
        return tree

    def build_bus(
        self,
        info: BusInfo,
        handles: list[DeviceHandle],
    ) -> tuple[Bus, list[TreeConflict]]:
        """Probe the handles of one bus concurrently and assemble its tree."""
        table = _BusTable(info.number)
        conflicts: list[TreeConflict] = []

        if handles:
            workers = min(self.max_workers, len(handles))
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix=f"usbtree-bus{info.number}"
            ) as pool:
                futures = [pool.submit(self.probe, handle) for handle in handles]
                for future in as_completed(futures):
                    for conflict in table.insert(future.result()):
                        logger.log(self.conflict_log_level, "%s", conflict)
                        conflicts.append(conflict)

        bus = Bus(
            number=info.number,
            name=info.name,
            host_controller=info.host_controller,
            pci_vendor=info.pci_vendor,
            pci_device=info.pci_device,
            pci_revision=info.pci_revision,
            sys_path=info.sys_path,
            root=self._assemble(info.number, table.by_path),
        )
        return bus, conflicts

    def probe(self, handle: DeviceHandle) -> Device:
        """
        Read and decode one device.

        Per-device failures produce a degraded Device; only
        BackendUnavailable propagates. The device descriptor is read
        on its own first, so a device whose configurations cannot be
        read still reports its IDs and strings.
        """
        port_path = handle.port_path
        if port_path is None:
            logger.warning(
                "Device %s has no port path, listing it under port %d of the root hub",
                handle.device_id, UNPLACED_PORT,
            )
            port_path = (UNPLACED_PORT, handle.address)

        device = Device(
            bus=handle.bus,
            port_path=port_path,
            address=handle.address,
            speed=handle.speed,
            driver=handle.driver,
            sys_path=handle.sys_path,
            vendor_name=handle.vendor_name,
            product_name=handle.product_name,
            active_configuration=handle.active_configuration,
        )

        descriptor = None
        try:
            raw = self.adapter.read_device_descriptor(handle)
            if raw:
                descriptor = decode_device(raw)
            buffers = self.adapter.read_descriptors(handle)
        except BackendUnavailable:
            raise
        except DeviceAccessError as e:
            logger.warning("Could not read device %s: %s", handle.device_id, e)
            return self._incomplete(device, handle, descriptor, str(e))
        except Exception as e:
            logger.error("Error reading device %s: %s", handle.device_id, e)
            return self._incomplete(
                device, handle, descriptor, f"Device {handle.device_id}: {e}"
            )

        decoded = decode_buffers(buffers)
        for problem in decoded.problems:
            logger.debug("Device %s: %s", handle.device_id, problem)
            device.errors.append(str(problem))
        if decoded.malformed:
            device.degraded = True
        descriptor = decoded.device or descriptor
        if descriptor is None:
            return self._degrade(device, "Device descriptor unavailable")

        resolver = self._apply_descriptor(device, handle, descriptor)
        device.configurations = decoded.configurations
        device.bos = decoded.bos
        device.hub = decoded.hub
        device.extra = decoded.opaque

        for config in device.configurations:
            config.name.resolver = resolver
            for intf in config.interfaces:
                intf.name.resolver = resolver

        try:
            self._attach_interface_info(device, handle)
        except BackendUnavailable:
            raise
        except Exception as e:
            logger.warning("Could not read interfaces of %s: %s", handle.device_id, e)
            self._degrade(device, f"Device {handle.device_id}: interfaces unavailable: {e}")

        device.anomalies = self.validator.validate(device).anomalies
        return device

    def _apply_descriptor(
        self,
        device: Device,
        handle: DeviceHandle,
        descriptor: DeviceDescriptor,
    ) -> Callable[[int], str | None]:
        resolver = self.adapter.string_resolver(handle)
        device.descriptor = descriptor
        device.manufacturer = StringRef(descriptor.manufacturer_index, resolver=resolver)
        device.product = StringRef(descriptor.product_index, resolver=resolver)
        device.serial = StringRef(descriptor.serial_index, resolver=resolver)
        device.vendor_name = device.vendor_name or get_vendor_name(descriptor.vendor_id)
        return resolver

    def _incomplete(
        self,
        device: Device,
        handle: DeviceHandle,
        descriptor: DeviceDescriptor | None,
        note: str,
    ) -> Device:
        """Degrade a device whose read failed, keeping any device descriptor."""
        if descriptor is not None:
            self._apply_descriptor(device, handle, descriptor)
        return self._degrade(device, note)

    @staticmethod
    def _degrade(device: Device, note: str) -> Device:
        device.degraded = True
        device.errors.append(note)
        return device

    def _attach_interface_info(self, device: Device, handle: DeviceHandle) -> None:
        """Copy driver bindings onto the interfaces of the active configuration."""
        infos = self.adapter.read_interfaces(handle)
        if not infos:
            return
        if device.active_configuration is not None:
            configs = [
                c for c in device.configurations
                if c.value == device.active_configuration
            ]
        else:
            configs = device.configurations[:1]
        by_number = {info.number: info for info in infos}
        for config in configs:
            for intf in config.interfaces:
                info = by_number.get(intf.number)
                if info is not None:
                    intf.driver = info.driver
                    intf.sys_path = info.sys_path

    def _assemble(self, bus: int, by_path: dict[tuple[int, ...], Device]) -> Device:
        """Link devices to their parents by port path and return the root hub."""
        nodes = dict(by_path)
        if () not in nodes:
            logger.warning("Bus %d: root hub not enumerated, using a placeholder", bus)
            nodes[()] = self._placeholder(bus, (), "Root hub not enumerated")
        unplaced = (UNPLACED_PORT,)
        if unplaced not in nodes and any(p[:1] == unplaced for p in nodes):
            nodes[unplaced] = self._placeholder(bus, unplaced, "Devices without a port path")

        for path in sorted(nodes, key=lambda p: (len(p), p)):
            if path:
                self._ensure_node(nodes, bus, path[:-1]).children.append(nodes[path])

        for node in nodes.values():
            node.children.sort(key=lambda d: d.branch_position)
        return nodes[()]

    def _ensure_node(
        self,
        nodes: dict[tuple[int, ...], Device],
        bus: int,
        path: tuple[int, ...],
    ) -> Device:
        """Return the node at ``path``, creating degraded placeholders on the way."""
        node = nodes.get(path)
        if node is None:
            logger.warning(
                "Bus %d: no device at port path %s, using a placeholder",
                bus, ".".join(str(p) for p in path),
            )
            node = self._placeholder(bus, path, "Parent hub not enumerated")
            nodes[path] = node
            self._ensure_node(nodes, bus, path[:-1]).children.append(node)
        return node

    @staticmethod
    def _placeholder(bus: int, path: tuple[int, ...], note: str) -> Device:
        return Device(bus=bus, port_path=path, degraded=True, errors=[note])
