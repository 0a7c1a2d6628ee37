"""
USB Descriptor decoding.

Turns raw descriptor buffers into typed records. Decoding is a pure
function of the bytes: no I/O happens here, string descriptors are only
referenced by index and resolved later through the enumeration adapter.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field

from usbtree.descriptors.constants import DescriptorType
from usbtree.descriptors.records import (
    ASSOCIATION_FORMAT,
    ASSOCIATION_LENGTH,
    AUDIO_ENDPOINT_FORMAT,
    AUDIO_ENDPOINT_LENGTH,
    BOS_FORMAT,
    BOS_LENGTH,
    CONFIGURATION_FORMAT,
    CONFIGURATION_LENGTH,
    DEVICE_FORMAT,
    DEVICE_LENGTH,
    ENDPOINT_FORMAT,
    ENDPOINT_LENGTH,
    INTERFACE_FORMAT,
    INTERFACE_LENGTH,
    SS_COMPANION_FORMAT,
    SS_COMPANION_LENGTH,
    BosDescriptor,
    Configuration,
    DeviceCapability,
    DeviceDescriptor,
    Endpoint,
    HidDescriptor,
    HubDescriptor,
    Interface,
    InterfaceAssociation,
    OpaqueDescriptor,
    StringRef,
    SuperSpeedCompanion,
)
from usbtree.errors import UsbTreeError


logger = logging.getLogger(__name__)


class MalformedDescriptor(UsbTreeError):
    """Descriptor bytes are truncated or inconsistent with their type."""

    def __init__(
        self,
        message: str,
        descriptor_type: int | None = None,
        offset: int | None = None,
    ) -> None:
        super().__init__(message)
        self.descriptor_type = descriptor_type
        self.offset = offset


class UnsupportedDescriptorType(UsbTreeError):
    """Recognised descriptor type without a decoder; kept as opaque bytes."""

    def __init__(self, descriptor_type: int, data: bytes) -> None:
        super().__init__(f"Unsupported descriptor type 0x{descriptor_type:02x}")
        self.descriptor_type = descriptor_type
        self.data = data

    def to_opaque(self) -> OpaqueDescriptor:
        return OpaqueDescriptor(self.descriptor_type, self.data)


@dataclass
class DecodedDescriptors:
    """Everything decoded from the raw buffers of one device."""

    device: DeviceDescriptor | None = None
    configurations: list[Configuration] = field(default_factory=list)
    bos: BosDescriptor | None = None
    hub: HubDescriptor | None = None
    opaque: list[OpaqueDescriptor] = field(default_factory=list)
    problems: list[UsbTreeError] = field(default_factory=list)

    @property
    def malformed(self) -> bool:
        return any(isinstance(p, MalformedDescriptor) for p in self.problems)


def _type_name(descriptor_type: int) -> str:
    try:
        return DescriptorType(descriptor_type).name
    except ValueError:
        return f"0x{descriptor_type:02x}"


def _check_header(buffer: bytes, expected_type: int) -> int:
    """Validate length/type tags and return the declared length."""
    if len(buffer) < 2:
        raise MalformedDescriptor(
            f"Buffer of {len(buffer)} bytes is too short for a descriptor header",
            expected_type,
        )
    length, descriptor_type = buffer[0], buffer[1]
    if length < 2:
        raise MalformedDescriptor(
            f"Declared length {length} is smaller than the header", descriptor_type
        )
    if length > len(buffer):
        raise MalformedDescriptor(
            f"{_type_name(descriptor_type)} declares {length} bytes "
            f"but only {len(buffer)} are present",
            descriptor_type,
        )
    if descriptor_type != expected_type:
        raise MalformedDescriptor(
            f"Expected {_type_name(expected_type)} descriptor, "
            f"got {_type_name(descriptor_type)}",
            descriptor_type,
        )
    return length


def _require_length(length: int, minimum: int, descriptor_type: int, exact: bool = False) -> None:
    if length < minimum or (exact and length != minimum):
        raise MalformedDescriptor(
            f"{_type_name(descriptor_type)} descriptor length {length} "
            f"is invalid (expected {'' if exact else 'at least '}{minimum})",
            descriptor_type,
        )


def decode_device(buffer: bytes) -> DeviceDescriptor:
    length = _check_header(buffer, DescriptorType.DEVICE)
    _require_length(length, DEVICE_LENGTH, DescriptorType.DEVICE, exact=True)
    fields = struct.unpack_from(DEVICE_FORMAT, buffer)
    return DeviceDescriptor(*fields[2:])


def decode_configuration_header(buffer: bytes) -> Configuration:
    length = _check_header(buffer, DescriptorType.CONFIGURATION)
    _require_length(length, CONFIGURATION_LENGTH, DescriptorType.CONFIGURATION)
    (
        _,
        _,
        total_length,
        num_interfaces,
        value,
        name_index,
        attributes,
        max_power,
    ) = struct.unpack_from(CONFIGURATION_FORMAT, buffer)
    return Configuration(
        value=value,
        attributes=attributes,
        max_power=max_power,
        total_length=total_length,
        num_interfaces=num_interfaces,
        name=StringRef(index=name_index),
    )


def decode_interface(buffer: bytes) -> Interface:
    length = _check_header(buffer, DescriptorType.INTERFACE)
    _require_length(length, INTERFACE_LENGTH, DescriptorType.INTERFACE)
    (
        _,
        _,
        number,
        alt_setting,
        num_endpoints,
        interface_class,
        interface_subclass,
        interface_protocol,
        name_index,
    ) = struct.unpack_from(INTERFACE_FORMAT, buffer)
    return Interface(
        number=number,
        alt_setting=alt_setting,
        num_endpoints=num_endpoints,
        interface_class=interface_class,
        interface_subclass=interface_subclass,
        interface_protocol=interface_protocol,
        name=StringRef(index=name_index),
    )


def decode_endpoint(buffer: bytes) -> Endpoint:
    length = _check_header(buffer, DescriptorType.ENDPOINT)
    _require_length(length, ENDPOINT_LENGTH, DescriptorType.ENDPOINT)
    if length >= AUDIO_ENDPOINT_LENGTH:
        (
            _, _, address, attributes, max_packet_size, interval, refresh, synch
        ) = struct.unpack_from(AUDIO_ENDPOINT_FORMAT, buffer)
        return Endpoint(
            address=address,
            attributes=attributes,
            max_packet_size=max_packet_size,
            interval=interval,
            refresh=refresh,
            synch_address=synch,
        )
    _, _, address, attributes, max_packet_size, interval = struct.unpack_from(
        ENDPOINT_FORMAT, buffer
    )
    return Endpoint(
        address=address,
        attributes=attributes,
        max_packet_size=max_packet_size,
        interval=interval,
    )


def decode_association(buffer: bytes) -> InterfaceAssociation:
    length = _check_header(buffer, DescriptorType.INTERFACE_ASSOCIATION)
    _require_length(length, ASSOCIATION_LENGTH, DescriptorType.INTERFACE_ASSOCIATION)
    fields = struct.unpack_from(ASSOCIATION_FORMAT, buffer)
    return InterfaceAssociation(*fields[2:])


def decode_ss_companion(buffer: bytes) -> SuperSpeedCompanion:
    length = _check_header(buffer, DescriptorType.SS_ENDPOINT_COMPANION)
    _require_length(length, SS_COMPANION_LENGTH, DescriptorType.SS_ENDPOINT_COMPANION)
    _, _, max_burst, attributes, bytes_per_interval = struct.unpack_from(
        SS_COMPANION_FORMAT, buffer
    )
    return SuperSpeedCompanion(max_burst, attributes, bytes_per_interval)


def decode_hid(buffer: bytes) -> HidDescriptor:
    length = _check_header(buffer, DescriptorType.HID)
    _require_length(length, 6, DescriptorType.HID)
    _, _, hid_version, country_code, count = struct.unpack_from("<BBHBB", buffer)
    _require_length(length, 6 + 3 * count, DescriptorType.HID)
    reports = [
        struct.unpack_from("<BH", buffer, 6 + 3 * i) for i in range(count)
    ]
    return HidDescriptor(hid_version, country_code, [tuple(r) for r in reports])


def decode_hub(buffer: bytes) -> HubDescriptor:
    if len(buffer) >= 2 and buffer[1] == DescriptorType.SUPERSPEED_HUB:
        length = _check_header(buffer, DescriptorType.SUPERSPEED_HUB)
        _require_length(length, 12, DescriptorType.SUPERSPEED_HUB)
        (
            _, _, ports, characteristics, power_good, current, latency, delay
        ) = struct.unpack_from("<BBBHBBBH", buffer)
        return HubDescriptor(
            num_ports=ports,
            characteristics=characteristics,
            power_on_to_good=power_good,
            controller_current=current,
            device_removable=bytes(buffer[10:12]),
            superspeed=True,
            header_decode_latency=latency,
            hub_delay=delay,
        )
    length = _check_header(buffer, DescriptorType.HUB)
    _require_length(length, 7, DescriptorType.HUB)
    ports, characteristics, power_good, current = struct.unpack_from("<BHBB", buffer, 2)
    # DeviceRemovable and PortPwrCtrlMask are bitmaps of (ports + 1) bits each
    bitmap = (ports + 1 + 7) // 8
    _require_length(length, 7 + bitmap, DescriptorType.HUB)
    removable = bytes(buffer[7:7 + bitmap])
    mask = bytes(buffer[7 + bitmap:length])
    return HubDescriptor(
        num_ports=ports,
        characteristics=characteristics,
        power_on_to_good=power_good,
        controller_current=current,
        device_removable=removable,
        port_power_mask=mask,
    )


def decode_string(buffer: bytes) -> str:
    """Decode a string descriptor (UTF-16LE payload)."""
    length = _check_header(buffer, DescriptorType.STRING)
    if length % 2:
        raise MalformedDescriptor(
            f"String descriptor length {length} is odd", DescriptorType.STRING
        )
    return bytes(buffer[2:length]).decode("utf-16-le", errors="replace")


def decode_langids(buffer: bytes) -> list[int]:
    """Decode string descriptor zero: the supported LANGID list."""
    length = _check_header(buffer, DescriptorType.STRING)
    count = (length - 2) // 2
    return list(struct.unpack_from(f"<{count}H", buffer, 2))


def encode_string(text: str) -> bytes:
    payload = text.encode("utf-16-le")
    return bytes([2 + len(payload), DescriptorType.STRING]) + payload


_DECODERS = {
    DescriptorType.DEVICE: decode_device,
    DescriptorType.CONFIGURATION: decode_configuration_header,
    DescriptorType.STRING: decode_string,
    DescriptorType.INTERFACE: decode_interface,
    DescriptorType.ENDPOINT: decode_endpoint,
    DescriptorType.INTERFACE_ASSOCIATION: decode_association,
    DescriptorType.HID: decode_hid,
    DescriptorType.HUB: decode_hub,
    DescriptorType.SUPERSPEED_HUB: decode_hub,
    DescriptorType.SS_ENDPOINT_COMPANION: decode_ss_companion,
}


def decode_descriptor(buffer: bytes, expected_type: int):
    """
    Decode a single descriptor of the expected category.

    Args:
        buffer: Raw bytes starting at the descriptor header
        expected_type: DescriptorType the caller expects

    Returns:
        Typed record for the descriptor

    Raises:
        MalformedDescriptor: If the bytes are truncated or inconsistent
        UnsupportedDescriptorType: If the type has no decoder
    """
    if expected_type == DescriptorType.BOS:
        bos, problems = decode_bos(buffer)
        if problems:
            raise problems[0]
        return bos
    decoder = _DECODERS.get(expected_type)
    if decoder is None:
        length = _check_header(buffer, expected_type)
        raise UnsupportedDescriptorType(expected_type, bytes(buffer[:length]))
    return decoder(buffer)


def split_descriptors(buffer: bytes) -> list[bytes]:
    """
    Split concatenated descriptors into individual buffers.

    Raises:
        MalformedDescriptor: If a declared length runs past the buffer
    """
    parts = []
    offset = 0
    while offset < len(buffer):
        remaining = len(buffer) - offset
        length = buffer[offset]
        if remaining < 2 or length < 2 or length > remaining:
            raise MalformedDescriptor(
                f"Descriptor at offset {offset} declares {length} bytes, "
                f"{remaining} remain",
                buffer[offset + 1] if remaining > 1 else None,
                offset,
            )
        parts.append(bytes(buffer[offset:offset + length]))
        offset += length
    return parts


def _is_class_specific(descriptor_type: int) -> bool:
    return descriptor_type >= 0x20


def decode_configuration(buffer: bytes) -> tuple[Configuration, list[UsbTreeError]]:
    """
    Decode a full configuration bundle.

    The header is mandatory; a malformed sub-descriptor stops the walk
    and is reported in the returned problem list alongside what was
    decoded so far.

    Raises:
        MalformedDescriptor: If the configuration header itself is bad
    """
    config = decode_configuration_header(buffer)
    problems: list[UsbTreeError] = []

    end = min(config.total_length, len(buffer))
    if config.total_length > len(buffer):
        problems.append(MalformedDescriptor(
            f"Configuration {config.value} declares {config.total_length} bytes "
            f"but only {len(buffer)} were read",
            DescriptorType.CONFIGURATION,
        ))

    interface: Interface | None = None
    endpoint: Endpoint | None = None
    offset = buffer[0]

    while offset < end:
        chunk = bytes(buffer[offset:end])
        length = chunk[0]
        if len(chunk) < 2 or length < 2 or length > len(chunk):
            problems.append(MalformedDescriptor(
                f"Truncated descriptor at offset {offset} of configuration {config.value}",
                chunk[1] if len(chunk) > 1 else None,
                offset,
            ))
            break
        chunk = chunk[:length]
        descriptor_type = chunk[1]

        try:
            if descriptor_type == DescriptorType.INTERFACE:
                interface = decode_interface(chunk)
                endpoint = None
                config.interfaces.append(interface)
            elif descriptor_type == DescriptorType.ENDPOINT:
                endpoint = decode_endpoint(chunk)
                if interface is None:
                    problems.append(MalformedDescriptor(
                        f"Endpoint 0x{endpoint.address:02x} outside of any interface",
                        descriptor_type,
                        offset,
                    ))
                    config.extra.append(OpaqueDescriptor(descriptor_type, chunk))
                    endpoint = None
                else:
                    interface.endpoints.append(endpoint)
            elif descriptor_type == DescriptorType.INTERFACE_ASSOCIATION:
                config.associations.append(decode_association(chunk))
            elif descriptor_type == DescriptorType.SS_ENDPOINT_COMPANION and endpoint is not None:
                endpoint.companion = decode_ss_companion(chunk)
            elif descriptor_type == DescriptorType.HID and interface is not None:
                interface.hid = decode_hid(chunk)
            else:
                opaque = OpaqueDescriptor(descriptor_type, chunk)
                if not _is_class_specific(descriptor_type):
                    problems.append(UnsupportedDescriptorType(descriptor_type, chunk))
                if endpoint is not None and descriptor_type != DescriptorType.CS_INTERFACE:
                    endpoint.extra.append(opaque)
                elif interface is not None:
                    interface.extra.append(opaque)
                else:
                    config.extra.append(opaque)
        except MalformedDescriptor as e:
            e.offset = offset
            problems.append(e)
            break

        offset += length

    logger.debug(
        "Decoded configuration %d: %d interface settings, %d problems",
        config.value, len(config.interfaces), len(problems),
    )
    return config, problems


def decode_bos(buffer: bytes) -> tuple[BosDescriptor, list[UsbTreeError]]:
    """
    Decode a BOS descriptor and its device capabilities.

    Raises:
        MalformedDescriptor: If the BOS header itself is bad
    """
    length = _check_header(buffer, DescriptorType.BOS)
    _require_length(length, BOS_LENGTH, DescriptorType.BOS)
    _, _, total_length, num_capabilities = struct.unpack_from(BOS_FORMAT, buffer)
    bos = BosDescriptor(total_length=total_length, num_capabilities=num_capabilities)
    problems: list[UsbTreeError] = []

    end = min(total_length, len(buffer))
    if total_length > len(buffer):
        problems.append(MalformedDescriptor(
            f"BOS declares {total_length} bytes but only {len(buffer)} were read",
            DescriptorType.BOS,
        ))

    offset = length
    while offset < end:
        chunk = bytes(buffer[offset:end])
        cap_length = chunk[0]
        if len(chunk) < 3 or cap_length < 3 or cap_length > len(chunk):
            problems.append(MalformedDescriptor(
                f"Truncated device capability at offset {offset}",
                DescriptorType.DEVICE_CAPABILITY,
                offset,
            ))
            break
        if chunk[1] != DescriptorType.DEVICE_CAPABILITY:
            problems.append(UnsupportedDescriptorType(chunk[1], chunk[:cap_length]))
        else:
            bos.capabilities.append(DeviceCapability(chunk[2], chunk[3:cap_length]))
        offset += cap_length

    return bos, problems


def decode_buffers(buffers: list[bytes]) -> DecodedDescriptors:
    """
    Decode the raw buffers read for one device.

    Each buffer starts with a descriptor header: the device descriptor,
    one bundle per configuration, and optionally BOS and hub descriptors.
    Failures are collected, never raised.
    """
    result = DecodedDescriptors()
    for buffer in buffers:
        if len(buffer) < 2:
            result.problems.append(MalformedDescriptor(
                f"Buffer of {len(buffer)} bytes is too short for a descriptor header"
            ))
            continue
        descriptor_type = buffer[1]
        try:
            if descriptor_type == DescriptorType.DEVICE:
                result.device = decode_device(buffer)
            elif descriptor_type == DescriptorType.CONFIGURATION:
                config, problems = decode_configuration(buffer)
                result.configurations.append(config)
                result.problems.extend(problems)
            elif descriptor_type == DescriptorType.BOS:
                result.bos, problems = decode_bos(buffer)
                result.problems.extend(problems)
            elif descriptor_type in (DescriptorType.HUB, DescriptorType.SUPERSPEED_HUB):
                result.hub = decode_hub(buffer)
            else:
                decode_descriptor(buffer, descriptor_type)
        except UnsupportedDescriptorType as e:
            result.opaque.append(e.to_opaque())
        except MalformedDescriptor as e:
            logger.debug("Malformed %s descriptor: %s", _type_name(descriptor_type), e)
            result.problems.append(e)
    return result
