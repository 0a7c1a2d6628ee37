"""
Tests for descriptor decoding.
"""

from __future__ import annotations

import struct

import pytest

from usbtree.descriptors.constants import (
    DescriptorType,
    Speed,
    SyncType,
    TransferType,
    UsageType,
    format_bcd,
    get_class_name,
    parse_class,
)
from usbtree.descriptors.decoder import (
    MalformedDescriptor,
    UnsupportedDescriptorType,
    decode_bos,
    decode_buffers,
    decode_configuration,
    decode_descriptor,
    decode_hub,
    decode_langids,
    decode_string,
    encode_string,
    split_descriptors,
)
from usbtree.descriptors.records import (
    Configuration,
    Endpoint,
    Interface,
    StringRef,
)


DEVICE = bytes([
    0x12, 0x01, 0x00, 0x02, 0x09, 0x00, 0x01, 0x40,
    0x6B, 0x1D, 0x02, 0x00, 0x15, 0x06, 0x03, 0x02, 0x01, 0x01,
])


class TestDeviceDescriptor:
    """Tests for the standard device descriptor."""

    def test_decode(self) -> None:
        """Test decoding every field of a root hub descriptor."""
        descriptor = decode_descriptor(DEVICE, DescriptorType.DEVICE)

        assert descriptor.usb_version == 0x0200
        assert descriptor.device_class == 0x09
        assert descriptor.device_protocol == 0x01
        assert descriptor.max_packet_size == 64
        assert descriptor.vendor_id == 0x1D6B
        assert descriptor.product_id == 0x0002
        assert descriptor.device_version == 0x0615
        assert descriptor.manufacturer_index == 3
        assert descriptor.product_index == 2
        assert descriptor.serial_index == 1
        assert descriptor.num_configurations == 1

    def test_encode_returns_original_bytes(self) -> None:
        """Test decode then encode is the identity."""
        descriptor = decode_descriptor(DEVICE, DescriptorType.DEVICE)
        assert descriptor.to_bytes() == DEVICE

    def test_truncated(self) -> None:
        """Test a buffer shorter than its declared length."""
        with pytest.raises(MalformedDescriptor):
            decode_descriptor(DEVICE[:10], DescriptorType.DEVICE)

    def test_wrong_length(self) -> None:
        """Test a device descriptor whose bLength is not 18."""
        data = bytes([0x10]) + DEVICE[1:16]
        with pytest.raises(MalformedDescriptor):
            decode_descriptor(data, DescriptorType.DEVICE)

    def test_wrong_type(self) -> None:
        """Test the type tag is checked against the expected category."""
        with pytest.raises(MalformedDescriptor) as exc:
            decode_descriptor(DEVICE, DescriptorType.CONFIGURATION)
        assert "CONFIGURATION" in str(exc.value)

    def test_empty_buffer(self) -> None:
        """Test an empty buffer is malformed."""
        with pytest.raises(MalformedDescriptor):
            decode_descriptor(b"", DescriptorType.DEVICE)


class TestSimpleDescriptors:
    """Tests for interface, endpoint and string descriptors."""

    def test_interface_round_trip(self) -> None:
        """Test an interface descriptor re-encodes to its bytes."""
        data = bytes([9, 0x04, 1, 2, 3, 0x0E, 0x02, 0x00, 5])
        intf = decode_descriptor(data, DescriptorType.INTERFACE)

        assert isinstance(intf, Interface)
        assert intf.number == 1
        assert intf.alt_setting == 2
        assert intf.num_endpoints == 3
        assert intf.interface_class == 0x0E
        assert intf.name.index == 5
        assert intf.class_name == "Video"
        assert intf.to_bytes() == data

    def test_endpoint_fields(self) -> None:
        """Test endpoint attribute decoding."""
        data = struct.pack("<BBBBHB", 7, 0x05, 0x83, 0x05, 0x1400, 1)
        endpoint = decode_descriptor(data, DescriptorType.ENDPOINT)

        assert isinstance(endpoint, Endpoint)
        assert endpoint.number == 3
        assert endpoint.direction == "IN"
        assert endpoint.transfer_type == TransferType.ISOCHRONOUS
        assert endpoint.sync_type == SyncType.ASYNC
        assert endpoint.usage_type == UsageType.DATA
        # 0x1400: 1024 bytes, two additional transactions
        assert endpoint.max_packet_bytes == 3 * 1024
        assert endpoint.to_bytes() == data

    def test_audio_endpoint(self) -> None:
        """Test the 9-byte audio endpoint variant keeps its extra bytes."""
        data = struct.pack("<BBBBHBBB", 9, 0x05, 0x01, 0x09, 192, 1, 0, 0x82)
        endpoint = decode_descriptor(data, DescriptorType.ENDPOINT)

        assert endpoint.refresh == 0
        assert endpoint.synch_address == 0x82
        assert endpoint.to_bytes() == data

    def test_string(self) -> None:
        """Test string descriptors decode from UTF-16LE."""
        assert decode_string(encode_string("Keyboard")) == "Keyboard"

    def test_string_odd_length(self) -> None:
        """Test an odd-length string descriptor is malformed."""
        with pytest.raises(MalformedDescriptor):
            decode_string(bytes([5, 0x03, 0x41, 0x00, 0x42]))

    def test_langids(self) -> None:
        """Test string descriptor zero lists the LANGIDs."""
        assert decode_langids(bytes([4, 0x03, 0x09, 0x04])) == [0x0409]

    def test_unsupported_type(self) -> None:
        """Test a type without a decoder is reported with its bytes."""
        data = bytes([4, 0x0A, 0x01, 0x02])
        with pytest.raises(UnsupportedDescriptorType) as exc:
            decode_descriptor(data, DescriptorType.DEBUG)
        assert exc.value.to_opaque().data == data


class TestConfigurationBundle:
    """Tests for configuration bundle decoding."""

    def test_hid_keyboard(self, keyboard_buffers: list[bytes]) -> None:
        """Test a full HID configuration with class descriptor."""
        config, problems = decode_configuration(keyboard_buffers[1])

        assert problems == []
        assert config.value == 1
        assert config.remote_wakeup is True
        assert config.self_powered is False
        assert config.max_power_ma() == 100
        assert config.max_power_ma(superspeed=True) == 400
        assert len(config.interfaces) == 1

        intf = config.interfaces[0]
        assert intf.hid is not None
        assert intf.hid.hid_version == 0x0111
        assert intf.hid.reports == [(0x22, 0x3F)]
        assert intf.endpoints[0].address == 0x81

    def test_header_round_trip(self, keyboard_buffers: list[bytes]) -> None:
        """Test the configuration header re-encodes to its bytes."""
        config, _ = decode_configuration(keyboard_buffers[1])
        assert config.to_bytes() == keyboard_buffers[1][:9]

    def test_class_specific_kept_opaque(self) -> None:
        """Test class-specific descriptors are attached without problems."""
        cs_interface = bytes([5, 0x24, 0x00, 0x10, 0x01])
        data = struct.pack("<BBHBBBBB", 9, 0x02, 23, 1, 1, 0, 0x80, 50)
        data += bytes([9, 0x04, 0, 0, 0, 0x02, 0x02, 0x01, 0])
        data += cs_interface
        config, problems = decode_configuration(data)

        assert problems == []
        assert config.interfaces[0].extra[0].data == cs_interface

    def test_vendor_and_standard_unknowns(self) -> None:
        """Test types from 0x20 up are accepted while unknown standard types are reported."""
        vendor = bytes([4, 0x41, 0xAA, 0xBB])
        debug = bytes([4, 0x0A, 0x00, 0x00])
        data = struct.pack("<BBHBBBBB", 9, 0x02, 26, 1, 1, 0, 0x80, 50)
        data += bytes([9, 0x04, 0, 0, 0, 0xFF, 0x00, 0x00, 0])
        data += vendor + debug
        config, problems = decode_configuration(data)

        assert len(problems) == 1
        assert isinstance(problems[0], UnsupportedDescriptorType)
        assert [d.data for d in config.interfaces[0].extra] == [vendor, debug]

    def test_superspeed_companion(self) -> None:
        """Test companion descriptors attach to the preceding endpoint."""
        data = struct.pack("<BBHBBBBB", 9, 0x02, 31, 1, 1, 0, 0x80, 12)
        data += bytes([9, 0x04, 0, 0, 1, 0x08, 0x06, 0x50, 0])
        data += struct.pack("<BBBBHB", 7, 0x05, 0x81, 0x02, 1024, 0)
        data += struct.pack("<BBBBH", 6, 0x30, 15, 0, 0)
        config, problems = decode_configuration(data)

        assert problems == []
        companion = config.interfaces[0].endpoints[0].companion
        assert companion is not None
        assert companion.max_burst == 15

    def test_truncated_bundle(self) -> None:
        """Test a truncated sub-descriptor stops the walk with a problem."""
        data = struct.pack("<BBHBBBBB", 9, 0x02, 25, 1, 1, 0, 0x80, 50)
        data += bytes([9, 0x04, 0, 0, 1, 0x03, 0x01, 0x01, 0])
        data += bytes([7, 0x05, 0x81])
        config, problems = decode_configuration(data)

        assert len(config.interfaces) == 1
        assert config.interfaces[0].endpoints == []
        assert any(isinstance(p, MalformedDescriptor) for p in problems)

    def test_alternate_settings(self) -> None:
        """Test alternate settings are separate interfaces sharing a number."""
        data = struct.pack("<BBHBBBBB", 9, 0x02, 34, 1, 1, 0, 0x80, 50)
        data += bytes([9, 0x04, 1, 0, 0, 0x01, 0x02, 0x00, 0])
        data += bytes([9, 0x04, 1, 1, 1, 0x01, 0x02, 0x00, 0])
        data += struct.pack("<BBBBHB", 7, 0x05, 0x01, 0x09, 192, 1)
        config, _ = decode_configuration(data)

        assert [(i.number, i.alt_setting) for i in config.interfaces] == [(1, 0), (1, 1)]
        assert config.interfaces[0].endpoints == []
        assert len(config.interfaces[1].endpoints) == 1


class TestBosAndHub:
    """Tests for BOS and hub descriptors."""

    def test_bos_capabilities(self) -> None:
        """Test BOS with a USB 2.0 extension capability."""
        data = struct.pack("<BBHB", 5, 0x0F, 12, 1)
        data += bytes([7, 0x10, 0x02]) + struct.pack("<I", 0x02)
        bos, problems = decode_bos(data)

        assert problems == []
        assert bos.num_capabilities == 1
        capability = bos.capabilities[0]
        assert capability.name == "usb_2_0_extension"
        assert capability.decoded()["lpm"] is True
        assert bos.to_bytes() == data[:5]

    def test_bos_truncated_capability(self) -> None:
        """Test a truncated capability is reported."""
        data = struct.pack("<BBHB", 5, 0x0F, 10, 1) + bytes([7, 0x10, 0x02, 0x00, 0x00])
        _, problems = decode_bos(data)
        assert any(isinstance(p, MalformedDescriptor) for p in problems)

    def test_usb2_hub(self) -> None:
        """Test a USB 2.0 hub descriptor with 4 ports."""
        data = bytes([9, 0x29, 4, 0xE9, 0x00, 50, 100, 0x00, 0xFF])
        hub = decode_hub(data)

        assert hub.num_ports == 4
        assert hub.power_switching == "per-port"
        assert hub.compound is False
        assert hub.power_on_to_good == 50
        assert hub.device_removable == b"\x00"
        assert hub.port_power_mask == b"\xff"
        assert hub.to_bytes() == data

    def test_superspeed_hub(self) -> None:
        """Test the SuperSpeed hub layout."""
        data = struct.pack("<BBBHBBBH", 12, 0x2A, 4, 0x0009, 50, 0, 0, 0) + b"\x00\x00"
        hub = decode_hub(data)

        assert hub.superspeed is True
        assert hub.num_ports == 4
        assert hub.to_bytes() == data


class TestDecodeBuffers:
    """Tests for decoding the buffers of one device."""

    def test_device_and_configuration(self, keyboard_buffers: list[bytes]) -> None:
        """Test the usual device plus configuration pair."""
        decoded = decode_buffers(keyboard_buffers)

        assert decoded.device is not None
        assert decoded.device.vendor_id == 0x046D
        assert len(decoded.configurations) == 1
        assert decoded.malformed is False

    def test_bad_configuration_keeps_device(self, keyboard_buffers: list[bytes]) -> None:
        """Test a malformed configuration does not lose the device descriptor."""
        decoded = decode_buffers([keyboard_buffers[0], b"\x09\x02\x22"])

        assert decoded.device is not None
        assert decoded.configurations == []
        assert decoded.malformed is True

    def test_unknown_buffer_is_opaque(self, keyboard_buffers: list[bytes]) -> None:
        """Test an undecodable buffer is kept as opaque bytes."""
        decoded = decode_buffers([keyboard_buffers[0], bytes([3, 0x0A, 0x00])])
        assert decoded.opaque[0].descriptor_type == 0x0A

    def test_split_descriptors(self) -> None:
        """Test splitting concatenated descriptors."""
        parts = split_descriptors(DEVICE + encode_string("ab"))
        assert [p[1] for p in parts] == [0x01, 0x03]

    def test_split_overrun(self) -> None:
        """Test a length running past the buffer is malformed."""
        with pytest.raises(MalformedDescriptor):
            split_descriptors(DEVICE + bytes([9, 0x04, 0]))


class TestStringRef:
    """Tests for lazily resolved strings."""

    def test_resolves_once(self) -> None:
        """Test the resolver is called at most once."""
        calls = []

        def resolver(index: int) -> str:
            calls.append(index)
            return "Keyboard"

        ref = StringRef(index=2, resolver=resolver)
        assert ref.is_resolved is False
        assert ref.get() == "Keyboard"
        assert ref.get() == "Keyboard"
        assert calls == [2]

    def test_index_zero(self) -> None:
        """Test index zero never calls the resolver."""
        ref = StringRef(index=0, resolver=lambda i: "unexpected")
        assert ref.get() is None
        assert ref.is_resolved is True


class TestConstants:
    """Tests for class and speed helpers."""

    def test_class_names(self) -> None:
        """Test known and unknown class names."""
        assert get_class_name(0x03) == "HID"
        assert get_class_name(0x42) == "Unknown (0x42)"

    def test_parse_class(self) -> None:
        """Test classes given by name or code."""
        assert parse_class("hid") == 0x03
        assert parse_class("0x08") == 0x08
        assert parse_class("mass-storage") == 0x08
        assert parse_class(9) == 9
        with pytest.raises(ValueError):
            parse_class("toaster")

    def test_speed_from_sysfs(self) -> None:
        """Test sysfs speed values map to speeds."""
        assert Speed.from_mbps("480") is Speed.HIGH
        assert Speed.from_mbps("1.5") is Speed.LOW
        assert Speed.from_mbps("garbage") is Speed.UNKNOWN
        assert Speed.SUPER.is_superspeed is True
        assert Speed.HIGH.label == "480 Mb/s"

    def test_format_bcd(self) -> None:
        """Test BCD release numbers."""
        assert format_bcd(0x0210) == "2.10"
        assert format_bcd(None) is None

    def test_configuration_attributes(self) -> None:
        """Test attribute names of a self-powered configuration."""
        config = Configuration(
            value=1, attributes=0xE0, max_power=0, total_length=9, num_interfaces=0
        )
        assert config.attribute_names == ["self-powered", "remote-wakeup"]
