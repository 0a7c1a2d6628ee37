"""
USB Descriptor Decoder.

Parses raw descriptor bytes into typed records and checks them for
structural consistency.
"""

from usbtree.descriptors.constants import (
    DescriptorType,
    Speed,
    USBClass,
    format_bcd,
    get_class_name,
    get_vendor_name,
    parse_class,
)
from usbtree.descriptors.decoder import (
    DecodedDescriptors,
    MalformedDescriptor,
    UnsupportedDescriptorType,
    decode_bos,
    decode_buffers,
    decode_configuration,
    decode_descriptor,
    decode_string,
    split_descriptors,
)
from usbtree.descriptors.records import (
    BosDescriptor,
    Configuration,
    DeviceDescriptor,
    Endpoint,
    HubDescriptor,
    Interface,
    OpaqueDescriptor,
    StringRef,
)
from usbtree.descriptors.validator import (
    Anomaly,
    AnomalyType,
    DescriptorValidator,
    Severity,
    ValidationResult,
)

__all__ = [
    # Constants
    "DescriptorType",
    "Speed",
    "USBClass",
    "format_bcd",
    "get_class_name",
    "get_vendor_name",
    "parse_class",
    # Decoder
    "DecodedDescriptors",
    "MalformedDescriptor",
    "UnsupportedDescriptorType",
    "decode_bos",
    "decode_buffers",
    "decode_configuration",
    "decode_descriptor",
    "decode_string",
    "split_descriptors",
    # Records
    "BosDescriptor",
    "Configuration",
    "DeviceDescriptor",
    "Endpoint",
    "HubDescriptor",
    "Interface",
    "OpaqueDescriptor",
    "StringRef",
    # Validator
    "Anomaly",
    "AnomalyType",
    "DescriptorValidator",
    "Severity",
    "ValidationResult",
]
