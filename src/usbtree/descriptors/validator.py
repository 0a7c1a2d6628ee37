"""
USB Descriptor Validator.

Checks decoded descriptors for structural consistency. Anomalies are
reported as data on the device; nothing here aborts enumeration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from usbtree.descriptors.constants import TransferType, USBClass
from usbtree.descriptors.records import (
    CONFIGURATION_LENGTH,
    INTERFACE_LENGTH,
    Configuration,
)

if TYPE_CHECKING:
    from usbtree.tree.models import Device


class AnomalyType(Enum):
    """Types of descriptor anomalies."""

    # Count anomalies
    CONFIGURATION_COUNT_MISMATCH = "configuration_count_mismatch"
    INTERFACE_COUNT_MISMATCH = "interface_count_mismatch"
    ENDPOINT_COUNT_MISMATCH = "endpoint_count_mismatch"
    TOTAL_LENGTH_MISMATCH = "total_length_mismatch"

    # Class anomalies
    CLASS_MISMATCH = "class_mismatch"

    # Endpoint anomalies
    ZERO_MAX_PACKET = "zero_max_packet"
    DUPLICATE_ENDPOINT = "duplicate_endpoint"


class Severity(Enum):
    """Anomaly severity levels."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"


@dataclass
class Anomaly:
    """
    Detected anomaly in a device's descriptors.
    """

    anomaly_type: AnomalyType
    severity: Severity
    description: str
    field: str | None = None
    expected: str | None = None
    actual: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Anomaly:
        return cls(
            anomaly_type=AnomalyType(data["type"]),
            severity=Severity(data["severity"]),
            description=data.get("description", ""),
            field=data.get("field"),
            expected=data.get("expected"),
            actual=data.get("actual"),
        )


@dataclass
class ValidationResult:
    """
    Result of descriptor validation.
    """

    anomalies: list[Anomaly] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(a.severity == Severity.MEDIUM for a in self.anomalies)

    @property
    def has_anomalies(self) -> bool:
        """Check if any anomalies were detected."""
        return len(self.anomalies) > 0

    @property
    def highest_severity(self) -> Severity | None:
        """Get highest severity among anomalies."""
        for severity in (Severity.MEDIUM, Severity.LOW, Severity.INFO):
            if any(a.severity == severity for a in self.anomalies):
                return severity
        return None

    def add_anomaly(self, anomaly: Anomaly) -> None:
        """Add an anomaly to the result."""
        self.anomalies.append(anomaly)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "is_valid": self.is_valid,
            "highest_severity": self.highest_severity.value if self.highest_severity else None,
            "anomaly_count": len(self.anomalies),
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


# Device classes that legitimately differ from their interfaces' classes
CLASS_AT_INTERFACE_LEVEL = {
    USBClass.PER_INTERFACE,
    USBClass.MISCELLANEOUS,
    USBClass.VENDOR_SPECIFIC,
}


def bundle_length(config: Configuration) -> int:
    """Number of bytes the decoded configuration bundle accounts for."""
    length = CONFIGURATION_LENGTH
    length += sum(len(a.to_bytes()) for a in config.associations)
    length += sum(len(e.data) for e in config.extra)
    for intf in config.interfaces:
        length += INTERFACE_LENGTH
        if intf.hid is not None:
            length += len(intf.hid.to_bytes())
        length += sum(len(e.data) for e in intf.extra)
        for ep in intf.endpoints:
            length += len(ep.to_bytes())
            if ep.companion is not None:
                length += len(ep.companion.to_bytes())
            length += sum(len(e.data) for e in ep.extra)
    return length


class DescriptorValidator:
    """
    Validates decoded USB descriptors for structural anomalies.
    """

    def validate(self, device: Device) -> ValidationResult:
        """
        Validate the descriptors of a device.

        Args:
            device: Device whose descriptors were decoded

        Returns:
            ValidationResult with any detected anomalies
        """
        result = ValidationResult()
        if device.descriptor is None:
            return result

        self._check_device(device, result)
        for config in device.configurations:
            self._check_counts(config, result)
            self._check_endpoints(config, result)
        self._check_class_consistency(device, result)

        return result

    def _check_device(self, device: Device, result: ValidationResult) -> None:
        """Check device descriptor fields."""
        descriptor = device.descriptor
        if descriptor.max_packet_size == 0:
            result.add_anomaly(Anomaly(
                anomaly_type=AnomalyType.ZERO_MAX_PACKET,
                severity=Severity.MEDIUM,
                description="Endpoint 0 max packet size is zero",
                field="max_packet_size",
                actual="0",
            ))

        if device.configurations and not device.degraded:
            if descriptor.num_configurations != len(device.configurations):
                result.add_anomaly(Anomaly(
                    anomaly_type=AnomalyType.CONFIGURATION_COUNT_MISMATCH,
                    severity=Severity.LOW,
                    description="Declared configuration count doesn't match actual",
                    field="num_configurations",
                    expected=str(descriptor.num_configurations),
                    actual=str(len(device.configurations)),
                ))

    def _check_counts(self, config: Configuration, result: ValidationResult) -> None:
        """Check declared vs actual interface count and total length."""
        numbers = {intf.number for intf in config.interfaces}
        if config.num_interfaces != len(numbers):
            result.add_anomaly(Anomaly(
                anomaly_type=AnomalyType.INTERFACE_COUNT_MISMATCH,
                severity=Severity.LOW,
                description=f"Configuration {config.value} declares a different interface count",
                field="num_interfaces",
                expected=str(config.num_interfaces),
                actual=str(len(numbers)),
            ))

        actual = bundle_length(config)
        if config.total_length != actual:
            result.add_anomaly(Anomaly(
                anomaly_type=AnomalyType.TOTAL_LENGTH_MISMATCH,
                severity=Severity.LOW,
                description=f"Configuration {config.value} total length doesn't match contents",
                field="total_length",
                expected=str(config.total_length),
                actual=str(actual),
            ))

    def _check_endpoints(self, config: Configuration, result: ValidationResult) -> None:
        """Check for endpoint-related anomalies."""
        for intf in config.interfaces:
            # Check declared vs actual endpoint count
            if intf.num_endpoints != len(intf.endpoints):
                result.add_anomaly(Anomaly(
                    anomaly_type=AnomalyType.ENDPOINT_COUNT_MISMATCH,
                    severity=Severity.LOW,
                    description="Declared endpoint count doesn't match actual",
                    field="num_endpoints",
                    expected=str(intf.num_endpoints),
                    actual=str(len(intf.endpoints)),
                ))

            seen = set()
            for ep in intf.endpoints:
                if ep.address in seen:
                    result.add_anomaly(Anomaly(
                        anomaly_type=AnomalyType.DUPLICATE_ENDPOINT,
                        severity=Severity.MEDIUM,
                        description=(
                            f"Interface {intf.number} alt {intf.alt_setting} "
                            f"repeats endpoint 0x{ep.address:02x}"
                        ),
                        field="address",
                        actual=f"0x{ep.address:02x}",
                    ))
                seen.add(ep.address)

                # Zero bandwidth isochronous settings are normal
                if ep.max_packet_bytes == 0 and ep.transfer_type != TransferType.ISOCHRONOUS:
                    result.add_anomaly(Anomaly(
                        anomaly_type=AnomalyType.ZERO_MAX_PACKET,
                        severity=Severity.MEDIUM,
                        description=f"Endpoint 0x{ep.address:02x} has zero max packet size",
                        field="max_packet_size",
                        actual="0",
                    ))

    def _check_class_consistency(self, device: Device, result: ValidationResult) -> None:
        """Check device class vs interface classes."""
        device_class = device.descriptor.device_class
        if device_class in CLASS_AT_INTERFACE_LEVEL:
            return
        interface_classes = {
            intf.interface_class
            for config in device.configurations
            for intf in config.interfaces
        }
        if interface_classes and device_class not in interface_classes:
            result.add_anomaly(Anomaly(
                anomaly_type=AnomalyType.CLASS_MISMATCH,
                severity=Severity.INFO,
                description="Device class doesn't match interface classes",
                field="device_class",
                expected=f"One of {sorted(interface_classes)}",
                actual=str(device_class),
            ))
