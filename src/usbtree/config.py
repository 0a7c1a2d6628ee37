"""
Configuration management for usbtree.

Handles loading and validation of the YAML configuration file. The CLI
merges its flags on top of the loaded values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from usbtree.display.blocks import BlockKind, parse_blocks
from usbtree.display.formatter import Group, MaskSerial, OutputMode, Sort
from usbtree.display.theme import THEMES, customize_theme
from usbtree.enumeration.platform import BACKEND_NAMES
from usbtree.query.filter import DeviceFilter


def _config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "warning"
    file: str | None = None


@dataclass
class EnumerationConfig:
    """Backend selection and probing limits."""

    backend: str = "auto"
    timeout: float = 2.0  # seconds per device read, 0 disables
    max_workers: int = 8
    read_strings: bool = True
    conflict_log_level: str = "warning"


@dataclass
class DisplayConfig:
    """Output settings; block lists left empty use the defaults."""

    mode: str = "list"
    blocks: list[str] | None = None
    bus_blocks: list[str] | None = None
    config_blocks: list[str] | None = None
    interface_blocks: list[str] | None = None
    endpoint_blocks: list[str] | None = None
    sort: str = "port-path"
    group: str = "no-group"
    theme: str = "default"
    verbosity: int = 0
    more: bool = False
    headings: bool = False
    decimal: bool = False
    no_padding: bool = False
    hide_buses: bool = False
    hide_hubs: bool = False
    mask_serials: str | None = None
    icons: dict[str, str] = field(default_factory=dict)
    colours: dict[str, str] = field(default_factory=dict)


@dataclass
class UsbTreeConfig:
    """Main configuration container."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    enumeration: EnumerationConfig = field(default_factory=EnumerationConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    filter: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsbTreeConfig:
        """Create configuration from dictionary."""
        return cls(
            logging=LoggingConfig(**(data.get("logging") or {})),
            enumeration=EnumerationConfig(**(data.get("enumeration") or {})),
            display=DisplayConfig(**(data.get("display") or {})),
            filter=dict(data.get("filter") or {}),
        )


def default_config_paths() -> list[Path]:
    return [
        _config_home() / "usbtree" / "usbtree.yaml",
        Path("usbtree.yaml"),
    ]


def load_config(path: str | Path | None = None) -> UsbTreeConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, searches the default paths.

    Returns:
        UsbTreeConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        yaml.YAMLError: If config file is invalid YAML.
        TypeError: If a section holds an unknown key.
    """
    if path is None:
        for candidate in default_config_paths():
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return UsbTreeConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return UsbTreeConfig.from_dict(data)


def validate_config(config: UsbTreeConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    valid_log_levels = {"debug", "info", "warning", "error", "critical"}
    if config.logging.level not in valid_log_levels:
        errors.append(f"Invalid log level: {config.logging.level}")
    if config.enumeration.conflict_log_level not in valid_log_levels:
        errors.append(
            f"Invalid conflict_log_level: {config.enumeration.conflict_log_level}"
        )

    if config.enumeration.backend not in BACKEND_NAMES:
        errors.append(f"Invalid backend: {config.enumeration.backend}")
    if config.enumeration.timeout < 0:
        errors.append(f"Invalid timeout: {config.enumeration.timeout}")
    if config.enumeration.max_workers < 1:
        errors.append(f"Invalid max_workers: {config.enumeration.max_workers}")

    display = config.display
    for name, enum in (
        ("mode", OutputMode),
        ("sort", Sort),
        ("group", Group),
    ):
        value = getattr(display, name)
        if value not in {m.value for m in enum}:
            errors.append(f"Invalid {name}: {value}")
    if display.theme not in THEMES:
        errors.append(f"Invalid theme: {display.theme}")
    else:
        try:
            customize_theme(THEMES[display.theme], display.icons, display.colours)
        except ValueError as e:
            errors.append(f"Invalid display overrides: {e}")
    if display.mask_serials is not None and display.mask_serials not in {
        m.value for m in MaskSerial
    }:
        errors.append(f"Invalid mask_serials: {display.mask_serials}")
    if display.verbosity < 0:
        errors.append(f"Invalid verbosity: {display.verbosity}")

    for kind, names in (
        (BlockKind.DEVICE, display.blocks),
        (BlockKind.BUS, display.bus_blocks),
        (BlockKind.CONFIGURATION, display.config_blocks),
        (BlockKind.INTERFACE, display.interface_blocks),
        (BlockKind.ENDPOINT, display.endpoint_blocks),
    ):
        if names:
            try:
                parse_blocks(kind, names)
            except ValueError as e:
                errors.append(str(e))

    try:
        DeviceFilter.from_dict(config.filter)
    except ValueError as e:
        errors.append(f"Invalid filter: {e}")

    return errors
