"""
usbtree Command Line Interface.

Lists the USB devices of the host as a tree, a table or a JSON
document. Flags override the values loaded from the configuration file.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import yaml

from usbtree import __version__
from usbtree.config import LoggingConfig, UsbTreeConfig, load_config, validate_config
from usbtree.core.report import generate_report
from usbtree.display.formatter import Group, MaskSerial, Sort
from usbtree.display.theme import THEMES
from usbtree.enumeration.backend import BackendUnavailable
from usbtree.enumeration.platform import BACKEND_NAMES
from usbtree.errors import CaptureError, ConfigError


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="usbtree",
        description="List USB buses and devices with their descriptors",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-t", "--tree",
        dest="mode", action="store_const", const="tree",
        help="Show devices as a tree below their buses",
    )
    mode.add_argument(
        "-l", "--list",
        dest="mode", action="store_const", const="list",
        help="Show devices as a flat table",
    )
    mode.add_argument(
        "--json",
        dest="mode", action="store_const", const="json",
        help="Output the full tree as JSON",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count", default=0,
        help="Show configurations (-v), interfaces (-vv), endpoints (-vvv) "
             "and verbose blocks (-vvvv)",
    )
    parser.add_argument(
        "-m", "--more",
        action="store_true", default=None,
        help="Use the verbose block sets",
    )

    blocks = parser.add_argument_group("blocks")
    for flag, dest, what in (
        ("--blocks", "blocks", "device"),
        ("--bus-blocks", "bus_blocks", "bus"),
        ("--config-blocks", "config_blocks", "configuration"),
        ("--interface-blocks", "interface_blocks", "interface"),
        ("--endpoint-blocks", "endpoint_blocks", "endpoint"),
    ):
        names = ["-b", flag] if dest == "blocks" else [flag]
        blocks.add_argument(
            *names,
            dest=dest, action="append", metavar="BLOCK[,BLOCK...]",
            help=f"Blocks to show for each {what}",
        )

    filters = parser.add_argument_group("filters")
    filters.add_argument(
        "-s", "--show",
        metavar="[BUS]:[DEVNUM]",
        help="Only devices on this bus and/or with this device number (decimal)",
    )
    filters.add_argument(
        "-d", "--vidpid",
        metavar="VID:[PID]",
        help="Only devices with this vendor and optional product ID (hex)",
    )
    filters.add_argument("--filter-name", metavar="TEXT", help="Name contains TEXT")
    filters.add_argument("--filter-serial", metavar="TEXT", help="Serial contains TEXT")
    filters.add_argument(
        "--filter-class", metavar="CLASS",
        help="Device or interface class, by name or code",
    )

    output = parser.add_argument_group("output")
    output.add_argument("--sort", choices=[s.value for s in Sort], help="Sort key")
    output.add_argument("--group", choices=[g.value for g in Group], help="Group key")
    output.add_argument("--theme", choices=list(THEMES), help="Output theme")
    output.add_argument(
        "--headings", action="store_true", default=None, help="Show column headings"
    )
    output.add_argument(
        "--decimal", action="store_true", default=None, help="Show numbers in decimal"
    )
    output.add_argument(
        "--no-padding", action="store_true", default=None, help="Do not pad columns"
    )
    output.add_argument(
        "--hide-buses", action="store_true", default=None,
        help="Hide buses without devices",
    )
    output.add_argument(
        "--hide-hubs", action="store_true", default=None, help="Hide hubs"
    )
    output.add_argument(
        "--mask-serials",
        choices=[m.value for m in MaskSerial],
        help="Mask serial numbers",
    )

    source = parser.add_argument_group("source")
    source.add_argument("--backend", choices=BACKEND_NAMES, help="Enumeration backend")
    source.add_argument(
        "--timeout", type=float, metavar="SECONDS",
        help="Per-device read timeout, 0 to disable",
    )
    source.add_argument(
        "--from-json", metavar="FILE",
        help="Render a saved JSON capture instead of the live system",
    )
    source.add_argument(
        "--diff", metavar="FILE",
        help="Compare against a saved JSON capture",
    )

    parser.add_argument(
        "-z", "--debug",
        action="count", default=0,
        help="Increase log output (-z info, -zz debug)",
    )
    return parser


def apply_args(config: UsbTreeConfig, args: argparse.Namespace) -> UsbTreeConfig:
    """Merge command line flags over the loaded configuration."""
    display = config.display
    if args.mode:
        display.mode = args.mode
    display.verbosity += args.verbose

    for name in (
        "blocks", "bus_blocks", "config_blocks", "interface_blocks",
        "endpoint_blocks", "sort", "group", "theme", "mask_serials",
    ):
        value = getattr(args, name)
        if value is not None:
            setattr(display, name, value)
    for name in ("more", "headings", "decimal", "no_padding", "hide_buses", "hide_hubs"):
        if getattr(args, name):
            setattr(display, name, True)

    if args.backend is not None:
        config.enumeration.backend = args.backend
    if args.timeout is not None:
        config.enumeration.timeout = args.timeout

    for key, value in (
        ("location", args.show),
        ("device", args.vidpid),
        ("name", args.filter_name),
        ("serial", args.filter_serial),
        ("class", args.filter_class),
    ):
        if value is not None:
            config.filter[key] = value
    return config


def setup_logging(config: LoggingConfig, debug: int = 0) -> None:
    """Configure logging once for the process."""
    level = getattr(logging, config.level.upper(), logging.WARNING)
    if debug >= 2:
        level = logging.DEBUG
    elif debug == 1:
        level = min(level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        filename=config.file,
    )


def output(payload: str | dict[str, Any]) -> None:
    """Print a rendered payload."""
    if isinstance(payload, dict):
        print(json.dumps(payload, indent=2, default=str))
    elif payload:
        print(payload)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except yaml.YAMLError as e:
        print(f"Error: invalid configuration file: {e}", file=sys.stderr)
        return 2
    except TypeError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 2

    apply_args(config, args)
    setup_logging(config.logging, args.debug)

    errors = validate_config(config)
    if errors:
        for error in errors:
            print(f"Configuration error: {error}", file=sys.stderr)
        return 2

    try:
        report = generate_report(
            config,
            from_json=args.from_json,
            diff_against=args.diff,
        )
    except BackendUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except (CaptureError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.debug("Rendered %d devices", report.tree.device_count)
    output(report.payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
