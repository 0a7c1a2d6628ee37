"""
usbtree Core - Report Pipeline.

Ties together the enumeration adapter, tree builder, filter and
formatter into a single report generation.
"""

from usbtree.core.report import (
    Report,
    filter_from_config,
    generate_report,
    settings_from_config,
)

__all__ = [
    "Report",
    "filter_from_config",
    "generate_report",
    "settings_from_config",
]
