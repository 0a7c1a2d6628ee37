"""
Query/Filter Engine.

Matches devices against predicates and produces the pruned tree or
the flat set of matches.
"""

from usbtree.query.filter import DeviceFilter, parse_bus_address, parse_vid_pid

__all__ = [
    "DeviceFilter",
    "parse_bus_address",
    "parse_vid_pid",
]
