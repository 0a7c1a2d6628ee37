"""
usbtree - USB topology lister.

Enumerates the USB devices of the host, decodes their descriptors into
a Bus -> Device -> Configuration -> Interface -> Endpoint hierarchy and
renders it as a tree, a table or a JSON document.
"""

__version__ = "0.1.0"
__author__ = "usbtree Contributors"

from usbtree.config import UsbTreeConfig, load_config

__all__ = ["UsbTreeConfig", "load_config", "__version__"]
