"""
Модуль локального узла
"""

from .discovery import BootstrapDiscovery
from .node import Node

__all__ = [
    "Node",
    "BootstrapDiscovery",
]
