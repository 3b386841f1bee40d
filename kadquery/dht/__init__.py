"""
Модуль Kademlia DHT
"""

from .node import Node, NodeID
from .protocol import DHTService
from .records import PeerRecord, ProviderRecord, Record, RecordStore
from .routing_table import RoutingTable

__all__ = [
    "Node",
    "NodeID",
    "RoutingTable",
    "DHTService",
    "PeerRecord",
    "ProviderRecord",
    "Record",
    "RecordStore",
]
