"""
Модуль идентичностей и адресов пиров
"""

from .address import PeerAddress, parse_listen_address
from .identity import PeerIdentity
from .info import PeerInfo

__all__ = [
    "PeerAddress",
    "PeerIdentity",
    "PeerInfo",
    "parse_listen_address",
]
