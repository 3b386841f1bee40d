"""
Модуль сетевого стека: транспорт, соединения, потоки
"""

from .codec import read_message, write_message
from .connection import Connection, Stream
from .host import Host
from .transport import TCPTransport

__all__ = [
    "Connection",
    "Host",
    "Stream",
    "TCPTransport",
    "read_message",
    "write_message",
]
