"""
Представление узла в DHT
"""

import time
from dataclasses import dataclass, field
from typing import List

from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity
from kadquery.utils.crypto import compute_distance

KEY_BYTES = 32


@dataclass
class NodeID:
    """256-битный ключ узла в пространстве Kademlia"""
    id: bytes  # 32 байта (SHA-256 от хэш-формы идентичности)

    def __post_init__(self):
        if len(self.id) != KEY_BYTES:
            raise ValueError(f"Node ID must be exactly {KEY_BYTES} bytes")

    @classmethod
    def for_peer(cls, peer: PeerIdentity) -> "NodeID":
        return cls(id=peer.dht_key())

    def distance_to(self, other: "NodeID") -> bytes:
        """Вычисление XOR-расстояния до другого узла"""
        return compute_distance(self.id, other.id)

    def __eq__(self, other):
        if not isinstance(other, NodeID):
            return False
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __repr__(self):
        return f"NodeID({self.id.hex()[:16]}...)"


@dataclass
class Node:
    """Участник DHT с известными адресами"""
    peer: PeerIdentity
    addrs: List[PeerAddress] = field(default_factory=list)
    last_seen: float = 0.0
    failed_requests: int = 0

    def __post_init__(self):
        self.node_id = NodeID.for_peer(self.peer)
        if self.last_seen == 0.0:
            self.last_seen = time.time()

    def update_seen(self):
        """Обновление времени последнего контакта"""
        self.last_seen = time.time()
        self.failed_requests = 0

    def record_failure(self):
        """Запись неудачного запроса"""
        self.failed_requests += 1

    def is_stale(self, timeout: float = 3600.0) -> bool:
        """Проверка, является ли узел устаревшим"""
        return self.failed_requests > 0 or (time.time() - self.last_seen) > timeout

    def dialable_addrs(self) -> List[PeerAddress]:
        return [addr for addr in self.addrs if addr.is_dialable]

    def to_dict(self) -> dict:
        return {"peer": str(self.peer), "addrs": [str(addr) for addr in self.addrs]}

    def __eq__(self, other):
        if not isinstance(other, Node):
            return False
        return self.peer == other.peer

    def __hash__(self):
        return hash(self.peer)

    def __repr__(self):
        return f"Node({str(self.peer)[:16]}..., addrs={len(self.addrs)})"
