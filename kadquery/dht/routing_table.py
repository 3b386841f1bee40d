"""
Таблица маршрутизации Kademlia (k-бакеты)
"""

import time
from typing import List, Optional

from kadquery.dht.node import KEY_BYTES, Node, NodeID
from kadquery.peer.identity import PeerIdentity
from kadquery.utils.crypto import compute_distance


class KBucket:
    """k-бакет: до k участников, от давно виденных к недавним"""

    def __init__(self, k: int = 20):
        self.k = k
        self.nodes: List[Node] = []
        self.last_updated = time.time()

    def get(self, peer: PeerIdentity) -> Optional[Node]:
        for node in self.nodes:
            if node.peer == peer:
                return node
        return None

    def add_node(self, node: Node) -> bool:
        """
        Добавление или обновление участника

        Известный участник переносится в хвост (LRU), новая запись
        заменяет старую вместе с адресами.

        Returns:
            True если узел в бакете, False если бакет полон
        """
        existing = self.get(node.peer)
        if existing is None and self.is_full():
            return False

        if existing is not None:
            self.nodes.remove(existing)
        self.nodes.append(node)
        self.last_updated = time.time()
        return True

    def remove_node(self, node: Node):
        existing = self.get(node.peer)
        if existing is not None:
            self.nodes.remove(existing)
            self.last_updated = time.time()

    def stale_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.is_stale()]

    def is_full(self) -> bool:
        return len(self.nodes) >= self.k


class RoutingTable:
    """Таблица маршрутизации в пространстве ключей dht_key()"""

    def __init__(self, local_peer: PeerIdentity, k: int = 20):
        self.local_peer = local_peer
        self.node_id = NodeID.for_peer(local_peer)
        self.k = k
        self.buckets: List[KBucket] = [KBucket(k) for _ in range(KEY_BYTES * 8)]

    def _get_bucket_index(self, target_id: NodeID) -> int:
        """Индекс бакета: количество общих старших бит с локальным ключом"""
        distance = compute_distance(self.node_id.id, target_id.id)
        as_int = int.from_bytes(distance, "big")
        if as_int == 0:
            # Нулевое расстояние: это сам узел
            return len(self.buckets) - 1
        return KEY_BYTES * 8 - as_int.bit_length()

    def bucket_for(self, peer: PeerIdentity) -> KBucket:
        return self.buckets[self._get_bucket_index(NodeID.for_peer(peer))]

    def add_node(self, node: Node) -> bool:
        """
        Добавление участника DHT

        В полном бакете новый участник вытесняет первый устаревший.

        Returns:
            True если узел добавлен или обновлен
        """
        if node.peer == self.local_peer:
            return False

        bucket = self.bucket_for(node.peer)
        if bucket.get(node.peer) is None and bucket.is_full():
            stale = bucket.stale_nodes()
            if not stale:
                return False
            bucket.remove_node(stale[0])

        return bucket.add_node(node)

    def remove_node(self, node: Node):
        self.bucket_for(node.peer).remove_node(node)

    def get_node(self, peer: PeerIdentity) -> Optional[Node]:
        return self.bucket_for(peer).get(peer)

    def find_closest_nodes(self, target_id: NodeID, count: int) -> List[Node]:
        """Ближайшие к ключу участники, по возрастанию XOR-расстояния"""
        nodes = self.get_all_nodes()
        nodes.sort(key=lambda n: compute_distance(n.node_id.id, target_id.id))
        return nodes[:count]

    def get_all_nodes(self) -> List[Node]:
        return [node for bucket in self.buckets for node in bucket.nodes]

    def __len__(self):
        return sum(len(bucket.nodes) for bucket in self.buckets)
