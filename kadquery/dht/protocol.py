"""
Протокол DHT операций: RPC поверх потоков и итеративный поиск
"""

import asyncio
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Tuple

from kadquery.cancellation import CancellationToken
from kadquery.config import DHTConfig
from kadquery.dht.node import Node, NodeID
from kadquery.dht.records import PeerRecord, ProviderRecord, Record, RecordStore
from kadquery.dht.routing_table import RoutingTable
from kadquery.exceptions import (
    DHTError,
    DialError,
    EncodingError,
    InvalidAddressError,
    InvalidIdentityError,
    NetworkError,
)
from kadquery.logger import get_logger
from kadquery.network.codec import read_message, write_message
from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity
from kadquery.peer.info import PeerInfo
from kadquery.utils.crypto import compute_distance, hash_key

if TYPE_CHECKING:
    from kadquery.network.connection import Stream
    from kadquery.network.host import Host

# Типы сообщений
MSG_PING = "PING"
MSG_PONG = "PONG"
MSG_FIND_NODE = "FIND_NODE"
MSG_GET_VALUE = "GET_VALUE"
MSG_ADD_PROVIDER = "ADD_PROVIDER"

RPC_ERRORS = (NetworkError, EncodingError, asyncio.TimeoutError)


class DHTService:
    """Клиентская и (в режиме server) серверная часть Kademlia DHT"""

    def __init__(self, host: "Host", config: DHTConfig, max_message_size: int = 1024 * 1024):
        self.host = host
        self.config = config
        self.mode = config.mode
        self.protocol_id = config.protocol_id
        self.alpha = config.alpha  # Количество параллельных запросов
        self.k = config.k
        self.request_timeout = config.request_timeout
        self.max_message_size = max_message_size
        self.routing_table = RoutingTable(host.peer_id, k=config.k)
        self.store = RecordStore(default_ttl=config.provider_ttl)
        self.logger = get_logger("dht.protocol")

        host.on_peer_info_update(self._on_peer_info)
        if self.mode == "server":
            host.set_stream_handler(self.protocol_id, self._handle_stream)

    # Таблица маршрутизации

    def _on_peer_info(self, info: PeerInfo) -> None:
        """В таблицу попадают только полные участники DHT"""
        if info.mode != "server" or not info.supports(self.protocol_id):
            return
        node = self.routing_table.get_node(info.peer) or Node(peer=info.peer)
        for addr in info.addrs:
            if addr not in node.addrs:
                node.addrs.append(addr)
        node.update_seen()
        if self.routing_table.add_node(node):
            self.logger.debug("Peer added to routing table", peer=str(info.peer))

    # Серверная часть

    async def _handle_stream(self, stream: "Stream") -> None:
        request = await read_message(stream, self.max_message_size)
        response = self._handle_request(request, stream.remote_peer)
        await write_message(stream, response)

    def _handle_request(self, request: Any, sender: PeerIdentity) -> Dict[str, Any]:
        if not isinstance(request, dict) or "type" not in request:
            raise EncodingError(f"Malformed DHT request: {request!r}")

        msg_type = request["type"]
        if msg_type == MSG_PING:
            return {"type": MSG_PONG}

        key = request.get("key")
        if not isinstance(key, bytes) or not key:
            raise EncodingError(f"{msg_type} request without a key")

        if msg_type == MSG_FIND_NODE:
            return {"type": MSG_FIND_NODE, "closer": self._closer_peers(key, sender)}

        if msg_type == MSG_GET_VALUE:
            return {
                "type": MSG_GET_VALUE,
                "record": self._peer_record(key),
                "providers": [
                    {"peer": str(peer), "addrs": addrs} for peer, addrs in self.store.get_providers(key)
                ],
                "closer": self._closer_peers(key, sender),
            }

        if msg_type == MSG_ADD_PROVIDER:
            addrs = [a for a in request.get("addrs", []) if isinstance(a, str)]
            self.store.add_provider(key, sender, addrs)
            self.logger.debug("Provider added", key=key.hex()[:16], provider=str(sender))
            return {"type": MSG_ADD_PROVIDER, "ok": True}

        raise EncodingError(f"Unknown DHT message type: {msg_type!r}")

    def _closer_peers(self, key: bytes, exclude: PeerIdentity) -> List[Dict[str, Any]]:
        target = NodeID(id=hash_key(key))
        return [
            node.to_dict()
            for node in self.routing_table.find_closest_nodes(target, self.k + 1)
            if node.peer != exclude
        ][: self.k]

    def _peer_record(self, key: bytes) -> Optional[Dict[str, Any]]:
        """Контактная запись, если ключ является хэш-формой известного пира"""
        try:
            peer = PeerIdentity.from_bytes(key)
        except InvalidIdentityError:
            return None
        addrs = self.host.addresses_of(peer)
        if not addrs:
            return None
        return {"peer": str(peer), "addrs": [str(addr) for addr in addrs]}

    # Клиентская часть

    async def _rpc(
        self, node: Node, message: Dict[str, Any], token: CancellationToken
    ) -> Dict[str, Any]:
        """
        Один запрос и один ответ на отдельном потоке

        Raises:
            DialError, StreamError, EncodingError, asyncio.TimeoutError
        """
        conn = self.host.get_connection(node.peer)
        if conn is None:
            addrs = node.dialable_addrs()
            if not addrs:
                raise DialError(str(node.peer), "no dialable address known")
            last_error: Optional[DialError] = None
            for addr in addrs:
                try:
                    conn = await self.host.dial(addr, token)
                    break
                except DialError as e:
                    last_error = e
            if conn is None:
                raise last_error

        stream = await self.host.new_stream(conn, self.protocol_id, token)
        try:
            await write_message(stream, message)
            response = await token.guard(
                asyncio.wait_for(read_message(stream, self.max_message_size), self.request_timeout)
            )
        finally:
            await stream.close()

        if not isinstance(response, dict):
            raise EncodingError(f"Malformed DHT response: {response!r}")
        return response

    async def ping(self, node: Node, token: Optional[CancellationToken] = None) -> bool:
        """
        Проверка доступности узла

        Returns:
            True если узел ответил PONG
        """
        token = token or CancellationToken()
        try:
            response = await self._rpc(node, {"type": MSG_PING}, token)
        except RPC_ERRORS as e:
            self.logger.warning("PING failed", peer=str(node.peer), error=str(e))
            node.record_failure()
            return False
        if response.get("type") == MSG_PONG:
            node.update_seen()
            return True
        return False

    def _parse_peers(self, entries: Any) -> List[Node]:
        nodes = []
        for entry in entries or []:
            try:
                peer = PeerIdentity.from_string(entry["peer"])
                addrs = [PeerAddress.parse(a) for a in entry.get("addrs", [])]
            except (KeyError, TypeError, InvalidIdentityError, InvalidAddressError) as e:
                self.logger.warning("Error parsing peer entry", error=str(e))
                continue
            nodes.append(Node(peer=peer, addrs=[a for a in addrs if a.peer == peer]))
        return nodes

    def _records_from(self, key: bytes, response: Dict[str, Any], source: PeerIdentity) -> List[Record]:
        records: List[Record] = []

        record = response.get("record")
        if isinstance(record, dict):
            try:
                records.append(
                    PeerRecord(
                        peer=PeerIdentity.from_string(record["peer"]),
                        addrs=tuple(str(a) for a in record.get("addrs", [])),
                        source=source,
                    )
                )
            except (KeyError, TypeError, InvalidIdentityError) as e:
                self.logger.warning("Malformed peer record", source=str(source), error=str(e))

        for entry in response.get("providers") or []:
            try:
                records.append(
                    ProviderRecord(
                        key=key,
                        provider=PeerIdentity.from_string(entry["peer"]),
                        addrs=tuple(str(a) for a in entry.get("addrs", [])),
                        source=source,
                    )
                )
            except (KeyError, TypeError, InvalidIdentityError) as e:
                self.logger.warning("Malformed provider record", source=str(source), error=str(e))

        return records

    async def _iterate(
        self, key: bytes, msg_type: str, token: CancellationToken
    ) -> AsyncIterator[Tuple[Node, Dict[str, Any]]]:
        """
        Итеративный обход Kademlia: alpha параллельных запросов за раунд

        Порождает пары (узел, ответ) по мере поступления ответов. Завершается,
        когда все k ближайших известных узлов опрошены.
        """
        target = NodeID(id=hash_key(key))
        closest = self.routing_table.find_closest_nodes(target, self.k)
        if not closest:
            raise DHTError("No peers in routing table to query")

        seen: Dict[PeerIdentity, Node] = {node.peer: node for node in closest}
        queried = set()

        def distance(node: Node) -> bytes:
            return compute_distance(target.id, node.node_id.id)

        while True:
            token.check()

            nearest = sorted(seen.values(), key=distance)[: self.k]
            candidates = [node for node in nearest if node.peer not in queried][: self.alpha]
            if not candidates:
                break

            tasks = {}
            for node in candidates:
                queried.add(node.peer)
                message = {"type": msg_type, "key": key}
                tasks[asyncio.ensure_future(self._rpc(node, message, token))] = node

            pending = set(tasks)
            try:
                while pending:
                    done, pending = await token.guard(
                        asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                    )
                    for task in done:
                        node = tasks[task]
                        try:
                            response = task.result()
                        except RPC_ERRORS as e:
                            self.logger.debug(
                                "DHT request failed", peer=str(node.peer), type=msg_type, error=str(e)
                            )
                            node.record_failure()
                            continue

                        node.update_seen()
                        for found in self._parse_peers(response.get("closer")):
                            if found.peer == self.host.peer_id:
                                continue
                            self.host.add_addresses(found.peer, found.addrs)
                            if found.peer not in seen:
                                seen[found.peer] = found

                        yield node, response
            finally:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

    async def lookup(self, key: bytes, token: Optional[CancellationToken] = None) -> AsyncIterator[Record]:
        """
        Поиск записей по ключу

        Ленивая последовательность: записи порождаются по мере поступления
        ответов, порядок не гарантирован. Повторно не запускается.

        Args:
            key: Хэш-форма идентичности (или ключ контента)
            token: Сигнал отмены; при срабатывании текущие запросы отменяются

        Raises:
            DHTError: Таблица маршрутизации пуста
            OperationCancelled: Сработал сигнал отмены
        """
        token = token or CancellationToken()
        self.logger.debug("Starting lookup", key=key.hex()[:16])
        iterator = self._iterate(key, MSG_GET_VALUE, token)
        try:
            async for node, response in iterator:
                for record in self._records_from(key, response, node.peer):
                    if isinstance(record, PeerRecord):
                        self.host.add_addresses(
                            record.peer, [a for a in self._parse_addrs(record.addrs) if a.peer == record.peer]
                        )
                    yield record
        finally:
            await iterator.aclose()

    def _parse_addrs(self, addrs) -> List[PeerAddress]:
        parsed = []
        for addr in addrs:
            try:
                parsed.append(PeerAddress.parse(addr))
            except InvalidAddressError:
                continue
        return parsed

    async def find_closest_peers(self, key: bytes, token: Optional[CancellationToken] = None) -> List[Node]:
        """
        Поиск k ближайших к ключу участников DHT (итеративный FIND_NODE)

        Returns:
            Список узлов, отсортированный по расстоянию
        """
        token = token or CancellationToken()
        target = NodeID(id=hash_key(key))
        responded: Dict[PeerIdentity, Node] = {}
        iterator = self._iterate(key, MSG_FIND_NODE, token)
        try:
            async for node, _ in iterator:
                responded[node.peer] = node
        finally:
            await iterator.aclose()

        return sorted(responded.values(), key=lambda n: compute_distance(target.id, n.node_id.id))[: self.k]

    async def provide(self, key: bytes, token: Optional[CancellationToken] = None) -> int:
        """
        Анонс локального узла провайдером ключа на k ближайших узлах

        Returns:
            Количество узлов, принявших запись
        """
        token = token or CancellationToken()
        own_addrs = [str(addr) for addr in self.host.listen_addrs]
        if self.mode == "server":
            self.store.add_provider(key, self.host.peer_id, own_addrs)

        closest = await self.find_closest_peers(key, token)
        message = {"type": MSG_ADD_PROVIDER, "key": key, "addrs": own_addrs}
        results = await asyncio.gather(
            *(self._rpc(node, message, token) for node in closest), return_exceptions=True
        )
        accepted = sum(1 for r in results if isinstance(r, dict) and r.get("ok"))
        self.logger.info(
            "Provider record published", key=key.hex()[:16], nodes_attempted=len(closest), nodes_success=accepted
        )
        return accepted
