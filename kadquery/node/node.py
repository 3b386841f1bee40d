"""
Локальный узел: идентичность, хост, DHT и обнаружение пиров
"""

from typing import Callable, List, Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from kadquery.cancellation import CancellationToken
from kadquery.config import Config
from kadquery.dht.protocol import DHTService
from kadquery.exceptions import EncodingError, InvalidIdentityError
from kadquery.logger import get_logger
from kadquery.network.codec import read_message, write_message
from kadquery.network.connection import Connection, Stream
from kadquery.network.host import Host, PeerInfoHandler
from kadquery.node.discovery import BootstrapDiscovery
from kadquery.parser import parse_bootnodes
from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity
from kadquery.utils.crypto import generate_keypair, load_private_key, save_private_key


class Node:
    """
    Контекст процесса: владеет всеми соединениями и слушателями

    Используется как async context manager; при выходе все соединения
    гарантированно закрываются.
    """

    def __init__(
        self,
        config: Config,
        key: Optional[Ed25519PrivateKey] = None,
        bootstrap_addrs: Optional[List[PeerAddress]] = None,
    ):
        self.config = config
        self.mode = config.dht.mode
        self.logger = get_logger("node")

        self.private_key = key or self._load_or_generate_key()

        self.host = Host(
            self.private_key,
            identify_protocol=config.node.identify_protocol,
            mode=self.mode,
            dial_timeout=config.network.dial_timeout,
            max_message_size=config.network.max_message_size,
        )
        self.peer_id = self.host.peer_id
        self.logger = self.logger.bind(peer_id=str(self.peer_id)[:16])

        self.dht = DHTService(self.host, config.dht, max_message_size=config.network.max_message_size)

        if bootstrap_addrs is None:
            bootstrap_addrs = parse_bootnodes(config.network.bootstrap_nodes)
        self.bootstrap_addrs = list(bootstrap_addrs)
        self.discovery = BootstrapDiscovery(
            self.host,
            self.dht,
            self.bootstrap_addrs,
            interval=config.network.discovery_interval,
            dial_timeout=config.network.dial_timeout,
        )

        if self.mode == "server":
            self.host.set_stream_handler(config.query.direct_protocol_id, self._handle_direct_query)

        self.is_running = False
        self.logger.info("Node initialized", mode=self.mode)

    def _load_or_generate_key(self) -> Ed25519PrivateKey:
        """Загрузка ключа из файла или генерация нового"""
        key_file = self.config.node.key_file
        if key_file is None:
            self.logger.debug("Using ephemeral identity")
            return generate_keypair()

        private_key = load_private_key(key_file)
        if private_key is None:
            self.logger.info("Generating new node key")
            private_key = generate_keypair()
            save_private_key(private_key, key_file)
            self.logger.info("Node key saved", file=str(key_file))
        else:
            self.logger.info("Node key loaded from file", file=str(key_file))
        return private_key

    async def start(self, token: Optional[CancellationToken] = None) -> None:
        """
        Запуск узла

        Args:
            token: Сигнал отмены для подключения к bootstrap узлам

        Raises:
            BootstrapError: Не удалось занять ни один адрес прослушивания
        """
        if self.is_running:
            return

        self.logger.info("Starting node")
        await self.host.listen(self.config.network.listen_addrs)
        self.is_running = True

        if self.config.network.dial_bootstrap:
            await self.discovery.dial_all(token)
        self.discovery.start()

        self.logger.info(
            "Node started",
            listen_addrs=[str(addr) for addr in self.host.listen_addrs],
            connections=len(self.host.connections),
        )

    async def stop(self) -> None:
        """Остановка узла"""
        if not self.is_running:
            await self.host.close()
            return

        self.logger.info("Stopping node")
        self.is_running = False
        await self.discovery.stop()
        await self.host.close()
        self.logger.info("Node stopped")

    async def __aenter__(self) -> "Node":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def listen_addrs(self) -> List[PeerAddress]:
        return list(self.host.listen_addrs)

    def on_peer_info_update(self, handler: PeerInfoHandler) -> Callable[[], None]:
        """Подписка на обновления сведений о пирах (необязательна для запросов)"""
        return self.host.on_peer_info_update(handler)

    async def dial(self, address: PeerAddress, token: Optional[CancellationToken] = None) -> Connection:
        return await self.host.dial(address, token)

    async def open_stream(
        self, conn: Connection, protocol: str, token: Optional[CancellationToken] = None
    ) -> Stream:
        return await self.host.new_stream(conn, protocol, token)

    async def close(self, target: Union[Connection, Stream]) -> None:
        """Закрытие соединения или потока"""
        if isinstance(target, Stream):
            await target.close()
        else:
            await self.host.close_connection(target)

    async def provide(self, key: bytes, token: Optional[CancellationToken] = None) -> int:
        """Анонс узла провайдером ключа"""
        return await self.dht.provide(key, token)

    async def _handle_direct_query(self, stream: Stream) -> None:
        """Ответ на прямой запрос: контактные данные пира, если он известен"""
        request = await read_message(stream, self.config.network.max_message_size)
        if not isinstance(request, dict) or not isinstance(request.get("peer"), str):
            raise EncodingError(f"Malformed direct query request: {request!r}")

        requested = request["peer"]
        try:
            peer = PeerIdentity.from_string(requested)
        except InvalidIdentityError:
            peer = None

        addrs = self.host.addresses_of(peer) if peer is not None else []
        if addrs:
            response = {"Found": {"peer": requested, "maddrs": [str(addr) for addr in addrs]}}
        else:
            response = {"NotFound": {"peer": requested}}

        self.logger.debug(
            "Direct query answered", peer=requested, found="Found" in response, remote=str(stream.remote_peer)
        )
        await write_message(stream, response)
