"""
Хост: слушатели, исходящие соединения, обработчики протоколов и peerstore
"""

import asyncio
from typing import Callable, Dict, List, Optional, Set

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from kadquery.cancellation import CancellationToken
from kadquery.exceptions import (
    BootstrapError,
    DialError,
    HandshakeError,
    InvalidAddressError,
)
from kadquery.logger import get_logger
from kadquery.network.connection import Connection, Stream, StreamHandler
from kadquery.network.handshake import perform_handshake
from kadquery.network.transport import TCPTransport
from kadquery.peer.address import PeerAddress, parse_listen_address
from kadquery.peer.identity import PeerIdentity
from kadquery.peer.info import PeerInfo
from kadquery.utils.crypto import public_key_bytes

PeerInfoHandler = Callable[[PeerInfo], None]

UNSPECIFIED_HOSTS = ("0.0.0.0", "::")


class Host:
    """Локальная точка сети: владеет транспортом и всеми соединениями"""

    def __init__(
        self,
        private_key: Ed25519PrivateKey,
        identify_protocol: str,
        mode: str = "client",
        dial_timeout: float = 10.0,
        max_message_size: int = 1024 * 1024,
    ):
        self.private_key = private_key
        self.peer_id = PeerIdentity.from_public_key(public_key_bytes(private_key))
        self.identify_protocol = identify_protocol
        self.mode = mode
        self.max_message_size = max_message_size
        self.transport = TCPTransport(dial_timeout=dial_timeout)

        self.listen_addrs: List[PeerAddress] = []
        self.peerstore: Dict[PeerIdentity, List[PeerAddress]] = {}
        self._connections: Set[Connection] = set()
        self._handlers: Dict[str, StreamHandler] = {}
        self._peer_info_handlers: List[PeerInfoHandler] = []
        self._dial_locks: Dict[PeerIdentity, asyncio.Lock] = {}
        self._inbound_tasks: Set[asyncio.Task] = set()
        self._closed = False

        self.logger = get_logger("network.host").bind(local_peer=str(self.peer_id)[:16])

    # Обработчики протоколов и подписки

    def set_stream_handler(self, protocol: str, handler: StreamHandler) -> None:
        """Регистрация обработчика входящих потоков протокола"""
        self._handlers[protocol] = handler

    @property
    def protocols(self) -> List[str]:
        return sorted(self._handlers)

    def on_peer_info_update(self, handler: PeerInfoHandler) -> Callable[[], None]:
        """
        Подписка на сведения о пирах после каждого handshake

        Returns:
            Функция отписки
        """
        self._peer_info_handlers.append(handler)

        def unsubscribe():
            if handler in self._peer_info_handlers:
                self._peer_info_handlers.remove(handler)

        return unsubscribe

    # Прослушивание

    async def listen(self, addrs: List[str]) -> List[PeerAddress]:
        """
        Занятие адресов прослушивания

        Отдельные сбои логируются; если не удалось занять ни один адрес,
        это фатально.

        Raises:
            BootstrapError: Ни один из запрошенных адресов не занят
        """
        failures = []
        for addr in addrs:
            try:
                host, port = parse_listen_address(addr)
                bound_host, bound_port = await self.transport.listen(host, port, self._on_inbound)
            except (InvalidAddressError, OSError) as e:
                self.logger.error("Failed to listen on address", address=addr, error=str(e))
                failures.append(f"{addr}: {e}")
                continue
            self.listen_addrs.append(PeerAddress.from_parts(bound_host, bound_port, self.peer_id))

        if addrs and not self.listen_addrs:
            raise BootstrapError("Could not bind any listen address: " + "; ".join(failures))

        return list(self.listen_addrs)

    async def _on_inbound(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        self._inbound_tasks.add(task)
        observed = writer.get_extra_info("peername")
        try:
            info = await perform_handshake(
                reader,
                writer,
                self.private_key,
                self.identify_protocol,
                listen_addrs=[str(a) for a in self.listen_addrs],
                protocols=self.protocols,
                mode=self.mode,
            )
        except HandshakeError as e:
            self.logger.warning("Inbound handshake failed", remote=observed, error=str(e))
            writer.close()
            return
        finally:
            self._inbound_tasks.discard(task)

        if self._closed:
            writer.close()
            return

        info.addrs = self._rewrite_unspecified(info.addrs, observed)
        self._register(reader, writer, info, initiator=False)

    # Исходящие соединения

    def get_connection(self, peer: PeerIdentity) -> Optional[Connection]:
        """Открытое соединение с пиром, если есть"""
        for conn in self._connections:
            if conn.remote_peer == peer and not conn.is_closed:
                return conn
        return None

    def is_connected(self, peer: PeerIdentity) -> bool:
        return self.get_connection(peer) is not None

    @property
    def connections(self) -> List[Connection]:
        return [conn for conn in self._connections if not conn.is_closed]

    async def dial(self, address: PeerAddress, token: Optional[CancellationToken] = None) -> Connection:
        """
        Соединение с пиром (повторно использует открытое соединение)

        Args:
            address: Адрес пира с идентичностью
            token: Сигнал отмены

        Returns:
            Аутентифицированное соединение

        Raises:
            DialError: Адрес недоступен, handshake не прошел или идентичность не совпала
            OperationCancelled: Сработал сигнал отмены
        """
        if token is not None:
            return await token.guard(self._dial(address))
        return await self._dial(address)

    async def _dial(self, address: PeerAddress) -> Connection:
        if self._closed:
            raise DialError(str(address), "host is closed")
        if address.peer == self.peer_id:
            raise DialError(str(address), "cannot dial self")

        lock = self._dial_locks.setdefault(address.peer, asyncio.Lock())
        async with lock:
            existing = self.get_connection(address.peer)
            if existing is not None:
                return existing

            if not address.is_dialable:
                raise DialError(str(address), f"no enabled transport for {address.transport_address()}")

            self.logger.debug("Dialing", address=str(address))
            try:
                reader, writer = await self.transport.dial(address.host, address.port)
            except asyncio.TimeoutError:
                raise DialError(str(address), "connection timed out")
            except OSError as e:
                raise DialError(str(address), str(e) or type(e).__name__)

            try:
                info = await perform_handshake(
                    reader,
                    writer,
                    self.private_key,
                    self.identify_protocol,
                    listen_addrs=[str(a) for a in self.listen_addrs],
                    protocols=self.protocols,
                    mode=self.mode,
                    expected_peer=address.peer,
                )
            except HandshakeError as e:
                writer.close()
                raise DialError(str(address), f"handshake failed: {e}")
            except BaseException:
                writer.close()
                raise

            info.addrs = self._rewrite_unspecified(info.addrs, writer.get_extra_info("peername"))
            if address not in info.addrs:
                info.addrs.append(address)
            return self._register(reader, writer, info, initiator=True)

    def _register(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        info: PeerInfo,
        initiator: bool,
    ) -> Connection:
        conn = Connection(
            reader,
            writer,
            info,
            initiator=initiator,
            resolve_handler=self._handlers.get,
            max_message_size=self.max_message_size,
        )
        conn.on_close(self._connections.discard)
        self._connections.add(conn)
        conn.start()

        if info.addrs:
            self.peerstore[info.peer] = list(info.addrs)
        self.logger.info(
            "Connection established",
            peer=str(info.peer),
            direction="outbound" if initiator else "inbound",
            mode=info.mode,
        )

        for handler in list(self._peer_info_handlers):
            try:
                handler(info)
            except Exception as e:
                self.logger.error("Peer info handler failed", error=str(e), exc_info=True)

        return conn

    def _rewrite_unspecified(self, addrs: List[PeerAddress], observed) -> List[PeerAddress]:
        """Подстановка наблюдаемого IP вместо 0.0.0.0 в анонсированных адресах"""
        if not observed:
            return addrs
        rewritten = []
        for addr in addrs:
            if addr.host in UNSPECIFIED_HOSTS and addr.port is not None:
                try:
                    addr = PeerAddress.from_parts(observed[0], addr.port, addr.peer)
                except InvalidAddressError:
                    continue
            rewritten.append(addr)
        return rewritten

    async def new_stream(
        self, conn: Connection, protocol: str, token: Optional[CancellationToken] = None
    ) -> Stream:
        """
        Открытие потока на соединении

        Raises:
            StreamError: Протокол не поддерживается или соединение закрыто
            OperationCancelled: Сработал сигнал отмены
        """
        if token is not None:
            return await token.guard(conn.open_stream(protocol))
        return await conn.open_stream(protocol)

    def addresses_of(self, peer: PeerIdentity) -> List[PeerAddress]:
        """Известные адреса пира (из peerstore или собственные)"""
        if peer == self.peer_id:
            return list(self.listen_addrs)
        return list(self.peerstore.get(peer, []))

    def add_addresses(self, peer: PeerIdentity, addrs: List[PeerAddress]) -> None:
        known = self.peerstore.setdefault(peer, [])
        for addr in addrs:
            if addr.peer == peer and addr not in known:
                known.append(addr)

    async def close_connection(self, conn: Connection) -> None:
        await conn.close()
        self._connections.discard(conn)

    async def close(self) -> None:
        """Закрытие всех соединений и слушателей"""
        if self._closed:
            return
        self._closed = True

        for task in list(self._inbound_tasks):
            task.cancel()
        for conn in list(self._connections):
            await conn.close()
        self._connections.clear()

        await self.transport.stop()
        self.logger.info("Host closed")
