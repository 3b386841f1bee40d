"""
Соединение с мультиплексированием потоков
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Set

from kadquery.exceptions import EncodingError, NetworkError, StreamError
from kadquery.logger import get_logger
from kadquery.network.codec import encode_length_prefixed, read_length_prefixed
from kadquery.peer.info import PeerInfo
from kadquery.utils.serialization import deserialize, serialize

# Типы фреймов
FRAME_OPEN = 0x01
FRAME_ACCEPT = 0x02
FRAME_DATA = 0x03
FRAME_CLOSE = 0x04
FRAME_RESET = 0x05

MAX_CHUNK_SIZE = 64 * 1024
FRAME_OVERHEAD = 64

StreamHandler = Callable[["Stream"], Awaitable[None]]


class Stream:
    """Независимый логический поток байт внутри соединения"""

    def __init__(self, connection: "Connection", stream_id: int, protocol: str):
        self.connection = connection
        self.stream_id = stream_id
        self.protocol = protocol
        self._reader = asyncio.StreamReader()
        self._local_closed = False
        self._remote_closed = False
        self._reset = False

    @property
    def remote_peer(self):
        return self.connection.remote_peer

    @property
    def is_closed(self) -> bool:
        return self._reset or (self._local_closed and self._remote_closed)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        """
        Запись данных в поток

        Raises:
            StreamError: Если поток закрыт на запись или сброшен
        """
        if self._reset:
            raise StreamError("Stream was reset", protocol=self.protocol)
        if self._local_closed:
            raise StreamError("Stream is closed for writing", protocol=self.protocol)

        for offset in range(0, len(data), MAX_CHUNK_SIZE):
            await self.connection._send_frame(
                self.stream_id, FRAME_DATA, data[offset:offset + MAX_CHUNK_SIZE]
            )

    async def close(self) -> None:
        """Закрытие потока на запись (полузакрытие)"""
        if self._local_closed or self._reset:
            return
        self._local_closed = True
        try:
            await self.connection._send_frame(self.stream_id, FRAME_CLOSE)
        except StreamError:
            # Соединение уже закрыто: закрывать нечего
            self._reset = True
        self._release_if_done()

    async def reset(self, reason: str = "stream reset") -> None:
        """Аварийное закрытие потока в обе стороны"""
        if self._reset:
            return
        try:
            await self.connection._send_frame(self.stream_id, FRAME_RESET, reason.encode())
        except StreamError:
            pass
        self._on_reset(reason)

    def _on_data(self, data: bytes) -> None:
        if not self._remote_closed and not self._reset:
            self._reader.feed_data(data)

    def _on_remote_close(self) -> None:
        self._remote_closed = True
        self._reader.feed_eof()
        self._release_if_done()

    def _on_reset(self, reason: str) -> None:
        if self._reset and self._reader.exception() is not None:
            return
        self._reset = True
        self._reader.set_exception(StreamError(reason, protocol=self.protocol))
        self.connection._release(self)

    def _release_if_done(self) -> None:
        if self.is_closed:
            self.connection._release(self)

    def __repr__(self):
        return f"Stream({self.stream_id}, {self.protocol})"


class Connection:
    """Аутентифицированный канал к одному пиру, несущий несколько потоков"""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        remote: PeerInfo,
        initiator: bool,
        resolve_handler: Callable[[str], Optional[StreamHandler]],
        max_message_size: int,
    ):
        self._reader = reader
        self._writer = writer
        self.remote = remote
        self.initiator = initiator
        self._resolve_handler = resolve_handler
        self._max_frame_size = max_message_size + FRAME_OVERHEAD

        self._streams: Dict[int, Stream] = {}
        self._pending_opens: Dict[int, asyncio.Future] = {}
        # Инициатор использует нечетные ID потоков, принимающая сторона четные
        self._next_stream_id = 1 if initiator else 2
        self._write_lock = asyncio.Lock()
        self._read_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._close_callbacks: List[Callable[["Connection"], None]] = []
        self._closed = False

        self.logger = get_logger("network.connection").bind(peer=str(remote.peer)[:16])

    @property
    def remote_peer(self):
        return self.remote.peer

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def on_close(self, callback: Callable[["Connection"], None]) -> None:
        self._close_callbacks.append(callback)

    def start(self) -> None:
        """Запуск цикла чтения фреймов"""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop())

    async def open_stream(self, protocol: str) -> Stream:
        """
        Открытие потока с согласованием протокола

        Args:
            protocol: Идентификатор протокола, например "/rr/1.0.0"

        Returns:
            Открытый поток

        Raises:
            StreamError: Если пир не поддерживает протокол или соединение закрыто
        """
        if self._closed:
            raise StreamError("Connection is closed", protocol=protocol)

        stream_id = self._next_stream_id
        self._next_stream_id += 2

        stream = Stream(self, stream_id, protocol)
        accepted = asyncio.get_running_loop().create_future()
        self._streams[stream_id] = stream
        self._pending_opens[stream_id] = accepted

        try:
            await self._send_frame(stream_id, FRAME_OPEN, protocol.encode("utf-8"))
            await accepted
        except BaseException:
            self._streams.pop(stream_id, None)
            raise
        finally:
            self._pending_opens.pop(stream_id, None)

        self.logger.debug("Stream opened", stream_id=stream_id, protocol=protocol)
        return stream

    async def _send_frame(self, stream_id: int, kind: int, payload: bytes = b"") -> None:
        async with self._write_lock:
            if self._closed:
                raise StreamError("Connection is closed")
            try:
                self._writer.write(encode_length_prefixed(serialize([stream_id, kind, payload])))
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                asyncio.get_running_loop().call_soon(self._schedule_close, f"write failed: {e}")
                raise StreamError(f"Connection write failed: {e}")

    async def _read_loop(self) -> None:
        reason = "connection closed by remote"
        try:
            while True:
                data = await read_length_prefixed(self._reader, self._max_frame_size)
                frame = deserialize(data)
                if not isinstance(frame, list) or len(frame) != 3:
                    raise EncodingError(f"Malformed frame: {frame!r}")
                stream_id, kind, payload = frame
                await self._handle_frame(stream_id, kind, payload)
        except (asyncio.IncompleteReadError, ConnectionError, OSError):
            self.logger.debug("Connection closed by remote")
        except (EncodingError, TypeError, AttributeError, ValueError) as e:
            reason = f"protocol error: {e}"
            self.logger.warning("Protocol error on connection", error=str(e))
        except NetworkError as e:
            # Ответ ACCEPT/RESET не ушел: соединение уже разорвано
            reason = f"connection error: {e}"
            self.logger.debug("Connection failed while handling frame", error=str(e))
        except asyncio.CancelledError:
            reason = "connection closed"
            raise
        finally:
            await self._shutdown(reason)

    async def _handle_frame(self, stream_id: int, kind: int, payload: bytes) -> None:
        if kind == FRAME_OPEN:
            protocol = payload.decode("utf-8", errors="replace")
            handler = self._resolve_handler(protocol)
            if handler is None:
                self.logger.debug("Rejecting stream", protocol=protocol)
                await self._send_frame(stream_id, FRAME_RESET, b"protocol not supported")
                return

            stream = Stream(self, stream_id, protocol)
            self._streams[stream_id] = stream
            await self._send_frame(stream_id, FRAME_ACCEPT)
            task = asyncio.create_task(self._run_handler(handler, stream))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)

        elif kind == FRAME_ACCEPT:
            accepted = self._pending_opens.get(stream_id)
            if accepted is not None and not accepted.done():
                accepted.set_result(True)

        elif kind == FRAME_DATA:
            stream = self._streams.get(stream_id)
            if stream is not None:
                stream._on_data(payload)

        elif kind == FRAME_CLOSE:
            stream = self._streams.get(stream_id)
            if stream is not None:
                stream._on_remote_close()

        elif kind == FRAME_RESET:
            reason = payload.decode("utf-8", errors="replace") or "stream reset"
            accepted = self._pending_opens.get(stream_id)
            stream = self._streams.get(stream_id)
            if accepted is not None and not accepted.done():
                protocol = stream.protocol if stream else None
                accepted.set_exception(StreamError(f"Stream rejected: {reason}", protocol=protocol))
            if stream is not None:
                stream._on_reset(reason)

        else:
            self.logger.warning("Unknown frame type", kind=kind, stream_id=stream_id)

    async def _run_handler(self, handler: StreamHandler, stream: Stream) -> None:
        try:
            await handler(stream)
        except (NetworkError, EncodingError) as e:
            self.logger.warning("Stream handler failed", protocol=stream.protocol, error=str(e))
            await stream.reset(str(e))
        except Exception as e:
            self.logger.error(
                "Unexpected error in stream handler", protocol=stream.protocol, error=str(e), exc_info=True
            )
            await stream.reset("internal error")
        finally:
            await stream.close()

    def _release(self, stream: Stream) -> None:
        self._streams.pop(stream.stream_id, None)

    def _schedule_close(self, reason: str) -> None:
        if not self._closed:
            asyncio.ensure_future(self._shutdown(reason))

    async def close(self) -> None:
        """Закрытие соединения и всех его потоков"""
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
            await asyncio.gather(self._read_task, return_exceptions=True)
        await self._shutdown("connection closed")

    async def _shutdown(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True

        for accepted in list(self._pending_opens.values()):
            if not accepted.done():
                accepted.set_exception(StreamError(f"Stream not opened: {reason}"))
        for stream in list(self._streams.values()):
            stream._on_reset(reason)
        self._streams.clear()

        for task in list(self._handler_tasks):
            task.cancel()

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass

        self.logger.debug("Connection closed", reason=reason)
        for callback in self._close_callbacks:
            callback(self)

    def __repr__(self):
        return f"Connection({self.remote.peer}, initiator={self.initiator})"
