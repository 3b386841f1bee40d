"""
TCP транспорт
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple

from kadquery.logger import get_logger

ConnectionCallback = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


class TCPTransport:
    """TCP транспорт: прослушивание и исходящие соединения"""

    name = "tcp"

    def __init__(self, dial_timeout: float = 10.0):
        self.dial_timeout = dial_timeout
        self.servers: List[asyncio.AbstractServer] = []
        self.logger = get_logger("network.transport")

    async def listen(self, host: str, port: int, on_connection: ConnectionCallback) -> Tuple[str, int]:
        """
        Запуск прослушивания

        Args:
            host: Адрес интерфейса
            port: Порт (0 для выбора свободного)
            on_connection: Обработчик входящих соединений

        Returns:
            Фактический (host, port)

        Raises:
            OSError: Если адрес занять не удалось
        """
        server = await asyncio.start_server(on_connection, host=host, port=port)
        self.servers.append(server)

        sockname = server.sockets[0].getsockname()
        self.logger.info("TCP transport listening", host=sockname[0], port=sockname[1])
        return sockname[0], sockname[1]

    async def dial(
        self, host: str, port: int, timeout: Optional[float] = None
    ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """
        Установка исходящего соединения

        Raises:
            OSError: Если соединение отклонено или недоступно
            asyncio.TimeoutError: Если соединение не установлено за таймаут
        """
        return await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port),
            timeout=timeout if timeout is not None else self.dial_timeout,
        )

    async def stop(self) -> None:
        """Остановка всех слушателей"""
        for server in self.servers:
            server.close()
        for server in self.servers:
            await server.wait_closed()
        self.servers.clear()
        self.logger.info("TCP transport stopped")
