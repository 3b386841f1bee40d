"""
Обнаружение пиров по фиксированному списку bootstrap адресов
"""

import asyncio
from typing import TYPE_CHECKING, List, Optional

from kadquery.cancellation import CancellationToken
from kadquery.exceptions import DialError, OperationCancelled
from kadquery.logger import get_logger
from kadquery.peer.address import PeerAddress

if TYPE_CHECKING:
    from kadquery.dht.protocol import DHTService
    from kadquery.network.host import Host


class BootstrapDiscovery:
    """
    Фоновое поддержание связности с bootstrap узлами

    Периодически переподключается к отключившимся bootstrap пирам и
    очищает истекшие записи провайдеров.
    """

    def __init__(
        self,
        host: "Host",
        dht: "DHTService",
        bootstrap_addrs: List[PeerAddress],
        interval: float = 30.0,
        dial_timeout: float = 10.0,
    ):
        self.host = host
        self.dht = dht
        self.bootstrap_addrs = list(bootstrap_addrs)
        self.interval = interval
        self.dial_timeout = dial_timeout
        self.is_running = False
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger("node.discovery")

    def start(self) -> None:
        if self._task is not None:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._background_tasks())

    async def stop(self) -> None:
        self.is_running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def dial_all(self, token: Optional[CancellationToken] = None) -> int:
        """
        Параллельное подключение ко всем bootstrap адресам

        Попытки запускаются в порядке списка, порядок завершения не определен.
        Отдельные сбои логируются и не прерывают процесс.

        Returns:
            Количество успешных подключений
        """
        if not self.bootstrap_addrs:
            self.logger.warning("No bootstrap nodes configured")
            return 0

        self.logger.info("Starting bootstrap", bootstrap_count=len(self.bootstrap_addrs))
        results = await asyncio.gather(
            *(self._dial_one(addr, token) for addr in self.bootstrap_addrs)
        )
        connected = sum(1 for ok in results if ok)

        if connected:
            self.logger.info("Bootstrap completed", connected=connected, total=len(results))
        else:
            self.logger.warning("Bootstrap completed with no connections")
        return connected

    async def _dial_one(self, address: PeerAddress, token: Optional[CancellationToken]) -> bool:
        dial_token = token.child(self.dial_timeout) if token is not None else CancellationToken(self.dial_timeout)
        try:
            await self.host.dial(address, dial_token)
        except DialError as e:
            self.logger.warning("Bootstrap dial failed", address=str(address), phase="dial", error=e.reason)
            return False
        except OperationCancelled as e:
            self.logger.warning("Bootstrap dial cancelled", address=str(address), phase="dial", reason=e.reason)
            return False
        finally:
            dial_token.close()
        self.logger.debug("Bootstrap node connected", address=str(address))
        return True

    async def _background_tasks(self):
        """Фоновые задачи обнаружения"""
        while self.is_running:
            await asyncio.sleep(self.interval)
            try:
                missing = [a for a in self.bootstrap_addrs if not self.host.is_connected(a.peer)]
                for address in missing:
                    await self._dial_one(address, None)

                deleted = self.dht.store.cleanup_expired()
                if deleted > 0:
                    self.logger.debug("Cleaned up expired provider records", count=deleted)

            except Exception as e:
                self.logger.error("Error in discovery tasks", error=str(e), exc_info=True)
