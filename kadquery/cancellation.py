"""
Сигнал отмены с опциональным дедлайном
"""

import asyncio
from typing import Awaitable, List, Optional, TypeVar

from kadquery.exceptions import OperationCancelled

T = TypeVar("T")

DEADLINE_EXCEEDED = "deadline exceeded"


class CancellationToken:
    """
    Общий сигнал отмены для всех точек ожидания одной операции

    Срабатывает явно через cancel() или по истечении таймаута. Дочерние
    токены отменяются вместе с родителем.
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children: List["CancellationToken"] = []
        self._handle: Optional[asyncio.TimerHandle] = None
        self.reason: Optional[str] = None
        self.deadline: Optional[float] = None

        if timeout is not None:
            loop = asyncio.get_running_loop()
            self.deadline = loop.time() + timeout
            self._handle = loop.call_later(timeout, self.cancel, DEADLINE_EXCEEDED)

        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason or "cancelled")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def timed_out(self) -> bool:
        """Сработал именно дедлайн, а не явная отмена"""
        return self.reason == DEADLINE_EXCEEDED

    def cancel(self, reason: str = "cancelled") -> None:
        """Отмена токена и всех дочерних"""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        if self._handle is not None:
            self._handle.cancel()
        for child in self._children:
            child.cancel(reason)

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        """Дочерний токен с собственным (более коротким) таймаутом"""
        remaining = self.remaining()
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
        return CancellationToken(timeout=timeout, parent=self)

    def remaining(self) -> Optional[float]:
        """Время до дедлайна в секундах или None"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    def close(self) -> None:
        """Освобождение таймера без срабатывания"""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def check(self) -> None:
        """Бросает OperationCancelled если токен уже сработал"""
        if self.cancelled:
            raise OperationCancelled(self.reason or "cancelled")

    async def guard(self, aw: Awaitable[T]) -> T:
        """
        Ожидание с отменой по токену

        Args:
            aw: Корутина или future

        Returns:
            Результат aw

        Raises:
            OperationCancelled: Если токен сработал раньше; aw при этом отменяется
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            self.check()

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelled(self.reason or "cancelled")
