"""
Общий интерфейс стратегий запроса
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from kadquery.cancellation import CancellationToken
from kadquery.config import QueryConfig
from kadquery.exceptions import ConfigError
from kadquery.peer.identity import PeerIdentity

if TYPE_CHECKING:
    from kadquery.node.node import Node


class QueryStrategy(str, Enum):
    """Способ поиска цели; выбирается один раз при запуске"""

    DHT_LOOKUP = "dht"
    DIRECT_QUERY = "direct"

    @classmethod
    def parse(cls, value) -> "QueryStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigError(f"Unknown query strategy: {value!r}")


class Query(ABC):
    """Запрос цели через работающий узел"""

    def __init__(self, node: "Node", config: QueryConfig):
        self.node = node
        self.config = config

    @abstractmethod
    async def execute(self, target: PeerIdentity, token: Optional[CancellationToken] = None) -> Any:
        """
        Выполнение запроса; результат передается в ResultReporter

        Args:
            target: Искомая идентичность
            token: Общий сигнал отмены вызова; дедлайн запроса не может его превысить
        """
        raise NotImplementedError

    def _deadline_token(self, token: Optional[CancellationToken]) -> CancellationToken:
        if token is not None:
            return token.child(self.config.timeout)
        return CancellationToken(timeout=self.config.timeout)


def build_query(strategy, node: "Node", config: QueryConfig) -> Query:
    """
    Создание реализации запроса для выбранной стратегии

    Args:
        strategy: QueryStrategy или его строковое значение
        node: Запущенный узел
        config: Конфигурация запроса

    Raises:
        ConfigError: Неизвестная стратегия
    """
    from kadquery.query.dht_lookup import DHTLookup
    from kadquery.query.direct import DirectQuery

    strategy = QueryStrategy.parse(strategy)
    if strategy is QueryStrategy.DIRECT_QUERY:
        return DirectQuery(node, config)
    return DHTLookup(node, config)
