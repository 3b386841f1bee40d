"""
Поиск цели через DHT с дедлайном и частичными результатами
"""

from dataclasses import dataclass, field
from typing import List, Optional

from kadquery.cancellation import CancellationToken
from kadquery.dht.records import Record
from kadquery.exceptions import OperationCancelled
from kadquery.logger import get_logger
from kadquery.peer.identity import PeerIdentity
from kadquery.query.base import Query


@dataclass
class LookupResult:
    """
    Результат поиска

    timed_out отличает "ничего не найдено" от "дедлайн сработал раньше".
    """
    target: PeerIdentity
    key: bytes
    records: List[Record] = field(default_factory=list)
    timed_out: bool = False

    def to_dict(self) -> dict:
        data = {"target": str(self.target), "found": [record.to_dict() for record in self.records]}
        if self.timed_out:
            data["timed_out"] = True
        return data


class DHTLookup(Query):
    """Итеративный поиск по хэш-форме идентичности"""

    def __init__(self, node, config):
        super().__init__(node, config)
        self.logger = get_logger("query.dht_lookup")

    async def execute(self, target: PeerIdentity, token: Optional[CancellationToken] = None) -> LookupResult:
        """
        Сбор всех записей, пока последовательность не исчерпана или не сработал дедлайн

        Raises:
            DHTError: В таблице маршрутизации нет пиров для запроса
        """
        key = target.to_bytes()
        result = LookupResult(target=target, key=key)
        token = self._deadline_token(token)

        self.logger.info("Starting DHT lookup", peer=str(target), timeout=self.config.timeout)
        records = self.node.dht.lookup(key, token)
        try:
            async for record in records:
                result.records.append(record)
        except OperationCancelled as e:
            result.timed_out = token.timed_out
            if not result.timed_out:
                raise
            self.logger.info("Lookup deadline reached", peer=str(target), reason=e.reason)
        finally:
            await records.aclose()
            token.close()

        self.logger.info(
            "DHT lookup finished", peer=str(target), records=len(result.records), timed_out=result.timed_out
        )
        return result
