"""
Прямой запрос: один запрос и один ответ по отдельному потоку, без обхода DHT

    Idle --dial--> Connected --negotiate--> StreamOpen --write--> AwaitingResponse --read--> Complete

Поток закрывается всегда; соединение закрывается, если было создано для
этого запроса.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from kadquery.cancellation import CancellationToken
from kadquery.exceptions import (
    DialError,
    DirectQueryError,
    EncodingError,
    NetworkError,
    OperationCancelled,
)
from kadquery.logger import get_logger
from kadquery.network.codec import encode_message, read_length_prefixed
from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity
from kadquery.query.base import Query
from kadquery.utils.serialization import deserialize


@dataclass
class DirectQueryResult:
    """Ответ пира на прямой запрос (структура ответа не интерпретируется)"""
    peer: PeerIdentity  # Искомая идентичность
    address: PeerAddress  # Адрес, ответивший на запрос
    response: Any

    def to_dict(self) -> dict:
        return {"peer": str(self.peer), "address": str(self.address), "response": self.response}


class DirectQuery(Query):
    """Прямой запрос к bootstrap адресам по очереди"""

    def __init__(self, node, config):
        super().__init__(node, config)
        self.protocol_id = config.direct_protocol_id
        self.max_message_size = node.config.network.max_message_size
        self.logger = get_logger("query.direct")

    async def execute(
        self, target: PeerIdentity, token: Optional[CancellationToken] = None
    ) -> DirectQueryResult:
        """
        Запрос контактных данных цели у bootstrap пиров

        Адреса перебираются по порядку, пока один не ответит.

        Raises:
            DirectQueryError: Все адреса завершились ошибкой (последняя ошибка)
        """
        addresses = self.node.bootstrap_addrs
        if not addresses:
            raise DirectQueryError("dial", "<none>", DialError("<none>", "no bootstrap addresses"))

        token = self._deadline_token(token)
        last_error: Optional[DirectQueryError] = None
        try:
            for address in addresses:
                try:
                    return await self.query_address(address, target, token)
                except DirectQueryError as e:
                    self.logger.warning(
                        "Direct query attempt failed", phase=e.phase, address=e.address, error=str(e.cause)
                    )
                    last_error = e
                    if isinstance(e.cause, OperationCancelled):
                        break
        finally:
            token.close()

        raise last_error

    async def query_address(
        self, address: PeerAddress, target: PeerIdentity, token: Optional[CancellationToken] = None
    ) -> DirectQueryResult:
        """
        Один обмен запрос/ответ с конкретным адресом

        Raises:
            DirectQueryError: С фазой, на которой произошел сбой
        """
        token = token or CancellationToken()
        addr = str(address)
        phase = "dial"

        reused = self.node.host.get_connection(address.peer) is not None
        try:
            conn = await self.node.dial(address, token)
        except (NetworkError, OperationCancelled) as e:
            raise DirectQueryError(phase, addr, e)

        stream = None
        try:
            phase = "negotiate"
            stream = await self.node.open_stream(conn, self.protocol_id, token)

            phase = "encode"
            payload = encode_message({"peer": str(target)})

            phase = "write"
            await token.guard(stream.write(payload))
            self.logger.debug("Direct query sent", address=addr, peer=str(target))

            phase = "read"
            data = await token.guard(read_length_prefixed(stream, self.max_message_size))

            phase = "decode"
            if not data:
                raise EncodingError("Empty response")
            response = deserialize(data)

        except (NetworkError, EncodingError, OperationCancelled, asyncio.IncompleteReadError) as e:
            raise DirectQueryError(phase, addr, e)

        finally:
            if stream is not None:
                await stream.close()
            if not reused:
                await self.node.close(conn)

        self.logger.info("Direct query completed", address=addr, peer=str(target))
        return DirectQueryResult(peer=target, address=address, response=response)
