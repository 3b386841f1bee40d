"""
Кодек сообщений: msgpack с префиксом длины (unsigned varint)
"""

import asyncio
from typing import Any

import varint

from kadquery.exceptions import EncodingError, StreamError
from kadquery.utils.serialization import deserialize, serialize

MAX_MESSAGE_SIZE = 1024 * 1024
MAX_VARINT_LENGTH = 9


def encode_length_prefixed(payload: bytes) -> bytes:
    """Префикс длины + данные"""
    return varint.encode(len(payload)) + payload


async def read_uvarint(reader) -> int:
    """
    Чтение unsigned varint побайтно

    Args:
        reader: Объект с корутиной readexactly(n)
    """
    buf = bytearray()
    while True:
        byte = await reader.readexactly(1)
        buf += byte
        if not byte[0] & 0x80:
            break
        if len(buf) >= MAX_VARINT_LENGTH:
            raise EncodingError("Length prefix is too long")
    return varint.decode_bytes(bytes(buf))


async def read_length_prefixed(reader, max_size: int = MAX_MESSAGE_SIZE) -> bytes:
    """
    Чтение одного блока с префиксом длины

    Raises:
        EncodingError: Если длина превышает max_size
        asyncio.IncompleteReadError: Если поток закрылся раньше
    """
    length = await read_uvarint(reader)
    if length > max_size:
        raise EncodingError(f"Message of {length} bytes exceeds limit of {max_size}")
    if length == 0:
        return b""
    return await reader.readexactly(length)


def encode_message(message: Any) -> bytes:
    """Кодирование сообщения вместе с префиксом длины"""
    return encode_length_prefixed(serialize(message))


async def write_message(stream, message: Any) -> None:
    """
    Запись ровно одного сообщения в поток

    Raises:
        EncodingError: Если сообщение нельзя закодировать
        StreamError: Если поток закрыт или сброшен
    """
    await stream.write(encode_message(message))


async def read_message(stream, max_size: int = MAX_MESSAGE_SIZE) -> Any:
    """
    Чтение ровно одного сообщения из потока

    Raises:
        EncodingError: Пустое, слишком большое или поврежденное сообщение
        StreamError: Поток закрылся посреди сообщения или был сброшен
    """
    try:
        data = await read_length_prefixed(stream, max_size)
    except asyncio.IncompleteReadError as e:
        raise StreamError(
            f"Stream closed after {len(e.partial)} bytes, before a full message arrived",
            protocol=getattr(stream, "protocol", None),
        )

    if not data:
        raise EncodingError("Empty message")

    return deserialize(data)
