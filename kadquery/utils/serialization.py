"""
Утилиты для сериализации сообщений (msgpack)
"""

from typing import Any

import msgpack

from kadquery.exceptions import EncodingError


def serialize(data: Any) -> bytes:
    """
    Сериализация сообщения

    Args:
        data: Структура из dict/list/str/bytes/int/float/bool/None

    Returns:
        Сериализованные данные в виде bytes

    Raises:
        EncodingError: Если структура содержит несериализуемые типы
    """
    try:
        return msgpack.packb(data, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise EncodingError(f"Cannot encode message: {e}") from e


def deserialize(data: bytes) -> Any:
    """
    Десериализация сообщения

    Args:
        data: Ровно одно закодированное сообщение

    Returns:
        Десериализованные данные

    Raises:
        EncodingError: Если данные повреждены, обрезаны или содержат хвост
    """
    try:
        return msgpack.unpackb(data, raw=False, strict_map_key=False)
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise EncodingError(f"Cannot decode message: {e}") from e
