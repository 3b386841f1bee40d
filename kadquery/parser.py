"""
Разбор аргументов запроса: список bootstrap адресов и целевая идентичность
"""

from typing import List, Sequence, Union

from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity


def parse_bootnodes(value: Union[str, Sequence[str]]) -> List[PeerAddress]:
    """
    Разбор списка bootstrap адресов

    Порядок сохраняется, дубликаты допускаются, пустые сегменты пропускаются.

    Args:
        value: Строка адресов через запятую или уже разделенный список

    Returns:
        Список адресов в исходном порядке

    Raises:
        InvalidAddressError: Если хотя бы один адрес некорректен
    """
    segments = value.split(",") if isinstance(value, str) else list(value)
    return [PeerAddress.parse(segment) for segment in segments if segment.strip()]


def parse_target(value: str) -> PeerIdentity:
    """
    Разбор целевой идентичности

    Raises:
        InvalidIdentityError: Если строку нельзя декодировать
    """
    return PeerIdentity.from_string(value)
