"""
Адрес пира: сетевой multiaddr со встроенной идентичностью (/p2p/<id>)
"""

from dataclasses import dataclass
from typing import Optional

import multiaddr
from multiaddr.exceptions import Error as MultiaddrError

from kadquery.exceptions import InvalidAddressError, InvalidIdentityError
from kadquery.peer.identity import PeerIdentity

HOST_PROTOCOLS = ("ip4", "ip6", "dns", "dns4", "dns6")
PEER_PROTOCOL = "p2p"


@dataclass(frozen=True, eq=False)
class PeerAddress:
    """Неизменяемый разобранный адрес пира"""

    maddr: multiaddr.Multiaddr
    peer: PeerIdentity
    host: Optional[str] = None
    port: Optional[int] = None
    transport: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "PeerAddress":
        """
        Разбор строки адреса

        Args:
            value: Например "/ip4/127.0.0.1/tcp/4001/p2p/12D3KooW..."

        Returns:
            Разобранный адрес

        Raises:
            InvalidAddressError: Если строка не является адресом с идентичностью
        """
        if not isinstance(value, str) or not value.strip():
            raise InvalidAddressError(str(value), "empty address")
        value = value.strip()

        try:
            maddr = multiaddr.Multiaddr(value)
            components = [(proto.name, val) for proto, val in maddr.items()]
        except (MultiaddrError, ValueError, TypeError) as e:
            raise InvalidAddressError(value, f"malformed multiaddr ({e})")

        if not components or components[-1][0] != PEER_PROTOCOL:
            raise InvalidAddressError(value, "missing trailing /p2p/<peer-id> component")

        try:
            # Строковую форму берем из исходной строки: библиотека может вернуть CID
            peer = PeerIdentity.from_string(value.rstrip("/").rsplit("/", 1)[-1])
        except InvalidIdentityError as e:
            raise InvalidAddressError(value, e.reason)

        host = port = transport = None
        for name, val in components[:-1]:
            if name in HOST_PROTOCOLS and host is None:
                host = val
            elif name in ("tcp", "udp") and port is None:
                transport = name
                try:
                    port = int(val)
                except (TypeError, ValueError):
                    raise InvalidAddressError(value, f"invalid port {val!r}")
            elif name in ("ws", "wss", "quic", "quic-v1"):
                transport = name

        return cls(maddr=maddr, peer=peer, host=host, port=port, transport=transport)

    @classmethod
    def from_parts(cls, host: str, port: int, peer: PeerIdentity) -> "PeerAddress":
        """Сборка TCP адреса для хоста, порта и идентичности"""
        proto = "ip6" if ":" in host else "ip4"
        return cls.parse(f"/{proto}/{host}/tcp/{port}/p2p/{peer}")

    @property
    def is_dialable(self) -> bool:
        """Адрес можно набрать через TCP транспорт"""
        return self.transport == "tcp" and self.host is not None and self.port is not None

    def __str__(self):
        return self.transport_address() + f"/p2p/{self.peer}"

    def transport_address(self) -> str:
        """Адрес без компонента /p2p/"""
        text = str(self.maddr)
        marker = f"/{PEER_PROTOCOL}/"
        if marker in text:
            return text[: text.rindex(marker)]
        return text

    def __eq__(self, other):
        if not isinstance(other, PeerAddress):
            return False
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    def __repr__(self):
        return f"PeerAddress({self})"


def parse_listen_address(value: str) -> tuple[str, int]:
    """
    Разбор адреса прослушивания без идентичности, например "/ip4/0.0.0.0/tcp/0"

    Returns:
        Кортеж (host, port)

    Raises:
        InvalidAddressError: Если адрес некорректен или не TCP
    """
    try:
        maddr = multiaddr.Multiaddr(value.strip())
        components = [(proto.name, val) for proto, val in maddr.items()]
    except (MultiaddrError, ValueError, TypeError, AttributeError) as e:
        raise InvalidAddressError(str(value), f"malformed multiaddr ({e})")

    names = [name for name, _ in components]
    if len(components) != 2 or names[0] not in ("ip4", "ip6") or names[1] != "tcp":
        raise InvalidAddressError(value, "listen address must be /ip4|ip6/<host>/tcp/<port>")

    return components[0][1], int(components[1][1])
