"""
Handshake аутентификации соединения

    Узел A                                           Узел B
      |                                                 |
      | 1. HELLO(pubkey_A, nonce_A, addrs, protocols)   |
      |<----------------------------------------------->|
      |    HELLO(pubkey_B, nonce_B, addrs, protocols)   |
      |                                                 |
      | 2. AUTH(Ed25519.sign(nonce_B, sk_A))            |
      |<----------------------------------------------->|
      |    AUTH(Ed25519.sign(nonce_A, sk_B))            |

Обе стороны отправляют сообщения одновременно. Идентичность пира
выводится из его публичного ключа; подпись над свежим nonce доказывает
владение ключом. Шифрование канала не выполняется.
"""

import asyncio
import os
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from kadquery.exceptions import EncodingError, HandshakeError, InvalidAddressError, InvalidIdentityError
from kadquery.network.codec import encode_message, read_length_prefixed
from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity
from kadquery.peer.info import PeerInfo
from kadquery.utils.crypto import public_key_bytes, sign, verify
from kadquery.utils.serialization import deserialize

NONCE_SIZE = 32
HANDSHAKE_TIMEOUT_SEC = 5.0
MAX_HANDSHAKE_MESSAGE = 64 * 1024
SIGNATURE_CONTEXT = b"kadquery-handshake:"


class HandshakeStep(IntEnum):
    """Идентификаторы шагов handshake"""
    HELLO = 1
    AUTH = 2


@dataclass(frozen=True)
class HelloMessage:
    """Шаг 1: ключ, nonce и сведения об узле"""
    protocol_id: str
    public_key: bytes
    nonce: bytes
    listen_addrs: List[str] = field(default_factory=list)
    protocols: List[str] = field(default_factory=list)
    mode: str = "client"

    def to_dict(self) -> dict:
        return {
            "step": int(HandshakeStep.HELLO),
            "protocol_id": self.protocol_id,
            "public_key": self.public_key,
            "nonce": self.nonce,
            "listen_addrs": list(self.listen_addrs),
            "protocols": list(self.protocols),
            "mode": self.mode,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "HelloMessage":
        if d.get("step") != HandshakeStep.HELLO:
            raise HandshakeError(f"Expected HELLO, got step {d.get('step')!r}")
        return cls(
            protocol_id=d["protocol_id"],
            public_key=d["public_key"],
            nonce=d["nonce"],
            listen_addrs=list(d.get("listen_addrs", [])),
            protocols=list(d.get("protocols", [])),
            mode=d.get("mode", "client"),
        )


@dataclass(frozen=True)
class AuthMessage:
    """Шаг 2: подпись над nonce собеседника"""
    signature: bytes

    def to_dict(self) -> dict:
        return {"step": int(HandshakeStep.AUTH), "signature": self.signature}

    @classmethod
    def from_dict(cls, d: dict) -> "AuthMessage":
        if d.get("step") != HandshakeStep.AUTH:
            raise HandshakeError(f"Expected AUTH, got step {d.get('step')!r}")
        return cls(signature=d["signature"])


async def _exchange(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, message: dict) -> dict:
    writer.write(encode_message(message))
    await writer.drain()
    try:
        data = await read_length_prefixed(reader, MAX_HANDSHAKE_MESSAGE)
        reply = deserialize(data)
    except asyncio.IncompleteReadError:
        raise HandshakeError("Connection closed during handshake")
    except EncodingError as e:
        raise HandshakeError(f"Malformed handshake message: {e}")
    if not isinstance(reply, dict):
        raise HandshakeError("Handshake message must be a mapping")
    return reply


def _parse_addrs(peer: PeerIdentity, addrs: List[str]) -> List[PeerAddress]:
    parsed = []
    for addr in addrs:
        try:
            address = PeerAddress.parse(addr)
        except InvalidAddressError:
            continue
        if address.peer == peer:
            parsed.append(address)
    return parsed


async def perform_handshake(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    private_key: Ed25519PrivateKey,
    protocol_id: str,
    listen_addrs: Optional[List[str]] = None,
    protocols: Optional[List[str]] = None,
    mode: str = "client",
    expected_peer: Optional[PeerIdentity] = None,
    timeout: float = HANDSHAKE_TIMEOUT_SEC,
) -> PeerInfo:
    """
    Аутентификация нового соединения

    Args:
        reader: Поток чтения TCP соединения
        writer: Поток записи TCP соединения
        private_key: Ключ локального узла
        protocol_id: Идентификатор протокола handshake, должен совпасть у обеих сторон
        listen_addrs: Анонсируемые адреса локального узла
        protocols: Поддерживаемые локальным узлом протоколы
        mode: Режим DHT локального узла
        expected_peer: Идентичность, которую ожидает набирающая сторона
        timeout: Таймаут всего handshake

    Returns:
        Сведения о подтвержденном пире

    Raises:
        HandshakeError: Несовпадение протокола, идентичности или неверная подпись
    """
    try:
        return await asyncio.wait_for(
            _handshake(
                reader, writer, private_key, protocol_id,
                listen_addrs or [], protocols or [], mode, expected_peer,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise HandshakeError("Handshake timed out")
    except (ConnectionError, OSError) as e:
        raise HandshakeError(f"Connection failed during handshake: {e}")


async def _handshake(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    private_key: Ed25519PrivateKey,
    protocol_id: str,
    listen_addrs: List[str],
    protocols: List[str],
    mode: str,
    expected_peer: Optional[PeerIdentity],
) -> PeerInfo:
    nonce = os.urandom(NONCE_SIZE)
    hello = HelloMessage(
        protocol_id=protocol_id,
        public_key=public_key_bytes(private_key),
        nonce=nonce,
        listen_addrs=listen_addrs,
        protocols=protocols,
        mode=mode,
    )

    try:
        peer_hello = HelloMessage.from_dict(await _exchange(reader, writer, hello.to_dict()))
    except (KeyError, TypeError) as e:
        raise HandshakeError(f"Incomplete HELLO message: {e}")

    if peer_hello.protocol_id != protocol_id:
        raise HandshakeError(
            f"Protocol mismatch: expected {protocol_id}, peer speaks {peer_hello.protocol_id}"
        )

    try:
        peer = PeerIdentity.from_public_key(peer_hello.public_key)
    except (InvalidIdentityError, TypeError) as e:
        raise HandshakeError(f"Invalid peer public key: {e}")

    if expected_peer is not None and peer != expected_peer:
        raise HandshakeError(f"Peer identity mismatch: expected {expected_peer}, got {peer}")

    auth = AuthMessage(signature=sign(private_key, SIGNATURE_CONTEXT + peer_hello.nonce))
    try:
        peer_auth = AuthMessage.from_dict(await _exchange(reader, writer, auth.to_dict()))
    except (KeyError, TypeError) as e:
        raise HandshakeError(f"Incomplete AUTH message: {e}")

    if not verify(peer_hello.public_key, peer_auth.signature, SIGNATURE_CONTEXT + nonce):
        raise HandshakeError(f"Invalid handshake signature from {peer}")

    return PeerInfo(
        peer=peer,
        addrs=_parse_addrs(peer, peer_hello.listen_addrs),
        protocols=peer_hello.protocols,
        mode=peer_hello.mode,
    )
