"""
Идентичность пира: строковая форма (base58) и хэш-форма (multihash)
"""

import io
from dataclasses import dataclass

import base58
import varint

from kadquery.exceptions import InvalidIdentityError
from kadquery.utils.crypto import hash_key

# Коды multihash
IDENTITY_CODE = 0x00
SHA2_256_CODE = 0x12

# Максимальный размер ключа, встраиваемого в identity multihash
MAX_INLINE_KEY_LENGTH = 42

# Заголовок protobuf PublicKey{Type: Ed25519, Data: <32 байта>}
_ED25519_KEY_PREFIX = b"\x08\x01\x12\x20"


def _decode_multihash(data: bytes) -> tuple[int, bytes]:
    """
    Разбор multihash: varint код, varint длина, дайджест

    Raises:
        ValueError: Если заголовок некорректен или длина не совпадает
    """
    buf = io.BytesIO(data)
    try:
        code = varint.decode_stream(buf)
        length = varint.decode_stream(buf)
    except (EOFError, TypeError) as e:
        raise ValueError(f"truncated multihash header ({e})")

    digest = buf.read()
    if len(digest) != length:
        raise ValueError(f"digest length {len(digest)} does not match header length {length}")

    if code == IDENTITY_CODE:
        if length > MAX_INLINE_KEY_LENGTH:
            raise ValueError(f"identity multihash too long ({length} bytes)")
    elif code == SHA2_256_CODE:
        if length != 32:
            raise ValueError(f"sha2-256 multihash must be 32 bytes, got {length}")
    else:
        raise ValueError(f"unsupported multihash code 0x{code:02x}")

    return code, digest


@dataclass(frozen=True)
class PeerIdentity:
    """Идентификатор пира, производный от публичного ключа"""

    multihash: bytes

    def __post_init__(self):
        try:
            _decode_multihash(self.multihash)
        except ValueError as e:
            raise InvalidIdentityError(self.multihash.hex(), str(e))

    @classmethod
    def from_string(cls, value: str) -> "PeerIdentity":
        """
        Декодирование строковой формы (base58btc multihash)

        Args:
            value: Например "12D3KooW..." или "Qm..."

        Returns:
            Идентичность пира

        Raises:
            InvalidIdentityError: Если строку нельзя декодировать
        """
        if not isinstance(value, str) or not value.strip():
            raise InvalidIdentityError(str(value), "empty identity")

        value = value.strip()
        try:
            multihash = base58.b58decode(value)
        except ValueError as e:
            raise InvalidIdentityError(value, f"not base58 ({e})")

        try:
            _decode_multihash(multihash)
        except ValueError as e:
            raise InvalidIdentityError(value, str(e))

        return cls(multihash=multihash)

    @classmethod
    def from_bytes(cls, data: bytes) -> "PeerIdentity":
        """Создание из хэш-формы (multihash байты)"""
        return cls(multihash=bytes(data))

    @classmethod
    def from_public_key(cls, public_key: bytes) -> "PeerIdentity":
        """
        Идентичность для Ed25519 ключа: identity multihash от protobuf-обертки ключа

        Args:
            public_key: Сырые 32 байта публичного ключа

        Returns:
            Идентичность пира (строковая форма начинается с "12D3KooW")
        """
        if len(public_key) != 32:
            raise InvalidIdentityError(public_key.hex(), "Ed25519 public key must be 32 bytes")
        encoded_key = _ED25519_KEY_PREFIX + public_key
        return cls(multihash=varint.encode(IDENTITY_CODE) + varint.encode(len(encoded_key)) + encoded_key)

    def to_bytes(self) -> bytes:
        """Хэш-форма: по ней DHT индексирует записи"""
        return self.multihash

    def to_base58(self) -> str:
        """Строковая форма"""
        return base58.b58encode(self.multihash).decode("ascii")

    def dht_key(self) -> bytes:
        """Ключ в пространстве Kademlia (SHA-256 от хэш-формы)"""
        return hash_key(self.multihash)

    def __str__(self):
        return self.to_base58()

    def __repr__(self):
        return f"PeerIdentity({self.to_base58()})"
