"""
Криптографические утилиты
"""

import hashlib
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


def generate_keypair() -> Ed25519PrivateKey:
    """
    Генерация Ed25519 ключа узла

    Returns:
        Приватный ключ (публичный доступен через .public_key())
    """
    return Ed25519PrivateKey.generate()


def public_key_bytes(private_key: Ed25519PrivateKey) -> bytes:
    """Сырые 32 байта публичного ключа"""
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )


def sign(private_key: Ed25519PrivateKey, data: bytes) -> bytes:
    """Подпись данных ключом узла"""
    return private_key.sign(data)


def verify(public_key: bytes, signature: bytes, data: bytes) -> bool:
    """
    Проверка подписи Ed25519

    Args:
        public_key: Сырые 32 байта публичного ключа
        signature: Подпись
        data: Подписанные данные

    Returns:
        True если подпись верна
    """
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, data)
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True


def compute_distance(key1: bytes, key2: bytes) -> bytes:
    """
    Вычисление XOR-расстояния между двумя ключами DHT

    Args:
        key1: Первый ключ (32 байта)
        key2: Второй ключ (32 байта)

    Returns:
        XOR-расстояние (32 байта)
    """
    if len(key1) != len(key2):
        raise ValueError("Keys must have the same length")

    return bytes(a ^ b for a, b in zip(key1, key2))


def hash_key(key: Union[str, bytes]) -> bytes:
    """
    Хэширование ключа для DHT (SHA-256)

    Args:
        key: Ключ для хэширования

    Returns:
        32 байта хэша (SHA-256)
    """
    if isinstance(key, str):
        key = key.encode("utf-8")

    return hashlib.sha256(key).digest()


def save_private_key(private_key: Ed25519PrivateKey, file_path: Path) -> None:
    """
    Сохранение ключа узла в PEM файл

    Args:
        private_key: Ключ для сохранения
        file_path: Путь к файлу
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    with open(file_path, "wb") as f:
        f.write(pem)
    file_path.chmod(0o600)


def load_private_key(file_path: Path) -> Optional[Ed25519PrivateKey]:
    """
    Загрузка ключа узла из PEM файла

    Args:
        file_path: Путь к файлу

    Returns:
        Ключ или None если файл не существует
    """
    if not file_path.exists():
        return None

    with open(file_path, "rb") as f:
        key = serialization.load_pem_private_key(f.read(), password=None)

    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError(f"{file_path} does not contain an Ed25519 private key")

    return key
