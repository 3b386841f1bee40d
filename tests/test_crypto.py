"""
Тесты для криптографических утилит
"""

import pytest

from kadquery.utils.crypto import (
    compute_distance,
    generate_keypair,
    hash_key,
    load_private_key,
    public_key_bytes,
    save_private_key,
    sign,
    verify,
)


def test_compute_distance():
    """Тест вычисления XOR-расстояния"""
    id1 = b"\x00" * 31 + b"\x01"
    id2 = b"\x00" * 31 + b"\x02"

    distance = compute_distance(id1, id2)
    assert len(distance) == 32
    assert distance[-1] == 0x03  # 0x01 XOR 0x02 = 0x03


def test_compute_distance_length_mismatch():
    """Тест ключей разной длины"""
    with pytest.raises(ValueError):
        compute_distance(b"\x00" * 32, b"\x00" * 20)


def test_hash_key():
    """Тест хэширования ключа"""
    key = "test_key"
    hash_result = hash_key(key)
    assert len(hash_result) == 32  # SHA-256 = 32 байта

    # Проверка детерминированности
    assert hash_key(key) == hash_result
    assert hash_key(key.encode("utf-8")) == hash_result


def test_sign_and_verify():
    """Тест подписи и проверки"""
    private_key = generate_keypair()
    public_key = public_key_bytes(private_key)
    assert len(public_key) == 32

    signature = sign(private_key, b"nonce")
    assert verify(public_key, signature, b"nonce") is True
    assert verify(public_key, signature, b"other") is False
    assert verify(public_key_bytes(generate_keypair()), signature, b"nonce") is False


def test_verify_malformed_key():
    """Тест проверки с некорректным ключом"""
    assert verify(b"\x01\x02", b"\x00" * 64, b"data") is False


def test_save_and_load_private_key(temp_dir):
    """Тест сохранения и загрузки ключа узла"""
    key_file = temp_dir / "keys" / "node_key.pem"
    private_key = generate_keypair()

    save_private_key(private_key, key_file)
    assert key_file.exists()
    assert key_file.stat().st_mode & 0o777 == 0o600

    loaded = load_private_key(key_file)
    assert public_key_bytes(loaded) == public_key_bytes(private_key)


def test_load_missing_private_key(temp_dir):
    """Тест загрузки отсутствующего ключа"""
    assert load_private_key(temp_dir / "missing.pem") is None
