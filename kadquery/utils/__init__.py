"""
Утилиты для kadquery
"""

from .crypto import (
    compute_distance,
    generate_keypair,
    hash_key,
    load_private_key,
    save_private_key,
)
from .serialization import deserialize, serialize

__all__ = [
    "generate_keypair",
    "compute_distance",
    "hash_key",
    "save_private_key",
    "load_private_key",
    "serialize",
    "deserialize",
]
