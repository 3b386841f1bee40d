"""
Записи, возвращаемые поиском в DHT, и хранилище записей провайдеров
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from kadquery.peer.identity import PeerIdentity


@dataclass(frozen=True)
class PeerRecord:
    """Контактные данные пира"""
    peer: PeerIdentity
    addrs: Tuple[str, ...]
    source: PeerIdentity  # Пир, вернувший запись

    def to_dict(self) -> dict:
        return {
            "type": "peer",
            "peer": str(self.peer),
            "addrs": list(self.addrs),
            "source": str(self.source),
        }


@dataclass(frozen=True)
class ProviderRecord:
    """Пир, предоставляющий контент по ключу"""
    key: bytes
    provider: PeerIdentity
    addrs: Tuple[str, ...]
    source: PeerIdentity

    def to_dict(self) -> dict:
        return {
            "type": "provider",
            "key": self.key,
            "provider": str(self.provider),
            "addrs": list(self.addrs),
            "source": str(self.source),
        }


Record = Union[PeerRecord, ProviderRecord]


@dataclass
class _ProviderEntry:
    addrs: List[str]
    expires_at: float = field(default=0.0)


class RecordStore:
    """In-memory хранилище записей провайдеров с TTL"""

    def __init__(self, default_ttl: int = 86400):
        self.default_ttl = default_ttl
        self._providers: Dict[bytes, Dict[PeerIdentity, _ProviderEntry]] = {}

    def add_provider(self, key: bytes, provider: PeerIdentity, addrs: List[str], ttl: Optional[int] = None) -> None:
        """Добавление (или продление) провайдера ключа"""
        ttl = self.default_ttl if ttl is None else ttl
        self._providers.setdefault(key, {})[provider] = _ProviderEntry(
            addrs=list(addrs), expires_at=time.time() + ttl
        )

    def get_providers(self, key: bytes) -> List[Tuple[PeerIdentity, List[str]]]:
        """Действующие провайдеры ключа"""
        now = time.time()
        entries = self._providers.get(key, {})
        return [(peer, list(entry.addrs)) for peer, entry in entries.items() if entry.expires_at > now]

    def cleanup_expired(self) -> int:
        """
        Удаление истекших записей

        Returns:
            Количество удаленных записей
        """
        now = time.time()
        deleted = 0
        for key in list(self._providers):
            entries = self._providers[key]
            for peer in [p for p, entry in entries.items() if entry.expires_at <= now]:
                del entries[peer]
                deleted += 1
            if not entries:
                del self._providers[key]
        return deleted

    def __len__(self):
        return sum(len(entries) for entries in self._providers.values())
