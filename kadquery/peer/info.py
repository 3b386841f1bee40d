"""
Сведения о пире, полученные при установке соединения
"""

from dataclasses import dataclass, field
from typing import List

from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity


@dataclass
class PeerInfo:
    """Идентичность пира, его адреса прослушивания и поддерживаемые протоколы"""

    peer: PeerIdentity
    addrs: List[PeerAddress] = field(default_factory=list)
    protocols: List[str] = field(default_factory=list)
    mode: str = "client"

    def supports(self, protocol: str) -> bool:
        return protocol in self.protocols

    def to_dict(self) -> dict:
        return {"peer": str(self.peer), "addrs": [str(addr) for addr in self.addrs]}
