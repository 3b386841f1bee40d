"""
Общие фикстуры тестов
"""

import asyncio
import shutil
import socket
import tempfile
from pathlib import Path
from typing import List, Optional

import pytest
import pytest_asyncio

from kadquery.config import Config, DHTConfig, NetworkConfig, QueryConfig
from kadquery.logger import setup_logging
from kadquery.node.node import Node
from kadquery.peer.identity import PeerIdentity
from kadquery.utils.crypto import generate_keypair, public_key_bytes

LOCALHOST_LISTEN = "/ip4/127.0.0.1/tcp/0"


@pytest.fixture(autouse=True)
def quiet_logging():
    """Логи только в stderr и только предупреждения"""
    setup_logging(log_level="WARNING")


@pytest.fixture
def temp_dir():
    """Временная директория для тестов"""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


def random_peer() -> PeerIdentity:
    """Идентичность для случайного Ed25519 ключа"""
    return PeerIdentity.from_public_key(public_key_bytes(generate_keypair()))


def free_port() -> int:
    """Порт, на котором гарантированно никто не слушает"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_config(
    mode: str = "client",
    listen: Optional[List[str]] = None,
    bootstrap: Optional[List[str]] = None,
    timeout: Optional[float] = 5.0,
    strategy: str = "dht",
    request_timeout: float = 2.0,
) -> Config:
    """Конфигурация узла для тестов на 127.0.0.1"""
    return Config(
        dht=DHTConfig(mode=mode, request_timeout=request_timeout),
        network=NetworkConfig(
            listen_addrs=list(listen or []),
            bootstrap_nodes=list(bootstrap or []),
            dial_timeout=2.0,
            discovery_interval=60.0,
        ),
        query=QueryConfig(strategy=strategy, timeout=timeout),
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def bootnode():
    """Запущенный server-узел без bootstrap адресов"""
    node = Node(make_config(mode="server", listen=[LOCALHOST_LISTEN]))
    await node.start()
    yield node
    await node.stop()


async def wait_for_peer(node: Node, peer: PeerIdentity, attempts: int = 100) -> None:
    """Ожидание регистрации входящего соединения на стороне node"""
    for _ in range(attempts):
        if node.host.is_connected(peer):
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"{peer} never connected to {node.peer_id}")
