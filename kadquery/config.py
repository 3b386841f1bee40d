"""
Модуль конфигурации kadquery
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from kadquery.exceptions import ConfigError

load_dotenv()

DHT_MODES = ("client", "server")
QUERY_STRATEGIES = ("dht", "direct")
SUPPORTED_TRANSPORTS = ("tcp",)
SUPPORTED_DISCOVERY = ("bootstrap",)


@dataclass
class DHTConfig:
    """Конфигурация DHT"""
    k: int = 20  # Размер k-бакета
    alpha: int = 3  # Количество параллельных запросов
    mode: str = "client"  # client (только поиск) или server (полный участник)
    request_timeout: float = 10.0  # Таймаут одного RPC (секунды)
    protocol_id: str = "/kad/1.0.0"
    provider_ttl: int = 86400  # Время жизни записи провайдера (секунды)

    def __post_init__(self):
        if self.mode not in DHT_MODES:
            raise ConfigError(f"Invalid DHT mode: {self.mode!r}, expected one of {DHT_MODES}")
        if self.k <= 0 or self.alpha <= 0:
            raise ConfigError("DHT k and alpha must be positive")


@dataclass
class NetworkConfig:
    """Конфигурация сети"""
    listen_addrs: list[str] = field(default_factory=list)  # Пусто: только исходящие
    bootstrap_nodes: list[str] = field(default_factory=list)
    transports: list[str] = field(default_factory=lambda: ["tcp"])
    discovery: list[str] = field(default_factory=lambda: ["bootstrap"])
    dial_bootstrap: bool = True  # Явно подключаться ко всем bootstrap адресам при старте
    dial_timeout: float = 10.0
    discovery_interval: float = 30.0  # Период переподключения к bootstrap узлам
    max_message_size: int = 1024 * 1024  # 1 MiB

    def __post_init__(self):
        unknown = [t for t in self.transports if t not in SUPPORTED_TRANSPORTS]
        if unknown:
            raise ConfigError(f"Unsupported transports: {unknown}")
        if not self.transports:
            raise ConfigError("At least one transport must be enabled")
        unknown = [d for d in self.discovery if d not in SUPPORTED_DISCOVERY]
        if unknown:
            raise ConfigError(f"Unsupported discovery mechanisms: {unknown}")


@dataclass
class NodeConfig:
    """Конфигурация узла"""
    key_file: Optional[Path] = None  # Нет файла: эфемерная идентичность
    identify_protocol: str = "/polka-test/identify/1.0.0"


@dataclass
class QueryConfig:
    """Конфигурация запроса"""
    strategy: str = "dht"  # dht или direct
    timeout: Optional[float] = 5.0  # None: без дедлайна
    direct_protocol_id: str = "/rr/1.0.0"

    def __post_init__(self):
        if self.strategy not in QUERY_STRATEGIES:
            raise ConfigError(
                f"Invalid query strategy: {self.strategy!r}, expected one of {QUERY_STRATEGIES}"
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("Query timeout must be positive")


def _default_timeout() -> Optional[float]:
    value = os.getenv("KADQUERY_QUERY_TIMEOUT")
    if value is None:
        return 5.0
    if value.lower() in ("", "none", "null"):
        return None
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"Invalid KADQUERY_QUERY_TIMEOUT: {value!r}")


@dataclass
class Config:
    """Главная конфигурация"""
    dht: DHTConfig = field(default_factory=DHTConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    node: NodeConfig = field(default_factory=NodeConfig)
    query: QueryConfig = field(default_factory=lambda: QueryConfig(timeout=_default_timeout()))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_file: Optional[Path] = None

    @classmethod
    def from_file(cls, config_path: Optional[Path] = None) -> "Config":
        """Загрузка конфигурации из файла"""
        if config_path is None:
            config_path = Path("config.yaml")

        if config_path.exists():
            with open(config_path, "r") as f:
                try:
                    config_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Malformed config file {config_path}: {e}")
        else:
            config_data = {}

        if not isinstance(config_data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")

        node_data = config_data.get("node", {})
        query_data = config_data.get("query", {})
        try:
            return cls(
                dht=DHTConfig(**config_data.get("dht", {})),
                network=NetworkConfig(**config_data.get("network", {})),
                node=NodeConfig(
                    key_file=Path(node_data["key_file"]) if node_data.get("key_file") else None,
                    **{k: v for k, v in node_data.items() if k != "key_file"}
                ),
                query=QueryConfig(
                    timeout=query_data.get("timeout", _default_timeout()),
                    **{k: v for k, v in query_data.items() if k != "timeout"}
                ),
                log_level=config_data.get("log_level", os.getenv("LOG_LEVEL", "INFO")),
                log_file=Path(config_data["log_file"]) if config_data.get("log_file") else None,
            )
        except TypeError as e:
            raise ConfigError(f"Unknown option in {config_path}: {e}")

    def to_file(self, config_path: Path) -> None:
        """Сохранение конфигурации в файл"""
        config_data = {
            "dht": {
                "k": self.dht.k,
                "alpha": self.dht.alpha,
                "mode": self.dht.mode,
                "request_timeout": self.dht.request_timeout,
                "protocol_id": self.dht.protocol_id,
                "provider_ttl": self.dht.provider_ttl,
            },
            "network": {
                "listen_addrs": list(self.network.listen_addrs),
                "bootstrap_nodes": list(self.network.bootstrap_nodes),
                "transports": list(self.network.transports),
                "discovery": list(self.network.discovery),
                "dial_bootstrap": self.network.dial_bootstrap,
                "dial_timeout": self.network.dial_timeout,
                "discovery_interval": self.network.discovery_interval,
                "max_message_size": self.network.max_message_size,
            },
            "node": {
                "identify_protocol": self.node.identify_protocol,
            },
            "query": {
                "strategy": self.query.strategy,
                "timeout": self.query.timeout,
                "direct_protocol_id": self.query.direct_protocol_id,
            },
            "log_level": self.log_level,
        }

        if self.node.key_file:
            config_data["node"]["key_file"] = str(self.node.key_file)
        if self.log_file:
            config_data["log_file"] = str(self.log_file)

        with open(config_path, "w") as f:
            yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)
