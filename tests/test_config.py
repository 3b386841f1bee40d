"""
Тесты для конфигурации
"""

import pytest
import yaml

from kadquery.config import Config, DHTConfig, NetworkConfig, QueryConfig
from kadquery.exceptions import ConfigError


def test_defaults(temp_dir):
    """Тест значений по умолчанию при отсутствии файла"""
    config = Config.from_file(temp_dir / "missing.yaml")

    assert config.dht.k == 20
    assert config.dht.alpha == 3
    assert config.dht.mode == "client"
    assert config.dht.protocol_id == "/kad/1.0.0"
    assert config.network.transports == ["tcp"]
    assert config.network.discovery == ["bootstrap"]
    assert config.network.dial_bootstrap is True
    assert config.node.key_file is None
    assert config.node.identify_protocol == "/polka-test/identify/1.0.0"
    assert config.query.strategy == "dht"
    assert config.query.direct_protocol_id == "/rr/1.0.0"


def test_save_and_load(temp_dir):
    """Тест сохранения и загрузки"""
    config_path = temp_dir / "config.yaml"
    config = Config(
        dht=DHTConfig(k=10, mode="server"),
        network=NetworkConfig(listen_addrs=["/ip4/0.0.0.0/tcp/4001"]),
        query=QueryConfig(strategy="direct", timeout=2.5),
        log_level="DEBUG",
    )
    config.node.key_file = temp_dir / "node_key.pem"
    config.to_file(config_path)

    loaded = Config.from_file(config_path)

    assert loaded.dht.k == 10
    assert loaded.dht.mode == "server"
    assert loaded.network.listen_addrs == ["/ip4/0.0.0.0/tcp/4001"]
    assert loaded.node.key_file == temp_dir / "node_key.pem"
    assert loaded.query.strategy == "direct"
    assert loaded.query.timeout == 2.5
    assert loaded.log_level == "DEBUG"


def test_unbounded_timeout(temp_dir):
    """Тест: null в конфигурации означает отсутствие дедлайна"""
    config_path = temp_dir / "config.yaml"
    config_path.write_text(yaml.safe_dump({"query": {"timeout": None}}))

    assert Config.from_file(config_path).query.timeout is None


def test_timeout_from_env(monkeypatch):
    """Тест переопределения таймаута через окружение"""
    monkeypatch.setenv("KADQUERY_QUERY_TIMEOUT", "1.5")
    assert Config().query.timeout == 1.5

    monkeypatch.setenv("KADQUERY_QUERY_TIMEOUT", "none")
    assert Config().query.timeout is None


@pytest.mark.parametrize(
    "data",
    [
        {"dht": {"mode": "light"}},
        {"query": {"strategy": "broadcast"}},
        {"network": {"transports": ["ws"]}},
        {"network": {"discovery": ["mdns"]}},
        {"dht": {"bucket_count": 160}},
    ],
)
def test_invalid_values(temp_dir, data):
    """Тест неизвестных значений и опций"""
    config_path = temp_dir / "config.yaml"
    config_path.write_text(yaml.safe_dump(data))

    with pytest.raises(ConfigError):
        Config.from_file(config_path)


def test_malformed_yaml(temp_dir):
    """Тест поврежденного файла"""
    config_path = temp_dir / "config.yaml"
    config_path.write_text("dht: [unclosed")

    with pytest.raises(ConfigError):
        Config.from_file(config_path)


def test_non_mapping(temp_dir):
    """Тест файла, который не является словарем"""
    config_path = temp_dir / "config.yaml"
    config_path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError):
        Config.from_file(config_path)
