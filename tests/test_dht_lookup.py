"""
Интеграционные тесты для поиска через DHT
"""

import asyncio

import pytest

from kadquery.dht.node import Node as DHTNode
from kadquery.dht.records import PeerRecord
from kadquery.exceptions import DHTError
from kadquery.node.node import Node
from kadquery.peer.identity import PeerIdentity
from kadquery.query.base import QueryStrategy, build_query
from kadquery.query.dht_lookup import DHTLookup, LookupResult

from conftest import LOCALHOST_LISTEN, make_config, random_peer, wait_for_peer


def client_node(bootstrap, timeout=5.0) -> Node:
    return Node(make_config(mode="client", timeout=timeout), bootstrap_addrs=list(bootstrap))


@pytest.mark.asyncio
async def test_bootstrap_fills_routing_table(bootnode):
    """Тест: после bootstrap bootstrap узел в таблице маршрутизации"""
    async with client_node(bootnode.listen_addrs) as node:
        peers = [n.peer for n in node.dht.routing_table.get_all_nodes()]
        assert peers == [bootnode.peer_id]

    # Клиент не регистрирует обработчики DHT и не попадает в таблицу сервера
    assert len(bootnode.dht.routing_table) == 0


@pytest.mark.asyncio
async def test_lookup_found(bootnode):
    """Тест поиска пира, подключенного к bootstrap узлу"""
    target = Node(make_config(mode="server", listen=[LOCALHOST_LISTEN]), bootstrap_addrs=bootnode.listen_addrs)

    async with target:
        await wait_for_peer(bootnode, target.peer_id)
        async with client_node(bootnode.listen_addrs) as node:
            query = build_query(QueryStrategy.DHT_LOOKUP, node, node.config.query)
            assert isinstance(query, DHTLookup)
            result = await query.execute(target.peer_id)

    assert isinstance(result, LookupResult)
    assert result.timed_out is False
    assert result.key == target.peer_id.to_bytes()
    assert result.records
    for record in result.records:
        assert isinstance(record, PeerRecord)
        assert record.peer == target.peer_id
        assert list(record.addrs) == [str(a) for a in target.listen_addrs]

    # Ответили и bootstrap узел, и сама цель
    assert {r.source for r in result.records} == {bootnode.peer_id, target.peer_id}


@pytest.mark.asyncio
async def test_lookup_empty(bootnode):
    """Тест: ничего не найдено до дедлайна, это не таймаут"""
    async with client_node(bootnode.listen_addrs) as node:
        result = await build_query("dht", node, node.config.query).execute(random_peer())

    assert result.records == []
    assert result.timed_out is False
    assert "timed_out" not in result.to_dict()


@pytest.mark.asyncio
async def test_lookup_idempotent(bootnode):
    """Тест: повторный поиск в неизменной сети дает то же множество записей"""
    target = Node(make_config(mode="server", listen=[LOCALHOST_LISTEN]), bootstrap_addrs=bootnode.listen_addrs)

    async with target:
        await wait_for_peer(bootnode, target.peer_id)
        async with client_node(bootnode.listen_addrs) as node:
            query = build_query("dht", node, node.config.query)
            first = await query.execute(target.peer_id)
            second = await query.execute(target.peer_id)

    assert set(first.records) == set(second.records)


@pytest.mark.asyncio
async def test_lookup_timed_out(bootnode):
    """Тест: дедлайн раньше ответа дает пустой результат с timed_out"""

    async def silent_handler(stream):
        await asyncio.sleep(10)

    bootnode.host.set_stream_handler("/kad/1.0.0", silent_handler)

    async with client_node(bootnode.listen_addrs, timeout=0.3) as node:
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await build_query("dht", node, node.config.query).execute(random_peer())
        elapsed = loop.time() - started

    assert result.records == []
    assert result.timed_out is True
    assert result.to_dict()["timed_out"] is True
    assert elapsed < 2.0


@pytest.mark.asyncio
async def test_lookup_timed_out_keeps_partial_records(bootnode):
    """Тест: дедлайн во время обхода возвращает уже собранные записи"""

    async def silent_handler(stream):
        await asyncio.sleep(10)

    target = Node(make_config(mode="server", listen=[LOCALHOST_LISTEN]), bootstrap_addrs=bootnode.listen_addrs)

    async with target:
        await wait_for_peer(bootnode, target.peer_id)
        # Цель известна bootstrap узлу, но сама на запросы DHT не отвечает
        target.host.set_stream_handler("/kad/1.0.0", silent_handler)

        async with client_node(bootnode.listen_addrs, timeout=0.5) as node:
            result = await build_query("dht", node, node.config.query).execute(target.peer_id)

    assert result.timed_out is True
    assert result.records
    assert {r.source for r in result.records} == {bootnode.peer_id}
    assert all(r.peer == target.peer_id for r in result.records)


@pytest.mark.asyncio
async def test_lookup_without_peers():
    """Тест: пустая таблица маршрутизации"""
    async with client_node([]) as node:
        with pytest.raises(DHTError):
            await build_query("dht", node, node.config.query).execute(random_peer())


@pytest.mark.asyncio
async def test_lookup_sequence_is_cancellable(bootnode):
    """Тест: прерванная последовательность закрывается без висящих запросов"""
    target = Node(make_config(mode="server", listen=[LOCALHOST_LISTEN]), bootstrap_addrs=bootnode.listen_addrs)

    async with target:
        await wait_for_peer(bootnode, target.peer_id)
        async with client_node(bootnode.listen_addrs) as node:
            records = node.dht.lookup(target.peer_id.to_bytes())
            first = await records.__anext__()
            await records.aclose()

    assert first.peer == target.peer_id


@pytest.mark.asyncio
async def test_provide_and_lookup(bootnode):
    """Тест анонса провайдера и поиска по ключу контента"""
    key = b"\x12\x20" + b"\xab" * 32
    provider = Node(make_config(mode="server", listen=[LOCALHOST_LISTEN]), bootstrap_addrs=bootnode.listen_addrs)

    async with provider:
        await wait_for_peer(bootnode, provider.peer_id)
        accepted = await provider.provide(key)
        assert accepted >= 1

        async with client_node(bootnode.listen_addrs) as node:
            result = await build_query("dht", node, node.config.query).execute(PeerIdentity.from_bytes(key))

    providers = {r.provider for r in result.records if hasattr(r, "provider")}
    assert provider.peer_id in providers


@pytest.mark.asyncio
async def test_ping(bootnode):
    """Тест PING через существующее соединение и по адресу"""
    async with client_node(bootnode.listen_addrs) as node:
        known = node.dht.routing_table.get_node(bootnode.peer_id)
        assert await node.dht.ping(known) is True

    fresh = client_node([])
    try:
        contact = DHTNode(peer=bootnode.peer_id, addrs=list(bootnode.listen_addrs))
        assert await fresh.dht.ping(contact) is True

        unreachable = DHTNode(peer=random_peer())
        assert await fresh.dht.ping(unreachable) is False
        assert unreachable.failed_requests == 1
    finally:
        await fresh.stop()
