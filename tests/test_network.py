"""
Тесты для хоста, handshake и мультиплексированных потоков
"""

import asyncio

import pytest
import pytest_asyncio

from kadquery.exceptions import BootstrapError, DialError, StreamError
from kadquery.network.codec import read_message, write_message
from kadquery.network.connection import FRAME_OPEN
from kadquery.network.host import Host
from kadquery.peer.address import PeerAddress
from kadquery.utils.crypto import generate_keypair

from conftest import LOCALHOST_LISTEN, free_port, random_peer

IDENTIFY = "/polka-test/identify/1.0.0"
ECHO = "/echo/1.0.0"


async def echo_handler(stream):
    message = await read_message(stream)
    await write_message(stream, {"echo": message})


@pytest_asyncio.fixture
async def server_host():
    """Хост, слушающий на 127.0.0.1, с echo протоколом"""
    host = Host(generate_keypair(), IDENTIFY, mode="server")
    host.set_stream_handler(ECHO, echo_handler)
    await host.listen([LOCALHOST_LISTEN])
    yield host
    await host.close()


@pytest_asyncio.fixture
async def client_host():
    """Хост без адресов прослушивания"""
    host = Host(generate_keypair(), IDENTIFY)
    yield host
    await host.close()


@pytest.mark.asyncio
async def test_listen_addresses(server_host):
    """Тест адресов прослушивания"""
    [address] = server_host.listen_addrs
    assert address.peer == server_host.peer_id
    assert address.host == "127.0.0.1"
    assert address.port > 0


@pytest.mark.asyncio
async def test_listen_failure():
    """Тест: ни один адрес не занят"""
    host = Host(generate_keypair(), IDENTIFY)
    with pytest.raises(BootstrapError):
        await host.listen(["/ip4/127.0.0.1/udp/4001"])
    await host.close()


@pytest.mark.asyncio
async def test_dial_and_stream(server_host, client_host):
    """Тест соединения и обмена сообщениями по потоку"""
    conn = await client_host.dial(server_host.listen_addrs[0])

    assert conn.remote_peer == server_host.peer_id
    assert client_host.is_connected(server_host.peer_id)

    stream = await client_host.new_stream(conn, ECHO)
    await write_message(stream, {"peer": "QmTest"})
    assert await read_message(stream) == {"echo": {"peer": "QmTest"}}
    await stream.close()


@pytest.mark.asyncio
async def test_several_streams_on_one_connection(server_host, client_host):
    """Тест параллельных потоков на одном соединении"""
    conn = await client_host.dial(server_host.listen_addrs[0])

    async def roundtrip(i):
        stream = await client_host.new_stream(conn, ECHO)
        try:
            await write_message(stream, i)
            return await read_message(stream)
        finally:
            await stream.close()

    results = await asyncio.gather(*(roundtrip(i) for i in range(5)))
    assert results == [{"echo": i} for i in range(5)]


@pytest.mark.asyncio
async def test_dial_reuses_connection(server_host, client_host):
    """Тест повторного использования соединения"""
    first = await client_host.dial(server_host.listen_addrs[0])
    second = await client_host.dial(server_host.listen_addrs[0])

    assert first is second
    assert len(client_host.connections) == 1


@pytest.mark.asyncio
async def test_unsupported_protocol(server_host, client_host):
    """Тест: протокол без обработчика отклоняется"""
    conn = await client_host.dial(server_host.listen_addrs[0])

    with pytest.raises(StreamError) as exc_info:
        await client_host.new_stream(conn, "/unknown/1.0.0")
    assert exc_info.value.protocol == "/unknown/1.0.0"


@pytest.mark.asyncio
async def test_dial_identity_mismatch(server_host, client_host):
    """Тест: идентичность пира не совпадает с /p2p/ компонентом"""
    real = server_host.listen_addrs[0]
    wrong = PeerAddress.from_parts(real.host, real.port, random_peer())

    with pytest.raises(DialError):
        await client_host.dial(wrong)
    assert not client_host.is_connected(server_host.peer_id)


@pytest.mark.asyncio
async def test_dial_unreachable(client_host):
    """Тест соединения с портом, на котором никто не слушает"""
    address = PeerAddress.from_parts("127.0.0.1", free_port(), random_peer())

    with pytest.raises(DialError) as exc_info:
        await client_host.dial(address)
    assert exc_info.value.address == str(address)


@pytest.mark.asyncio
async def test_dial_self(server_host):
    """Тест соединения с самим собой"""
    with pytest.raises(DialError):
        await server_host.dial(server_host.listen_addrs[0])


@pytest.mark.asyncio
async def test_peer_info_update(server_host, client_host):
    """Тест подписки на сведения о пирах"""
    seen = []
    unsubscribe = client_host.on_peer_info_update(seen.append)

    await client_host.dial(server_host.listen_addrs[0])

    assert len(seen) == 1
    assert seen[0].peer == server_host.peer_id
    assert seen[0].mode == "server"
    assert ECHO in seen[0].protocols
    assert seen[0].addrs == server_host.listen_addrs
    unsubscribe()


@pytest.mark.asyncio
async def test_inbound_peerstore(server_host, client_host):
    """Тест: сервер узнает адреса прослушивания входящего пира"""
    await client_host.listen([LOCALHOST_LISTEN])
    await client_host.dial(server_host.listen_addrs[0])

    # Регистрация на стороне сервера происходит после handshake
    for _ in range(50):
        if server_host.is_connected(client_host.peer_id):
            break
        await asyncio.sleep(0.01)

    assert server_host.addresses_of(client_host.peer_id) == client_host.listen_addrs


@pytest.mark.asyncio
async def test_stream_reset_on_close(server_host, client_host):
    """Тест: закрытие соединения прерывает ожидающее чтение"""

    async def silent_handler(stream):
        await asyncio.sleep(10)

    server_host.set_stream_handler("/silent/1.0.0", silent_handler)
    conn = await client_host.dial(server_host.listen_addrs[0])
    stream = await client_host.new_stream(conn, "/silent/1.0.0")

    reader = asyncio.ensure_future(read_message(stream))
    await asyncio.sleep(0.01)
    await client_host.close_connection(conn)

    with pytest.raises(StreamError):
        await reader


async def inbound_connection(host, peer):
    """Входящее соединение от peer после его регистрации"""
    for _ in range(100):
        conn = host.get_connection(peer)
        if conn is not None:
            return conn
        await asyncio.sleep(0.01)
    raise AssertionError(f"{peer} never connected")


@pytest.mark.asyncio
async def test_malformed_frame_payload(server_host, client_host):
    """Тест: фрейм с не-байтовыми данными закрывает соединение как ошибку протокола"""
    conn = await client_host.dial(server_host.listen_addrs[0])
    server_conn = await inbound_connection(server_host, client_host.peer_id)

    await conn._send_frame(1, FRAME_OPEN, 12345)

    # Цикл чтения завершается без необработанного исключения
    await asyncio.wait_for(server_conn._read_task, 2.0)
    assert server_conn.is_closed


@pytest.mark.asyncio
async def test_reply_failure_closes_connection(server_host, client_host, monkeypatch):
    """Тест: сбой отправки RESET не оставляет исключение в цикле чтения"""
    conn = await client_host.dial(server_host.listen_addrs[0])
    server_conn = await inbound_connection(server_host, client_host.peer_id)

    async def broken_send(stream_id, kind, payload=b""):
        raise StreamError("Connection write failed: broken pipe")

    monkeypatch.setattr(server_conn, "_send_frame", broken_send)

    with pytest.raises(StreamError):
        await client_host.new_stream(conn, "/unknown/1.0.0")

    await asyncio.wait_for(server_conn._read_task, 2.0)
    assert server_conn.is_closed
