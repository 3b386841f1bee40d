"""
Тесты для вывода результатов
"""

import io

import yaml

from kadquery.dht.records import PeerRecord, ProviderRecord
from kadquery.peer.address import PeerAddress
from kadquery.query.dht_lookup import LookupResult
from kadquery.query.direct import DirectQueryResult
from kadquery.reporter import ResultReporter

from conftest import random_peer


class BrokenStream(io.StringIO):
    def write(self, s):
        raise OSError("broken pipe")


def test_report_lookup_result():
    """Тест вывода найденных записей"""
    target, source = random_peer(), random_peer()
    record = PeerRecord(peer=target, addrs=("/ip4/127.0.0.1/tcp/4001",), source=source)
    result = LookupResult(target=target, key=target.to_bytes(), records=[record, record])
    stream = io.StringIO()

    assert ResultReporter(stream).report(result) is True

    data = yaml.safe_load(stream.getvalue())
    assert data["target"] == str(target)
    # Без дедупликации
    assert len(data["found"]) == 2
    assert data["found"][0]["addrs"] == ["/ip4/127.0.0.1/tcp/4001"]
    assert "timed_out" not in data


def test_report_empty_and_timed_out():
    """Тест: пустой результат и таймаут различимы"""
    target = random_peer()
    empty = LookupResult(target=target, key=target.to_bytes())
    timed_out = LookupResult(target=target, key=target.to_bytes(), timed_out=True)

    reporter = ResultReporter(io.StringIO())
    assert yaml.safe_load(reporter.render(empty)) == {"target": str(target), "found": []}
    assert yaml.safe_load(reporter.render(timed_out)) == {
        "target": str(target),
        "found": [],
        "timed_out": True,
    }


def test_report_bytes_as_hex():
    """Тест вывода байт в hex"""
    target = random_peer()
    record = ProviderRecord(key=b"\xab\xcd", provider=random_peer(), addrs=(), source=random_peer())
    result = LookupResult(target=target, key=b"\xab\xcd", records=[record])

    data = yaml.safe_load(ResultReporter(io.StringIO()).render(result))
    assert data["found"][0]["key"] == "abcd"


def test_report_direct_response():
    """Тест: ответ прямого запроса выводится как есть"""
    peer = random_peer()
    address = PeerAddress.from_parts("127.0.0.1", 4001, random_peer())
    response = {"Found": {"peer": str(peer), "maddrs": ["/ip4/127.0.0.1/tcp/4002"]}}
    stream = io.StringIO()

    assert ResultReporter(stream).report(DirectQueryResult(peer=peer, address=address, response=response))

    data = yaml.safe_load(stream.getvalue())
    assert data == {"peer": str(peer), "address": str(address), "response": response}


def test_report_failure_is_not_raised():
    """Тест: ошибка записи логируется, но не пробрасывается"""
    target = random_peer()
    result = LookupResult(target=target, key=target.to_bytes())

    assert ResultReporter(BrokenStream()).report(result) is False
    assert ResultReporter(io.StringIO()).report(object()) is False
