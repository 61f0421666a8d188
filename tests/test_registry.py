"""Tests for the connection registry."""

import threading
import uuid

import pytest

from gateway.registry import ConnectionRecord, ConnectionRegistry


def make_record(**kwargs) -> ConnectionRecord:
    return ConnectionRecord(connection_id=uuid.uuid4().hex, remote="10.0.0.2:5000", **kwargs)


def test_register_and_unregister():
    registry = ConnectionRegistry()
    record = make_record()

    registry.register(record)
    assert registry.count() == 1
    assert registry.get(record.connection_id) is record

    assert registry.unregister(record.connection_id) is record
    assert registry.count() == 0
    assert registry.unregister(record.connection_id) is None


def test_duplicate_id_rejected():
    registry = ConnectionRegistry()
    record = make_record()
    registry.register(record)
    with pytest.raises(KeyError):
        registry.register(ConnectionRecord(connection_id=record.connection_id, remote="x"))
    assert registry.count() == 1


def test_authenticated_flag_flips_once():
    registry = ConnectionRegistry()
    record = make_record()
    registry.register(record)

    assert not record.authenticated
    assert registry.mark_authenticated(record.connection_id) is True
    assert record.authenticated
    assert registry.mark_authenticated(record.connection_id) is False
    assert registry.mark_authenticated("unknown") is False


def test_snapshot_is_a_copy():
    registry = ConnectionRegistry()
    record = make_record()
    registry.register(record)

    snapshot = registry.snapshot()
    snapshot[0].authenticated = True

    assert not registry.get(record.connection_id).authenticated
    assert snapshot[0].to_dict()["id"] == record.connection_id


def test_authenticated_sockets_only_lists_authenticated():
    registry = ConnectionRegistry()
    anonymous = make_record(socket=object())
    trusted = make_record(socket=object())
    registry.register(anonymous)
    registry.register(trusted)
    registry.mark_authenticated(trusted.connection_id)

    assert registry.authenticated_sockets() == [trusted.socket]


def test_concurrent_connections_are_never_lost_or_duplicated():
    registry = ConnectionRegistry()
    workers = 16
    per_worker = 200
    still_open: list[list[str]] = [[] for _ in range(workers)]
    barrier = threading.Barrier(workers)

    def simulate(index: int):
        barrier.wait()
        for n in range(per_worker):
            record = make_record()
            registry.register(record)
            # close every other connection again
            if n % 2:
                assert registry.unregister(record.connection_id) is record
            else:
                still_open[index].append(record.connection_id)

    threads = [threading.Thread(target=simulate, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    expected = {cid for ids in still_open for cid in ids}
    assert registry.count() == len(expected) == workers * per_worker // 2
    assert {r.connection_id for r in registry.snapshot()} == expected

    for cid in expected:
        registry.unregister(cid)
    assert registry.count() == 0
