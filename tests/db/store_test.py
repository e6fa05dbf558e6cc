from __future__ import annotations

import threading

import pytest

from db import codec
from db.keys import pair_key, pair_key_at
from db.store import SCAN_PAGE_SIZE, SqliteOracleBackend
from errors import BackendError, BatchClosedError, NotFoundError
from tests.helpers.memory_backend import InMemoryOracleBackend, _DictReads
from tests.helpers.rates import BASE_TIME, make_rate


def _save_all(backend, *rates) -> None:
    with backend.batch() as batch:
        for rate in rates:
            batch.save(rate)
        batch.commit()


def _put_raw(backend, key: bytes, value: bytes) -> None:
    with backend.batch() as batch:
        batch._put(key, value)
        batch.commit()


def test_get_missing_pair_raises_not_found(backend) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        backend.get("EUR2USD")

    assert "EUR2USD" in str(excinfo.value)


def test_get_returns_newest_observation(backend) -> None:
    older = make_rate("EUR", "USD", 1.08, minutes_ago=10)
    newer = make_rate("EUR", "USD", 1.09, minutes_ago=1)

    _save_all(backend, newer, older)

    assert backend.get("EUR2USD") == newer


def test_scans_return_timestamped_entries_once(backend) -> None:
    rates = [make_rate("EUR", "USD", 1.0 + i / 100, minutes_ago=i) for i in range(3)]
    _save_all(backend, *rates)

    stored = list(backend.iter_all())

    assert len(stored) == 3
    assert sorted(stored, key=lambda rate: rate.timestamp) == sorted(rates, key=lambda rate: rate.timestamp)


def test_iter_all_orders_by_pair_then_time(backend) -> None:
    _save_all(
        backend,
        make_rate("USD", "JPY", 157.0, minutes_ago=1),
        make_rate("EUR", "USD", 1.08, minutes_ago=1),
        make_rate("EUR", "USD", 1.07, minutes_ago=5),
    )

    stored = [(rate.pair_id, rate.rate) for rate in backend.iter_all()]

    assert stored == [("EUR2USD", 1.07), ("EUR2USD", 1.08), ("USD2JPY", 157.0)]


def test_iter_prefix_covers_pairs_sharing_the_prefix(backend) -> None:
    _save_all(
        backend,
        make_rate("USD", "CNY", 7.1),
        make_rate("USD", "JPY", 157.0),
        make_rate("EUR", "USD", 1.08),
    )

    assert {rate.pair_id for rate in backend.iter_prefix("USD")} == {"USD2CNY", "USD2JPY"}
    assert [rate.pair_id for rate in backend.iter_prefix("USD2CNY")] == ["USD2CNY"]
    assert list(backend.iter_prefix("GBP")) == []


def test_discard_leaves_store_unchanged(backend) -> None:
    kept = make_rate("EUR", "USD", 1.08)
    _save_all(backend, kept)

    batch = backend.batch()
    batch.save(make_rate("GBP", "USD", 1.27))
    batch.delete("EUR2USD", kept.timestamp)
    batch.discard()

    assert list(backend.iter_all()) == [kept]
    with pytest.raises(NotFoundError):
        backend.get("GBP2USD")


def test_batch_exit_without_commit_discards(backend) -> None:
    with backend.batch() as batch:
        batch.save(make_rate("GBP", "USD", 1.27))

    assert batch.closed
    assert list(backend.iter_all()) == []


def test_commit_applies_saves_and_deletes_together(backend) -> None:
    doomed = make_rate("EUR", "USD", 1.0, minutes_ago=30)
    _save_all(backend, doomed)
    fresh = [make_rate("EUR", "USD", 1.1, minutes_ago=i) for i in range(3)]

    with backend.batch() as batch:
        for rate in fresh:
            batch.save(rate)
        batch.delete(doomed.pair_id, doomed.timestamp)
        batch.commit()

    stored = list(backend.iter_all())
    assert len(stored) == 3
    assert doomed not in stored


def test_batch_reads_its_own_writes(backend) -> None:
    rate = make_rate("ETH", "USD", 3_800.0)

    with backend.batch() as batch:
        batch.save(rate)
        assert batch.get("ETH2USD") == rate
        assert list(batch.iter_prefix("ETH")) == [rate]
        with pytest.raises(NotFoundError):
            backend.get("ETH2USD")
        batch.commit()

    assert backend.get("ETH2USD") == rate


def test_second_batch_fails_while_one_is_open(backend) -> None:
    first = backend.batch()
    try:
        with pytest.raises(BackendError):
            backend.batch()
    finally:
        first.discard()

    with backend.batch() as second:
        second.commit()


def test_batch_wait_gets_lock_once_released(backend) -> None:
    first = backend.batch()
    timer = threading.Timer(0.1, first.discard)
    timer.start()
    try:
        with backend.batch(wait=5.0) as second:
            second.save(make_rate())
            second.commit()
    finally:
        timer.join()

    assert backend.get("EUR2USD") == make_rate()


def test_closed_batch_rejects_further_use(backend) -> None:
    batch = backend.batch()
    batch.commit()

    with pytest.raises(BatchClosedError):
        batch.save(make_rate())
    with pytest.raises(BatchClosedError):
        batch.get("EUR2USD")
    with pytest.raises(BatchClosedError):
        batch.commit()
    with pytest.raises(BatchClosedError):
        batch.discard()


def test_delete_of_newest_repoints_identity_entry(backend) -> None:
    older = make_rate("EUR", "USD", 1.07, minutes_ago=10)
    newer = make_rate("EUR", "USD", 1.08, minutes_ago=1)
    _save_all(backend, older, newer)

    with backend.batch() as batch:
        batch.delete("EUR2USD", newer.timestamp)
        batch.commit()
    assert backend.get("EUR2USD") == older

    with backend.batch() as batch:
        batch.delete("EUR2USD", older.unix_timestamp)
        batch.commit()
    with pytest.raises(NotFoundError):
        backend.get("EUR2USD")


def test_delete_repoint_ignores_pairs_sharing_the_prefix(backend) -> None:
    _save_all(backend, make_rate("USD", "JPY", 157.0, minutes_ago=1), make_rate("USD", "JPYX", 2.0))

    with backend.batch() as batch:
        batch.delete("USD2JPY", make_rate(minutes_ago=1).timestamp)
        batch.commit()

    with pytest.raises(NotFoundError):
        backend.get("USD2JPY")
    assert backend.get("USD2JPYX").rate == 2.0


def test_delete_repoint_skips_identity_key_of_longer_pair_id(backend) -> None:
    # "USD2JPYABCDEFGH" is eight characters longer, so its identity key has the
    # same length as a timestamped "USD2JPY" key and sorts after all of them.
    older = make_rate("USD", "JPY", 156.0, minutes_ago=10)
    newer = make_rate("USD", "JPY", 157.0, minutes_ago=1)
    _save_all(backend, older, newer, make_rate("USD", "JPYABCDEFGH", 2.0))

    with backend.batch() as batch:
        batch.delete("USD2JPY", newer.timestamp)
        batch.commit()

    assert backend.get("USD2JPY") == older
    assert backend.get("USD2JPYABCDEFGH").rate == 2.0


def test_identity_entry_of_another_pair_is_corrupted(backend) -> None:
    _put_raw(backend, pair_key("EUR2USD"), codec.encode(make_rate("GBP", "USD", 1.27)))

    with pytest.raises(codec.CorruptedDataError):
        backend.get("EUR2USD")


def test_delete_of_missing_entry_is_a_no_op(backend) -> None:
    rate = make_rate()
    _save_all(backend, rate)

    with backend.batch() as batch:
        batch.delete("EUR2USD", BASE_TIME.replace(year=2020))
        batch.commit()

    assert backend.get("EUR2USD") == rate


def test_undecodable_entry_surfaces_during_scan(backend) -> None:
    _save_all(backend, make_rate("EUR", "USD", 1.08))
    _put_raw(backend, pair_key_at("GBP2USD", 1), b"\x00\x01")

    with pytest.raises(codec.DecodeError):
        list(backend.iter_all())


def test_entry_under_wrong_key_is_corrupted(backend) -> None:
    rate = make_rate()
    _put_raw(backend, pair_key_at("EUR2USD", rate.unix_timestamp + 1), codec.encode(rate))

    with pytest.raises(codec.CorruptedDataError):
        list(backend.iter_prefix("EUR"))


def test_corrupted_identity_entry_fails_get(backend) -> None:
    _put_raw(backend, pair_key("EUR2USD"), b"junk")

    with pytest.raises(codec.DecodeError):
        backend.get("EUR2USD")


def test_sqlite_scan_pages_through_large_ranges(sqlite_backend: SqliteOracleBackend) -> None:
    count = SCAN_PAGE_SIZE * 2 + 3
    _save_all(sqlite_backend, *(make_rate("EUR", "USD", 1.0, minutes_ago=i) for i in range(count)))

    stored = list(sqlite_backend.iter_all())

    assert len(stored) == count
    assert [rate.timestamp for rate in stored] == sorted(rate.timestamp for rate in stored)


def test_sqlite_reads_do_not_wait_for_open_batch(sqlite_backend: SqliteOracleBackend) -> None:
    rate = make_rate()
    _save_all(sqlite_backend, rate)

    batch = sqlite_backend.batch()
    try:
        batch.save(make_rate("GBP", "USD", 1.27))
        assert sqlite_backend.get("EUR2USD") == rate
        assert [r.pair_id for r in sqlite_backend.iter_all()] == ["EUR2USD"]
    finally:
        batch.discard()


def test_failed_commit_closes_batch_and_keeps_store(memory_backend: InMemoryOracleBackend) -> None:
    memory_backend.fail_commits = True
    batch = memory_backend.batch()
    batch.save(make_rate())

    with pytest.raises(BackendError):
        batch.commit()

    assert batch.closed
    assert memory_backend.data == {}
    with memory_backend.batch() as again:
        again.discard()


def test_dict_reads_needs_an_entries_source() -> None:
    with pytest.raises(TypeError):
        _DictReads()
