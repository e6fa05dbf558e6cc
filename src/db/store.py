from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime
from types import TracebackType
from typing import Callable, Iterator, Protocol

from sqlalchemy import Engine, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from db import codec
from db.keys import EXCHANGE_RATE_PREFIX, pair_key, pair_key_at, prefix_upper_bound
from db.models import KvEntryOrm
from domain.exchange_rate import ExchangeRateObservation, to_unix_seconds
from errors import BackendError, BatchClosedError, NotFoundError

SCAN_PAGE_SIZE = 256
_TIMESTAMP_LEN = 8

logger = logging.getLogger(__name__)


class OracleBackend(Protocol):
    def get(self, pair_id: str) -> ExchangeRateObservation: ...

    def iter_all(self) -> Iterator[ExchangeRateObservation]: ...

    def iter_prefix(self, prefix: str) -> Iterator[ExchangeRateObservation]: ...

    def batch(self, *, wait: float = 0.0) -> KvBatch: ...


class KvReader(ABC):
    """Observation read surface over an ordered byte-keyed namespace.

    Subclasses supply raw point reads and ordered range scans; decoding, key
    layout and identity-entry filtering live here.
    """

    @abstractmethod
    def _get_raw(self, key: bytes) -> bytes | None: ...

    @abstractmethod
    def _scan_raw(self, lo: bytes, hi: bytes | None) -> Iterator[tuple[bytes, bytes]]: ...

    def _check_open(self) -> None:
        return None

    def get(self, pair_id: str) -> ExchangeRateObservation:
        """Newest observation of `pair_id`, read from its identity key."""
        self._check_open()
        value = self._get_raw(pair_key(pair_id))
        if value is None:
            raise NotFoundError(f"Key Id: {pair_id}")
        observation = codec.decode(value)
        if observation.pair_id != pair_id:
            raise codec.CorruptedDataError(f"identity key of {pair_id} holds a record for {observation.pair_id}")
        return observation

    def iter_all(self) -> Iterator[ExchangeRateObservation]:
        return self._observations(EXCHANGE_RATE_PREFIX)

    def iter_prefix(self, prefix: str) -> Iterator[ExchangeRateObservation]:
        return self._observations(pair_key(prefix))

    def _observations(self, prefix: bytes) -> Iterator[ExchangeRateObservation]:
        self._check_open()
        for key, value in self._scan_raw(prefix, prefix_upper_bound(prefix)):
            observation = codec.decode(value)
            pid = observation.pair_id
            if key == pair_key_at(pid, observation.unix_timestamp):
                yield observation
            elif key != pair_key(pid):
                raise codec.CorruptedDataError(f"key {key!r} does not match stored record for {pid}")

    def _newest_raw(self, pair_id: str) -> bytes | None:
        # Pair ids are not length-prefixed, so a longer id can produce a key of
        # the same length; only rows whose record rebuilds the key belong here.
        prefix = pair_key(pair_id)
        exact_len = len(prefix) + _TIMESTAMP_LEN
        newest: bytes | None = None
        for key, value in self._scan_raw(prefix, prefix_upper_bound(prefix)):
            if len(key) != exact_len:
                continue
            observation = codec.decode(value)
            if observation.pair_id == pair_id and key == pair_key_at(pair_id, observation.unix_timestamp):
                newest = value
        return newest


class KvBatch(KvReader):
    """Atomic set of saves and deletes; reads see the batch's own writes.

    Commit or discard exactly once. Used as a context manager, a batch that
    was not committed is discarded on exit.
    """

    def __init__(self) -> None:
        self._closed = False

    @abstractmethod
    def _put(self, key: bytes, value: bytes) -> None: ...

    @abstractmethod
    def _delete(self, key: bytes) -> None: ...

    @abstractmethod
    def _commit(self) -> None: ...

    @abstractmethod
    def _rollback(self) -> None: ...

    def _release(self) -> None:
        return None

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise BatchClosedError()

    def save(self, observation: ExchangeRateObservation) -> None:
        """Write the timestamped entry, and the identity entry unless a newer one exists."""
        self._check_open()
        pid = observation.pair_id
        value = codec.encode(observation)
        self._put(pair_key_at(pid, observation.unix_timestamp), value)

        current = self._get_raw(pair_key(pid))
        if current is None or codec.decode(current).timestamp <= observation.timestamp:
            self._put(pair_key(pid), value)

    def delete(self, pair_id: str, timestamp: datetime | int) -> None:
        self._check_open()
        unix_ts = timestamp if isinstance(timestamp, int) else to_unix_seconds(timestamp)
        self._delete(pair_key_at(pair_id, unix_ts))

        identity = pair_key(pair_id)
        current = self._get_raw(identity)
        if current is not None and codec.decode(current).unix_timestamp == unix_ts:
            replacement = self._newest_raw(pair_id)
            if replacement is None:
                self._delete(identity)
            else:
                self._put(identity, replacement)

    def commit(self) -> None:
        self._check_open()
        try:
            self._commit()
        except BackendError:
            logger.warning("Batch commit failed, rolling back")
            self._rollback()
            raise
        finally:
            self._close()

    def discard(self) -> None:
        self._check_open()
        try:
            self._rollback()
        finally:
            self._close()

    def _close(self) -> None:
        self._closed = True
        self._release()

    def __enter__(self) -> KvBatch:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._closed:
            self.discard()


@contextmanager
def _wrap_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise BackendError(f"Oracle store {action} failed: {exc}") from exc


class _SqliteReads(KvReader):
    @abstractmethod
    def _read(self) -> AbstractContextManager[Session]: ...

    def _get_raw(self, key: bytes) -> bytes | None:
        with self._read() as session:
            return session.scalar(select(KvEntryOrm.value).where(KvEntryOrm.key == key))

    def _scan_raw(self, lo: bytes, hi: bytes | None) -> Iterator[tuple[bytes, bytes]]:
        last_key: bytes | None = None
        while True:
            stmt = select(KvEntryOrm.key, KvEntryOrm.value)
            stmt = stmt.where(KvEntryOrm.key >= lo) if last_key is None else stmt.where(KvEntryOrm.key > last_key)
            if hi is not None:
                stmt = stmt.where(KvEntryOrm.key < hi)
            stmt = stmt.order_by(KvEntryOrm.key).limit(SCAN_PAGE_SIZE)

            with self._read() as session:
                rows = [(row.key, row.value) for row in session.execute(stmt)]

            yield from rows
            if len(rows) < SCAN_PAGE_SIZE:
                return
            last_key = rows[-1][0]


class SqliteBatch(_SqliteReads, KvBatch):
    def __init__(self, session: Session, *, on_close: Callable[[], None]) -> None:
        super().__init__()
        self._session = session
        self._on_close = on_close

    @contextmanager
    def _read(self) -> Iterator[Session]:
        self._check_open()
        with _wrap_errors("batch read"):
            yield self._session

    def _put(self, key: bytes, value: bytes) -> None:
        stmt = sqlite_insert(KvEntryOrm).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"value": value})
        with _wrap_errors("write"):
            self._session.execute(stmt)

    def _delete(self, key: bytes) -> None:
        with _wrap_errors("delete"):
            self._session.execute(delete(KvEntryOrm).where(KvEntryOrm.key == key))

    def _commit(self) -> None:
        with _wrap_errors("commit"):
            self._session.commit()

    def _rollback(self) -> None:
        with _wrap_errors("rollback"):
            self._session.rollback()

    def _release(self) -> None:
        try:
            self._session.close()
        finally:
            self._on_close()


class SqliteOracleBackend(_SqliteReads):
    """Observation store on the `kv_entries` table.

    One batch at a time holds the write lock; reads run on their own short
    sessions and never wait for it.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(engine)
        self._write_lock = threading.Lock()

    @contextmanager
    def _read(self) -> Iterator[Session]:
        with _wrap_errors("read"), self._session_factory() as session:
            yield session

    def batch(self, *, wait: float = 0.0) -> SqliteBatch:
        acquired = self._write_lock.acquire(timeout=wait) if wait > 0 else self._write_lock.acquire(blocking=False)
        if not acquired:
            raise BackendError("Another batch is already open on the oracle store")
        try:
            session = self._session_factory()
        except Exception:
            self._write_lock.release()
            raise
        return SqliteBatch(session, on_close=self._write_lock.release)

    def close(self) -> None:
        self._engine.dispose()


__all__ = [
    "SCAN_PAGE_SIZE",
    "KvBatch",
    "KvReader",
    "OracleBackend",
    "SqliteBatch",
    "SqliteOracleBackend",
]
