"""Binary encoding of exchange rate observations.

Layout, all integers big-endian:

    u64 len | from (utf-8) | u64 len | to (utf-8) | f64 rate | i64 unix seconds
"""

from __future__ import annotations

import struct
from datetime import datetime, timezone

from pydantic import ValidationError

from domain.exchange_rate import ExchangeRateObservation
from errors import BackendError

# Never read more than this in a single length-prefixed field.
MAX_READ_LEN = 4_000_000

_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")
_F64 = struct.Struct(">d")


class DecodeError(BackendError):
    """Stored bytes could not be turned back into an observation."""


class CorruptedDataError(DecodeError):
    def __init__(self, detail: str = "corrupted data") -> None:
        super().__init__(detail)


class TooLargeReadError(DecodeError):
    def __init__(self, length: int) -> None:
        super().__init__(f"too large read: {length} bytes (limit {MAX_READ_LEN})")
        self.length = length


class UnexpectedEofError(DecodeError):
    def __init__(self, wanted: int, remaining: int) -> None:
        super().__init__(f"unexpected end of data: wanted {wanted} bytes, {remaining} left")
        self.wanted = wanted
        self.remaining = remaining


class BinReader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read_u64(self) -> int:
        return _U64.unpack(self._read_fixed(_U64.size))[0]

    def read_i64(self) -> int:
        return _I64.unpack(self._read_fixed(_I64.size))[0]

    def read_f64(self) -> float:
        return _F64.unpack(self._read_fixed(_F64.size))[0]

    def read_bytes_len_prefix(self) -> bytes:
        length = self.read_u64()
        if length > MAX_READ_LEN:
            raise TooLargeReadError(length)
        if length > self.remaining:
            raise CorruptedDataError(f"length prefix {length} exceeds remaining {self.remaining} bytes")
        return self._read_fixed(length)

    def read_str(self) -> str:
        raw = self.read_bytes_len_prefix()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptedDataError("string field is not valid utf-8") from exc

    def _read_fixed(self, length: int) -> bytes:
        if length > self.remaining:
            raise UnexpectedEofError(length, self.remaining)
        chunk = self._data[self._pos : self._pos + length].tobytes()
        self._pos += length
        return chunk


class BinWriter:
    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def write_u64(self, value: int) -> None:
        self._chunks.append(_U64.pack(value))

    def write_i64(self, value: int) -> None:
        self._chunks.append(_I64.pack(value))

    def write_f64(self, value: float) -> None:
        self._chunks.append(_F64.pack(value))

    def write_bytes(self, value: bytes) -> None:
        self.write_u64(len(value))
        self._chunks.append(value)

    def write_str(self, value: str) -> None:
        self.write_bytes(value.encode("utf-8"))

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


def encode(observation: ExchangeRateObservation) -> bytes:
    writer = BinWriter()
    writer.write_str(observation.from_currency)
    writer.write_str(observation.to_currency)
    writer.write_f64(observation.rate)
    writer.write_i64(observation.unix_timestamp)
    return writer.getvalue()


def decode(data: bytes) -> ExchangeRateObservation:
    reader = BinReader(data)
    from_currency = reader.read_str()
    to_currency = reader.read_str()
    rate = reader.read_f64()
    unix_ts = reader.read_i64()
    if reader.remaining:
        raise CorruptedDataError(f"{reader.remaining} trailing bytes after record")

    try:
        timestamp = datetime.fromtimestamp(unix_ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise CorruptedDataError(f"timestamp {unix_ts} out of range") from exc

    try:
        return ExchangeRateObservation(
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate,
            timestamp=timestamp,
        )
    except ValidationError as exc:
        raise CorruptedDataError(f"decoded record is invalid: {exc.error_count()} error(s)") from exc


__all__ = [
    "MAX_READ_LEN",
    "CorruptedDataError",
    "DecodeError",
    "TooLargeReadError",
    "UnexpectedEofError",
    "decode",
    "encode",
]
