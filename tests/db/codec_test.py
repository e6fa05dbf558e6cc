from __future__ import annotations

import struct
from datetime import datetime, timezone

import pytest

from db.codec import (
    MAX_READ_LEN,
    CorruptedDataError,
    TooLargeReadError,
    UnexpectedEofError,
    decode,
    encode,
)
from tests.helpers.rates import make_rate


def _u64(value: int) -> bytes:
    return struct.pack(">Q", value)


def test_encode_layout_is_length_prefixed_big_endian() -> None:
    rate = make_rate("EUR", "USD", 1.25, datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))

    data = encode(rate)

    assert data == (
        _u64(3) + b"EUR" + _u64(3) + b"USD" + struct.pack(">d", 1.25) + struct.pack(">q", 1_717_243_200)
    )


def test_decode_restores_observation() -> None:
    rate = make_rate("BTC", "USD", 67_012.5)

    decoded = decode(encode(rate))

    assert decoded == rate
    assert decoded.timestamp.tzinfo == timezone.utc


def test_decode_preserves_non_ascii_currency_codes() -> None:
    rate = make_rate("€UR", "USD", 1.1)

    assert decode(encode(rate)).from_currency == "€UR"


@pytest.mark.parametrize("cut", [1, 8, 20])
def test_decode_truncated_record_raises_unexpected_eof(cut: int) -> None:
    data = encode(make_rate())

    with pytest.raises(UnexpectedEofError):
        decode(data[:-cut])


def test_decode_empty_input_raises_unexpected_eof() -> None:
    with pytest.raises(UnexpectedEofError) as excinfo:
        decode(b"")

    assert excinfo.value.wanted == 8
    assert excinfo.value.remaining == 0


def test_decode_rejects_length_above_read_limit() -> None:
    with pytest.raises(TooLargeReadError) as excinfo:
        decode(_u64(MAX_READ_LEN + 1) + b"EUR")

    assert excinfo.value.length == MAX_READ_LEN + 1


def test_decode_length_past_end_of_buffer_is_corrupted() -> None:
    with pytest.raises(CorruptedDataError):
        decode(_u64(100) + b"EUR")


def test_decode_invalid_utf8_is_corrupted() -> None:
    with pytest.raises(CorruptedDataError):
        decode(_u64(2) + b"\xff\xfe" + _u64(3) + b"USD" + struct.pack(">d", 1.0) + struct.pack(">q", 0))


def test_decode_trailing_bytes_are_corrupted() -> None:
    with pytest.raises(CorruptedDataError):
        decode(encode(make_rate()) + b"\x00")


def test_decode_invalid_record_is_corrupted() -> None:
    data = _u64(3) + b"USD" + _u64(3) + b"USD" + struct.pack(">d", 1.0) + struct.pack(">q", 0)

    with pytest.raises(CorruptedDataError):
        decode(data)


def test_decode_pre_epoch_timestamp_is_corrupted() -> None:
    data = _u64(3) + b"EUR" + _u64(3) + b"USD" + struct.pack(">d", 1.0) + struct.pack(">q", -60)

    with pytest.raises(CorruptedDataError):
        decode(data)
