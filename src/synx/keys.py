"""Fixed-width composite key codec for the synx tables.

All keys are built so that byte-lexicographic order equals logical order,
which is what LMDB (and the in-memory ordered maps) sort by:

- thread key: {thread_id}                          16 bytes
- message key: {thread_id}{message_id}             32 bytes
- thread creation key: {ts:u64be}{thread_id}       24 bytes
- message creation key: {thread_id}{ts:u64be}{id}  40 bytes

Timestamps are unsigned 64-bit big-endian epoch milliseconds.
"""

import struct
import uuid

from synx.errors import InvalidInputError, KeyDecodeError

ID_WIDTH = 16
TS_WIDTH = 8

THREAD_KEY_WIDTH = ID_WIDTH
MESSAGE_KEY_WIDTH = 2 * ID_WIDTH
THREAD_CREATION_KEY_WIDTH = TS_WIDTH + ID_WIDTH
MESSAGE_CREATION_KEY_WIDTH = ID_WIDTH + TS_WIDTH + ID_WIDTH

MAX_TIMESTAMP = 2**64 - 1


def _pack_u64(val: int) -> bytes:
    """Pack u64 as big-endian for lexicographic ordering."""
    if not 0 <= val <= MAX_TIMESTAMP:
        raise InvalidInputError(f"timestamp out of u64 range: {val}")
    return struct.pack(">Q", val)


def _unpack_u64(data: bytes) -> int:
    """Unpack big-endian u64."""
    return struct.unpack(">Q", data)[0]


def _check_width(data: bytes, width: int, shape: str) -> None:
    if len(data) != width:
        raise KeyDecodeError(
            f"invalid byte length for {shape} key: "
            f"expected {width}, got {len(data)}"
        )


def encode_id(id_: uuid.UUID) -> bytes:
    """Encode a single identifier."""
    return id_.bytes


def decode_id(data: bytes) -> uuid.UUID:
    """Decode a single identifier, rejecting anything but 16 bytes."""
    _check_width(data, THREAD_KEY_WIDTH, "id")
    return uuid.UUID(bytes=bytes(data))


def encode_id_pair(first: uuid.UUID, second: uuid.UUID) -> bytes:
    """Encode (thread_id, message_id) for the messages table.

    A prefix scan on ``encode_id(thread_id)`` recovers every message of a
    thread in primary-table order.
    """
    return first.bytes + second.bytes


def decode_id_pair(data: bytes) -> tuple[uuid.UUID, uuid.UUID]:
    _check_width(data, MESSAGE_KEY_WIDTH, "id pair")
    return (
        uuid.UUID(bytes=bytes(data[:ID_WIDTH])),
        uuid.UUID(bytes=bytes(data[ID_WIDTH:])),
    )


def encode_timestamp_id(timestamp: int, id_: uuid.UUID) -> bytes:
    """Encode (timestamp, thread_id) for the thread creation index."""
    return _pack_u64(timestamp) + id_.bytes


def decode_timestamp_id(data: bytes) -> tuple[int, uuid.UUID]:
    _check_width(data, THREAD_CREATION_KEY_WIDTH, "timestamp/id")
    return (
        _unpack_u64(data[:TS_WIDTH]),
        uuid.UUID(bytes=bytes(data[TS_WIDTH:])),
    )


def encode_id_timestamp_id(
    thread_id: uuid.UUID, timestamp: int, message_id: uuid.UUID
) -> bytes:
    """Encode (thread_id, timestamp, message_id) for the message index.

    Orders by thread, then time, then message id as a tie-break.
    """
    return thread_id.bytes + _pack_u64(timestamp) + message_id.bytes


def decode_id_timestamp_id(
    data: bytes,
) -> tuple[uuid.UUID, int, uuid.UUID]:
    _check_width(data, MESSAGE_CREATION_KEY_WIDTH, "id/timestamp/id")
    return (
        uuid.UUID(bytes=bytes(data[:ID_WIDTH])),
        _unpack_u64(data[ID_WIDTH : ID_WIDTH + TS_WIDTH]),
        uuid.UUID(bytes=bytes(data[ID_WIDTH + TS_WIDTH :])),
    )


def thread_prefix(thread_id: uuid.UUID) -> bytes:
    """Range-scan prefix selecting every key owned by a thread."""
    return thread_id.bytes
