"""Derived structure maintenance.

Keeps the thread membership lists and both creation-time indexes in step
with primary-table writes. Every function takes the caller's transaction
so index writes commit or abort together with the entity write.
"""

import uuid
from collections.abc import Callable, Iterator

import structlog

from synx import keys, records
from synx.errors import InternalError
from synx.store.tables import (
    MESSAGE_CREATION_TIME,
    THREAD_CREATION_TIME,
    THREAD_MESSAGES,
    Txn,
    iter_prefix,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Thread membership
# =============================================================================


def init_membership(txn: Txn, thread_id: uuid.UUID) -> None:
    txn.put(
        THREAD_MESSAGES,
        keys.encode_id(thread_id),
        records.pack_message_ids([]),
    )


def get_membership(txn: Txn, thread_id: uuid.UUID) -> list[uuid.UUID] | None:
    data = txn.get(THREAD_MESSAGES, keys.encode_id(thread_id))
    if data is None:
        return None
    return records.unpack_message_ids(data)


def update_membership(
    txn: Txn,
    thread_id: uuid.UUID,
    update_fn: Callable[[list[uuid.UUID]], list[uuid.UUID]],
) -> None:
    """Read-modify-write the membership list of a thread."""
    ids = get_membership(txn, thread_id)
    if ids is None:
        raise InternalError(f"thread {thread_id} has no membership record")
    txn.put(
        THREAD_MESSAGES,
        keys.encode_id(thread_id),
        records.pack_message_ids(update_fn(ids)),
    )


def append_member(
    txn: Txn, thread_id: uuid.UUID, message_id: uuid.UUID
) -> None:
    update_membership(txn, thread_id, lambda ids: ids + [message_id])


def remove_member(
    txn: Txn, thread_id: uuid.UUID, message_id: uuid.UUID
) -> None:
    update_membership(
        txn, thread_id, lambda ids: [i for i in ids if i != message_id]
    )


def drop_membership(txn: Txn, thread_id: uuid.UUID) -> list[uuid.UUID]:
    """Delete a thread's membership record, returning the ids it held."""
    ids = get_membership(txn, thread_id) or []
    txn.delete(THREAD_MESSAGES, keys.encode_id(thread_id))
    return ids


# =============================================================================
# Thread creation index
# =============================================================================


def add_thread_creation(
    txn: Txn, created_at: int, thread_id: uuid.UUID
) -> None:
    txn.put(
        THREAD_CREATION_TIME,
        keys.encode_timestamp_id(created_at, thread_id),
        records.PRESENCE,
    )


def _find_thread_creation_key(txn: Txn, thread_id: uuid.UUID) -> bytes | None:
    # legacy records carry no timestamp, so walk the index from ts=0
    start = keys.encode_timestamp_id(0, thread_id)
    for key, _ in txn.iter_from(THREAD_CREATION_TIME, start):
        _, found_id = keys.decode_timestamp_id(key)
        if found_id == thread_id:
            return key
    return None


def remove_thread_creation(
    txn: Txn, created_at: int, thread_id: uuid.UUID
) -> bool:
    """Delete a thread's creation-index entry.

    Uses a direct key when the timestamp is known; otherwise falls back to
    a scan and deletes only an entry whose embedded id matches.
    """
    if created_at:
        return txn.delete(
            THREAD_CREATION_TIME,
            keys.encode_timestamp_id(created_at, thread_id),
        )

    key = _find_thread_creation_key(txn, thread_id)
    if key is None:
        logger.debug("no creation index entry for thread %s", thread_id)
        return False
    return txn.delete(THREAD_CREATION_TIME, key)


def iter_thread_creation(txn: Txn) -> Iterator[tuple[int, uuid.UUID]]:
    """Yield (created_at, thread_id) in creation order."""
    for key, _ in txn.iter_from(THREAD_CREATION_TIME):
        yield keys.decode_timestamp_id(key)


# =============================================================================
# Message creation index
# =============================================================================


def add_message_creation(
    txn: Txn, thread_id: uuid.UUID, created_at: int, message_id: uuid.UUID
) -> None:
    txn.put(
        MESSAGE_CREATION_TIME,
        keys.encode_id_timestamp_id(thread_id, created_at, message_id),
        records.PRESENCE,
    )


def remove_message_creation(
    txn: Txn, thread_id: uuid.UUID, created_at: int, message_id: uuid.UUID
) -> bool:
    """Delete a message's creation-index entry (direct key or scan)."""
    if created_at:
        return txn.delete(
            MESSAGE_CREATION_TIME,
            keys.encode_id_timestamp_id(thread_id, created_at, message_id),
        )

    prefix = keys.thread_prefix(thread_id)
    for key, _ in iter_prefix(txn, MESSAGE_CREATION_TIME, prefix):
        t_id, _, m_id = keys.decode_id_timestamp_id(key)
        if t_id == thread_id and m_id == message_id:
            return txn.delete(MESSAGE_CREATION_TIME, key)
    logger.debug(
        "no creation index entry for message %s in thread %s",
        message_id,
        thread_id,
    )
    return False


def iter_message_creation(
    txn: Txn, thread_id: uuid.UUID
) -> Iterator[tuple[int, uuid.UUID]]:
    """Yield (created_at, message_id) for one thread in creation order."""
    prefix = keys.thread_prefix(thread_id)
    for key, _ in iter_prefix(txn, MESSAGE_CREATION_TIME, prefix):
        _, ts, message_id = keys.decode_id_timestamp_id(key)
        yield ts, message_id
