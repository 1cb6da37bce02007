"""Entity operations and cascades, written once against ``Txn``.

Backends decide how a transaction scope is opened, committed and isolated;
everything here assumes it runs inside exactly one such scope, so a raised
exception leaves no partial write behind.
"""

import uuid
from typing import Any

import numpy as np
import structlog

from synx import keys, records
from synx.errors import InvalidInputError, NotFoundError
from synx.models import (
    ContentInput,
    Message,
    Thread,
    ThreadMessagesPage,
    normalize_content,
)
from synx.store import indexes
from synx.store.tables import (
    EMBEDDINGS,
    MESSAGE_CREATION_TIME,
    MESSAGES,
    TABLES,
    THREAD_MESSAGES,
    THREADS,
    Txn,
    iter_prefix,
)

logger = structlog.get_logger(__name__)


def apply_pagination(
    items: list[Any], limit: int | None, offset: int | None
) -> tuple[list[Any], int, int, int]:
    """Skip ``offset`` items then take ``limit``; limit defaults to total."""
    if limit is not None and limit < 0:
        raise InvalidInputError(f"limit must be >= 0, got {limit}")
    if offset is not None and offset < 0:
        raise InvalidInputError(f"offset must be >= 0, got {offset}")
    total = len(items)
    offset = offset or 0
    limit = total if limit is None else limit
    return items[offset : offset + limit], total, offset, limit


# =============================================================================
# Reads
# =============================================================================


def _get_thread_record(txn: Txn, thread_id: uuid.UUID) -> Thread | None:
    data = txn.get(THREADS, keys.encode_id(thread_id))
    if data is None:
        return None
    return records.unpack_thread(data)


def _require_thread(txn: Txn, thread_id: uuid.UUID) -> Thread:
    thread = _get_thread_record(txn, thread_id)
    if thread is None:
        raise NotFoundError(f"thread {thread_id} not found")
    return thread


def _get_message_record(
    txn: Txn, thread_id: uuid.UUID, message_id: uuid.UUID
) -> Message | None:
    data = txn.get(MESSAGES, keys.encode_id_pair(thread_id, message_id))
    if data is None:
        return None
    return records.unpack_message(data)


def _attach_embedding(txn: Txn, thread: Thread) -> Thread:
    data = txn.get(EMBEDDINGS, keys.encode_id(thread.id))
    if data is not None:
        thread.embedding = records.unpack_embedding(data)
    return thread


def get_thread(txn: Txn, thread_id: uuid.UUID) -> Thread:
    return _require_thread(txn, thread_id)


def list_threads(txn: Txn) -> list[Thread]:
    return [records.unpack_thread(value) for _, value in txn.iter_from(THREADS)]


def get_message(
    txn: Txn, thread_id: uuid.UUID, message_id: uuid.UUID
) -> Message:
    message = _get_message_record(txn, thread_id, message_id)
    if message is None:
        raise NotFoundError(
            f"message {message_id} not found in thread {thread_id}"
        )
    return message


def get_thread_messages(
    txn: Txn,
    thread_id: uuid.UUID,
    limit: int | None = None,
    offset: int | None = None,
) -> ThreadMessagesPage:
    _require_thread(txn, thread_id)
    # the membership list is the source of truth for ordering
    message_ids = indexes.get_membership(txn, thread_id) or []
    messages = []
    for message_id in message_ids:
        message = _get_message_record(txn, thread_id, message_id)
        if message is not None:
            messages.append(message)
    page, total, offset, limit = apply_pagination(messages, limit, offset)
    return ThreadMessagesPage(
        messages=page, total=total, offset=offset, limit=limit
    )


def get_threads_with_embeddings(
    txn: Txn, thread_ids: list[uuid.UUID]
) -> list[Thread]:
    """Return the threads that exist, each with its embedding if stored."""
    threads = []
    for thread_id in thread_ids:
        thread = _get_thread_record(txn, thread_id)
        if thread is not None:
            threads.append(_attach_embedding(txn, thread))
    return threads


# =============================================================================
# Thread writes
# =============================================================================


def create_thread(txn: Txn, thread: Thread) -> Thread:
    txn.put(THREADS, keys.encode_id(thread.id), records.pack_thread(thread))
    indexes.init_membership(txn, thread.id)
    indexes.add_thread_creation(txn, thread.created_at, thread.id)
    return thread


def update_thread(
    txn: Txn, thread_id: uuid.UUID, title: str | None
) -> Thread:
    thread = _require_thread(txn, thread_id)
    thread.title = title
    txn.put(THREADS, keys.encode_id(thread_id), records.pack_thread(thread))
    return _attach_embedding(txn, thread)


def update_thread_summary_and_embedding(
    txn: Txn,
    thread_id: uuid.UUID,
    summary: str,
    embedding: np.ndarray,
) -> None:
    thread = _require_thread(txn, thread_id)
    thread.summary = summary
    txn.put(THREADS, keys.encode_id(thread_id), records.pack_thread(thread))
    txn.put(
        EMBEDDINGS, keys.encode_id(thread_id), records.pack_embedding(embedding)
    )


def delete_thread(txn: Txn, thread_id: uuid.UUID) -> int:
    """Delete a thread and everything that exists because of it.

    Returns the number of messages removed by the cascade.
    """
    thread = _require_thread(txn, thread_id)
    txn.delete(THREADS, keys.encode_id(thread_id))

    message_ids = indexes.drop_membership(txn, thread_id)
    txn.delete(EMBEDDINGS, keys.encode_id(thread_id))

    removed = 0
    for message_id in message_ids:
        if _delete_message_records(txn, thread_id, message_id):
            removed += 1

    # sweep anything still keyed under the thread, e.g. ids dropped from a
    # membership list by an older writer
    stale_messages = [
        key
        for key, _ in iter_prefix(
            txn, MESSAGES, keys.thread_prefix(thread_id)
        )
    ]
    for key in stale_messages:
        txn.delete(MESSAGES, key)
    stale_index = list(indexes.iter_message_creation(txn, thread_id))
    for created_at, message_id in stale_index:
        indexes.remove_message_creation(
            txn, thread_id, created_at, message_id
        )
    if stale_messages or stale_index:
        logger.warning(
            "removed %d orphaned message(s) and %d index entries "
            "for thread %s",
            len(stale_messages),
            len(stale_index),
            thread_id,
        )

    indexes.remove_thread_creation(txn, thread.created_at, thread_id)
    return removed


# =============================================================================
# Message writes
# =============================================================================


def create_message(txn: Txn, message: Message) -> Message:
    _require_thread(txn, message.thread_id)
    txn.put(
        MESSAGES,
        keys.encode_id_pair(message.thread_id, message.id),
        records.pack_message(message),
    )
    indexes.append_member(txn, message.thread_id, message.id)
    indexes.add_message_creation(
        txn, message.thread_id, message.created_at, message.id
    )
    return message


def update_message(
    txn: Txn,
    thread_id: uuid.UUID,
    message_id: uuid.UUID,
    content: ContentInput,
) -> Message:
    """Replace a message's content; id, thread and timestamp are kept."""
    message = get_message(txn, thread_id, message_id)
    message.content = normalize_content(content)
    txn.put(
        MESSAGES,
        keys.encode_id_pair(thread_id, message_id),
        records.pack_message(message),
    )
    return message


def _delete_message_records(
    txn: Txn, thread_id: uuid.UUID, message_id: uuid.UUID
) -> bool:
    key = keys.encode_id_pair(thread_id, message_id)
    data = txn.get(MESSAGES, key)
    if data is None:
        return False
    message = records.unpack_message(data)
    txn.delete(MESSAGES, key)
    indexes.remove_message_creation(
        txn, thread_id, message.created_at, message_id
    )
    return True


def delete_message(
    txn: Txn, thread_id: uuid.UUID, message_id: uuid.UUID
) -> None:
    if not _delete_message_records(txn, thread_id, message_id):
        raise NotFoundError(
            f"message {message_id} not found in thread {thread_id}"
        )
    indexes.remove_member(txn, thread_id, message_id)


# =============================================================================
# Diagnostics
# =============================================================================


def debug_state(txn: Txn) -> dict[str, Any]:
    """Dump every primary and derived table as JSON-friendly data."""
    embeddings = {}
    for key, value in txn.iter_from(EMBEDDINGS):
        vec = records.unpack_embedding(value)
        embeddings[str(keys.decode_id(key))] = vec.tolist()

    messages = []
    for key, value in txn.iter_from(MESSAGES):
        thread_id, message_id = keys.decode_id_pair(key)
        messages.append(
            [
                [str(thread_id), str(message_id)],
                records.unpack_message(value).to_dict(),
            ]
        )

    message_creation_times = []
    for key, _ in txn.iter_from(MESSAGE_CREATION_TIME):
        thread_id, ts, message_id = keys.decode_id_timestamp_id(key)
        message_creation_times.append([str(thread_id), ts, str(message_id)])

    return {
        "threads": {
            str(keys.decode_id(key)): records.unpack_thread(value).to_dict()
            for key, value in txn.iter_from(THREADS)
        },
        "messages": messages,
        "thread_messages": {
            str(keys.decode_id(key)): [
                str(i) for i in records.unpack_message_ids(value)
            ]
            for key, value in txn.iter_from(THREAD_MESSAGES)
        },
        "embeddings": embeddings,
        "thread_creation_times": [
            [ts, str(thread_id)]
            for ts, thread_id in indexes.iter_thread_creation(txn)
        ],
        "message_creation_times": message_creation_times,
        "counts": {table.decode(): txn.count(table) for table in TABLES},
    }
