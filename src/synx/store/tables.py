"""Table names and the transaction interface shared by both backends."""

from collections.abc import Iterator
from typing import Protocol

# Sub-database names, in the global lock order used by the memory backend
THREADS = b"threads"  # thread_id -> Thread record
MESSAGES = b"messages"  # thread_id|message_id -> Message record
THREAD_MESSAGES = b"thread_messages"  # thread_id -> msgpack([message_ids])
EMBEDDINGS = b"embeddings"  # thread_id -> embedding record
THREAD_CREATION_TIME = b"thread_creation_time"  # ts|thread_id -> ""
MESSAGE_CREATION_TIME = b"message_creation_time"  # thread_id|ts|msg_id -> ""

TABLES = [
    THREADS,
    MESSAGES,
    THREAD_MESSAGES,
    EMBEDDINGS,
    THREAD_CREATION_TIME,
    MESSAGE_CREATION_TIME,
]


class Txn(Protocol):
    """One transaction scope spanning any of the six tables.

    Writes become visible to other scopes only when the backend commits
    the scope; an exception escaping the scope discards every write.
    """

    def get(self, table: bytes, key: bytes) -> bytes | None: ...

    def put(self, table: bytes, key: bytes, value: bytes) -> None: ...

    def delete(self, table: bytes, key: bytes) -> bool: ...

    def iter_from(
        self, table: bytes, start: bytes = b""
    ) -> Iterator[tuple[bytes, bytes]]:
        """Yield (key, value) pairs with key >= start in byte order."""
        ...

    def count(self, table: bytes) -> int: ...


def iter_prefix(
    txn: Txn, table: bytes, prefix: bytes
) -> Iterator[tuple[bytes, bytes]]:
    """Yield entries whose key starts with ``prefix``."""
    for key, value in txn.iter_from(table, prefix):
        if not key.startswith(prefix):
            break
        yield key, value
