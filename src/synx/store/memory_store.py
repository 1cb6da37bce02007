"""Volatile in-process thread store.

Each of the six tables is an independently locked ordered byte map that
mirrors the LMDB key space, so the same coordinator code drives both
backends. An operation takes the locks of every table it touches before
doing anything, always in ``TABLES`` order, and keeps them until it is
done. Overlapping operations therefore serialise while operations on
disjoint tables run in parallel, and writes are journaled so a failing
operation is rolled back instead of leaving a partial cross-table state.
"""

import asyncio
import bisect
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import ExitStack
from typing import TypeVar

import structlog

from synx.errors import InternalError, StoreConnectionError
from synx.store.base import ThreadStore
from synx.store.tables import TABLES, Txn

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_LOCK_ORDER = {name: i for i, name in enumerate(TABLES)}


class OrderedTable:
    """A byte-keyed map with sorted iteration, guarded by its own lock."""

    def __init__(self, name: bytes):
        self.name = name
        self.lock = threading.Lock()
        self._data: dict[bytes, bytes] = {}
        self._keys: list[bytes] = []  # kept sorted

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: bytes) -> bytes | None:
        return self._data.get(key)

    def put(self, key: bytes, value: bytes) -> None:
        if key not in self._data:
            bisect.insort(self._keys, key)
        self._data[key] = value

    def delete(self, key: bytes) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        idx = bisect.bisect_left(self._keys, key)
        del self._keys[idx]
        return True

    def iter_from(self, start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        idx = bisect.bisect_left(self._keys, start)
        # iterate a snapshot so callers may write while scanning
        for key in self._keys[idx:]:
            value = self._data.get(key)
            if value is not None:
                yield key, value


class MemoryTxn:
    """``Txn`` over locked ``OrderedTable``s with an undo journal."""

    def __init__(
        self,
        tables: dict[bytes, OrderedTable],
        scope: Sequence[bytes],
        write: bool,
    ):
        self._tables = tables
        self._scope = frozenset(scope)
        self._write = write
        self._journal: list[tuple[bytes, bytes, bytes | None]] = []

    def _table(self, name: bytes) -> OrderedTable:
        if name not in self._scope:
            raise InternalError(
                f"table {name.decode()} used without holding its lock"
            )
        return self._tables[name]

    def _check_writable(self) -> None:
        if not self._write:
            raise InternalError("write attempted in a read-only scope")

    def get(self, table: bytes, key: bytes) -> bytes | None:
        return self._table(table).get(key)

    def put(self, table: bytes, key: bytes, value: bytes) -> None:
        self._check_writable()
        t = self._table(table)
        self._journal.append((table, key, t.get(key)))
        t.put(key, value)

    def delete(self, table: bytes, key: bytes) -> bool:
        self._check_writable()
        t = self._table(table)
        previous = t.get(key)
        if previous is None:
            return False
        self._journal.append((table, key, previous))
        return t.delete(key)

    def iter_from(
        self, table: bytes, start: bytes = b""
    ) -> Iterator[tuple[bytes, bytes]]:
        return self._table(table).iter_from(start)

    def count(self, table: bytes) -> int:
        return len(self._table(table))

    def rollback(self) -> None:
        for table, key, previous in reversed(self._journal):
            if previous is None:
                self._tables[table].delete(key)
            else:
                self._tables[table].put(key, previous)
        self._journal.clear()


class MemoryThreadStore(ThreadStore):
    """Volatile backend; contents are lost when the process exits."""

    backend = "memory"

    def __init__(self, embedding_dim: int | None = None):
        super().__init__(embedding_dim=embedding_dim)
        self._tables = {name: OrderedTable(name) for name in TABLES}
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def _run(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes], write: bool
    ) -> T:
        if self._closed:
            raise StoreConnectionError("memory store is closed")
        scope = sorted(set(tables), key=_LOCK_ORDER.__getitem__)
        with ExitStack() as stack:
            for name in scope:
                stack.enter_context(self._tables[name].lock)
            txn = MemoryTxn(self._tables, scope, write)
            try:
                return fn(txn)
            except BaseException:
                txn.rollback()
                raise

    async def _read(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes]
    ) -> T:
        return await asyncio.to_thread(self._run, fn, tables, False)

    async def _write(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes]
    ) -> T:
        return await asyncio.to_thread(self._run, fn, tables, True)
