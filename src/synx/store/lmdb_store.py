"""LMDB-backed durable thread store.

One environment holds six named sub-databases. LMDB gives us a single
writer at a time, MVCC snapshots for readers (reads never block writes),
and byte-order sorted keys for the range scans the indexes rely on.
"""

import asyncio
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any, TypeVar

import lmdb
import structlog

from synx.config import DEFAULT_MAP_SIZE
from synx.errors import (
    NotFoundError,
    OperationFailedError,
    QueryError,
    StoreConnectionError,
    StoreError,
)
from synx.store.base import ThreadStore
from synx.store.tables import TABLES, Txn

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LmdbTxn:
    """``Txn`` over an open LMDB transaction."""

    def __init__(self, txn: lmdb.Transaction, dbs: dict[bytes, Any]):
        self._txn = txn
        self._dbs = dbs

    def get(self, table: bytes, key: bytes) -> bytes | None:
        return self._txn.get(key, db=self._dbs[table])

    def put(self, table: bytes, key: bytes, value: bytes) -> None:
        self._txn.put(key, value, db=self._dbs[table])

    def delete(self, table: bytes, key: bytes) -> bool:
        return self._txn.delete(key, db=self._dbs[table])

    def iter_from(
        self, table: bytes, start: bytes = b""
    ) -> Iterator[tuple[bytes, bytes]]:
        cursor = self._txn.cursor(db=self._dbs[table])
        positioned = cursor.set_range(start) if start else cursor.first()
        if not positioned:
            return
        for key, value in cursor:
            yield key, value

    def count(self, table: bytes) -> int:
        return self._txn.stat(self._dbs[table])["entries"]


class LmdbThreadStore(ThreadStore):
    """Durable backend.

    ``create=True`` provisions any missing sub-database; ``create=False``
    requires an existing environment with all six and raises
    ``NotFoundError`` if one is missing.
    """

    backend = "lmdb"

    def __init__(
        self,
        db_path: Path,
        create: bool = True,
        map_size: int = DEFAULT_MAP_SIZE,
        sync: bool = True,
        embedding_dim: int | None = None,
    ):
        super().__init__(embedding_dim=embedding_dim)
        self.db_path = Path(db_path)
        if create:
            self.db_path.mkdir(parents=True, exist_ok=True)

        try:
            self.env = lmdb.open(
                str(self.db_path),
                map_size=map_size,
                max_dbs=len(TABLES) + 2,  # some headroom
                create=create,
                sync=sync,
                metasync=sync,
            )
        except lmdb.Error as e:
            raise StoreConnectionError(
                f"failed to open LMDB environment at {self.db_path}: {e}"
            ) from e

        self._dbs: dict[bytes, Any] = {}
        try:
            with self.env.begin(write=True) as txn:
                for name in TABLES:
                    self._dbs[name] = self.env.open_db(
                        name, txn=txn, create=create
                    )
        except lmdb.NotFoundError as e:
            self.env.close()
            raise NotFoundError(
                f"table {name.decode()} missing in {self.db_path}"
            ) from e
        except lmdb.Error as e:
            self.env.close()
            raise StoreConnectionError(
                f"failed to open tables in {self.db_path}: {e}"
            ) from e

        self._closed = False
        logger.info(
            "opened lmdb store at %s (create=%s, map_size=%d)",
            self.db_path,
            create,
            map_size,
        )

    def close(self) -> None:
        """Close the LMDB environment."""
        if self._closed:
            return
        self._closed = True
        self.env.close()

    def _check_open(self) -> None:
        if self._closed:
            raise StoreConnectionError("lmdb store is closed")

    def _run(self, fn: Callable[[Txn], T], write: bool) -> T:
        self._check_open()
        try:
            # commits on normal exit, aborts if fn raises
            with self.env.begin(write=write) as txn:
                return fn(LmdbTxn(txn, self._dbs))
        except StoreError:
            raise
        except lmdb.Error as e:
            if write:
                raise OperationFailedError(f"lmdb write failed: {e}") from e
            raise QueryError(f"lmdb read failed: {e}") from e

    async def _read(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes]
    ) -> T:
        return await asyncio.to_thread(self._run, fn, False)

    async def _write(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes]
    ) -> T:
        return await asyncio.to_thread(self._run, fn, True)
