from synx.config import BACKEND_LMDB, StoreConfig
from synx.store.base import MessageListener, ThreadStore
from synx.store.lmdb_store import LmdbThreadStore
from synx.store.memory_store import MemoryThreadStore


def open_store(config: StoreConfig | None = None) -> ThreadStore:
    """Construct the backend named by ``config`` (env defaults if None)."""
    if config is None:
        config = StoreConfig.from_env()
    if config.backend == BACKEND_LMDB:
        return LmdbThreadStore(
            config.db_path,
            create=config.create,
            map_size=config.map_size,
            sync=config.sync,
            embedding_dim=config.embedding_dim,
        )
    return MemoryThreadStore(embedding_dim=config.embedding_dim)


__all__ = [
    "LmdbThreadStore",
    "MemoryThreadStore",
    "MessageListener",
    "ThreadStore",
    "open_store",
]
