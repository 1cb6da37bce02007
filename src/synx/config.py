"""Store configuration and environment variable names."""

import os
from dataclasses import dataclass
from pathlib import Path

from synx.errors import InvalidInputError

# Environment variable names
ENV_BACKEND = "SYNX_BACKEND"
ENV_DB_PATH = "SYNX_DB_PATH"
ENV_MAP_SIZE = "SYNX_MAP_SIZE"
ENV_CREATE = "SYNX_CREATE"
ENV_SYNC = "SYNX_SYNC"
ENV_EMBEDDING_DIM = "SYNX_EMBEDDING_DIM"
ENV_DEBUG = "SYNX_DEBUG"

BACKEND_LMDB = "lmdb"
BACKEND_MEMORY = "memory"
BACKENDS = (BACKEND_LMDB, BACKEND_MEMORY)

DEFAULT_BACKEND = BACKEND_MEMORY
DEFAULT_DB_PATH = Path.home() / ".synx" / "db"
DEFAULT_MAP_SIZE = 10 * 1024**3  # 10GB

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


def _env_int(name: str) -> int | None:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise InvalidInputError(f"{name} must be an integer: {value!r}") from e


@dataclass
class StoreConfig:
    """Selects and parameterises the storage backend at startup."""

    backend: str = DEFAULT_BACKEND
    db_path: Path = DEFAULT_DB_PATH
    map_size: int = DEFAULT_MAP_SIZE
    create: bool = True
    sync: bool = True
    embedding_dim: int | None = None

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise InvalidInputError(
                f"unknown backend {self.backend!r}, "
                f"expected one of {', '.join(BACKENDS)}"
            )
        if self.map_size <= 0:
            raise InvalidInputError("map_size must be positive")
        if self.embedding_dim is not None and self.embedding_dim <= 0:
            raise InvalidInputError("embedding_dim must be positive")
        self.db_path = Path(self.db_path).expanduser()

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Build a config from SYNX_* variables, defaulting the rest."""
        map_size = _env_int(ENV_MAP_SIZE)
        return cls(
            backend=os.environ.get(ENV_BACKEND, DEFAULT_BACKEND).lower(),
            db_path=Path(os.environ.get(ENV_DB_PATH, str(DEFAULT_DB_PATH))),
            map_size=DEFAULT_MAP_SIZE if map_size is None else map_size,
            create=_env_bool(ENV_CREATE, True),
            sync=_env_bool(ENV_SYNC, True),
            embedding_dim=_env_int(ENV_EMBEDDING_DIM),
        )
