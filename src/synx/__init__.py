from synx.config import StoreConfig
from synx.errors import (
    InternalError,
    InvalidInputError,
    KeyDecodeError,
    NotFoundError,
    OperationFailedError,
    QueryError,
    SerializationError,
    StoreConnectionError,
    StoreError,
)
from synx.models import (
    ImageContent,
    Message,
    MessageCreated,
    TextContent,
    Thread,
    ThreadMessagesPage,
)
from synx.store import (
    LmdbThreadStore,
    MemoryThreadStore,
    ThreadStore,
    open_store,
)
from synx.summarizer import SummaryWorker

__all__ = [
    "ImageContent",
    "InternalError",
    "InvalidInputError",
    "KeyDecodeError",
    "LmdbThreadStore",
    "MemoryThreadStore",
    "Message",
    "MessageCreated",
    "NotFoundError",
    "OperationFailedError",
    "QueryError",
    "SerializationError",
    "StoreConfig",
    "StoreConnectionError",
    "StoreError",
    "SummaryWorker",
    "TextContent",
    "Thread",
    "ThreadMessagesPage",
    "ThreadStore",
    "open_store",
]
