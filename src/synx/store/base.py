"""Async storage capability shared by the durable and volatile backends."""

import abc
import uuid
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import numpy as np
import structlog

from synx.errors import InvalidInputError
from synx.models import (
    ContentInput,
    Message,
    MessageCreated,
    Thread,
    ThreadMessagesPage,
    as_embedding,
    normalize_content,
)
from synx.store import coordinator
from synx.store.tables import (
    EMBEDDINGS,
    MESSAGE_CREATION_TIME,
    MESSAGES,
    TABLES,
    THREAD_CREATION_TIME,
    THREAD_MESSAGES,
    THREADS,
    Txn,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MessageListener = Callable[[MessageCreated], None]


class ThreadStore(abc.ABC):
    """Threads and messages with their derived indexes.

    Subclasses provide the transaction scopes; every public operation here
    runs in exactly one of them. ``tables`` names what an operation touches
    so backends that lock per table know what to acquire.
    """

    backend: str = "abstract"

    def __init__(self, embedding_dim: int | None = None):
        self.embedding_dim = embedding_dim
        self._listeners: list[MessageListener] = []

    @abc.abstractmethod
    async def _read(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes]
    ) -> T:
        """Run ``fn`` inside a read-only scope."""

    @abc.abstractmethod
    async def _write(
        self, fn: Callable[[Txn], T], tables: Sequence[bytes]
    ) -> T:
        """Run ``fn`` inside a write scope, committing only if it returns."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the engine."""

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, listener: MessageListener) -> None:
        """Register a callback for committed message creations.

        Listeners run on the caller's event loop right after the commit and
        must not block; anything they raise is logged and dropped.
        """
        self._listeners.append(listener)

    def _emit(self, event: MessageCreated) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "message listener failed for thread %s", event.thread_id
                )

    # =========================================================================
    # Threads
    # =========================================================================

    @staticmethod
    def _check_title(title: Any) -> None:
        if title is not None and not isinstance(title, str):
            raise InvalidInputError("thread title must be a string or None")

    async def create_thread(self, title: str | None = None) -> Thread:
        self._check_title(title)
        thread = Thread.new(title=title)
        await self._write(
            lambda txn: coordinator.create_thread(txn, thread),
            (THREADS, THREAD_MESSAGES, THREAD_CREATION_TIME),
        )
        logger.debug("created thread %s", thread.id)
        return thread

    async def get_thread(self, thread_id: uuid.UUID) -> Thread:
        return await self._read(
            lambda txn: coordinator.get_thread(txn, thread_id), (THREADS,)
        )

    async def list_threads(self) -> list[Thread]:
        return await self._read(coordinator.list_threads, (THREADS,))

    async def update_thread(
        self, thread_id: uuid.UUID, title: str | None
    ) -> Thread:
        self._check_title(title)
        return await self._write(
            lambda txn: coordinator.update_thread(txn, thread_id, title),
            (THREADS, EMBEDDINGS),
        )

    async def delete_thread(self, thread_id: uuid.UUID) -> None:
        removed = await self._write(
            lambda txn: coordinator.delete_thread(txn, thread_id), TABLES
        )
        logger.debug(
            "deleted thread %s with %d message(s)", thread_id, removed
        )

    def _check_embedding(self, embedding: Any) -> np.ndarray:
        vec = as_embedding(embedding)
        dim = self.embedding_dim
        if dim is not None and vec.shape[0] != dim:
            raise InvalidInputError(
                f"embedding has {vec.shape[0]} dimensions, "
                f"expected {dim}"
            )
        return vec

    async def update_thread_summary_and_embedding(
        self, thread_id: uuid.UUID, summary: str, embedding: Any
    ) -> None:
        if not isinstance(summary, str):
            raise InvalidInputError("thread summary must be a string")
        vec = self._check_embedding(embedding)
        await self._write(
            lambda txn: coordinator.update_thread_summary_and_embedding(
                txn, thread_id, summary, vec
            ),
            (THREADS, EMBEDDINGS),
        )

    async def get_threads_with_embeddings(
        self, thread_ids: Sequence[uuid.UUID]
    ) -> list[Thread]:
        ids = list(thread_ids)
        return await self._read(
            lambda txn: coordinator.get_threads_with_embeddings(txn, ids),
            (THREADS, EMBEDDINGS),
        )

    # =========================================================================
    # Messages
    # =========================================================================

    async def create_message(
        self, thread_id: uuid.UUID, role: str, content: ContentInput
    ) -> Message:
        if not isinstance(role, str):
            raise InvalidInputError("message role must be a string")
        message = Message.new(thread_id, role, content)
        await self._write(
            lambda txn: coordinator.create_message(txn, message),
            (THREADS, MESSAGES, THREAD_MESSAGES, MESSAGE_CREATION_TIME),
        )
        self._emit(MessageCreated(thread_id=thread_id, message=message))
        return message

    async def get_message(
        self, thread_id: uuid.UUID, message_id: uuid.UUID
    ) -> Message:
        return await self._read(
            lambda txn: coordinator.get_message(txn, thread_id, message_id),
            (MESSAGES,),
        )

    async def update_message(
        self,
        thread_id: uuid.UUID,
        message_id: uuid.UUID,
        content: ContentInput,
    ) -> Message:
        items = normalize_content(content)
        return await self._write(
            lambda txn: coordinator.update_message(
                txn, thread_id, message_id, items
            ),
            (MESSAGES,),
        )

    async def delete_message(
        self, thread_id: uuid.UUID, message_id: uuid.UUID
    ) -> None:
        await self._write(
            lambda txn: coordinator.delete_message(txn, thread_id, message_id),
            (MESSAGES, THREAD_MESSAGES, MESSAGE_CREATION_TIME),
        )

    async def get_thread_messages(
        self,
        thread_id: uuid.UUID,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ThreadMessagesPage:
        return await self._read(
            lambda txn: coordinator.get_thread_messages(
                txn, thread_id, limit, offset
            ),
            (THREADS, MESSAGES, THREAD_MESSAGES),
        )

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def debug_state(self) -> dict[str, Any]:
        state = await self._read(coordinator.debug_state, TABLES)
        state["backend"] = self.backend
        return state
