"""Domain types for threads, messages and their content."""

import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np

from synx.errors import InvalidInputError


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class TextContent:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImageContent:
    image: str
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "image",
            "image": self.image,
            "mimeType": self.mime_type,
        }


ContentItem = Union[TextContent, ImageContent]

ContentInput = Union[
    str,
    ContentItem,
    Mapping[str, Any],
    Sequence[Union[str, ContentItem, Mapping[str, Any]]],
]


def _coerce_item(item: Any) -> ContentItem:
    if isinstance(item, (TextContent, ImageContent)):
        return item
    if isinstance(item, str):
        return TextContent(item)
    if isinstance(item, Mapping):
        kind = item.get("type")
        if kind == "text" and isinstance(item.get("text"), str):
            return TextContent(item["text"])
        if kind == "image" and isinstance(item.get("image"), str):
            mime = item.get("mimeType", item.get("mime_type"))
            if mime is not None and not isinstance(mime, str):
                raise InvalidInputError("image mimeType must be a string")
            return ImageContent(item["image"], mime)
        raise InvalidInputError(f"unrecognised content item: {dict(item)!r}")
    raise InvalidInputError(
        f"unsupported content item type: {type(item).__name__}"
    )


def normalize_content(content: ContentInput) -> list[ContentItem]:
    """Accept a single item or a list of items and return a list.

    Strings become text items; mappings follow the tagged form
    ``{"type": "text", "text": ...}`` / ``{"type": "image", "image": ...,
    "mimeType": ...}``.
    """
    if isinstance(content, (str, TextContent, ImageContent, Mapping)):
        return [_coerce_item(content)]
    if isinstance(content, Sequence):
        return [_coerce_item(item) for item in content]
    raise InvalidInputError(
        f"unsupported content type: {type(content).__name__}"
    )


def extract_text_content(content: Sequence[ContentItem]) -> str | None:
    """Join the text items of a message, or None if it has none."""
    texts = [item.text for item in content if isinstance(item, TextContent)]
    if not texts:
        return None
    return "\n".join(texts)


def as_embedding(values: Any) -> np.ndarray:
    """Coerce a vector-like value to a 1-D float32 array."""
    try:
        vec = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"embedding is not numeric: {e}") from e
    if vec.ndim != 1 or vec.shape[0] == 0:
        raise InvalidInputError(
            f"embedding must be a non-empty 1-D vector, got shape {vec.shape}"
        )
    # missing items arrive as NaN after the float cast
    if not np.isfinite(vec).all():
        raise InvalidInputError("embedding contains NaN or infinite values")
    return vec


@dataclass
class Thread:
    id: uuid.UUID
    created_at: int
    title: str | None = None
    summary: str | None = None
    # attached from the embeddings table at read time, never stored inline
    embedding: np.ndarray | None = field(default=None, compare=False)

    @classmethod
    def new(cls, title: str | None = None) -> "Thread":
        return cls(id=uuid.uuid4(), created_at=now_millis(), title=title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "title": self.title,
            "summary": self.summary,
            "created_at": self.created_at,
            "embedding": (
                self.embedding.tolist() if self.embedding is not None else None
            ),
        }


@dataclass
class Message:
    id: uuid.UUID
    thread_id: uuid.UUID
    role: str
    content: list[ContentItem]
    created_at: int

    @classmethod
    def new(
        cls, thread_id: uuid.UUID, role: str, content: ContentInput
    ) -> "Message":
        return cls(
            id=uuid.uuid4(),
            thread_id=thread_id,
            role=role,
            content=normalize_content(content),
            created_at=now_millis(),
        )

    def text(self) -> str:
        """Flatten content to text, image items contributing their source."""
        return "\n".join(
            item.text if isinstance(item, TextContent) else item.image
            for item in self.content
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "thread_id": str(self.thread_id),
            "role": self.role,
            "content": [item.to_dict() for item in self.content],
            "created_at": self.created_at,
        }


@dataclass
class ThreadMessagesPage:
    messages: list[Message]
    total: int
    offset: int
    limit: int


@dataclass(frozen=True)
class MessageCreated:
    """Emitted after a message creation has committed."""

    thread_id: uuid.UUID
    message: Message
