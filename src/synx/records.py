"""msgpack record codec for every table value.

Each value is a self-describing msgpack map (or list for thread
membership). Embeddings use the same layout as an append-only vector
file: a dimension header followed by raw float32 data.
"""

import uuid
from typing import Any

import msgpack
import numpy as np

from synx.errors import SerializationError
from synx.models import ImageContent, Message, TextContent, Thread

# value of every creation-index entry
PRESENCE = b""


def _pack(obj: Any) -> bytes:
    try:
        return msgpack.packb(obj, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise SerializationError(f"failed to encode record: {e}") from e


def _unpack(data: bytes, kind: str) -> Any:
    try:
        return msgpack.unpackb(data, raw=False)
    except (msgpack.exceptions.UnpackException, ValueError, TypeError) as e:
        raise SerializationError(f"failed to decode {kind} record: {e}") from e


def pack_thread(thread: Thread) -> bytes:
    return _pack(
        {
            "id": thread.id.bytes,
            "title": thread.title,
            "summary": thread.summary,
            "created_at": thread.created_at,
        }
    )


def unpack_thread(data: bytes) -> Thread:
    r = _unpack(data, "thread")
    try:
        return Thread(
            id=uuid.UUID(bytes=r["id"]),
            title=r.get("title"),
            summary=r.get("summary"),
            # zero marks a legacy record written without a timestamp
            created_at=r.get("created_at") or 0,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"malformed thread record: {e}") from e


def _pack_content(message: Message) -> list[dict[str, Any]]:
    items = []
    for item in message.content:
        if isinstance(item, TextContent):
            items.append({"type": "text", "text": item.text})
        else:
            items.append(
                {"type": "image", "image": item.image, "mime": item.mime_type}
            )
    return items


def pack_message(message: Message) -> bytes:
    return _pack(
        {
            "id": message.id.bytes,
            "thread_id": message.thread_id.bytes,
            "role": message.role,
            "content": _pack_content(message),
            "created_at": message.created_at,
        }
    )


def unpack_message(data: bytes) -> Message:
    r = _unpack(data, "message")
    try:
        content: list[TextContent | ImageContent] = []
        for item in r["content"]:
            if item["type"] == "text":
                content.append(TextContent(item["text"]))
            elif item["type"] == "image":
                content.append(ImageContent(item["image"], item.get("mime")))
            else:
                raise ValueError(f"unknown content type {item['type']!r}")
        return Message(
            id=uuid.UUID(bytes=r["id"]),
            thread_id=uuid.UUID(bytes=r["thread_id"]),
            role=r["role"],
            content=content,
            created_at=r.get("created_at") or 0,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"malformed message record: {e}") from e


def pack_message_ids(ids: list[uuid.UUID]) -> bytes:
    return _pack([i.bytes for i in ids])


def unpack_message_ids(data: bytes) -> list[uuid.UUID]:
    r = _unpack(data, "thread membership")
    try:
        return [uuid.UUID(bytes=b) for b in r]
    except (TypeError, ValueError) as e:
        raise SerializationError(f"malformed membership record: {e}") from e


def pack_embedding(vector: np.ndarray) -> bytes:
    vec = np.ascontiguousarray(vector, dtype=np.float32)
    return _pack({"dim": int(vec.shape[0]), "data": vec.tobytes()})


def unpack_embedding(data: bytes) -> np.ndarray:
    r = _unpack(data, "embedding")
    try:
        dim = r["dim"]
        vec = np.frombuffer(r["data"], dtype=np.float32)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"malformed embedding record: {e}") from e
    if vec.shape[0] != dim:
        raise SerializationError(
            f"embedding dimension mismatch: header {dim}, data {vec.shape[0]}"
        )
    # frombuffer views are read-only; hand callers their own copy
    return vec.copy()
