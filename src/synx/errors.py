"""Error taxonomy for the synx storage engine.

Engine-level failures are wrapped into the nearest member of this hierarchy
at the backend boundary, so callers only ever need to catch ``StoreError``.
"""


class StoreError(Exception):
    """Base class for every error raised by a thread store."""


class NotFoundError(StoreError):
    """A referenced thread, message or table does not exist."""

    def __init__(self, message: str = "item not found"):
        super().__init__(message)


class StoreConnectionError(StoreError):
    """The storage engine could not be opened or reached."""


class QueryError(StoreError):
    """A read failed at the engine level."""


class SerializationError(StoreError):
    """A stored value or key could not be encoded or decoded."""


class KeyDecodeError(SerializationError):
    """A composite key had the wrong length or shape."""


class OperationFailedError(StoreError):
    """A write could not be committed."""


class InvalidInputError(StoreError):
    """Caller-supplied arguments were rejected."""


class InternalError(StoreError):
    """An invariant was violated or the store reached an unexpected state."""
