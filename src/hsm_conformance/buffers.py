from __future__ import annotations

from .status import ReturnValue


class OutputBuffer:
    """
    Caller-owned fixed-capacity output storage with an in/out length.

    On input ``length`` is the space the caller offers; after a call it is the
    number of bytes written, or the number required when the call reported
    BUFFER_TOO_SMALL.
    """

    def __init__(self, capacity: int, *, length: int | None = None) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0.")
        resolved_length = capacity if length is None else length
        if resolved_length < 0 or resolved_length > capacity:
            raise ValueError(
                f"length must be between 0 and capacity ({capacity}), got {resolved_length}."
            )
        self._storage = bytearray(capacity)
        self._written = False
        self.length = resolved_length

    @property
    def capacity(self) -> int:
        return len(self._storage)

    @property
    def value(self) -> bytes:
        if not self._written:
            return b""
        return bytes(self._storage[: self.length])

    def fill(self, payload: bytes) -> ReturnValue:
        required = len(payload)
        if required > self.length or required > self.capacity:
            self.length = required
            self._written = False
            return ReturnValue.BUFFER_TOO_SMALL
        self._storage[:required] = payload
        self.length = required
        self._written = True
        return ReturnValue.OK

    def resized(self) -> "OutputBuffer":
        """A fresh buffer big enough for the length last reported."""
        return OutputBuffer(self.length)

    def __repr__(self) -> str:
        return f"OutputBuffer(capacity={self.capacity}, length={self.length})"
