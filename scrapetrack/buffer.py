"""Bounds-checked reading of binary packets.

All integers are big-endian ("network order"), which is the only byte order
used by the UDP tracker protocol.
"""

from typing import Callable, List, TypeVar

import struct


T = TypeVar("T")


class Truncated(ValueError):
    pass


class Cursor:
    """Read-only cursor over `data`.

    Every read checks the number of remaining bytes first and raises
    `Truncated` if there are not enough of them.
    """

    def __init__(self, data: bytes):
        self._data = memoryview(data)
        self._offset = 0

    def __len__(self):
        return len(self._data) - self._offset

    def get(self, n: int) -> bytes:
        if len(self) < n:
            raise Truncated(f"Expected {n} bytes, got {len(self)}.")
        start = self._offset
        self._offset += n
        return self._data[start : self._offset].tobytes()

    def _unpack(self, fmt: str) -> int:
        (value,) = struct.unpack(fmt, self.get(struct.calcsize(fmt)))
        return value

    def get_u32(self) -> int:
        return self._unpack(">L")

    def get_u64(self) -> int:
        return self._unpack(">Q")

    def get_all(self, parser: Callable[["Cursor"], T]) -> List[T]:
        """Apply `parser` until the cursor is exhausted.

        A trailing partial record makes the last call to `parser` raise
        `Truncated`, which is propagated.
        """
        values = []
        while len(self):
            values.append(parser(self))
        return values

    def rest(self) -> bytes:
        return self.get(len(self))
