"""Share table: the memo of decoded values that later data refers back to."""

from __future__ import annotations

from typing import Sequence

from typed_cache.errors import (
    ShareCursorOutOfRange,
    ShareIdOutOfRange,
    ShareIndexOutOfRange,
    ShareNotFound,
)
from typed_cache.values import Value


class _Slot:
    """Placeholder states for slots without a finished value."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


EMPTY = _Slot("EMPTY")
CONSTRUCTING = _Slot("CONSTRUCTING")


class ShareTable:
    """Append-only arena of shared values addressed by 1-based indices.

    Without a size the table grows with every registration and the k-th
    registered value gets index k. With a size (as declared by a stream
    header) the table has that many slots and the k-th registration goes
    to slot ``share_map[k]``, or slot k when no map is given.

    A value becomes resolvable only once it is fully constructed:
    ``reserve`` claims a slot when a shared value first appears and
    ``fill`` publishes the finished value.
    """

    BASE = 1

    def __init__(self, size: int | None = None, share_map: Sequence[int] | None = None) -> None:
        if share_map is not None and size is None:
            size = len(share_map)
        if share_map is not None and len(share_map) != size:
            raise ValueError(f"Share map has {len(share_map)} entries, expected {size}")
        self._size = size
        self._share_map = list(share_map) if share_map is not None else None
        self._slots: list[object] = [EMPTY] * size if size is not None else []
        self._cursor = 0
        self.resolutions = 0

    def __len__(self) -> int:
        """Return the number of slots."""
        return len(self._slots)

    @property
    def cursor(self) -> int:
        """Return how many values have been reserved so far."""
        return self._cursor

    @property
    def registered(self) -> int:
        """Return the number of fully constructed values."""
        return sum(1 for s in self._slots if isinstance(s, Value))

    @property
    def is_fixed(self) -> bool:
        return self._size is not None

    def reserve(self) -> int:
        """Claim the next slot for a value under construction and return its index."""
        if self._size is None:
            self._slots.append(CONSTRUCTING)
            self._cursor += 1
            return len(self._slots) - 1 + self.BASE

        if self._cursor >= self._size:
            raise ShareCursorOutOfRange(
                f"Share cursor {self._cursor} out of range: stream declared {self._size} shared values"
            )
        if self._share_map is not None:
            index = self._share_map[self._cursor]
        else:
            index = self._cursor + self.BASE
        if not self.BASE <= index < self.BASE + self._size:
            raise ShareIdOutOfRange(
                f"Share id {index} out of range [{self.BASE}, {self.BASE + self._size})"
            )
        if self._slots[index - self.BASE] is not EMPTY:
            raise ShareIdOutOfRange(f"Share id {index} assigned twice")
        self._slots[index - self.BASE] = CONSTRUCTING
        self._cursor += 1
        return index

    def fill(self, index: int, value: Value) -> None:
        """Publish the finished value of a reserved slot."""
        position = index - self.BASE
        if not 0 <= position < len(self._slots) or self._slots[position] is not CONSTRUCTING:
            raise ValueError(f"Share slot {index} was not reserved")
        self._slots[position] = value

    def register(self, value: Value) -> int:
        """Store a finished value in the next slot and return its index."""
        index = self.reserve()
        self.fill(index, value)
        return index

    def resolve(self, index: int) -> Value:
        """Return the value stored at index and count the resolution.

        Raises:
            ShareIndexOutOfRange: If the index is outside the table.
            ShareNotFound: If the slot is still under construction or unused.
        """
        value = self.peek(index)
        self.resolutions += 1
        return value

    def peek(self, index: int) -> Value:
        """Return the value stored at index without counting a resolution."""
        position = index - self.BASE
        if not 0 <= position < len(self._slots):
            raise ShareIndexOutOfRange(
                f"Share index {index} out of range [{self.BASE}, {self.BASE + len(self._slots)})"
            )
        value = self._slots[position]
        if not isinstance(value, Value):
            state = "under construction" if value is CONSTRUCTING else "not defined yet"
            raise ShareNotFound(f"Shared value {index} is {state}")
        return value

    def values(self) -> list[Value | None]:
        """Return the slot contents, None for slots without a finished value."""
        return [s if isinstance(s, Value) else None for s in self._slots]
