"""Bounds-checked reader over an in-memory byte buffer."""

from __future__ import annotations

import struct

from typed_cache.errors import TruncatedInput

# Sizes above this marker byte are stored as a following uint32
SIZE_EXTENDED = 0xFF

_U8 = struct.Struct("<B")
_I8 = struct.Struct("<b")
_U16 = struct.Struct("<H")
_I16 = struct.Struct("<h")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")
_F32 = struct.Struct("<f")
_F64 = struct.Struct("<d")


class ByteCursor:
    """Reads little-endian primitives from a byte buffer.

    The buffer is never modified. Every read checks the remaining length
    first and raises TruncatedInput instead of returning short data; after
    a failed read the position is unspecified and the cursor must not be
    used again.
    """

    def __init__(self, data: bytes | bytearray | memoryview, start: int = 0, end: int | None = None) -> None:
        self._data = memoryview(data).cast("B") if not isinstance(data, memoryview) else data
        self._end = len(self._data) if end is None else end
        if not 0 <= start <= self._end <= len(self._data):
            raise ValueError(f"Invalid cursor bounds [{start}, {end}) for {len(self._data)} bytes")
        self._pos = start

    def position(self) -> int:
        """Return the absolute offset of the next byte to read."""
        return self._pos

    def remaining(self) -> int:
        """Return the number of unread bytes."""
        return self._end - self._pos

    def at_end(self) -> bool:
        return self._pos >= self._end

    def _require(self, n: int) -> int:
        if n < 0:
            raise ValueError(f"Negative read length: {n}")
        available = self._end - self._pos
        if n > available:
            raise TruncatedInput(n, available, offset=self._pos)
        pos = self._pos
        self._pos += n
        return pos

    def _unpack(self, fmt: struct.Struct) -> int | float:
        pos = self._require(fmt.size)
        return fmt.unpack_from(self._data, pos)[0]

    def read_u8(self) -> int:
        return self._unpack(_U8)  # type: ignore[return-value]

    def read_i8(self) -> int:
        return self._unpack(_I8)  # type: ignore[return-value]

    def read_u16(self) -> int:
        return self._unpack(_U16)  # type: ignore[return-value]

    def read_i16(self) -> int:
        return self._unpack(_I16)  # type: ignore[return-value]

    def read_u32(self) -> int:
        return self._unpack(_U32)  # type: ignore[return-value]

    def read_i32(self) -> int:
        return self._unpack(_I32)  # type: ignore[return-value]

    def read_u64(self) -> int:
        return self._unpack(_U64)  # type: ignore[return-value]

    def read_i64(self) -> int:
        return self._unpack(_I64)  # type: ignore[return-value]

    def read_f32(self) -> float:
        return self._unpack(_F32)

    def read_f64(self) -> float:
        return self._unpack(_F64)

    def read_bytes(self, n: int) -> bytes:
        """Read exactly n bytes."""
        pos = self._require(n)
        return self._data[pos:pos + n].tobytes()

    def read_size(self) -> int:
        """Read a size: one byte, or 0xFF followed by a uint32."""
        size = self.read_u8()
        if size == SIZE_EXTENDED:
            size = self.read_u32()
        return size

    def read_length_prefixed_string(self, width: int = 1, encoding: str = "latin-1") -> str:
        """Read a string preceded by its byte length.

        Args:
            width: Size of the length prefix in bytes (1, 2 or 4).
            encoding: Encoding of the string bytes.
        """
        if width == 1:
            length = self.read_u8()
        elif width == 2:
            length = self.read_u16()
        elif width == 4:
            length = self.read_u32()
        else:
            raise ValueError(f"Unsupported length prefix width: {width}")
        return self.read_bytes(length).decode(encoding)

    def peek(self, n: int) -> bytes:
        """Return the next n bytes without consuming them."""
        available = self._end - self._pos
        if n > available:
            raise TruncatedInput(n, available, offset=self._pos)
        return self._data[self._pos:self._pos + n].tobytes()

    def skip(self, n: int) -> None:
        self._require(n)

    def region(self, n: int) -> ByteCursor:
        """Consume the next n bytes and return a cursor over just them.

        The sub-cursor reports absolute offsets into the same buffer.
        """
        pos = self._require(n)
        return ByteCursor(self._data, pos, pos + n)

    def __repr__(self) -> str:
        return f"ByteCursor(position={self._pos}, remaining={self.remaining()})"
