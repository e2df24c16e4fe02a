"""Recursive decoder for marshal streams."""

from __future__ import annotations

from enum import IntEnum
from typing import Callable

from typed_cache.cursor import ByteCursor
from typed_cache.descriptors import DescriptorStore
from typed_cache.errors import (
    CacheError,
    DecodeError,
    MissingStreamDelimiter,
    NestingTooDeep,
    StreamParseFailure,
    TruncatedInput,
    UnknownStreamType,
    UnknownTypeTag,
)
from typed_cache.rows import DESCRIPTOR_CLASS, RowDecoder, instance_type_name, is_descriptor_header
from typed_cache.shares import ShareTable
from typed_cache.values import FALSE, NONE, TRUE, Instance, Value, ValueKind


class StreamType(IntEnum):
    """First byte of a stream."""

    MARSHAL = 0x7E


class Tag(IntEnum):
    """Value opcodes (low six bits of the opcode byte)."""

    NONE = 0x01
    TOKEN = 0x02
    INT64 = 0x03
    INT32 = 0x04
    INT16 = 0x05
    BYTE = 0x06
    MINUS_ONE = 0x07
    ZERO = 0x08
    ONE = 0x09
    FLOAT = 0x0A
    ZERO_FLOAT = 0x0B
    EMPTY_STRING = 0x0E
    CHAR_STRING = 0x0F
    SHORT_STRING = 0x10
    WIDE_STRING = 0x12
    LONG_STRING = 0x13
    TUPLE = 0x14
    LIST = 0x15
    DICT = 0x16
    OBJECT = 0x17
    SHARED_REF = 0x1B
    CHECKSUM = 0x1C
    TRUE = 0x1F
    FALSE = 0x20
    OBJECT_EX1 = 0x22
    OBJECT_EX2 = 0x23
    EMPTY_TUPLE = 0x24
    ONE_TUPLE = 0x25
    EMPTY_LIST = 0x26
    ONE_LIST = 0x27
    EMPTY_UNICODE = 0x28
    UNICODE_CHAR = 0x29
    PACKED_ROW = 0x2A
    SUBSTREAM = 0x2B
    TWO_TUPLE = 0x2C
    TERMINATOR = 0x2D
    UTF8 = 0x2E
    VAR_INT = 0x2F


TAG_MASK = 0x3F
SHARED_FLAG = 0x40

# Two terminators close both segments of an inline row descriptor
STREAM_DELIMITER = bytes((Tag.TERMINATOR, Tag.TERMINATOR))

# Tags whose values never take part in sharing
SCALAR_TAGS = frozenset({
    Tag.NONE,
    Tag.TOKEN,
    Tag.INT64,
    Tag.INT32,
    Tag.INT16,
    Tag.BYTE,
    Tag.MINUS_ONE,
    Tag.ZERO,
    Tag.ONE,
    Tag.FLOAT,
    Tag.ZERO_FLOAT,
    Tag.EMPTY_STRING,
    Tag.CHAR_STRING,
    Tag.SHORT_STRING,
    Tag.WIDE_STRING,
    Tag.LONG_STRING,
    Tag.SHARED_REF,
    Tag.TRUE,
    Tag.FALSE,
    Tag.EMPTY_UNICODE,
    Tag.UNICODE_CHAR,
    Tag.UTF8,
    Tag.VAR_INT,
})

# Several interpreter frames per level; stays well inside the recursion limit
DEFAULT_MAX_DEPTH = 128


class ValueDecoder:
    """Decodes values from a cursor, one top-level value per ``decode`` call.

    A decoder belongs to a single decode pass: it owns the pass's share
    table and must not be shared between threads.
    """

    def __init__(
        self,
        cursor: ByteCursor,
        shares: ShareTable | None = None,
        *,
        descriptors: DescriptorStore | None = None,
        rows: RowDecoder | None = None,
        keep_refs: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        """Initialize the decoder.

        Args:
            cursor: Cursor positioned at the first value.
            shares: Share table of the pass (a growable table if omitted).
            descriptors: Store for named row descriptors.
            rows: Row decoder to use instead of one built on descriptors.
            keep_refs: Return SHARED_REF values for back-references instead
                of the values they resolve to.
            max_depth: Maximum nesting of containers.
        """
        self.cursor = cursor
        self.shares = shares if shares is not None else ShareTable()
        self.rows = rows if rows is not None else RowDecoder(descriptors)
        self.keep_refs = keep_refs
        self.max_depth = max_depth
        self._depth = 0
        self._handlers: dict[int, Callable[[int, int], Value]] = {
            Tag.NONE: lambda offset, opcode: NONE,
            Tag.TOKEN: self._read_short_text,
            Tag.INT64: lambda offset, opcode: Value.integer(self.cursor.read_i64()),
            Tag.INT32: lambda offset, opcode: Value.integer(self.cursor.read_i32()),
            Tag.INT16: lambda offset, opcode: Value.integer(self.cursor.read_i16()),
            Tag.BYTE: lambda offset, opcode: Value.integer(self.cursor.read_u8()),
            Tag.MINUS_ONE: lambda offset, opcode: Value.integer(-1),
            Tag.ZERO: lambda offset, opcode: Value.integer(0),
            Tag.ONE: lambda offset, opcode: Value.integer(1),
            Tag.FLOAT: lambda offset, opcode: Value.real(self.cursor.read_f64()),
            Tag.ZERO_FLOAT: lambda offset, opcode: Value.real(0.0),
            Tag.EMPTY_STRING: lambda offset, opcode: Value.string(""),
            Tag.CHAR_STRING: self._read_char_string,
            Tag.SHORT_STRING: self._read_short_text,
            Tag.WIDE_STRING: self._read_wide_string,
            Tag.LONG_STRING: lambda offset, opcode: Value.binary(self.cursor.read_bytes(self.cursor.read_size())),
            Tag.TUPLE: lambda offset, opcode: Value.tuple_of(self._read_values(self.cursor.read_size())),
            Tag.LIST: lambda offset, opcode: Value.list_of(self._read_values(self.cursor.read_size())),
            Tag.DICT: self._read_dict,
            Tag.OBJECT: self._read_object,
            Tag.SHARED_REF: self._read_shared_ref,
            Tag.CHECKSUM: self._read_checksummed,
            Tag.TRUE: lambda offset, opcode: TRUE,
            Tag.FALSE: lambda offset, opcode: FALSE,
            Tag.OBJECT_EX1: self._read_object_ex,
            Tag.OBJECT_EX2: self._read_object_ex,
            Tag.EMPTY_TUPLE: lambda offset, opcode: Value.tuple_of(()),
            Tag.ONE_TUPLE: lambda offset, opcode: Value.tuple_of(self._read_values(1)),
            Tag.EMPTY_LIST: lambda offset, opcode: Value.list_of(()),
            Tag.ONE_LIST: lambda offset, opcode: Value.list_of(self._read_values(1)),
            Tag.EMPTY_UNICODE: lambda offset, opcode: Value.string(""),
            Tag.UNICODE_CHAR: self._read_unicode_char,
            Tag.PACKED_ROW: self._read_packed_row,
            Tag.SUBSTREAM: self._read_substream,
            Tag.TWO_TUPLE: lambda offset, opcode: Value.tuple_of(self._read_values(2)),
            Tag.UTF8: self._read_utf8,
            Tag.VAR_INT: self._read_var_int,
        }

    def decode(self) -> Value:
        """Decode the next value.

        Raises:
            CacheError: Any decoding failure; the cursor is then unusable.
        """
        offset = self.cursor.position()
        opcode = self.cursor.read_u8()
        tag = opcode & TAG_MASK
        shared = bool(opcode & SHARED_FLAG)

        handler = self._handlers.get(tag)
        if handler is None:
            if tag == Tag.TERMINATOR:
                raise UnknownTypeTag("Terminator outside an object segment", offset=offset, tag=opcode)
            raise UnknownTypeTag(f"Unknown type tag 0x{tag:02x}", offset=offset, tag=opcode)
        if shared and tag in SCALAR_TAGS:
            raise UnknownTypeTag(f"Shared flag on scalar tag 0x{tag:02x}", offset=offset, tag=opcode)
        if self._depth >= self.max_depth:
            raise NestingTooDeep(f"Values nested deeper than {self.max_depth}", offset=offset, tag=opcode)

        self._depth += 1
        try:
            if shared:
                # The slot is claimed on first appearance and published once built
                index = self.shares.reserve()
                value = handler(offset, opcode)
                self.shares.fill(index, value)
            else:
                value = handler(offset, opcode)
        except CacheError as exc:
            if exc.offset is None:
                exc.offset = offset
            if exc.tag is None:
                exc.tag = opcode
            raise
        finally:
            self._depth -= 1
        return value

    def _read_values(self, count: int) -> list[Value]:
        return [self.decode() for _ in range(count)]

    def _deref(self, value: Value) -> Value:
        """Return the value a kept back-reference points at."""
        if value.kind == ValueKind.SHARED_REF:
            return self.shares.peek(value.data)
        return value

    # Strings

    def _text(self, raw: bytes, encoding: str, offset: int, opcode: int) -> Value:
        try:
            return Value.string(raw.decode(encoding, "surrogatepass" if encoding == "utf-16-le" else "strict"))
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Invalid {encoding} string: {exc.reason}", offset=offset, tag=opcode) from exc

    def _read_short_text(self, offset: int, opcode: int) -> Value:
        return Value.string(self.cursor.read_length_prefixed_string(1, "latin-1"))

    def _read_char_string(self, offset: int, opcode: int) -> Value:
        return Value.string(self.cursor.read_bytes(1).decode("latin-1"))

    def _read_wide_string(self, offset: int, opcode: int) -> Value:
        length = self.cursor.read_size()
        return self._text(self.cursor.read_bytes(2 * length), "utf-16-le", offset, opcode)

    def _read_unicode_char(self, offset: int, opcode: int) -> Value:
        return self._text(self.cursor.read_bytes(2), "utf-16-le", offset, opcode)

    def _read_utf8(self, offset: int, opcode: int) -> Value:
        length = self.cursor.read_size()
        return self._text(self.cursor.read_bytes(length), "utf-8", offset, opcode)

    def _read_var_int(self, offset: int, opcode: int) -> Value:
        length = self.cursor.read_size()
        return Value.integer(int.from_bytes(self.cursor.read_bytes(length), "little", signed=True))

    # Containers

    def _read_dict(self, offset: int, opcode: int) -> Value:
        count = self.cursor.read_size()
        pairs: list[tuple[Value, Value]] = []
        for _ in range(count):
            # Values are written before their keys
            value = self.decode()
            key = self.decode()
            pairs.append((key, value))
        return Value.dict_of(pairs)

    def _read_shared_ref(self, offset: int, opcode: int) -> Value:
        index = self.cursor.read_size()
        value = self.shares.resolve(index)
        if self.keep_refs:
            return Value.shared_ref(index)
        return value

    def _read_checksummed(self, offset: int, opcode: int) -> Value:
        self.cursor.read_u32()
        return self.decode()

    # Objects

    def _read_object(self, offset: int, opcode: int) -> Value:
        name = self._deref(self.decode())
        if name.kind != ValueKind.STR:
            raise DecodeError(f"Object class name must be a string, got {name.kind.value}", offset=offset, tag=opcode)
        args = self.decode()

        store = self.rows.descriptors
        if store is not None and name.data in store:
            return Value.object_of(self.rows.decode_row(args, name.data, self._deref))
        return Value.instance_of(Instance(type_name=name.data, header=args))

    def _read_object_ex(self, offset: int, opcode: int) -> Value:
        header = self.decode()
        if is_descriptor_header(header, self._deref):
            return self._read_descriptor(self._deref(header))

        try:
            items = self._read_segment_items()
            entries = self._read_segment_entries()
        except StreamParseFailure:
            raise
        except CacheError as exc:
            raise StreamParseFailure(
                "Cannot decode object stream", exc, offset=exc.offset, tag=exc.tag
            ) from exc
        instance = Instance(
            type_name=instance_type_name(header, self._deref),
            header=header,
            items=tuple(items),
            entries=tuple(entries),
        )
        return Value.instance_of(instance)

    def _at_terminator(self) -> bool:
        if self.cursor.peek(1)[0] == Tag.TERMINATOR:
            self.cursor.skip(1)
            return True
        return False

    def _read_segment_items(self) -> list[Value]:
        items: list[Value] = []
        while not self._at_terminator():
            items.append(self.decode())
        return items

    def _read_segment_entries(self) -> list[tuple[Value, Value]]:
        entries: list[tuple[Value, Value]] = []
        while not self._at_terminator():
            key = self.decode()
            entries.append((key, self.decode()))
        return entries

    def _read_descriptor(self, header: Value) -> Value:
        """Read the delimiter that closes an inline row descriptor."""
        offset = self.cursor.position()
        available = self.cursor.remaining()
        marker = self.cursor.peek(min(available, len(STREAM_DELIMITER)))
        if marker != STREAM_DELIMITER:
            raise MissingStreamDelimiter(
                f"Expected delimiter {STREAM_DELIMITER.hex()} after {DESCRIPTOR_CLASS}, "
                f"found {marker.hex() or 'end of input'}",
                offset=offset,
            )
        self.cursor.skip(len(STREAM_DELIMITER))
        value = Value.instance_of(Instance(type_name=DESCRIPTOR_CLASS, header=header))
        # Validates the column list and ADO codes before any row uses it
        self.rows.descriptor_from_value(value, self._deref)
        return value

    def _read_packed_row(self, offset: int, opcode: int) -> Value:
        descriptor = self.rows.resolve_descriptor(self.decode(), self._deref)
        payload = self.cursor.read_bytes(self.cursor.read_size())
        variable = [
            self._deref(self.decode()) for c in descriptor.columns if c.ado_type.is_variable
        ]
        return Value.object_of(self.rows.unpack_row(descriptor, payload, variable))

    def _read_substream(self, offset: int, opcode: int) -> Value:
        length = self.cursor.read_size()
        region = self.cursor.region(length)
        try:
            values = decode_stream(
                region,
                rows=self.rows,
                keep_refs=self.keep_refs,
                max_depth=self.max_depth - self._depth,
            )
        except (StreamParseFailure, UnknownStreamType):
            raise
        except CacheError as exc:
            raise StreamParseFailure("Cannot decode substream", exc, offset=exc.offset, tag=exc.tag) from exc
        if len(values) != 1:
            raise StreamParseFailure(
                "Cannot decode substream",
                DecodeError(f"Substream holds {len(values)} values, expected 1", offset=offset),
                offset=offset,
                tag=opcode,
            )
        return values[0]


def _as_cursor(data: bytes | bytearray | memoryview | ByteCursor) -> ByteCursor:
    if isinstance(data, ByteCursor):
        return data
    return ByteCursor(data)


def read_stream_header(cursor: ByteCursor) -> tuple[ByteCursor, ShareTable]:
    """Read a stream header and its trailing share map.

    Returns a cursor over the stream's values and the share table sized
    and mapped as the header declares. The given cursor ends up past the
    share map.
    """
    offset = cursor.position()
    stream_type = cursor.read_u8()
    if stream_type != StreamType.MARSHAL:
        raise UnknownStreamType(f"Unknown stream type 0x{stream_type:02x}", offset=offset, tag=stream_type)

    share_count = cursor.read_u32()
    map_size = 4 * share_count
    if cursor.remaining() < map_size:
        raise TruncatedInput(map_size, cursor.remaining(), offset=cursor.position())
    body = cursor.region(cursor.remaining() - map_size)
    share_map = [cursor.read_i32() for _ in range(share_count)]
    return body, ShareTable(share_count, share_map)


def decode_stream(
    data: bytes | bytearray | memoryview | ByteCursor,
    *,
    descriptors: DescriptorStore | None = None,
    rows: RowDecoder | None = None,
    keep_refs: bool = False,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[Value]:
    """Decode a complete stream and return its top-level values.

    Each call uses a fresh share table, so decoding the same bytes twice
    gives equal results.
    """
    body, shares = read_stream_header(_as_cursor(data))
    decoder = ValueDecoder(
        body,
        shares,
        descriptors=descriptors,
        rows=rows,
        keep_refs=keep_refs,
        max_depth=max_depth,
    )
    values: list[Value] = []
    while not body.at_end():
        values.append(decoder.decode())
    return values


def decode_value(
    data: bytes | bytearray | memoryview | ByteCursor,
    *,
    descriptors: DescriptorStore | None = None,
    shares: ShareTable | None = None,
    keep_refs: bool = False,
) -> Value:
    """Decode a single value that has no stream header."""
    decoder = ValueDecoder(_as_cursor(data), shares, descriptors=descriptors, keep_refs=keep_refs)
    return decoder.decode()
