"""Typed rows: positional values interpreted through a descriptor."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from typed_cache.ado import CURRENCY_SCALE, AdoType, Column, Descriptor
from typed_cache.descriptors import DescriptorStore, validate_descriptor_name
from typed_cache.errors import (
    DescriptorNotFound,
    InvalidRowFields,
    InvalidRowFieldType,
    InvalidRowSize,
)
from typed_cache.values import Instance, Value, ValueKind

# Class name of inline row descriptors
DESCRIPTOR_CLASS = "blue.DBRowDescriptor"

# Maps a kept SHARED_REF value to the value it points at
Resolver = Optional[Callable[[Value], Value]]


def _identity(value: Value) -> Value:
    return value

_PACKED_FORMATS: dict[AdoType, str] = {
    AdoType.I1: "<b",
    AdoType.UI1: "<B",
    AdoType.I2: "<h",
    AdoType.UI2: "<H",
    AdoType.I4: "<i",
    AdoType.UI4: "<I",
    AdoType.R4: "<f",
    AdoType.I8: "<q",
    AdoType.UI8: "<Q",
    AdoType.R8: "<d",
    AdoType.CY: "<q",
    AdoType.DATE: "<d",
    AdoType.FILETIME: "<q",
}


@dataclass(frozen=True)
class Row:
    """An immutable record: one Value per descriptor column."""

    descriptor: Descriptor
    fields: tuple[Value, ...]

    def __post_init__(self) -> None:
        if len(self.fields) != len(self.descriptor.columns):
            raise InvalidRowSize(
                f"Row has {len(self.fields)} fields, descriptor "
                f"'{self.descriptor.name}' has {len(self.descriptor.columns)} columns"
            )

    @property
    def columns(self) -> tuple[Column, ...]:
        return self.descriptor.columns

    def __len__(self) -> int:
        return len(self.fields)

    def __getitem__(self, key: int | str) -> Value:
        """Get a field Value by position or column name."""
        if isinstance(key, str):
            return self.fields[self.descriptor.index_of(key)]
        return self.fields[key]

    def get(self, name: str, default: Any = None) -> Any:
        """Get a field as a Python value, or default if the column is absent."""
        if self.descriptor.get_column(name) is None:
            return default
        return self[name].to_python()

    def as_dict(self) -> dict[str, Any]:
        """Return the row as {column name: Python value}."""
        return {c.name: f.to_python() for c, f in zip(self.descriptor.columns, self.fields)}


def rle_unpack(data: bytes) -> bytes:
    """Expand the zero-run-length encoding used by packed rows.

    Each opcode byte holds two nibbles, low nibble first. The low three
    bits of a nibble are a length n and bit 3 is a zero flag: with the
    flag set the nibble stands for n + 1 zero bytes, otherwise the next
    8 - n input bytes are copied. Only the end of input cuts a copy short.
    """
    out = bytearray()
    pos = 0
    end = len(data)
    while pos < end:
        opcode = data[pos]
        pos += 1
        for nibble in (opcode & 0x0F, opcode >> 4):
            length = nibble & 0x07
            if nibble & 0x08:
                out.extend(b"\x00" * (length + 1))
            else:
                count = min(8 - length, end - pos)
                out.extend(data[pos:pos + count])
                pos += count
    return bytes(out)


def _check_field(descriptor: Descriptor, position: int, value: Value) -> None:
    """Match a field's shape against its column's ADO type."""
    column = descriptor.columns[position]
    kind = value.kind
    if kind == ValueKind.NONE:
        return
    if not kind.is_scalar:
        raise InvalidRowFields(
            f"Descriptor '{descriptor.name}' column {position} ('{column.name}'): "
            f"expected a scalar, got {kind.value}"
        )

    ado_type = column.ado_type
    if ado_type in (AdoType.EMPTY, AdoType.NULL):
        ok = False
    elif ado_type.is_integer:
        low, high = ado_type.integer_range
        ok = kind == ValueKind.INT and low <= value.data <= high
    elif ado_type.is_real:
        ok = kind in (ValueKind.INT, ValueKind.FLOAT)
    elif ado_type == AdoType.BOOL:
        ok = kind == ValueKind.BOOL
    elif ado_type == AdoType.STR:
        ok = kind in (ValueKind.STR, ValueKind.BYTES)
    elif ado_type == AdoType.WSTR:
        ok = kind == ValueKind.STR
    else:
        ok = kind == ValueKind.BYTES

    if not ok:
        raise InvalidRowFieldType(
            f"Descriptor '{descriptor.name}' column {position} ('{column.name}'): "
            f"{kind.value} value {value.data!r} does not fit ADO type {ado_type.name}"
        )


class RowDecoder:
    """Builds typed rows from decoded values and descriptors."""

    def __init__(self, descriptors: DescriptorStore | None = None) -> None:
        """Initialize the row decoder.

        Args:
            descriptors: Store used to resolve descriptors by name. Without
                one, only inline descriptors can be used.
        """
        self.descriptors = descriptors
        self._inline: dict[int, tuple[Value, Descriptor]] = {}

    def lookup(self, descriptor_name: str) -> Descriptor:
        """Resolve a descriptor by name through the store."""
        validate_descriptor_name(descriptor_name)
        if self.descriptors is None:
            raise DescriptorNotFound(f"Descriptor '{descriptor_name}' not found: no descriptor store")
        return self.descriptors.get(descriptor_name)

    def decode_row(self, container: Value, descriptor_name: str, resolve: Resolver = None) -> Row:
        """Interpret a tuple or list value as a row of the named descriptor."""
        return self.build_row(container, self.lookup(descriptor_name), resolve)

    def build_row(self, container: Value, descriptor: Descriptor, resolve: Resolver = None) -> Row:
        """Validate a tuple or list value against a descriptor and build the row.

        ``resolve`` replaces back-references in the container and its fields
        by the values they point at.

        Raises:
            InvalidRowFields: If the container is not a tuple or list, or a
                field is not a scalar.
            InvalidRowSize: If the field count differs from the column count.
            InvalidRowFieldType: If a field does not fit its column's type.
        """
        resolve = resolve or _identity
        container = resolve(container)
        if not container.kind.is_sequence:
            raise InvalidRowFields(
                f"Row for descriptor '{descriptor.name}' must be a tuple or list, "
                f"got {container.kind.value}"
            )
        fields = [resolve(f) for f in container.items]
        if len(fields) != len(descriptor.columns):
            raise InvalidRowSize(
                f"Row has {len(fields)} fields, descriptor '{descriptor.name}' "
                f"has {len(descriptor.columns)} columns"
            )
        for position, value in enumerate(fields):
            _check_field(descriptor, position, value)
        return Row(descriptor=descriptor, fields=tuple(fields))

    def descriptor_from_value(self, value: Value, resolve: Resolver = None) -> Descriptor:
        """Read an inline descriptor instance.

        The instance header is ``(DESCRIPTOR_CLASS, (((name, code), ...),))``.
        Any part of it may be a back-reference when ``resolve`` is given.
        """
        resolve = resolve or _identity
        value = resolve(value)
        cached = self._inline.get(id(value))
        if cached is not None and cached[0] is value:
            return cached[1]

        if value.kind != ValueKind.INSTANCE or value.data.type_name != DESCRIPTOR_CLASS:
            raise InvalidRowFields(f"Expected a {DESCRIPTOR_CLASS} instance, got {value.kind.value}")
        header = resolve(value.data.header)
        if header.kind != ValueKind.TUPLE or len(header.items) < 2:
            raise InvalidRowFields("Malformed row descriptor header")
        wrapper = resolve(header.items[1])
        if wrapper.kind != ValueKind.TUPLE or not wrapper.items:
            raise InvalidRowFields("Malformed row descriptor header")
        columns = resolve(wrapper.items[0])
        if columns.kind != ValueKind.TUPLE:
            raise InvalidRowFields("Malformed row descriptor header")

        pairs: list[tuple[str, int]] = []
        for column in map(resolve, columns.items):
            if column.kind != ValueKind.TUPLE or len(column.items) != 2:
                raise InvalidRowFields(f"Malformed row descriptor column: {column!r}")
            name, code = map(resolve, column.items)
            if name.kind != ValueKind.STR or code.kind != ValueKind.INT:
                raise InvalidRowFields(f"Malformed row descriptor column: {column!r}")
            pairs.append((name.data, code.data))

        descriptor = Descriptor.from_pairs(DESCRIPTOR_CLASS, pairs)
        self._inline[id(value)] = (value, descriptor)
        return descriptor

    def resolve_descriptor(self, value: Value, resolve: Resolver = None) -> Descriptor:
        """Resolve a packed row's descriptor value: a name or an inline descriptor."""
        if resolve is not None:
            value = resolve(value)
        if value.kind == ValueKind.STR:
            return self.lookup(value.data)
        if value.kind == ValueKind.INSTANCE:
            return self.descriptor_from_value(value, resolve)
        raise InvalidRowFields(f"Packed row descriptor must be a name or descriptor, got {value.kind.value}")

    def unpack_row(
        self, descriptor: Descriptor, payload: bytes, variable_fields: Sequence[Value] = ()
    ) -> Row:
        """Build a row from an RLE-packed payload and its variable-width fields.

        Args:
            descriptor: Descriptor of the row.
            payload: RLE-compressed fixed-width part of the row.
            variable_fields: One value per BYTES/STR/WSTR column, in column order.
        """
        data = rle_unpack(payload)
        width = descriptor.packed_size
        if len(data) > width:
            raise InvalidRowSize(
                f"Packed row for '{descriptor.name}' expands to {len(data)} bytes, "
                f"descriptor allows {width}"
            )
        # Trailing zero bytes are not written
        data = data + b"\x00" * (width - len(data))

        fields: list[Value | None] = [None] * len(descriptor.columns)
        offset = 0
        bit = 0
        bool_base = sum(c.ado_type.size_bytes for c in descriptor.columns)
        for position in descriptor.packed_layout():
            ado_type = descriptor.columns[position].ado_type
            if ado_type == AdoType.BOOL:
                byte = data[bool_base + bit // 8]
                fields[position] = Value.boolean(bool(byte >> (bit % 8) & 1))
                bit += 1
                continue
            raw = struct.unpack_from(_PACKED_FORMATS[ado_type], data, offset)[0]
            offset += ado_type.size_bytes
            if ado_type == AdoType.CY:
                fields[position] = Value.real(raw / CURRENCY_SCALE)
            elif ado_type.is_real:
                fields[position] = Value.real(raw)
            else:
                fields[position] = Value.integer(raw)

        variable = [i for i, c in enumerate(descriptor.columns) if c.ado_type.is_variable]
        if len(variable) != len(variable_fields):
            raise InvalidRowFields(
                f"Packed row for '{descriptor.name}' has {len(variable_fields)} variable "
                f"fields, descriptor has {len(variable)} variable columns"
            )
        for position, value in zip(variable, variable_fields):
            fields[position] = value

        assembled = [Value.none() if f is None else f for f in fields]
        return self.build_row(Value.tuple_of(assembled), descriptor)


def instance_type_name(header: Value, resolve: Resolver = None) -> str:
    """Return the class name carried by an object header, or "".

    Headers are ``(name, ...)`` or ``((name, ...), ...)``.
    """
    resolve = resolve or _identity
    header = resolve(header)
    if header.kind == ValueKind.STR:
        return header.data
    if header.kind == ValueKind.TUPLE and header.items:
        first = resolve(header.items[0])
        if first.kind == ValueKind.STR:
            return first.data
        if first.kind == ValueKind.TUPLE and first.items and first.items[0].kind == ValueKind.STR:
            return first.items[0].data
    return ""


def is_descriptor_header(header: Value, resolve: Resolver = None) -> bool:
    """Return whether an object header introduces an inline row descriptor."""
    return instance_type_name(header, resolve) == DESCRIPTOR_CLASS


def make_descriptor_instance(descriptor: Descriptor) -> Instance:
    """Build the inline instance form of a descriptor."""
    columns = Value.tuple_of(
        Value.tuple_of((Value.string(c.name), Value.integer(int(c.ado_type))))
        for c in descriptor.columns
    )
    header = Value.tuple_of((Value.string(DESCRIPTOR_CLASS), Value.tuple_of((columns,))))
    return Instance(type_name=DESCRIPTOR_CLASS, header=header)
