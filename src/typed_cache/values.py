"""Decoded value model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from typed_cache.rows import Row


class ValueKind(Enum):
    """Closed set of value variants produced by the decoder."""

    NONE = "none"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STR = "str"
    BYTES = "bytes"
    TUPLE = "tuple"
    LIST = "list"
    DICT = "dict"
    OBJECT = "object"
    INSTANCE = "instance"
    SHARED_REF = "shared_ref"

    @property
    def is_scalar(self) -> bool:
        return self in _SCALAR_KINDS

    @property
    def is_sequence(self) -> bool:
        return self in (ValueKind.TUPLE, ValueKind.LIST)


_SCALAR_KINDS = frozenset({
    ValueKind.NONE,
    ValueKind.BOOL,
    ValueKind.INT,
    ValueKind.FLOAT,
    ValueKind.STR,
    ValueKind.BYTES,
})


@dataclass(frozen=True)
class SharedRef:
    """Back-reference to a slot of the share table (1-based)."""

    index: int


@dataclass(frozen=True)
class Value:
    """A decoded value: a kind tag and its payload.

    Payload by kind:
      NONE: None; BOOL/INT/FLOAT/STR/BYTES: the Python scalar;
      TUPLE/LIST: tuple of Values; DICT: tuple of (key, value) Value pairs;
      OBJECT: a Row; INSTANCE: an Instance; SHARED_REF: the slot index.
    """

    kind: ValueKind
    data: Any = None

    @classmethod
    def none(cls) -> Value:
        return NONE

    @classmethod
    def boolean(cls, value: bool) -> Value:
        return TRUE if value else FALSE

    @classmethod
    def integer(cls, value: int) -> Value:
        return cls(ValueKind.INT, value)

    @classmethod
    def real(cls, value: float) -> Value:
        return cls(ValueKind.FLOAT, value)

    @classmethod
    def string(cls, value: str) -> Value:
        return cls(ValueKind.STR, value)

    @classmethod
    def binary(cls, value: bytes) -> Value:
        return cls(ValueKind.BYTES, value)

    @classmethod
    def tuple_of(cls, items: Any) -> Value:
        return cls(ValueKind.TUPLE, tuple(items))

    @classmethod
    def list_of(cls, items: Any) -> Value:
        return cls(ValueKind.LIST, tuple(items))

    @classmethod
    def dict_of(cls, pairs: Any) -> Value:
        return cls(ValueKind.DICT, tuple((k, v) for k, v in pairs))

    @classmethod
    def object_of(cls, row: Row) -> Value:
        return cls(ValueKind.OBJECT, row)

    @classmethod
    def instance_of(cls, instance: Instance) -> Value:
        return cls(ValueKind.INSTANCE, instance)

    @classmethod
    def shared_ref(cls, index: int) -> Value:
        return cls(ValueKind.SHARED_REF, index)

    @classmethod
    def from_python(cls, obj: Any) -> Value:
        """Build a Value tree from native Python data."""
        from typed_cache.rows import Row

        if isinstance(obj, Value):
            return obj
        if obj is None:
            return NONE
        # bool before int: bool is an int subclass
        if isinstance(obj, bool):
            return cls.boolean(obj)
        if isinstance(obj, int):
            return cls.integer(obj)
        if isinstance(obj, float):
            return cls.real(obj)
        if isinstance(obj, str):
            return cls.string(obj)
        if isinstance(obj, (bytes, bytearray)):
            return cls.binary(bytes(obj))
        if isinstance(obj, tuple):
            return cls.tuple_of(cls.from_python(v) for v in obj)
        if isinstance(obj, list):
            return cls.list_of(cls.from_python(v) for v in obj)
        if isinstance(obj, dict):
            return cls.dict_of((cls.from_python(k), cls.from_python(v)) for k, v in obj.items())
        if isinstance(obj, Row):
            return cls.object_of(obj)
        if isinstance(obj, Instance):
            return cls.instance_of(obj)
        if isinstance(obj, SharedRef):
            return cls.shared_ref(obj.index)
        raise TypeError(f"Cannot convert {type(obj).__name__} to a Value")

    def to_python(self) -> Any:
        """Convert to native Python data.

        Rows become dicts keyed by column name; instances and shared
        references are returned as Instance and SharedRef objects. Dict
        keys that would be unhashable are converted with ``to_key``.
        """
        kind = self.kind
        if kind.is_scalar:
            return self.data
        if kind == ValueKind.TUPLE:
            return tuple(v.to_python() for v in self.data)
        if kind == ValueKind.LIST:
            return [v.to_python() for v in self.data]
        if kind == ValueKind.DICT:
            return {k.to_key(): v.to_python() for k, v in self.data}
        if kind == ValueKind.OBJECT:
            return self.data.as_dict()
        if kind == ValueKind.INSTANCE:
            return self.data
        return SharedRef(self.data)

    def to_key(self) -> Any:
        """Convert to a hashable Python value, for use as a dict key.

        Lists become tuples, dicts become tuples of (key, value) pairs and
        rows become tuples of (column name, value) pairs.
        """
        kind = self.kind
        if kind.is_sequence:
            return tuple(v.to_key() for v in self.data)
        if kind == ValueKind.DICT:
            return tuple((k.to_key(), v.to_key()) for k, v in self.data)
        if kind == ValueKind.OBJECT:
            return tuple((c.name, f.to_key()) for c, f in zip(self.data.columns, self.data.fields))
        return self.to_python()

    @property
    def items(self) -> tuple[Value, ...]:
        """Return the elements of a tuple or list value."""
        if not self.kind.is_sequence:
            raise TypeError(f"{self.kind.value} value has no items")
        return self.data

    def children(self) -> Iterator[Value]:
        """Yield the directly nested values, in stream order."""
        kind = self.kind
        if kind.is_sequence:
            yield from self.data
        elif kind == ValueKind.DICT:
            for key, value in self.data:
                yield key
                yield value
        elif kind == ValueKind.OBJECT:
            yield from self.data.fields
        elif kind == ValueKind.INSTANCE:
            yield from self.data.children()

    def __repr__(self) -> str:
        if self.kind == ValueKind.NONE:
            return "Value(None)"
        return f"Value({self.kind.value}, {self.data!r})"


@dataclass(frozen=True)
class Instance:
    """A class instance carried by the stream.

    ``header`` holds the constructor arguments (or the reduce header for
    extended objects); ``items`` and ``entries`` hold the list and dict
    state that extended objects append after the header.
    """

    type_name: str
    header: Value
    items: tuple[Value, ...] = ()
    entries: tuple[tuple[Value, Value], ...] = ()

    def children(self) -> Iterator[Value]:
        yield self.header
        yield from self.items
        for key, value in self.entries:
            yield key
            yield value


NONE = Value(ValueKind.NONE)
TRUE = Value(ValueKind.BOOL, True)
FALSE = Value(ValueKind.BOOL, False)
