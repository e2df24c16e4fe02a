"""ADO column types and row descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum

from typed_cache.errors import UnknownAdoType


class AdoType(IntEnum):
    """Column types of a database row descriptor (DBTYPE codes)."""

    EMPTY = 0
    NULL = 1
    I2 = 2
    I4 = 3
    R4 = 4
    R8 = 5
    CY = 6
    DATE = 7
    BOOL = 11
    I1 = 16
    UI1 = 17
    UI2 = 18
    UI4 = 19
    I8 = 20
    UI8 = 21
    FILETIME = 64
    BYTES = 128
    STR = 129
    WSTR = 130

    @property
    def size_bytes(self) -> int:
        """Return the width of the column in a packed row.

        Booleans occupy a single bit and variable-width columns are stored
        outside the packed data; both report 0.
        """
        return _SIZES.get(self, 0)

    @property
    def is_variable(self) -> bool:
        """Return whether values are stored as separate stream values."""
        return self in (AdoType.BYTES, AdoType.STR, AdoType.WSTR)

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_RANGES

    @property
    def is_real(self) -> bool:
        """Return whether the column holds a floating-point quantity."""
        return self in (AdoType.R4, AdoType.R8, AdoType.CY, AdoType.DATE)

    @property
    def integer_range(self) -> tuple[int, int]:
        """Return the inclusive (min, max) of an integer column."""
        return _INTEGER_RANGES[self]

    @classmethod
    def from_code(cls, code: int) -> AdoType:
        """Return the type for a numeric code, or raise UnknownAdoType."""
        try:
            return cls(code)
        except ValueError:
            raise UnknownAdoType(f"Unknown ADO type code {code}") from None

    @classmethod
    def from_name(cls, name: str) -> AdoType:
        """Return the type for a case-insensitive name, or raise UnknownAdoType."""
        ado_type = ADO_TYPE_NAMES.get(name.upper())
        if ado_type is None:
            raise UnknownAdoType(f"Unknown ADO type '{name}'")
        return ado_type


_SIZES: dict[AdoType, int] = {
    AdoType.I1: 1,
    AdoType.UI1: 1,
    AdoType.I2: 2,
    AdoType.UI2: 2,
    AdoType.I4: 4,
    AdoType.UI4: 4,
    AdoType.R4: 4,
    AdoType.I8: 8,
    AdoType.UI8: 8,
    AdoType.R8: 8,
    AdoType.CY: 8,
    AdoType.DATE: 8,
    AdoType.FILETIME: 8,
}

_INTEGER_RANGES: dict[AdoType, tuple[int, int]] = {
    AdoType.I1: (-(1 << 7), (1 << 7) - 1),
    AdoType.UI1: (0, (1 << 8) - 1),
    AdoType.I2: (-(1 << 15), (1 << 15) - 1),
    AdoType.UI2: (0, (1 << 16) - 1),
    AdoType.I4: (-(1 << 31), (1 << 31) - 1),
    AdoType.UI4: (0, (1 << 32) - 1),
    AdoType.I8: (-(1 << 63), (1 << 63) - 1),
    AdoType.UI8: (0, (1 << 64) - 1),
    AdoType.FILETIME: (-(1 << 63), (1 << 63) - 1),
}

# Mapping from type name strings to AdoType values
ADO_TYPE_NAMES: dict[str, AdoType] = {t.name: t for t in AdoType}

# Currency columns are fixed-point with four decimal places
CURRENCY_SCALE = 10000

_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)


def filetime_to_datetime(ticks: int) -> datetime:
    """Convert FILETIME ticks (100 ns since 1601-01-01 UTC) to a datetime."""
    return _FILETIME_EPOCH + timedelta(microseconds=ticks // 10)


def datetime_to_filetime(value: datetime) -> int:
    """Convert an aware datetime to FILETIME ticks."""
    delta = value - _FILETIME_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


@dataclass(frozen=True)
class Column:
    """A named, typed column of a descriptor."""

    name: str
    ado_type: AdoType


@dataclass(frozen=True)
class Descriptor:
    """Named schema used to interpret positional row data."""

    name: str
    columns: tuple[Column, ...]

    @classmethod
    def from_pairs(cls, name: str, pairs: list[tuple[str, int | AdoType]]) -> Descriptor:
        """Build a descriptor from (column name, ADO code) pairs."""
        return cls(
            name=name,
            columns=tuple(Column(col, AdoType.from_code(int(code))) for col, code in pairs),
        )

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def get_column(self, name: str) -> Column | None:
        """Get a column by name."""
        for c in self.columns:
            if c.name == name:
                return c
        return None

    def index_of(self, name: str) -> int:
        """Get the position of a column by name."""
        for i, c in enumerate(self.columns):
            if c.name == name:
                return i
        raise KeyError(f"Column '{name}' not found in descriptor '{self.name}'")

    def packed_layout(self) -> list[int]:
        """Return column positions in packed-row order.

        Fixed-width columns come first, widest first and in column order
        within a width; boolean columns follow; variable-width and
        zero-width columns are not part of the packed data.
        """
        fixed = [i for i, c in enumerate(self.columns) if c.ado_type.size_bytes > 0]
        fixed.sort(key=lambda i: -self.columns[i].ado_type.size_bytes)
        bools = [i for i, c in enumerate(self.columns) if c.ado_type == AdoType.BOOL]
        return fixed + bools

    @property
    def packed_size(self) -> int:
        """Return the width in bytes of the packed (fixed) part of a row."""
        fixed = sum(c.ado_type.size_bytes for c in self.columns)
        bools = sum(1 for c in self.columns if c.ado_type == AdoType.BOOL)
        return fixed + (bools + 7) // 8
