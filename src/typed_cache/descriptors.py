"""Descriptor stores: named row schemas looked up by the row decoder."""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from typed_cache.ado import AdoType, Column, Descriptor
from typed_cache.errors import BadDescriptorName, DescriptorNotFound, DescriptorStoreUnavailable
from typed_cache.parsing import SchemaParser

MAX_DESCRIPTOR_NAME_LENGTH = 255


def validate_descriptor_name(name: object) -> str:
    """Check that a descriptor name is usable for lookups.

    Raises:
        BadDescriptorName: If the name is not a string, is empty, contains
            whitespace or non-printable characters, or is too long.
    """
    if not isinstance(name, str):
        raise BadDescriptorName(f"Descriptor name must be a string, got {type(name).__name__}")
    if not name:
        raise BadDescriptorName("Descriptor name is empty")
    if len(name) > MAX_DESCRIPTOR_NAME_LENGTH:
        raise BadDescriptorName(
            f"Descriptor name is {len(name)} characters long (max {MAX_DESCRIPTOR_NAME_LENGTH})"
        )
    if not name.isprintable() or any(ch.isspace() for ch in name):
        raise BadDescriptorName(f"Descriptor name {name!r} contains non-printable characters")
    return name


class DescriptorStore(ABC):
    """Read-only mapping of descriptor names to descriptors.

    The backing table is loaded on first use and cached for the lifetime
    of the store. Loading is serialized by a lock so that concurrent
    decoders never load twice; once loaded, lookups do not lock. A load
    that fails is retried on the next lookup.
    """

    def __init__(self) -> None:
        self._descriptors: dict[str, Descriptor] | None = None
        self._lock = threading.Lock()

    @abstractmethod
    def _load(self) -> dict[str, Descriptor]:
        """Load every descriptor from the backing store.

        Raises:
            DescriptorStoreUnavailable: If the backing store cannot be read.
        """

    def _table(self) -> dict[str, Descriptor]:
        descriptors = self._descriptors
        if descriptors is None:
            with self._lock:
                if self._descriptors is None:
                    self._descriptors = self._load()
                descriptors = self._descriptors
        return descriptors

    @property
    def loaded(self) -> bool:
        return self._descriptors is not None

    def lookup(self, name: str) -> Descriptor | None:
        """Return the descriptor registered under name, or None.

        Raises:
            BadDescriptorName: If the name itself is malformed.
        """
        validate_descriptor_name(name)
        return self._table().get(name)

    def get(self, name: str) -> Descriptor:
        """Return the descriptor registered under name.

        Raises:
            BadDescriptorName: If the name itself is malformed.
            DescriptorNotFound: If no descriptor has that name.
        """
        descriptor = self.lookup(name)
        if descriptor is None:
            raise DescriptorNotFound(f"Descriptor '{name}' not found")
        return descriptor

    def names(self) -> list[str]:
        """List all descriptor names."""
        return list(self._table().keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._table()

    def __len__(self) -> int:
        return len(self._table())


class MemoryDescriptorStore(DescriptorStore):
    """Descriptor store backed by an in-process list of descriptors."""

    def __init__(self, descriptors: Iterable[Descriptor] = ()) -> None:
        super().__init__()
        self._source = list(descriptors)

    @classmethod
    def parse(cls, schema: str) -> MemoryDescriptorStore:
        """Build a store from descriptor schema DSL text."""
        return cls(SchemaParser().parse(schema))

    @classmethod
    def from_file(cls, path: Path | str) -> MemoryDescriptorStore:
        """Build a store from a descriptor schema file."""
        return cls.parse(Path(path).read_text(encoding="utf-8"))

    def _load(self) -> dict[str, Descriptor]:
        table: dict[str, Descriptor] = {}
        for descriptor in self._source:
            validate_descriptor_name(descriptor.name)
            if descriptor.name in table:
                raise ValueError(f"Descriptor '{descriptor.name}' is already defined")
            table[descriptor.name] = descriptor
        return table


class SqliteDescriptorStore(DescriptorStore):
    """Descriptor store backed by a local SQLite database.

    The database holds one row per column::

        CREATE TABLE descriptor_columns (
            descriptor TEXT NOT NULL,
            position INTEGER NOT NULL,
            name TEXT NOT NULL,
            ado_type INTEGER NOT NULL
        )
    """

    TABLE = "descriptor_columns"

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)

    def _load(self) -> dict[str, Descriptor]:
        if not self.path.is_file():
            raise DescriptorStoreUnavailable(f"Descriptor database not found: {self.path}")

        try:
            uri = f"{self.path.resolve().as_uri()}?mode=ro"
            connection = sqlite3.connect(uri, uri=True)
            try:
                rows = connection.execute(
                    f"SELECT descriptor, name, ado_type FROM {self.TABLE} ORDER BY descriptor, position"
                ).fetchall()
            finally:
                connection.close()
        except (OSError, sqlite3.Error) as exc:
            raise DescriptorStoreUnavailable(
                f"Cannot read descriptor database {self.path}: {exc}"
            ) from exc

        columns: dict[str, list[Column]] = {}
        for descriptor_name, column_name, code in rows:
            validate_descriptor_name(descriptor_name)
            columns.setdefault(descriptor_name, []).append(
                Column(name=column_name, ado_type=AdoType.from_code(code))
            )
        return {
            name: Descriptor(name=name, columns=tuple(cols)) for name, cols in columns.items()
        }
