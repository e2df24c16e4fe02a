"""Cache artifacts on disk and the decoding of their contents."""

from __future__ import annotations

import logging
import mmap
from pathlib import Path
from typing import Any, Iterable, Iterator

from typed_cache.decoder import DEFAULT_MAX_DEPTH, decode_stream
from typed_cache.descriptors import DescriptorStore
from typed_cache.errors import CacheError, CacheReadError, CannotOpenBuffer, CannotOpenFile
from typed_cache.rows import Row
from typed_cache.values import Value, ValueKind

logger = logging.getLogger(__name__)


class CacheFile:
    """An open cache artifact."""

    def __init__(self, path: Path, file: Any) -> None:
        self.path = path
        self._file = file

    @classmethod
    def open(cls, path: Path | str) -> CacheFile:
        """Open a cache file for reading.

        Raises:
            CannotOpenFile: If the path cannot be opened.
        """
        path = Path(path)
        try:
            file = open(path, "rb")
        except OSError as exc:
            raise CannotOpenFile(f"Cannot open cache file {path}: {exc.strerror or exc}") from exc
        return cls(path, file)

    @property
    def closed(self) -> bool:
        return self._file is None

    def fileno(self) -> int:
        if self._file is None:
            raise ValueError(f"Cache file {self.path} is closed")
        return self._file.fileno()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> CacheFile:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class CacheBuffer:
    """The bytes of one cache artifact, ready to decode."""

    def __init__(
        self,
        data: bytes,
        descriptors: DescriptorStore | None = None,
        *,
        source: str | None = None,
        keep_refs: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        """Initialize the buffer.

        Args:
            data: Raw artifact contents.
            descriptors: Store for named row descriptors.
            source: Name used in error messages (usually the file path).
            keep_refs: Keep back-references as SHARED_REF values.
            max_depth: Maximum nesting of containers.
        """
        self.data = data
        self.descriptors = descriptors
        self.source = source
        self.keep_refs = keep_refs
        self.max_depth = max_depth

    @classmethod
    def from_file(
        cls, cache_file: CacheFile, descriptors: DescriptorStore | None = None, **kwargs: Any
    ) -> CacheBuffer:
        """Read a cache file's contents into memory.

        Raises:
            CannotOpenBuffer: If the contents cannot be mapped (an empty
                file cannot be mapped either).
        """
        try:
            with mmap.mmap(cache_file.fileno(), 0, access=mmap.ACCESS_READ) as mapped:
                data = mapped[:]
        except (OSError, ValueError) as exc:
            raise CannotOpenBuffer(f"Cannot read cache file {cache_file.path}: {exc}") from exc
        return cls(data, descriptors, source=str(cache_file.path), **kwargs)

    def decode_all(self) -> list[Value]:
        """Decode the artifact and return its top-level values.

        Raises:
            CacheReadError: Wrapping whatever made the artifact unreadable.
        """
        try:
            values = decode_stream(
                self.data,
                descriptors=self.descriptors,
                keep_refs=self.keep_refs,
                max_depth=self.max_depth,
            )
        except CacheError as exc:
            raise CacheReadError(exc, source=self.source) from exc
        logger.debug("Decoded %d top-level values from %s", len(values), self.source or "buffer")
        return values

    def rows(self) -> list[Row]:
        """Decode the artifact and return every row in it."""
        return list(iter_rows(self.decode_all()))

    def __len__(self) -> int:
        return len(self.data)


def iter_rows(values: Iterable[Value]) -> Iterator[Row]:
    """Yield the rows found in a value graph, depth first, in stream order."""
    stack = list(reversed(list(values)))
    while stack:
        value = stack.pop()
        if value.kind == ValueKind.OBJECT:
            yield value.data
        else:
            stack.extend(reversed(list(value.children())))


def read_cache_file(
    path: Path | str, descriptors: DescriptorStore | None = None, **kwargs: Any
) -> list[Value]:
    """Open, read and decode a cache file."""
    with CacheFile.open(path) as cache_file:
        buffer = CacheBuffer.from_file(cache_file, descriptors, **kwargs)
    return buffer.decode_all()
