"""Discovery and concurrent decoding of cached method calls."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from typed_cache.cachefile import CacheBuffer, CacheFile, iter_rows
from typed_cache.descriptors import DescriptorStore
from typed_cache.errors import CacheError, CacheReadError
from typed_cache.rows import Row
from typed_cache.values import Value, ValueKind

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".cache"


@dataclass(frozen=True)
class CachedCall:
    """The decoded result of one cached remote method call."""

    path: Path
    service: str
    method: str
    arguments: tuple[Value, ...]
    payload: Value

    def rows(self) -> list[Row]:
        """Return the rows carried by the payload."""
        return list(iter_rows([self.payload]))


def cached_call_from_values(path: Path, values: list[Value]) -> CachedCall | None:
    """Interpret a file's top-level values as a cached call.

    A cached call is a single ``(key, payload)`` tuple whose key is
    ``(service, method, *arguments)``. Returns None for anything else.
    """
    if len(values) != 1:
        return None
    root = values[0]
    if root.kind != ValueKind.TUPLE or len(root.items) != 2:
        return None
    key, payload = root.items
    if key.kind != ValueKind.TUPLE or len(key.items) < 2:
        return None
    service, method = key.items[0], key.items[1]
    if service.kind != ValueKind.STR or method.kind != ValueKind.STR:
        return None
    return CachedCall(
        path=path,
        service=service.data,
        method=method.data,
        arguments=tuple(key.items[2:]),
        payload=payload,
    )


class CacheManager:
    """Collects cached method calls from client cache folders.

    Each ``machonet`` path is a directory whose sub-folders hold
    ``*.cache`` files. Folder filters restrict which sub-folders are read
    and method filters restrict which calls are kept.
    """

    def __init__(
        self,
        machonet_paths: Iterable[Path | str],
        descriptors: DescriptorStore | None = None,
        *,
        workers: int = 4,
    ) -> None:
        self.machonet_paths = [Path(p) for p in machonet_paths]
        self.descriptors = descriptors
        self.workers = workers
        self._folder_filters: set[str] = set()
        self._method_filters: set[str] = set()
        self.streams: list[CachedCall] = []
        self.errors: list[CacheError] = []

    def add_cache_folder_filter(self, name: str) -> None:
        self._folder_filters.add(name)

    def add_method_filter(self, name: str) -> None:
        self._method_filters.add(name)

    def cache_files(self) -> list[Path]:
        """List the cache files below the machonet paths, in a stable order."""
        files: list[Path] = []
        for root in self.machonet_paths:
            if not root.is_dir():
                logger.warning("Cache path %s is not a directory", root)
                continue
            for path in sorted(root.rglob(f"*{CACHE_SUFFIX}")):
                if not path.is_file():
                    continue
                folders = path.relative_to(root).parts[:-1]
                if self._folder_filters and not self._folder_filters.intersection(folders):
                    continue
                files.append(path)
        return files

    def _read(self, path: Path) -> CachedCall | None:
        with CacheFile.open(path) as cache_file:
            buffer = CacheBuffer.from_file(cache_file, self.descriptors)
        return cached_call_from_values(path, buffer.decode_all())

    def parse_machonet(self) -> list[CachedCall]:
        """Decode every matching cache file and keep the matching calls.

        Files that cannot be read are logged and recorded in ``errors``;
        they never contribute calls.
        """
        files = self.cache_files()
        self.streams = []
        self.errors = []

        results: dict[int, CachedCall] = {}
        with ThreadPoolExecutor(max_workers=max(1, self.workers)) as pool:
            futures = {pool.submit(self._read, path): idx for idx, path in enumerate(files)}
            for future in as_completed(futures):
                idx = futures[future]
                try:
                    call = future.result()
                except CacheError as exc:
                    if not isinstance(exc, CacheReadError):
                        exc = CacheReadError(exc, source=str(files[idx]))
                    logger.warning("Skipping %s: %s", files[idx], exc.cause)
                    self.errors.append(exc)
                    continue
                if call is None:
                    logger.debug("%s is not a cached method call", files[idx])
                    continue
                if self._method_filters and call.method not in self._method_filters:
                    continue
                results[idx] = call

        self.streams = [results[idx] for idx in sorted(results)]
        logger.debug("Collected %d cached calls from %d files", len(self.streams), len(files))
        return self.streams
