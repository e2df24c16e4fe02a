"""Typed Cache - A decoder for client-side binary object-graph caches."""

from typed_cache.ado import AdoType, Column, Descriptor
from typed_cache.cachefile import CacheBuffer, CacheFile, iter_rows, read_cache_file
from typed_cache.cursor import ByteCursor
from typed_cache.decoder import Tag, ValueDecoder, decode_stream, decode_value
from typed_cache.descriptors import DescriptorStore, MemoryDescriptorStore, SqliteDescriptorStore
from typed_cache.errors import CacheError, CacheReadError, DecodeError, RowError, ShareError
from typed_cache.manager import CachedCall, CacheManager
from typed_cache.parsing import SchemaParser
from typed_cache.rows import Row, RowDecoder
from typed_cache.shares import ShareTable
from typed_cache.values import Instance, SharedRef, Value, ValueKind

__all__ = [
    # Main API
    "CacheFile",
    "CacheBuffer",
    "read_cache_file",
    "iter_rows",
    "CacheManager",
    "CachedCall",
    # Decoding
    "ByteCursor",
    "ShareTable",
    "ValueDecoder",
    "Tag",
    "decode_stream",
    "decode_value",
    # Values and rows
    "Value",
    "ValueKind",
    "Instance",
    "SharedRef",
    "Row",
    "RowDecoder",
    # Descriptors
    "AdoType",
    "Column",
    "Descriptor",
    "DescriptorStore",
    "MemoryDescriptorStore",
    "SqliteDescriptorStore",
    "SchemaParser",
    # Errors
    "CacheError",
    "CacheReadError",
    "DecodeError",
    "RowError",
    "ShareError",
]

__version__ = "0.1.0"
